"""AI-assisted feature governance pipeline."""

__version__ = "0.1.0"
