"""Error taxonomy shared by every pipeline component.

Every error carries a stable ``kind`` and a human-readable message. Neither
ever contains credentials or stack traces, so both are safe to hand to callers.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base class for all caller-visible pipeline errors."""

    kind: str = "pipeline_error"
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class ConfigurationError(PipelineError):
    """Missing or invalid provider setup. Fatal for the call."""

    kind = "configuration_error"


class PermissionDenied(PipelineError):
    """The acting identity lacks the role the operation requires."""

    kind = "permission_denied"


class ProposalNotFound(PipelineError):
    kind = "not_found"


class ProviderConfigNotFound(PipelineError):
    kind = "not_found"


class InvalidRequest(PipelineError):
    """Input outside the accepted domain (e.g. an approval threshold of 11)."""

    kind = "invalid_request"


class PipelineStateError(PipelineError):
    """Operation attempted on a proposal in the wrong lifecycle stage."""

    kind = "pipeline_state_error"


class ValidationParseError(PipelineError):
    """Validation output was not the expected JSON document.

    Raised and absorbed inside the validation stage; never surfaced.
    """

    kind = "validation_parse_error"


# =============================================================================
# Provider call errors
# =============================================================================

class ProviderCallError(PipelineError):
    """Base for failures of an external completion call."""

    kind = "provider_call_error"

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class RateLimited(ProviderCallError):
    kind = "rate_limited"
    retryable = True

    def __init__(self, message: str, provider: str | None = None, retry_after: float | None = None):
        super().__init__(message, provider)
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data


class QuotaExceeded(ProviderCallError):
    kind = "quota_exceeded"
    retryable = True


class ProviderError(ProviderCallError):
    """Upstream answered with a non-2xx status (other than limits)."""

    kind = "provider_error"

    # Upstream bodies are kept for diagnostics only, never in full.
    MAX_BODY_CHARS = 500

    def __init__(self, message: str, provider: str | None = None, status_code: int | None = None, body: str = ""):
        super().__init__(message, provider)
        self.status_code = status_code
        self.body = body[: self.MAX_BODY_CHARS]

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["upstream_status"] = self.status_code
        return data


class TransportError(ProviderCallError):
    """Network-level failure or timeout."""

    kind = "transport_error"
    retryable = True
