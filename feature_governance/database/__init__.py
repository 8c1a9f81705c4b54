from feature_governance.database.models import (
    ARTIFACT_PLACEHOLDERS,
    CodeBundle,
    CodeValidation,
    FeatureProposal,
    GovernanceConfig,
    ProposalApproval,
    ProposalVote,
    ProviderConfig,
)
from feature_governance.database.session import (
    build_session_maker,
    close_db,
    create_engine,
    get_session_maker,
    init_db,
    session_scope,
)

__all__ = [
    "ARTIFACT_PLACEHOLDERS",
    "CodeBundle",
    "CodeValidation",
    "FeatureProposal",
    "GovernanceConfig",
    "ProposalApproval",
    "ProposalVote",
    "ProviderConfig",
    "build_session_maker",
    "close_db",
    "create_engine",
    "get_session_maker",
    "init_db",
    "session_scope",
]
