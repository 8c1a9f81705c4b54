"""Pipeline stages, the approval gate and the facade wiring them together."""

from feature_governance.pipeline.collaborators import (
    CompletionRouter,
    DiscussionReader,
    InMemoryDiscussionReader,
    JsonFileDiscussionReader,
    RoleResolver,
    StaticRoleResolver,
)
from feature_governance.pipeline.service import GovernancePipeline

__all__ = [
    "CompletionRouter",
    "DiscussionReader",
    "GovernancePipeline",
    "InMemoryDiscussionReader",
    "JsonFileDiscussionReader",
    "RoleResolver",
    "StaticRoleResolver",
]
