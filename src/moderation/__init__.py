"""Moderation module entrypoints and service factory."""

from moderation.errors import (
    AccessDeniedError,
    ConflictError,
    InvalidStateError,
    ModerationError,
    NotFoundError,
    ValidationError,
)
from moderation.guards import CallerIdentity
from moderation.service import ModerationServices, get_moderation_services

__all__ = [
    "AccessDeniedError",
    "CallerIdentity",
    "ConflictError",
    "InvalidStateError",
    "ModerationError",
    "ModerationServices",
    "NotFoundError",
    "ValidationError",
    "get_moderation_services",
]
