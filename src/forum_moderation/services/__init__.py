"""Business logic services for forum moderation."""

from .moderation import (
    ModerationEngine,
    ModerationResult,
    NotificationEvent,
    build_moderation_engine,
)
from .notifications import DatabaseNotifier, Notifier

__all__ = [
    "ModerationEngine",
    "ModerationResult",
    "NotificationEvent",
    "build_moderation_engine",
    "DatabaseNotifier",
    "Notifier",
]
