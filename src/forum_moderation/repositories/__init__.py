"""Data access layer."""

from .moderation_repo import ModerationRepository

__all__ = ["ModerationRepository"]
