"""Exceptions raised by the moderation engine and its store."""


class ModerationError(RuntimeError):
    """Base exception for moderation failures.

    This is the base class for all moderation-related exceptions.
    """


class NotFoundError(ModerationError):
    """Raised when the post, or the topic it belongs to, does not exist."""


class InvalidStateError(ModerationError, ValueError):
    """Raised when a target moderation state is not recognized."""


class StoreConflictError(ModerationError):
    """Raised when concurrent writers collide on the same rows.

    The engine retries the whole moderation unit on this error a bounded
    number of times before letting it reach the caller.
    """
