"""Notification delivery for posts that become visible."""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from forum_moderation.db.session import SessionLocal
from forum_moderation.models import UserPostNotification

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Fire-and-forget sink for "this post is now visible to you" events."""

    def notify(self, recipient_user_id: int, post_id: int) -> None:
        """Enqueue a notification about ``post_id`` for ``recipient_user_id``."""


class DatabaseNotifier:
    """Records notifications as ``UserPostNotification`` rows.

    Each delivery runs in its own session so that it can never disturb the
    moderation transaction that produced it. A (user, post) pair is recorded
    at most once; repeats are ignored.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        """Initialize the notifier.

        Args:
            session_factory: Optional session factory. If None, uses the
                application's ``SessionLocal``.
        """
        self._session_factory = session_factory or SessionLocal

    def notify(self, recipient_user_id: int, post_id: int) -> None:
        """Record a notification unless the recipient already has one for the post."""
        with self._session_factory() as db:
            try:
                if db.get(UserPostNotification, (recipient_user_id, post_id)) is not None:
                    logger.debug(
                        "User %s already notified about post %s", recipient_user_id, post_id
                    )
                    return
                db.add(UserPostNotification(user_id=recipient_user_id, post_id=post_id))
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception(
                    "Failed to record notification for user %s about post %s",
                    recipient_user_id,
                    post_id,
                )
                return
        logger.debug("Notified user %s about post %s", recipient_user_id, post_id)
