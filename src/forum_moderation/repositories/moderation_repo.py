"""Data access helpers for the moderation engine."""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from forum_moderation.core.errors import StoreConflictError
from forum_moderation.models import (
    ModerationState,
    Post,
    PostModerationRecord,
    Topic,
    TopicFollow,
    UserDetail,
)

__all__ = ["ModerationRepository", "is_conflict"]

DEFAULT_QUEUE_LIMIT = 50

# Postgres serialization failure, deadlock, lock not available.
CONFLICT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})
# SQLite reports lock contention only through the message text.
CONFLICT_MESSAGES = ("database is locked", "database table is locked")


def is_conflict(exc: Exception) -> bool:
    """Return whether a database error means another writer got in the way."""
    if isinstance(exc, StaleDataError):
        return True
    if not isinstance(exc, OperationalError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in CONFLICT_SQLSTATES:
        return True
    message = str(orig).lower()
    return any(text in message for text in CONFLICT_MESSAGES)


class ModerationRepository:
    """Thin wrapper around database access for posts, topics and user details.

    Writes are flushed immediately so that version conflicts surface inside
    the engine's transaction rather than at an arbitrary later point.
    """

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a synchronous SQLAlchemy session."""
        self.session = session

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit everything done inside the block, or roll all of it back."""
        try:
            yield
            self._commit()
        except Exception:
            self.session.rollback()
            raise

    def get_post(self, post_id: int) -> Post | None:
        """Return a post by identifier."""
        return self.session.get(Post, post_id)

    def get_topic(self, topic_id: int, *, lock: bool = False) -> Topic | None:
        """Return a topic, optionally locking its row until the transaction ends."""
        stmt = select(Topic).where(Topic.id == topic_id)
        if lock:
            stmt = stmt.with_for_update()
        return self.session.scalars(stmt).first()

    def first_post_id(self, topic_id: int) -> int | None:
        """Return the id of the oldest post in a topic."""
        stmt = (
            select(Post.id)
            .where(Post.topic_id == topic_id)
            .order_by(Post.created_at, Post.id)
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def update_post(self, post: Post) -> None:
        """Persist pending changes on a post."""
        self.session.add(post)
        self._flush()

    def update_topic(self, topic: Topic) -> None:
        """Persist pending changes on a topic."""
        self.session.add(topic)
        self._flush()

    def get_user_detail(self, user_id: int) -> UserDetail:
        """Return the moderation detail for a user, creating a pending one if missing."""
        detail = self.session.get(UserDetail, user_id)
        if detail is None:
            detail = UserDetail(user_id=user_id, moderation_state=ModerationState.PENDING)
            self.session.add(detail)
            self._flush()
        return detail

    def update_user_detail(self, detail: UserDetail) -> None:
        """Persist pending changes on a user detail."""
        self.session.add(detail)
        self._flush()

    def list_posts_by_author_in_topic(self, user_id: int | None, topic_id: int) -> list[Post]:
        """Return the posts a user wrote in a topic, oldest first.

        Posts whose author is gone are never grouped together.
        """
        if user_id is None:
            return []
        stmt = (
            select(Post)
            .where(Post.topic_id == topic_id, Post.user_id == user_id)
            .order_by(Post.created_at, Post.id)
        )
        return list(self.session.scalars(stmt))

    def list_topic_follower_ids(self, topic_id: int) -> list[int]:
        """Return the ids of users following a topic."""
        stmt = (
            select(TopicFollow.user_id)
            .where(TopicFollow.topic_id == topic_id)
            .order_by(TopicFollow.user_id)
        )
        return list(self.session.scalars(stmt))

    def add_moderation_record(self, record: PostModerationRecord) -> PostModerationRecord:
        """Insert an audit record and return it with its identifier assigned."""
        self.session.add(record)
        self._flush()
        return record

    def list_pending_posts(self, limit: int = DEFAULT_QUEUE_LIMIT) -> list[Post]:
        """Return posts awaiting moderation, oldest first."""
        stmt = (
            select(Post)
            .where(Post.moderation_state == ModerationState.PENDING)
            .order_by(Post.created_at, Post.id)
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def list_moderation_records(
        self,
        *,
        post_id: int | None = None,
        limit: int = DEFAULT_QUEUE_LIMIT,
    ) -> list[PostModerationRecord]:
        """Return moderation history, newest first, optionally for one post."""
        stmt = select(PostModerationRecord)
        if post_id is not None:
            stmt = stmt.where(PostModerationRecord.post_id == post_id)
        stmt = stmt.order_by(
            PostModerationRecord.created_at.desc(),
            PostModerationRecord.id.desc(),
        ).limit(limit)
        return list(self.session.scalars(stmt))

    def list_visible_posts(
        self,
        topic_id: int,
        *,
        content_visible_while_pending: bool,
    ) -> list[Post]:
        """Return the posts of a topic that readers may see under the visibility policy."""
        stmt = select(Post).where(Post.topic_id == topic_id)
        if not content_visible_while_pending:
            stmt = stmt.where(Post.moderation_state == ModerationState.APPROVED)
        stmt = stmt.order_by(Post.created_at, Post.id)
        return list(self.session.scalars(stmt))

    def _flush(self) -> None:
        try:
            self.session.flush()
        except (StaleDataError, OperationalError) as exc:
            if not is_conflict(exc):
                raise
            raise StoreConflictError(f"Concurrent update detected: {exc}") from exc

    def _commit(self) -> None:
        try:
            self.session.commit()
        except (StaleDataError, OperationalError) as exc:
            if not is_conflict(exc):
                raise
            raise StoreConflictError(f"Concurrent update detected: {exc}") from exc
