"""Moderation states and the audit trail of moderator decisions."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, SmallInteger, Text
from sqlalchemy.orm import Mapped, mapped_column

from forum_moderation.core.errors import InvalidStateError
from forum_moderation.db.session import Base
from forum_moderation.db.time import utcnow


class ModerationState(enum.IntEnum):
    """Moderation state shared by posts, topics and user details."""

    PENDING = 0
    APPROVED = 1
    BLOCKED = 2

    @classmethod
    def parse(cls, value: ModerationState | int | str) -> ModerationState:
        """Coerce a state, its integer code or its name into a ModerationState.

        Names are case-insensitive; ``"pending_moderation"`` is accepted as an
        alias of ``"pending"``.

        Raises:
            InvalidStateError: If the value does not name a known state.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise InvalidStateError(f"Unknown moderation state: {value!r}")
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise InvalidStateError(f"Unknown moderation state: {value!r}") from None
        if isinstance(value, str):
            key = value.strip().upper()
            if key == "PENDING_MODERATION":
                key = "PENDING"
            try:
                return cls[key]
            except KeyError:
                raise InvalidStateError(f"Unknown moderation state: {value!r}") from None
        raise InvalidStateError(f"Unknown moderation state: {value!r}")


def is_visible(state: int, *, content_visible_while_pending: bool) -> bool:
    """Return whether content in ``state`` is shown under the visibility policy."""
    return content_visible_while_pending or state == ModerationState.APPROVED


class PostModerationRecord(Base):
    """Audit record of a moderator changing a post's moderation state.

    The author and content are snapshotted so the record stays meaningful
    after the post is edited or deleted.
    """

    __tablename__ = "post_moderation_record"
    __table_args__ = (Index("ix_post_moderation_record_post_id", "post_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("post.id", ondelete="SET NULL"),
        nullable=True,
    )
    topic_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    post_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    post_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    moderator_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("forum_user.id", ondelete="SET NULL"),
        nullable=True,
    )
    # Codes follow ModerationState.
    previous_moderation_state: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    moderation_state: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
