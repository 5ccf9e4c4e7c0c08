"""SQLAlchemy model for posts."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, SmallInteger, Text
from sqlalchemy.orm import Mapped, mapped_column

from forum_moderation.db.session import Base
from forum_moderation.db.time import utcnow
from forum_moderation.models.moderation import ModerationState


class Post(Base):
    """A message within a topic.

    ``updated_at`` tracks content edits only. It has no ``onupdate`` hook, so
    moderation writes leave it untouched.
    """

    __tablename__ = "post"
    __table_args__ = (
        Index("ix_post_topic_id_user_id", "topic_id", "user_id"),
        Index("ix_post_moderation_state", "moderation_state"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Null once the author account is removed.
    user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("forum_user.id", ondelete="SET NULL"),
        nullable=True,
    )
    topic_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("topic.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)

    # Codes follow ModerationState: 0 = pending, 1 = approved, 2 = blocked.
    moderation_state: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        default=ModerationState.PENDING,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    lock_version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": lock_version}
