"""SQLAlchemy models for topics and the users following them."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, SmallInteger, Text
from sqlalchemy.orm import Mapped, mapped_column

from forum_moderation.db.session import Base
from forum_moderation.db.time import utcnow
from forum_moderation.models.moderation import ModerationState

FOLLOW_REASON_MANUAL = 0
FOLLOW_REASON_POSTED = 1


class Topic(Base):
    """A discussion thread.

    The topic's moderation state mirrors the state last applied to its first
    post, which is the oldest post in the topic.
    """

    __tablename__ = "topic"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("forum_user.id", ondelete="SET NULL"),
        nullable=True,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
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
    # Optimistic lock; concurrent writers fail with StaleDataError on flush.
    lock_version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": lock_version}


class TopicFollow(Base):
    """A user following a topic; followers hear about newly visible posts."""

    __tablename__ = "topic_follow"
    __table_args__ = (Index("ix_topic_follow_topic_id", "topic_id"),)

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("forum_user.id", ondelete="CASCADE"),
        primary_key=True,
    )
    topic_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("topic.id", ondelete="CASCADE"),
        primary_key=True,
    )
    # 0 = manual, 1 = posted in the topic.
    reason: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        default=FOLLOW_REASON_MANUAL,
    )
