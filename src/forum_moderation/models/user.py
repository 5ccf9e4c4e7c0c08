"""SQLAlchemy models for forum users and their moderation details."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, SmallInteger, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from forum_moderation.db.session import Base
from forum_moderation.models.moderation import ModerationState


class User(Base):
    """Forum account; identity is owned by the enclosing application."""

    __tablename__ = "forum_user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)

    detail: Mapped[UserDetail] = relationship(
        "UserDetail",
        back_populates="user",
        cascade="all, delete-orphan",
        uselist=False,
    )


class UserDetail(Base):
    """Per-user moderation standing kept separate from identity metadata.

    A user starts out pending and is approved the first time a moderator
    approves one of their posts.
    """

    __tablename__ = "user_detail"

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("forum_user.id", ondelete="CASCADE"),
        primary_key=True,
    )
    # Codes follow ModerationState.
    moderation_state: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        default=ModerationState.PENDING,
    )
    moderation_state_changed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    user: Mapped[User] = relationship("User", back_populates="detail")
