"""SQLAlchemy models for the forum moderation engine."""

from .moderation import ModerationState, PostModerationRecord
from .notification import UserPostNotification
from .post import Post
from .topic import Topic, TopicFollow
from .user import User, UserDetail

__all__ = [
    "ModerationState", "PostModerationRecord",
    "UserPostNotification",
    "Post",
    "Topic", "TopicFollow",
    "User", "UserDetail",
]
