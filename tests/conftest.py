# tests/conftest.py
from __future__ import annotations

from collections.abc import Callable, Iterator
from itertools import count

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from forum_moderation.core.settings import Settings
from forum_moderation.db.session import Base
from forum_moderation.models import Post, Topic, TopicFollow, User, UserDetail
from forum_moderation.models.topic import FOLLOW_REASON_POSTED
from forum_moderation.repositories import ModerationRepository
from forum_moderation.services import ModerationEngine

TEST_DB_URL = "sqlite://"

_USER_NAME_COUNTER = count(1)
_TOPIC_TITLE_COUNTER = count(1)


class RecordingNotifier:
    """Notifier double that remembers every (recipient, post) it was handed."""

    def __init__(self) -> None:
        self.events: list[tuple[int, int]] = []

    def notify(self, recipient_user_id: int, post_id: int) -> None:
        self.events.append((recipient_user_id, post_id))


@pytest.fixture()
def engine() -> Iterator[Engine]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def test_settings() -> Settings:
    """Provide settings with the default visibility policy."""
    return Settings(content_visible_while_pending_moderation=True, moderation_max_attempts=3)


@pytest.fixture()
def hide_pending_content(test_settings: Settings) -> Settings:
    """Switch the visibility policy so that only approved content is shown."""
    test_settings.content_visible_while_pending_moderation = False
    return test_settings


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def repository(db_session: Session) -> ModerationRepository:
    return ModerationRepository(db_session)


@pytest.fixture()
def moderation_engine(
    repository: ModerationRepository,
    notifier: RecordingNotifier,
    test_settings: Settings,
) -> ModerationEngine:
    return ModerationEngine(repository, notifier, config=test_settings)


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    """Return a factory creating persisted users with a pending moderation detail."""

    def _make_user(name: str | None = None) -> User:
        user = User(name=name or f"user-{next(_USER_NAME_COUNTER)}")
        user.detail = UserDetail()
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture()
def make_post(db_session: Session) -> Callable[..., Post]:
    """Return a factory creating a post; the author starts following the topic."""

    def _make_post(topic: Topic, user: User | None, content: str = "Test post content") -> Post:
        post = Post(
            topic_id=topic.id,
            user_id=user.id if user is not None else None,
            content=content,
        )
        db_session.add(post)
        if user is not None and db_session.get(TopicFollow, (user.id, topic.id)) is None:
            db_session.add(
                TopicFollow(user_id=user.id, topic_id=topic.id, reason=FOLLOW_REASON_POSTED)
            )
        db_session.commit()
        return post

    return _make_post


@pytest.fixture()
def make_topic(
    db_session: Session,
    make_user: Callable[..., User],
    make_post: Callable[..., Post],
) -> Callable[..., Topic]:
    """Return a factory creating a topic together with ``with_posts`` posts by its author."""

    def _make_topic(user: User | None = None, with_posts: int = 1) -> Topic:
        user = user or make_user()
        topic = Topic(user_id=user.id, title=f"Topic {next(_TOPIC_TITLE_COUNTER)}")
        db_session.add(topic)
        db_session.commit()
        for _ in range(with_posts):
            make_post(topic, user)
        return topic

    return _make_topic


@pytest.fixture()
def first_post(db_session: Session) -> Callable[[Topic], Post]:
    """Return a helper loading the oldest post of a topic."""

    def _first_post(topic: Topic) -> Post:
        stmt = select(Post).where(Post.topic_id == topic.id).order_by(Post.created_at, Post.id)
        return db_session.scalars(stmt).first()

    return _first_post


@pytest.fixture()
def moderator(make_user: Callable[..., User]) -> User:
    return make_user("moderator")
