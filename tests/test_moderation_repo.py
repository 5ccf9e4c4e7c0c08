# tests/test_moderation_repo.py
"""Tests for the moderation repository."""

import sqlite3

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from forum_moderation.core.errors import StoreConflictError
from forum_moderation.models import (
    ModerationState,
    Post,
    PostModerationRecord,
    Topic,
    User,
    UserDetail,
)
from forum_moderation.repositories.moderation_repo import is_conflict


def test_first_post_id_is_oldest_post(repository, make_user, make_topic, make_post, first_post) -> None:
    """The first post of a topic is the one created first."""
    topic = make_topic(with_posts=1)
    make_post(topic, make_user())

    assert repository.first_post_id(topic.id) == first_post(topic).id


def test_first_post_id_of_empty_topic(repository, make_topic) -> None:
    topic = make_topic(with_posts=0)

    assert repository.first_post_id(topic.id) is None


def test_get_topic_with_lock(repository, make_topic) -> None:
    """Locking reads return the same row as plain reads."""
    topic = make_topic()

    assert repository.get_topic(topic.id, lock=True) is repository.get_topic(topic.id)
    assert repository.get_topic(999) is None


def test_list_posts_by_author_in_topic(repository, make_user, make_topic, make_post) -> None:
    """Only the given author's posts in the given topic are listed."""
    author = make_user()
    topic = make_topic(user=author, with_posts=2)
    make_post(topic, make_user())
    make_post(make_topic(user=author), author)

    posts = repository.list_posts_by_author_in_topic(author.id, topic.id)

    assert len(posts) == 2
    assert {post.user_id for post in posts} == {author.id}
    assert {post.topic_id for post in posts} == {topic.id}


def test_posts_without_author_are_not_grouped(repository, make_topic, make_post) -> None:
    topic = make_topic()
    make_post(topic, None)
    make_post(topic, None)

    assert repository.list_posts_by_author_in_topic(None, topic.id) == []


def test_list_topic_follower_ids(repository, make_user, make_topic, make_post) -> None:
    """Posting in a topic makes the author a follower, once."""
    author = make_user()
    replier = make_user()
    topic = make_topic(user=author)
    make_post(topic, replier)
    make_post(topic, replier)

    assert repository.list_topic_follower_ids(topic.id) == sorted([author.id, replier.id])


def test_get_user_detail_creates_pending_detail(db_session, repository) -> None:
    user = User(name="detail-less")
    db_session.add(user)
    db_session.commit()

    detail = repository.get_user_detail(user.id)

    assert detail.moderation_state == ModerationState.PENDING
    assert db_session.get(UserDetail, user.id) is detail


def test_get_user_detail_returns_existing(repository, make_user) -> None:
    user = make_user()

    assert repository.get_user_detail(user.id) is repository.get_user_detail(user.id)


def test_list_pending_posts(repository, make_user, make_topic, make_post, first_post) -> None:
    """The moderation queue lists pending posts oldest first."""
    topic = make_topic()
    reply = make_post(topic, make_user())
    later = make_post(topic, make_user())
    opening = first_post(topic)
    opening.moderation_state = ModerationState.APPROVED
    with repository.transaction():
        repository.update_post(opening)

    pending = repository.list_pending_posts()

    assert [post.id for post in pending] == [reply.id, later.id]
    assert [post.id for post in repository.list_pending_posts(limit=1)] == [reply.id]


def test_list_visible_posts_follows_policy(repository, make_user, make_topic, make_post, first_post) -> None:
    """Pending content is only listed when the policy shows it."""
    topic = make_topic()
    make_post(topic, make_user())
    opening = first_post(topic)
    opening.moderation_state = ModerationState.APPROVED
    with repository.transaction():
        repository.update_post(opening)

    visible = repository.list_visible_posts(topic.id, content_visible_while_pending=True)
    approved_only = repository.list_visible_posts(topic.id, content_visible_while_pending=False)

    assert len(visible) == 2
    assert [post.id for post in approved_only] == [opening.id]


def test_list_moderation_records(moderation_engine, repository, make_topic, first_post, moderator) -> None:
    """History is listed newest first and can be narrowed to one post."""
    first = first_post(make_topic())
    second = first_post(make_topic())
    first_id, second_id = first.id, second.id

    moderation_engine.apply_moderation(first_id, "approved", moderator)
    moderation_engine.apply_moderation(second_id, "blocked", moderator)
    moderation_engine.apply_moderation(first_id, "blocked", moderator)

    records = repository.list_moderation_records()
    assert [record.post_id for record in records] == [first_id, second_id, first_id]
    history = repository.list_moderation_records(post_id=first_id)
    assert [record.moderation_state for record in history] == [
        ModerationState.BLOCKED,
        ModerationState.APPROVED,
    ]
    assert repository.list_moderation_records(limit=1)[0].post_id == first_id


def test_update_post_detects_concurrent_write(db_session, repository, make_topic, first_post) -> None:
    """A row changed behind the session's back raises a store conflict."""
    post = first_post(make_topic())
    db_session.execute(
        update(Post)
        .where(Post.id == post.id)
        .values(lock_version=Post.lock_version + 1)
        .execution_options(synchronize_session=False)
    )
    post.moderation_state = ModerationState.BLOCKED

    with pytest.raises(StoreConflictError):
        repository.update_post(post)
    db_session.rollback()


def test_update_topic_bumps_version(db_session, repository, make_topic) -> None:
    topic = repository.get_topic(make_topic().id)
    version = topic.lock_version

    topic.moderation_state = ModerationState.BLOCKED
    with repository.transaction():
        repository.update_topic(topic)

    assert db_session.get(Topic, topic.id).lock_version == version + 1


def test_transaction_rolls_back_on_error(db_session, repository, make_topic, first_post) -> None:
    """Nothing done inside a failed transaction survives."""
    post = first_post(make_topic())
    post_id = post.id

    with pytest.raises(RuntimeError):
        with repository.transaction():
            post.moderation_state = ModerationState.BLOCKED
            repository.update_post(post)
            repository.add_moderation_record(
                PostModerationRecord(
                    post_id=post_id,
                    previous_moderation_state=ModerationState.PENDING,
                    moderation_state=ModerationState.BLOCKED,
                )
            )
            raise RuntimeError("boom")

    db_session.expire_all()
    assert db_session.get(Post, post_id).moderation_state == ModerationState.PENDING
    assert repository.list_moderation_records() == []


def test_locked_database_is_a_conflict(monkeypatch, db_session, repository, make_topic, first_post) -> None:
    """Lock contention reported by the driver surfaces as a store conflict."""
    post = first_post(make_topic())

    def locked_flush(*args, **kwargs) -> None:
        raise OperationalError("UPDATE post", {}, sqlite3.OperationalError("database is locked"))

    monkeypatch.setattr(db_session, "flush", locked_flush)
    post.moderation_state = ModerationState.BLOCKED

    with pytest.raises(StoreConflictError):
        repository.update_post(post)


def test_other_operational_errors_propagate(monkeypatch, db_session, repository, make_topic, first_post) -> None:
    post = first_post(make_topic())

    def broken_flush(*args, **kwargs) -> None:
        raise OperationalError("UPDATE post", {}, sqlite3.OperationalError("no such table: post"))

    monkeypatch.setattr(db_session, "flush", broken_flush)
    post.moderation_state = ModerationState.BLOCKED

    with pytest.raises(OperationalError) as excinfo:
        repository.update_post(post)
    assert not isinstance(excinfo.value, StoreConflictError)


class _DriverError(Exception):
    def __init__(self, message: str, pgcode: str | None = None) -> None:
        super().__init__(message)
        self.pgcode = pgcode


@pytest.mark.parametrize(
    ("orig", "expected"),
    [
        (_DriverError("could not serialize access", pgcode="40001"), True),
        (_DriverError("deadlock detected", pgcode="40P01"), True),
        (_DriverError("could not obtain lock on row", pgcode="55P03"), True),
        (_DriverError("database table is locked"), True),
        (_DriverError("server closed the connection unexpectedly", pgcode="08006"), False),
        (_DriverError("no such table: post"), False),
    ],
)
def test_is_conflict_classifies_driver_errors(orig, expected) -> None:
    assert is_conflict(OperationalError("SELECT 1", {}, orig)) is expected


def test_is_conflict_ignores_non_operational_errors() -> None:
    assert is_conflict(RuntimeError("database is locked")) is False
