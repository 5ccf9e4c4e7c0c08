"""Moderation engine: applies a moderator's decision to a post and its neighbours."""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy.orm import Session, sessionmaker

from forum_moderation.core.errors import NotFoundError, StoreConflictError
from forum_moderation.core.settings import Settings, settings as default_settings
from forum_moderation.db.time import utcnow
from forum_moderation.models import (
    ModerationState,
    Post,
    PostModerationRecord,
    Topic,
    User,
    UserDetail,
)
from forum_moderation.models.moderation import is_visible
from forum_moderation.repositories.moderation_repo import ModerationRepository
from forum_moderation.services.notifications import DatabaseNotifier, Notifier

logger = logging.getLogger(__name__)


class ModerationStore(Protocol):
    """Persistence operations the engine needs; see ``ModerationRepository``."""

    def transaction(self) -> AbstractContextManager[None]: ...

    def get_post(self, post_id: int) -> Post | None: ...

    def get_topic(self, topic_id: int, *, lock: bool = False) -> Topic | None: ...

    def first_post_id(self, topic_id: int) -> int | None: ...

    def update_post(self, post: Post) -> None: ...

    def update_topic(self, topic: Topic) -> None: ...

    def get_user_detail(self, user_id: int) -> UserDetail: ...

    def update_user_detail(self, detail: UserDetail) -> None: ...

    def list_posts_by_author_in_topic(self, user_id: int | None, topic_id: int) -> list[Post]: ...

    def list_topic_follower_ids(self, topic_id: int) -> list[int]: ...

    def add_moderation_record(self, record: PostModerationRecord) -> PostModerationRecord: ...


@dataclass(frozen=True)
class NotificationEvent:
    """A recipient who should be told that a post became visible."""

    recipient_user_id: int
    post_id: int


@dataclass
class ModerationResult:
    """Outcome of a single ``apply_moderation`` call."""

    post_id: int
    topic_id: int
    previous_state: ModerationState
    moderation_state: ModerationState
    is_first_post: bool = False
    user_approved: bool = False
    cascaded_post_ids: list[int] = field(default_factory=list)
    notifications: list[NotificationEvent] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """Return whether the post's state actually changed."""
        return self.previous_state != self.moderation_state


class ModerationEngine:
    """Applies moderation decisions and cascades them to related entities.

    Each call is a two-phase procedure:

    - all state mutations are made and committed as one store transaction,
      retried as a whole on write conflicts;
    - the notification delta computed inside that transaction is dispatched
      only once the commit has succeeded.
    """

    def __init__(
        self,
        store: ModerationStore,
        notifier: Notifier,
        config: Settings | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Persistence backend; usually a ``ModerationRepository``.
            notifier: Receives one call per notification after commit.
            config: Settings carrying the visibility policy. If None, uses the
                process-wide settings.
        """
        self.store = store
        self.notifier = notifier
        self.config = config or default_settings

    def apply_moderation(
        self,
        post: Post | int,
        moderation_state: ModerationState | int | str,
        moderator: User | int | None,
    ) -> ModerationResult:
        """Move a post to ``moderation_state`` and propagate the decision.

        Args:
            post: The post, or its identifier.
            moderation_state: Target state, as a ``ModerationState``, its name
                or its integer code.
            moderator: The acting moderator, or their identifier. Authorization
                is the caller's responsibility.

        Returns:
            What changed, including the notifications that were dispatched.

        Notifications are handed to the notifier one at a time after the
        commit. If the notifier raises, the exception reaches the caller, the
        committed state stays in place and the remaining events are not
        delivered.

        Raises:
            InvalidStateError: If ``moderation_state`` is not recognized.
            NotFoundError: If the post or its topic does not exist.
            StoreConflictError: If write conflicts persist after all attempts.
            Exception: Whatever the notifier raises while dispatching.
        """
        target = ModerationState.parse(moderation_state)
        post_id = post.id if isinstance(post, Post) else post
        moderator_id = moderator.id if isinstance(moderator, User) else moderator

        attempts = self.config.moderation_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                with self.store.transaction():
                    result = self._apply(post_id, target, moderator_id)
            except StoreConflictError:
                if attempt >= attempts:
                    logger.error(
                        "Giving up moderating post %s after %d conflicting attempts",
                        post_id,
                        attempt,
                    )
                    raise
                logger.warning(
                    "Write conflict moderating post %s, retrying (%d/%d)",
                    post_id,
                    attempt,
                    attempts,
                )
                continue
            break

        logger.info(
            "Post %s moderated by %s: %s -> %s (cascaded=%s, notifications=%d)",
            result.post_id,
            moderator_id,
            result.previous_state.name.lower(),
            result.moderation_state.name.lower(),
            result.cascaded_post_ids,
            len(result.notifications),
        )
        self._dispatch(result.notifications)
        return result

    def _apply(
        self,
        post_id: int,
        target: ModerationState,
        moderator_id: int | None,
    ) -> ModerationResult:
        post = self.store.get_post(post_id)
        if post is None:
            raise NotFoundError(f"Post {post_id} not found")
        topic = self.store.get_topic(post.topic_id, lock=True)
        if topic is None:
            raise NotFoundError(f"Topic {post.topic_id} for post {post_id} not found")

        previous = ModerationState(post.moderation_state)
        result = ModerationResult(
            post_id=post.id,
            topic_id=topic.id,
            previous_state=previous,
            moderation_state=target,
            is_first_post=self.store.first_post_id(topic.id) == post.id,
        )

        post.moderation_state = target
        self.store.update_post(post)

        if result.is_first_post:
            topic.moderation_state = target
            self.store.update_topic(topic)
            if target is ModerationState.BLOCKED:
                result.cascaded_post_ids = self._block_siblings(post)

        if target is ModerationState.APPROVED and post.user_id is not None:
            result.user_approved = self._approve_user(post.user_id)

        if result.changed:
            self.store.add_moderation_record(
                PostModerationRecord(
                    post_id=post.id,
                    topic_id=topic.id,
                    post_user_id=post.user_id,
                    post_content=post.content,
                    moderator_id=moderator_id,
                    previous_moderation_state=previous,
                    moderation_state=target,
                )
            )

        result.notifications = self._notification_delta(post, topic, result)
        return result

    def _block_siblings(self, post: Post) -> list[int]:
        blocked = []
        for sibling in self.store.list_posts_by_author_in_topic(post.user_id, post.topic_id):
            if sibling.id == post.id or sibling.moderation_state == ModerationState.BLOCKED:
                continue
            sibling.moderation_state = ModerationState.BLOCKED
            self.store.update_post(sibling)
            blocked.append(sibling.id)
        return blocked

    def _approve_user(self, user_id: int) -> bool:
        # Escalation only: a user detail never moves away from approved here.
        detail = self.store.get_user_detail(user_id)
        if detail.moderation_state == ModerationState.APPROVED:
            return False
        detail.moderation_state = ModerationState.APPROVED
        detail.moderation_state_changed_at = utcnow()
        self.store.update_user_detail(detail)
        return True

    def _notification_delta(
        self,
        post: Post,
        topic: Topic,
        result: ModerationResult,
    ) -> list[NotificationEvent]:
        """Return who learns about the post because it just became visible."""
        if result.moderation_state is not ModerationState.APPROVED or not result.changed:
            return []
        visible_while_pending = self.config.content_visible_while_pending_moderation
        if is_visible(result.previous_state, content_visible_while_pending=visible_while_pending):
            return []

        if result.is_first_post:
            candidates = self.store.list_topic_follower_ids(topic.id)
        else:
            candidates = [topic.user_id]

        recipients: list[int] = []
        for user_id in candidates:
            if user_id is None or user_id == post.user_id or user_id in recipients:
                continue
            recipients.append(user_id)
        return [NotificationEvent(recipient_user_id=uid, post_id=post.id) for uid in recipients]

    def _dispatch(self, notifications: list[NotificationEvent]) -> None:
        for event in notifications:
            self.notifier.notify(event.recipient_user_id, event.post_id)


def build_moderation_engine(
    db: Session,
    *,
    notifier: Notifier | None = None,
    config: Settings | None = None,
) -> ModerationEngine:
    """Return an engine backed by ``db``.

    Unless a notifier is given, notifications are recorded by a
    ``DatabaseNotifier`` bound to the same database as ``db``.
    """
    if notifier is None:
        notifier = DatabaseNotifier(sessionmaker(bind=db.get_bind(), autoflush=False))
    return ModerationEngine(
        ModerationRepository(db),
        notifier,
        config=config,
    )
