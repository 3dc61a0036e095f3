"""
Client-side session store.

Holds the last known session aggregate for one board view, notifies
subscribers on every change and applies mutations optimistically: the
speculative state is shown at once and either confirmed by the server response
or replaced by the pre-mutation state in a single assignment. Mutations and
refreshes are serialised per store, so a rollback can never interleave with
another change.
"""

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar
from uuid import uuid4

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from backend.app.client.api import ApiClient
from backend.app.client.identity import Identity, IdentityResolver
from backend.app.schemas.records import (
    Board,
    Comment,
    Session,
    Topic,
    TopicStatus,
    User,
    Vote,
    dump,
    first_link,
    vote_limit_of,
)
from backend.app.schemas.session import SessionAggregate
from backend.app.schemas.votes import VoteCastResult, VoteRetractResult

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 15.0
DEFAULT_USER_NAME = "Guest"
PENDING_PREFIX = "pending-"

T = TypeVar("T")


class SessionStateError(RuntimeError):
    """Raised when an operation needs state the store does not have yet."""


class UserProfile(BaseModel):
    """Details used when the store registers the current visitor."""

    name: str | None = None
    email: str | None = None
    avatar: str | None = None


class SessionLookup(BaseModel):
    """How the session was found: by id, by code, or both."""

    session_id: str | None = None
    code: str | None = None


class SessionState(BaseModel):
    """Everything the board view renders from."""

    board: Board | None = None
    session: Session | None = None
    topics: list[Topic] = Field(default_factory=list)
    votes: list[Vote] = Field(default_factory=list)
    comments: list[Comment] = Field(default_factory=list)
    users: list[User] = Field(default_factory=list)
    current_user: User | None = None
    remaining_votes: float = math.inf
    identity: Identity | None = None
    lookup: SessionLookup | None = None


Listener = Callable[[SessionState], None]


def remaining_from_wire(value: int | float | None) -> float:
    return math.inf if value is None else value


def compute_remaining_votes(vote_limit: float, votes: list[Vote], user_id: str | None) -> float:
    """Budget left for a user according to a freshly loaded vote list."""
    if not math.isfinite(vote_limit):
        return math.inf
    if not user_id:
        return vote_limit
    used = sum(1 for vote in votes if first_link(vote.user_id) == user_id)
    return max(0, vote_limit - used)


def find_user_by_identity(users: list[User], identity: Identity | None) -> User | None:
    """Match by bound user id first, then by external id."""
    if identity is None:
        return None
    if identity.user_id:
        for user in users:
            if user.id == identity.user_id:
                return user
    for user in users:
        if user.external_id == identity.external_id:
            return user
    return None


def _wire(changes: dict[str, Any]) -> dict[str, Any]:
    wire = {}
    for key, value in changes.items():
        if value is None:
            continue
        wire[to_camel(key)] = value.value if isinstance(value, TopicStatus) else value
    return wire


class PollingHandle:
    """Stop handle for a background polling task."""

    def __init__(self, task: asyncio.Task):
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def stop(self) -> None:
        if not self._task.done():
            self._task.cancel()


class SessionStore:
    """Mirror of one session aggregate with optimistic mutations."""

    def __init__(
        self,
        api: ApiClient,
        identity_resolver: IdentityResolver | None = None,
        initial_state: SessionState | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.api = api
        self.identity_resolver = identity_resolver or IdentityResolver()
        self.poll_interval = poll_interval
        self._state = initial_state or SessionState()
        self._listeners: list[Listener] = []
        self._lock = asyncio.Lock()
        self._poller: PollingHandle | None = None
        self._profile: UserProfile | None = None

    # Subscription

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def get_snapshot(self) -> SessionState:
        """Deep copy of the current state; mutating it does not affect the store."""
        return self._state.model_copy(deep=True)

    def _notify(self) -> None:
        snapshot = self.get_snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("[STORE] Listener error")

    def _commit(self, state: SessionState) -> None:
        self._state = state
        self._notify()

    async def _transact(
        self,
        speculative: SessionState,
        remote: Callable[[], Awaitable[T]],
        merge: Callable[[SessionState, T], SessionState],
    ) -> T:
        """
        Show ``speculative``, run ``remote``, then merge its result or roll back.

        Must be called with the store lock held.
        """
        previous = self._state
        self._commit(speculative)
        try:
            result = await remote()
        except Exception:
            self._commit(previous)
            raise
        self._commit(merge(self._state, result))
        return result

    # Loading

    async def _resolve(
        self,
        aggregate: SessionAggregate,
        lookup: SessionLookup,
        profile: UserProfile | None,
    ) -> SessionState:
        session_id = aggregate.session.id
        if not session_id:
            raise SessionStateError("Session data is missing required session id")

        current = self._state
        known = current.identity if current.session and current.session.id == session_id else None
        identity = self.identity_resolver.ensure(session_id, known)

        users = list(aggregate.users)
        user = find_user_by_identity(users, identity)
        if user is None:
            profile = profile or UserProfile()
            payload = {
                "name": profile.name or DEFAULT_USER_NAME,
                "externalId": identity.external_id,
                "sessionId": session_id,
            }
            if profile.email:
                payload["email"] = profile.email
            if profile.avatar:
                payload["avatar"] = profile.avatar
            user = await self.api.create_user(payload)
            users.append(user)
            logger.info(f"[STORE] Registered user {user.id} for session {session_id}")

        if identity.user_id != user.id:
            identity = identity.model_copy(update={"user_id": user.id})
        self.identity_resolver.write(session_id, identity)

        return SessionState(
            board=aggregate.board,
            session=aggregate.session,
            topics=list(aggregate.topics),
            votes=list(aggregate.votes),
            comments=list(aggregate.comments),
            users=users,
            current_user=user,
            remaining_votes=compute_remaining_votes(
                vote_limit_of(aggregate.board), aggregate.votes, user.id
            ),
            identity=identity,
            lookup=SessionLookup(
                session_id=session_id,
                code=aggregate.session.code or lookup.code,
            ),
        )

    async def bootstrap(
        self,
        session_id: str | None = None,
        code: str | None = None,
        profile: UserProfile | None = None,
    ) -> SessionState:
        """
        Load a session by id or code and bind the visitor to a user record.

        Args:
            session_id: Session record id
            code: Human-entered session code (used when no id is given)
            profile: Name/email/avatar used if the visitor has no user yet

        Returns:
            Snapshot of the loaded state
        """
        async with self._lock:
            if session_id:
                lookup = SessionLookup(session_id=session_id)
            elif code:
                lookup = SessionLookup(code=code)
            else:
                lookup = self._state.lookup
            if lookup is None or not (lookup.session_id or lookup.code):
                raise SessionStateError("A session identifier or code is required to bootstrap")

            if profile is not None:
                self._profile = profile
            aggregate = await self.api.get_session(session_id=lookup.session_id, code=lookup.code)
            self._commit(await self._resolve(aggregate, lookup, self._profile))
            return self.get_snapshot()

    async def refresh(self) -> SessionState:
        """Re-fetch the aggregate with the last lookup and replace the state."""
        async with self._lock:
            lookup = self._state.lookup
            if lookup is None:
                raise SessionStateError("No session lookup information available for refresh")
            aggregate = await self.api.get_session(session_id=lookup.session_id, code=lookup.code)
            self._commit(await self._resolve(aggregate, lookup, self._profile))
            return self.get_snapshot()

    # Mutations

    async def submit_topic(
        self,
        title: str,
        description: str = "",
        status: str | TopicStatus | None = None,
        order: float | None = None,
    ) -> Topic:
        """Add a topic; it shows up at once under a pending id."""
        async with self._lock:
            state = self._state
            if state.session is None:
                raise SessionStateError("Cannot create topic without an active session")

            fields = {
                "session_id": state.session.id,
                "board_id": state.board.id if state.board else None,
                "title": (title or "").strip(),
                "description": (description or "").strip(),
                "status": TopicStatus(status) if status else None,
                "order": order,
                "author_id": state.current_user.id if state.current_user else None,
            }
            placeholder = Topic(
                id=f"{PENDING_PREFIX}{uuid4().hex}",
                **{key: value for key, value in fields.items() if value is not None},
            )
            if placeholder.status is None:
                placeholder = placeholder.model_copy(update={"status": TopicStatus.TODO})

            def merge(current: SessionState, topic: Topic) -> SessionState:
                return current.model_copy(update={
                    "topics": [topic if t.id == placeholder.id else t for t in current.topics],
                })

            return await self._transact(
                state.model_copy(update={"topics": [*state.topics, placeholder]}),
                lambda: self.api.create_topic(_wire(fields)),
                merge,
            )

    async def toggle_vote(self, topic_id: str) -> VoteCastResult | VoteRetractResult:
        """
        Retract the current user's vote on a topic, or cast one if there is none.

        The remaining budget is taken from the server response only.

        Raises:
            VoteLimitReachedError: If the budget is spent (state is rolled back)
        """
        async with self._lock:
            state = self._state
            if state.session is None or state.current_user is None:
                raise SessionStateError("Voting requires an active session and user")
            user_id = state.current_user.id

            existing = next(
                (
                    vote for vote in state.votes
                    if first_link(vote.topic_id) == topic_id and first_link(vote.user_id) == user_id
                ),
                None,
            )

            if existing is not None:
                def merge_retract(current: SessionState, result: VoteRetractResult) -> SessionState:
                    return current.model_copy(update={
                        "remaining_votes": remaining_from_wire(result.remaining_votes),
                    })

                return await self._transact(
                    state.model_copy(update={
                        "votes": [vote for vote in state.votes if vote.id != existing.id],
                    }),
                    lambda: self.api.delete_vote(existing.id),
                    merge_retract,
                )

            placeholder = Vote(
                id=f"{PENDING_PREFIX}{uuid4().hex}",
                session_id=state.session.id,
                topic_id=topic_id,
                user_id=user_id,
                weight=1,
            )

            def merge_cast(current: SessionState, result: VoteCastResult) -> SessionState:
                return current.model_copy(update={
                    "votes": [result.vote if v.id == placeholder.id else v for v in current.votes],
                    "remaining_votes": remaining_from_wire(result.remaining_votes),
                })

            return await self._transact(
                state.model_copy(update={"votes": [*state.votes, placeholder]}),
                lambda: self.api.create_vote({
                    "sessionId": state.session.id,
                    "topicId": topic_id,
                    "userId": user_id,
                    "weight": 1,
                }),
                merge_cast,
            )

    async def _apply_topic_patch(self, topic_id: str, changes: dict[str, Any]) -> Topic:
        async with self._lock:
            state = self._state
            if not any(topic.id == topic_id for topic in state.topics):
                raise SessionStateError(f"Topic {topic_id} not found")

            def merge(current: SessionState, updated: Topic) -> SessionState:
                confirmed = updated.model_dump(exclude_unset=True)
                return current.model_copy(update={
                    "topics": [
                        t.model_copy(update=confirmed) if t.id == topic_id else t
                        for t in current.topics
                    ],
                })

            await self._transact(
                state.model_copy(update={
                    "topics": [
                        t.model_copy(update=changes) if t.id == topic_id else t
                        for t in state.topics
                    ],
                }),
                lambda: self.api.update_topic(topic_id, _wire(changes)),
                merge,
            )
            return next(t for t in self._state.topics if t.id == topic_id).model_copy(deep=True)

    async def move_topic(self, topic_id: str, status: str | TopicStatus) -> Topic:
        """Move a topic to another column; ``discussing``/``completed`` are accepted."""
        if not status:
            raise ValueError("status is required to move a topic")
        return await self._apply_topic_patch(topic_id, {"status": TopicStatus(status)})

    async def promote_to_discussing(self, topic_id: str) -> Topic:
        return await self.move_topic(topic_id, TopicStatus.DOING)

    async def complete_topic(self, topic_id: str) -> Topic:
        return await self.move_topic(topic_id, TopicStatus.DONE)

    async def save_notes(self, topic_id: str, notes: str) -> Topic:
        return await self._apply_topic_patch(topic_id, {"notes": notes})

    # Polling

    def start_polling(self, interval: float | None = None) -> PollingHandle:
        """
        Refresh in the background every ``interval`` seconds.

        Replaces any running poller. Refresh failures are logged and polling
        continues; call ``stop()`` on the returned handle to end it.
        """
        self.stop_polling()
        delay = interval if interval and math.isfinite(interval) and interval > 0 else self.poll_interval
        self._poller = PollingHandle(asyncio.create_task(self._poll(delay)))
        return self._poller

    def stop_polling(self) -> None:
        if self._poller is not None:
            self._poller.stop()
            self._poller = None

    async def _poll(self, delay: float) -> None:
        while True:
            await asyncio.sleep(delay)
            try:
                await self.refresh()
            except Exception:
                logger.exception("[STORE] Failed to refresh session")

    # Read accessors

    async def export_session(self, fresh: bool = False) -> dict[str, Any]:
        """Export the session; refreshes first when ``fresh`` or nothing is loaded."""
        if fresh or self._state.session is None:
            snapshot = await self.refresh()
        else:
            snapshot = self.get_snapshot()
        return {
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "board": dump(snapshot.board) if snapshot.board else None,
            "session": dump(snapshot.session) if snapshot.session else None,
            "topics": [dump(topic) for topic in snapshot.topics],
            "votes": [dump(vote) for vote in snapshot.votes],
            "comments": [dump(comment) for comment in snapshot.comments],
            "users": [dump(user) for user in snapshot.users],
        }

    def get_current_user(self) -> User | None:
        user = self._state.current_user
        return user.model_copy(deep=True) if user else None

    def get_remaining_votes(self) -> float:
        return self._state.remaining_votes

    def get_identity(self) -> Identity | None:
        identity = self._state.identity
        return identity.model_copy() if identity else None
