"""
Entity schemas and their mapping to Airtable records.

Each entity kind has a pydantic model (camelCase on the wire, snake_case in
Python) and an ``EntitySchema`` that translates between domain fields and the
flat Airtable field map in both directions.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from backend.app.core.exceptions import InvalidPayloadError

logger = logging.getLogger(__name__)


class EntityKind(str, Enum):
    """Entity kinds, one Airtable table each."""
    BOARD = "board"
    SESSION = "session"
    TOPIC = "topic"
    VOTE = "vote"
    COMMENT = "comment"
    USER = "user"


class TopicStatus(str, Enum):
    """
    Topic lifecycle.

    The board UI names the middle and final states ``discussing`` and
    ``completed``; those spellings resolve to the same members.
    """
    TODO = "todo"
    DOING = "doing"
    DONE = "done"

    @classmethod
    def _missing_(cls, value: object) -> "TopicStatus | None":
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if lowered in (member.value, member.client_name):
                    return member
        return None

    @property
    def client_name(self) -> str:
        """Name used by the board columns."""
        return {
            TopicStatus.TODO: "todo",
            TopicStatus.DOING: "discussing",
            TopicStatus.DONE: "completed",
        }[self]


class RecordModel(BaseModel):
    """Common base: Airtable record id plus the untouched field map."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: str | None = None
    raw: dict[str, Any] | None = None


LinkValue = str | list[str] | None


class Board(RecordModel):
    name: str | None = None
    description: str | None = None
    vote_limit: Any = None
    state: str | None = None
    theme_mode: str | None = None
    accent_color: str | None = None
    announcement: str | None = None


class Session(RecordModel):
    code: str | None = None
    name: str | None = None
    board_id: LinkValue = None
    facilitator_id: LinkValue = None
    status: str | None = None
    started_at: str | None = None
    ended_at: str | None = None


class Topic(RecordModel):
    session_id: LinkValue = None
    board_id: LinkValue = None
    title: str | None = None
    description: str | None = None
    status: TopicStatus | None = None
    notes: str | None = None
    author_id: LinkValue = None
    vote_count: Any = None
    order: int | float | None = None


class Vote(RecordModel):
    session_id: LinkValue = None
    topic_id: LinkValue = None
    user_id: LinkValue = None
    weight: int | float | None = None


class Comment(RecordModel):
    session_id: LinkValue = None
    topic_id: LinkValue = None
    user_id: LinkValue = None
    body: str | None = None


class User(RecordModel):
    name: str | None = None
    email: str | None = None
    avatar: str | None = None
    role: str | None = None
    external_id: str | None = None
    session_ids: LinkValue = None


def _normalise_status(value: Any) -> Any:
    if value is None:
        return None
    try:
        return TopicStatus(value).value
    except ValueError:
        raise InvalidPayloadError(f"Unknown topic status: {value}") from None


def _read_status(value: Any) -> TopicStatus | None:
    if value is None:
        return None
    try:
        return TopicStatus(value)
    except (ValueError, TypeError):
        logger.warning(f"[TOPIC] Ignoring unknown stored status {value!r}")
        return None


@dataclass(frozen=True)
class EntitySchema:
    """Bidirectional mapping between one entity model and its Airtable fields."""

    kind: EntityKind
    model: type[RecordModel]
    fields: dict[str, str]
    links: frozenset[str] = frozenset()
    normalisers: dict[str, Callable[[Any], Any]] = field(default_factory=dict)
    readers: dict[str, Callable[[Any], Any]] = field(default_factory=dict)

    def store_field(self, name: str) -> str:
        return self.fields[name]

    def to_external(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """
        Translate domain data into an Airtable field map.

        Keys may be given in snake_case or camelCase; absent keys are left out,
        ``None`` link values are dropped and scalar links become one-element lists.
        """
        result: dict[str, Any] = {}
        for name, store_name in self.fields.items():
            key = _present_key(data, name)
            if key is None:
                continue
            value = data[key]
            if isinstance(value, Enum):
                value = value.value
            if name in self.normalisers:
                value = self.normalisers[name](value)
            if name in self.links:
                if value is None:
                    continue
                result[store_name] = list(value) if isinstance(value, (list, tuple)) else [value]
            else:
                result[store_name] = value
        return result

    def from_external(self, record: Mapping[str, Any]) -> RecordModel:
        """Build the entity model from an Airtable record."""
        store_fields = record.get("fields") or {}
        values: dict[str, Any] = {"id": record.get("id"), "raw": dict(store_fields)}
        for name, store_name in self.fields.items():
            if store_name not in store_fields:
                continue
            value = store_fields[store_name]
            if name in self.links and isinstance(value, list) and len(value) == 1:
                value = value[0]
            if name in self.readers:
                value = self.readers[name](value)
            values[name] = value
        return self.model.model_validate(values)


def _present_key(data: Mapping[str, Any], name: str) -> str | None:
    for key in (name, to_camel(name)):
        if key in data:
            return key
    return None


SCHEMAS: dict[EntityKind, EntitySchema] = {
    EntityKind.BOARD: EntitySchema(
        kind=EntityKind.BOARD,
        model=Board,
        fields={
            "name": "Name",
            "description": "Description",
            "vote_limit": "VoteLimit",
            "state": "State",
            "theme_mode": "ThemeMode",
            "accent_color": "AccentColor",
            "announcement": "Announcement",
        },
    ),
    EntityKind.SESSION: EntitySchema(
        kind=EntityKind.SESSION,
        model=Session,
        fields={
            "code": "Code",
            "name": "Name",
            "board_id": "Board",
            "facilitator_id": "Facilitator",
            "status": "Status",
            "started_at": "StartedAt",
            "ended_at": "EndedAt",
        },
        links=frozenset({"board_id", "facilitator_id"}),
    ),
    EntityKind.TOPIC: EntitySchema(
        kind=EntityKind.TOPIC,
        model=Topic,
        fields={
            "session_id": "Session",
            "board_id": "Board",
            "title": "Title",
            "description": "Description",
            "status": "Status",
            "notes": "Notes",
            "author_id": "Author",
            "vote_count": "Votes",
            "order": "Order",
        },
        links=frozenset({"session_id", "board_id", "author_id"}),
        normalisers={"status": _normalise_status},
        readers={"status": _read_status},
    ),
    EntityKind.VOTE: EntitySchema(
        kind=EntityKind.VOTE,
        model=Vote,
        fields={
            "session_id": "Session",
            "topic_id": "Topic",
            "user_id": "User",
            "weight": "Weight",
        },
        links=frozenset({"session_id", "topic_id", "user_id"}),
    ),
    EntityKind.COMMENT: EntitySchema(
        kind=EntityKind.COMMENT,
        model=Comment,
        fields={
            "session_id": "Session",
            "topic_id": "Topic",
            "user_id": "User",
            "body": "Body",
        },
        links=frozenset({"session_id", "topic_id", "user_id"}),
    ),
    EntityKind.USER: EntitySchema(
        kind=EntityKind.USER,
        model=User,
        fields={
            "name": "Name",
            "email": "Email",
            "avatar": "Avatar",
            "role": "Role",
            "external_id": "ExternalId",
            "session_ids": "Sessions",
        },
        links=frozenset({"session_ids"}),
    ),
}


def to_external(kind: EntityKind, data: Mapping[str, Any]) -> dict[str, Any]:
    return SCHEMAS[kind].to_external(data)


def from_external(kind: EntityKind, record: Mapping[str, Any]) -> RecordModel:
    return SCHEMAS[kind].from_external(record)


def first_link(value: LinkValue) -> str | None:
    """Return the first id of a link value, whatever its shape."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def vote_limit_of(board: Board | None) -> float:
    """Vote budget of a board; ``math.inf`` when absent or not numeric."""
    if board is None:
        return math.inf
    limit = board.vote_limit
    if isinstance(limit, bool) or not isinstance(limit, (int, float)):
        return math.inf
    if math.isnan(limit):
        return math.inf
    return limit


def dump(model: BaseModel) -> dict[str, Any]:
    """Serialise a model the way it goes over the wire."""
    return model.model_dump(mode="json", by_alias=True, exclude_unset=True)
