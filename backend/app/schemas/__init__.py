"""Pydantic schemas for records, requests and responses."""

from backend.app.schemas.records import (
    SCHEMAS,
    Board,
    Comment,
    EntityKind,
    EntitySchema,
    Session,
    Topic,
    TopicStatus,
    User,
    Vote,
)
from backend.app.schemas.session import SessionAggregate, SessionCreate
from backend.app.schemas.user import UserRegister
from backend.app.schemas.votes import (
    VoteCastResult,
    VoteCreate,
    VoteLimitReached,
    VoteRetractResult,
)

__all__ = [
    "SCHEMAS",
    "Board",
    "Comment",
    "EntityKind",
    "EntitySchema",
    "Session",
    "Topic",
    "TopicStatus",
    "User",
    "Vote",
    "SessionAggregate",
    "SessionCreate",
    "UserRegister",
    "VoteCastResult",
    "VoteCreate",
    "VoteLimitReached",
    "VoteRetractResult",
]
