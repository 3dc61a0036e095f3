"""Vote ledger schemas."""

import math
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from backend.app.schemas.records import Vote

VOTE_LIMIT_REACHED = "vote_limit_reached"


def remaining_to_wire(remaining: float) -> int | float | None:
    """Unbounded budgets travel as ``null``; whole budgets as integers."""
    if math.isinf(remaining):
        return None
    if float(remaining).is_integer():
        return int(remaining)
    return remaining


class VoteCreate(BaseModel):
    """Schema for casting a vote."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str | None = Field(default=None, description="Session record id")
    user_id: str | None = Field(default=None, description="User record id")
    topic_id: str | None = Field(default=None, description="Topic record id")
    weight: int | float = Field(default=1, description="Stored with the vote; budget counts records")


class VoteCastResult(BaseModel):
    """Vote created and the voter's remaining budget (``None`` when unlimited)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    vote: Vote
    remaining_votes: int | float | None = None


class VoteRetractResult(BaseModel):
    """Vote removed and the voter's recomputed budget."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    vote: Vote
    remaining_votes: int | float | None = None


class VoteLimitReached(BaseModel):
    """Outcome returned instead of a vote when the budget is spent."""

    error: Literal["vote_limit_reached"] = VOTE_LIMIT_REACHED
    message: str = "You have used all of your votes for this session."
