"""Session-related schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from backend.app.schemas.records import Board, Comment, Session, Topic, User, Vote


class SessionCreate(BaseModel):
    """
    Schema for creating a session.

    ``board`` holds inline board fields used to create a board first when no
    ``boardId`` is given.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    board: dict[str, Any] | None = Field(default=None, description="Inline board fields")
    board_id: str | None = Field(default=None, description="Existing board record id")
    session: dict[str, Any] = Field(default_factory=dict, description="Session fields")


class SessionAggregate(BaseModel):
    """A session with everything linked to it, loaded as one unit."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session: Session
    board: Board | None = None
    topics: list[Topic] = Field(default_factory=list)
    votes: list[Vote] = Field(default_factory=list)
    comments: list[Comment] = Field(default_factory=list)
    users: list[User] = Field(default_factory=list)
