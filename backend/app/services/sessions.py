"""Session aggregate loading and session/board management."""

import asyncio
import logging
import secrets
from typing import Any

from backend.app.core.exceptions import MissingFieldError, SessionCodeConflictError
from backend.app.schemas.records import (
    SCHEMAS,
    Board,
    EntityKind,
    Session,
    first_link,
)
from backend.app.schemas.session import SessionAggregate, SessionCreate
from backend.app.services.airtable import AirtableClient, field_equals, link_filter

logger = logging.getLogger(__name__)

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 5


def generate_session_code(length: int = CODE_LENGTH) -> str:
    """Short human-friendly code without look-alike characters."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


class SessionService:
    """Loads session aggregates and creates sessions and boards."""

    def __init__(self, store: AirtableClient):
        self.store = store

    async def find_by_code(self, code: str) -> Session | None:
        """
        Find a session by its exact code.

        Codes are checked for uniqueness on creation, but two sessions created at
        the same moment can still collide; the first match wins then.
        """
        code_field = SCHEMAS[EntityKind.SESSION].store_field("code")
        matches = await self.store.list(
            EntityKind.SESSION,
            field_equals(code_field, code),
            max_records=2,
        )
        if len(matches) > 1:
            logger.warning(f"[SESSION] Code {code!r} matches several sessions, using {matches[0].id}")
        return matches[0] if matches else None

    async def load(self, session_id: str | None = None, code: str | None = None) -> SessionAggregate | None:
        """
        Load a session with its board, topics, votes, comments and users.

        Args:
            session_id: Session record id (takes precedence)
            code: Human-entered session code

        Returns:
            The aggregate, or None when no session matches
        """
        session: Session | None = None
        if session_id:
            session = await self.store.get(EntityKind.SESSION, session_id)
        elif code:
            session = await self.find_by_code(code)

        if session is None:
            return None

        board_id = first_link(session.board_id)
        topic_schema = SCHEMAS[EntityKind.TOPIC]
        vote_schema = SCHEMAS[EntityKind.VOTE]
        comment_schema = SCHEMAS[EntityKind.COMMENT]
        user_schema = SCHEMAS[EntityKind.USER]

        board, topics, votes, comments, users = await asyncio.gather(
            self._get_board(board_id),
            self.store.list(EntityKind.TOPIC, link_filter(topic_schema.store_field("session_id"), session.id)),
            self.store.list(EntityKind.VOTE, link_filter(vote_schema.store_field("session_id"), session.id)),
            self.store.list(EntityKind.COMMENT, link_filter(comment_schema.store_field("session_id"), session.id)),
            self.store.list(EntityKind.USER, link_filter(user_schema.store_field("session_ids"), session.id)),
        )

        logger.info(
            f"[SESSION] Loaded {session.id}: {len(topics)} topics, {len(votes)} votes, {len(users)} users"
        )
        return SessionAggregate(
            session=session,
            board=board,
            topics=topics,
            votes=votes,
            comments=comments,
            users=users,
        )

    async def _get_board(self, board_id: str | None) -> Board | None:
        if not board_id:
            return None
        return await self.store.get(EntityKind.BOARD, board_id)

    async def _unique_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_session_code()
            if await self.find_by_code(code) is None:
                return code
        raise SessionCodeConflictError(code)

    async def create_session(self, request: SessionCreate) -> Session:
        """
        Create a session, creating its board first when inline board data is given.

        Raises:
            SessionCodeConflictError: If the requested code is already taken
        """
        session_data: dict[str, Any] = dict(request.session)
        board_id = request.board_id or first_link(
            session_data.pop("boardId", None) or session_data.pop("board_id", None)
        )

        code = session_data.get("code")
        if code:
            if await self.find_by_code(code) is not None:
                raise SessionCodeConflictError(code)
        else:
            session_data["code"] = await self._unique_code()

        if not board_id and request.board:
            board = await self.store.create(EntityKind.BOARD, request.board)
            board_id = board.id
            logger.info(f"[SESSION] Created board {board_id}")

        if board_id:
            session_data["board_id"] = board_id

        session: Session = await self.store.create(EntityKind.SESSION, session_data)
        logger.info(f"[SESSION] Created session {session.id} with code {session.code}")
        return session

    async def update_board(self, board_id: str | None, changes: dict[str, Any]) -> Board:
        """Apply a partial update (theme, announcement, vote limit) to a board."""
        if not board_id:
            raise MissingFieldError("Board ID is required for update", fields=["id"])
        return await self.store.update(EntityKind.BOARD, board_id, changes)
