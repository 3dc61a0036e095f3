"""
Vote ledger operations.

Votes are capped per user per session by the ``voteLimit`` of the session's
board. The remaining budget is always recomputed from the store, never from a
cached counter, so concurrent voters on other devices are accounted for.
"""

import logging
import math

from backend.app.core.exceptions import MissingFieldError, RecordNotFoundError
from backend.app.schemas.records import (
    SCHEMAS,
    Board,
    EntityKind,
    Session,
    Vote,
    first_link,
    vote_limit_of,
)
from backend.app.schemas.votes import (
    VoteCastResult,
    VoteCreate,
    VoteLimitReached,
    VoteRetractResult,
    remaining_to_wire,
)
from backend.app.services.airtable import AirtableClient, all_of, link_filter

logger = logging.getLogger(__name__)

_VOTE_SCHEMA = SCHEMAS[EntityKind.VOTE]


class VoteLedger:
    """Cast and retract votes within the board's budget."""

    def __init__(self, store: AirtableClient):
        self.store = store

    async def fetch_vote_limit(self, session_id: str) -> float:
        """
        Resolve the vote limit that applies to a session.

        A session without a board, or whose board no longer exists, is unlimited.
        """
        session: Session = await self.store.get(EntityKind.SESSION, session_id)
        board_id = first_link(session.board_id)
        if not board_id:
            return math.inf
        try:
            board: Board = await self.store.get(EntityKind.BOARD, board_id)
        except RecordNotFoundError:
            logger.warning(f"[VOTE] Board {board_id} of session {session_id} not found, voting unlimited")
            return math.inf
        return vote_limit_of(board)

    async def count_user_votes(self, session_id: str, user_id: str) -> int:
        """Count the user's vote records in the session, as the store sees them now."""
        votes = await self.store.list(
            EntityKind.VOTE,
            all_of(
                link_filter(_VOTE_SCHEMA.store_field("session_id"), session_id),
                link_filter(_VOTE_SCHEMA.store_field("user_id"), user_id),
            ),
        )
        return len(votes)

    async def cast_vote(self, request: VoteCreate) -> VoteCastResult | VoteLimitReached:
        """
        Cast a vote for a topic.

        Args:
            request: Session, user and topic ids plus the stored weight

        Returns:
            The created vote with the remaining budget, or ``VoteLimitReached``
            when the user has no votes left (no record is created then)

        Raises:
            MissingFieldError: If sessionId, userId or topicId is missing
        """
        missing = [
            alias
            for alias, value in (
                ("sessionId", request.session_id),
                ("userId", request.user_id),
                ("topicId", request.topic_id),
            )
            if not value
        ]
        if missing:
            raise MissingFieldError(
                "sessionId, userId and topicId are required to cast a vote",
                fields=missing,
            )

        limit = await self.fetch_vote_limit(request.session_id)
        existing = 0
        if math.isfinite(limit):
            existing = await self.count_user_votes(request.session_id, request.user_id)
            if existing >= limit:
                logger.info(
                    f"[VOTE] User {request.user_id} has no votes left in session {request.session_id}"
                )
                return VoteLimitReached()

        vote: Vote = await self.store.create(
            EntityKind.VOTE,
            {
                "session_id": request.session_id,
                "topic_id": request.topic_id,
                "user_id": request.user_id,
                "weight": request.weight,
            },
        )
        logger.info(f"[VOTE] User {request.user_id} voted for topic {request.topic_id}")

        remaining = max(0, limit - (existing + 1)) if math.isfinite(limit) else math.inf
        return VoteCastResult(vote=vote, remaining_votes=remaining_to_wire(remaining))

    async def retract_vote(self, vote_id: str | None) -> VoteRetractResult:
        """
        Retract a vote and recompute the voter's remaining budget.

        Raises:
            MissingFieldError: If no vote id is given
            RecordNotFoundError: If the vote does not exist
        """
        if not vote_id:
            raise MissingFieldError("Vote ID is required to retract a vote", fields=["id"])

        vote: Vote = await self.store.get(EntityKind.VOTE, vote_id)
        await self.store.delete(EntityKind.VOTE, vote_id)
        logger.info(f"[UNVOTE] Vote {vote_id} removed")

        remaining = math.inf
        session_id = first_link(vote.session_id)
        user_id = first_link(vote.user_id)
        if session_id and user_id:
            limit = await self.fetch_vote_limit(session_id)
            if math.isfinite(limit):
                current = await self.count_user_votes(session_id, user_id)
                remaining = max(0, limit - current)

        return VoteRetractResult(id=vote_id, vote=vote, remaining_votes=remaining_to_wire(remaining))
