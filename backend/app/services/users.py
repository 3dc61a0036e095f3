"""User registration."""

import logging

from backend.app.schemas.records import EntityKind, User
from backend.app.schemas.user import UserRegister

logger = logging.getLogger(__name__)

DEFAULT_USER_NAME = "Guest"


async def register_user(store, request: UserRegister) -> User:
    """Create a user linked to every session in the request; name defaults to Guest."""
    data = request.model_dump(exclude={"session_id", "session_ids"}, exclude_none=True)
    data["name"] = request.name or DEFAULT_USER_NAME
    sessions = request.linked_sessions()
    if sessions:
        data["session_ids"] = sessions

    user: User = await store.create(EntityKind.USER, data)
    logger.info(f"[USER] Registered user {user.id} ({user.external_id})")
    return user
