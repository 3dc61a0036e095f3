"""Topic and comment operations."""

import logging
from typing import Any

from backend.app.core.exceptions import MissingFieldError
from backend.app.schemas.records import Comment, EntityKind, Topic

logger = logging.getLogger(__name__)


class TopicService:
    """Creates and updates topics; appends comments."""

    def __init__(self, store):
        self.store = store

    async def create_topic(self, data: dict[str, Any]) -> Topic:
        if not (data.get("sessionId") or data.get("session_id")):
            raise MissingFieldError("sessionId is required to create a topic", fields=["sessionId"])
        topic: Topic = await self.store.create(EntityKind.TOPIC, data)
        logger.info(f"[TOPIC] Created topic {topic.id}")
        return topic

    async def update_topic(self, topic_id: str | None, changes: dict[str, Any]) -> Topic:
        if not topic_id:
            raise MissingFieldError("Topic ID is required for update", fields=["id"])
        return await self.store.update(EntityKind.TOPIC, topic_id, changes)

    async def create_comment(self, data: dict[str, Any]) -> Comment:
        missing = [
            key
            for key, snake in (("topicId", "topic_id"), ("userId", "user_id"))
            if not (data.get(key) or data.get(snake))
        ]
        if missing:
            raise MissingFieldError(
                "topicId and userId are required to create a comment",
                fields=missing,
            )
        return await self.store.create(EntityKind.COMMENT, data)
