"""
Message Storage

Persistence for prompts, assistant replies and usage records, plus the
conversation history sent to the provider as context.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlmodel import or_, select

from sparkle.models.models import AICall, Message

logger = logging.getLogger(__name__)

ASSISTANT_AUTHOR = "Assistant"
# How json.dumps renders the cancelled flag inside meta_json
CANCELLED_FLAG = '"cancelled": true'


@dataclass
class SavedMessage:
    """Identity of a persisted message."""
    id: int
    created_at: datetime


class MessageStore:
    """
    Reads and writes chat messages and usage records.

    Args:
        session_factory: Callable returning a context-managed database session
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def save_prompt(self, room_id: int, user_id: int, prompt: str, operation_id: str) -> SavedMessage:
        """Persist the user's prompt."""
        with self.session_factory() as session:
            message = Message(
                room_id=room_id,
                user_id=user_id,
                content=prompt,
                status="seen",
                created_at=datetime.now(timezone.utc),
            )
            message.meta = {"is_prompt": True, "operationId": operation_id}
            session.add(message)
            session.commit()
            session.refresh(message)
            return SavedMessage(id=message.id, created_at=message.created_at)

    async def save_assistant(
        self,
        room_id: int,
        user_id: int,
        content: str,
        meta: dict[str, Any],
        usage: Optional[AICall] = None,
    ) -> SavedMessage:
        """Insert a new assistant reply, and its usage record in the same commit."""
        with self.session_factory() as session:
            message = Message(
                room_id=room_id,
                user_id=user_id,
                content=content,
                author_name=ASSISTANT_AUTHOR,
                created_at=datetime.now(timezone.utc),
            )
            message.meta = meta
            session.add(message)
            if usage is not None:
                session.add(usage)
            session.commit()
            session.refresh(message)
            return SavedMessage(id=message.id, created_at=message.created_at)

    async def replace_assistant(
        self,
        message_id: int,
        content: str,
        meta: dict[str, Any],
        usage: Optional[AICall] = None,
    ) -> Optional[SavedMessage]:
        """Overwrite an existing assistant reply (regenerate). None if it is gone."""
        with self.session_factory() as session:
            message = session.get(Message, message_id)
            if message is None:
                return None
            message.content = content
            message.meta = meta
            session.add(message)
            if usage is not None:
                session.add(usage)
            session.commit()
            session.refresh(message)
            return SavedMessage(id=message.id, created_at=message.created_at)

    async def get_message(self, message_id: int) -> Optional[Message]:
        with self.session_factory() as session:
            return session.get(Message, message_id)

    async def load_history(
        self,
        room_id: int,
        limit: int,
        exclude_id: Optional[int] = None,
        before: Optional[datetime] = None,
    ) -> list[dict[str, str]]:
        """
        Previous messages of a room as provider chat messages, oldest first.

        Skips cancelled replies and errored messages. Stops at ``before``
        when regenerating so the regenerated reply and anything after it
        are not part of the context.
        """
        if limit <= 0:
            return []

        with self.session_factory() as session:
            statement = select(Message).where(
                Message.room_id == room_id,
                Message.status != "error",
                or_(Message.meta_json == None, ~Message.meta_json.contains(CANCELLED_FLAG)),  # noqa: E711
            )
            if exclude_id is not None:
                statement = statement.where(Message.id != exclude_id)
            if before is not None:
                statement = statement.where(Message.created_at < before)
            statement = statement.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)
            rows = list(session.exec(statement).all())

        return [
            {
                "role": "assistant" if message.is_assistant else "user",
                "content": message.content,
            }
            for message in reversed(rows)
        ]
