"""
Room Provisioning

Resolves the room a prompt goes to when the client does not name one. Each
user has one assistant room, created on first use together with the user's
assistant session row.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import select

from sparkle.models.models import AssistantSession, Room, RoomMember

from .hub import EventSink
from .models import RoomAddedEvent

logger = logging.getLogger(__name__)

ASSISTANT_ROOM_NAME = "AI Assistant"


class RoomProvisioner:
    """
    Creates and looks up assistant rooms.

    Args:
        session_factory: Callable returning a context-managed database session
        sink: Push transport used to announce new rooms to their owner
        default_name: Assistant name stored on a freshly created session
    """

    def __init__(
        self,
        session_factory,
        sink: Optional[EventSink] = None,
        default_name: str = "Sparkle AI",
    ):
        self.session_factory = session_factory
        self.sink = sink
        self.default_name = default_name

    async def ensure_room(self, user_id: int) -> int:
        """Return the user's assistant room, creating it on first use."""
        with self.session_factory() as session:
            existing = session.get(AssistantSession, user_id)
            if existing and existing.room_id is not None:
                return existing.room_id

            room = Room(name=ASSISTANT_ROOM_NAME, type="ai", created_by=user_id)
            session.add(room)
            session.flush()

            session.add(RoomMember(room_id=room.id, user_id=user_id, role="owner"))

            if existing is None:
                existing = AssistantSession(user_id=user_id, ai_name=self.default_name)
            existing.room_id = room.id
            session.add(existing)
            session.commit()
            session.refresh(room)

            room_id = room.id
            created_at = room.created_at

        logger.info(f"Created assistant room {room_id} for user {user_id}")

        if self.sink is not None:
            event = RoomAddedEvent(
                id=room_id,
                name=self.default_name,
                created_at=created_at or datetime.now(timezone.utc),
            )
            await self.sink.send_to_user(user_id, event.to_broadcast())

        return room_id

    async def get_session(self, user_id: int) -> tuple[int, str]:
        """
        Return (room_id, assistant name) for a user.

        Un-hides the user's membership in their assistant room, since asking
        for the session means they are opening it again.
        """
        room_id = await self.ensure_room(user_id)

        with self.session_factory() as session:
            row = session.get(AssistantSession, user_id)
            ai_name = (row.ai_name if row else None) or self.default_name

            membership = session.get(RoomMember, (room_id, user_id))
            if membership and membership.is_hidden:
                membership.is_hidden = False
                session.add(membership)
                session.commit()

        return room_id, ai_name

    async def members(self, room_id: int) -> list[int]:
        """User ids of everyone in a room."""
        with self.session_factory() as session:
            statement = select(RoomMember.user_id).where(RoomMember.room_id == room_id)
            return list(session.exec(statement).all())

    async def is_member(self, room_id: int, user_id: int) -> bool:
        with self.session_factory() as session:
            return session.get(RoomMember, (room_id, user_id)) is not None
