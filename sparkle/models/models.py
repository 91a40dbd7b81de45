import json
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Room(SQLModel, table=True):
    __tablename__ = "rooms"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    type: str = "group"                      # "ai" for assistant rooms
    created_by: Optional[int] = None
    created_at: datetime = Field(default_factory=_utcnow)


class RoomMember(SQLModel, table=True):
    __tablename__ = "room_members"

    room_id: int = Field(foreign_key="rooms.id", primary_key=True)
    user_id: int = Field(primary_key=True)
    role: str = "member"
    is_hidden: bool = False


class Message(SQLModel, table=True):
    """
    A chat message in a room.

    Prompts carry meta {"is_prompt": true, "operationId": ...}; assistant
    replies carry author_name="Assistant" and meta
    {"ai": true, "model": ..., "operationId": ..., "cancelled": ...}.
    """
    __tablename__ = "messages"

    id: Optional[int] = Field(default=None, primary_key=True)
    room_id: int = Field(foreign_key="rooms.id", index=True)
    user_id: Optional[int] = Field(default=None, index=True)
    content: str = Field(sa_column=Column(Text))
    author_name: Optional[str] = None
    meta_json: Optional[str] = Field(default=None, sa_column=Column(Text))
    status: str = "sent"
    created_at: datetime = Field(default_factory=_utcnow, index=True)

    @property
    def meta(self) -> dict[str, Any]:
        """Deserialize meta from JSON."""
        if not self.meta_json:
            return {}
        return json.loads(self.meta_json)

    @meta.setter
    def meta(self, value: Optional[dict[str, Any]]) -> None:
        """Serialize meta to JSON."""
        self.meta_json = json.dumps(value) if value is not None else None

    @property
    def is_assistant(self) -> bool:
        return self.author_name == "Assistant" or bool(self.meta.get("ai"))


class AssistantSession(SQLModel, table=True):
    """Per-user assistant identity and the user's default assistant room."""
    __tablename__ = "ai_sessions"

    user_id: int = Field(primary_key=True)
    room_id: Optional[int] = Field(default=None, foreign_key="rooms.id")
    ai_name: Optional[str] = None


class AICall(SQLModel, table=True):
    """Append-only usage record, one per finalized operation with saved output."""
    __tablename__ = "ai_calls"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    room_id: int
    operation_id: str = Field(index=True)
    model: str
    tokens_used: int = 0
    status: str                              # completed | cancelled | failed
    created_at: datetime = Field(default_factory=_utcnow)
