"""
Assistant Models

Pydantic types for requests, results and the events pushed over the
private and room channels. Database models live in sparkle/models/models.py.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class OperationState(str, Enum):
    """Lifecycle of one generation operation."""
    QUEUED = "queued"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationState.COMPLETED, OperationState.CANCELLED, OperationState.FAILED)


# === Requests / Results ===

class QueryRequest(BaseModel):
    """Body of POST /api/ai/query."""
    model_config = ConfigDict(populate_by_name=True)

    prompt: Optional[str] = None
    room_id: Optional[int] = Field(default=None, alias="roomId")
    regenerate_id: Optional[int] = Field(default=None, alias="regenerateId")


class CancelRequest(BaseModel):
    """Body of POST /api/ai/cancel."""
    model_config = ConfigDict(populate_by_name=True)

    operation_id: str = Field(alias="operationId")


class StartQueryResult(BaseModel):
    """Acknowledgement returned before generation begins."""
    operation_id: str
    room_id: int
    prompt_message_id: Optional[int] = None     # None when regenerating

    def to_response(self) -> dict:
        return {
            "ok": True,
            "operationId": self.operation_id,
            "roomId": self.room_id,
            "userMessageId": self.prompt_message_id,
        }


class FinalizeResult(BaseModel):
    """What finalize did for an operation."""
    state: OperationState
    saved_message_id: Optional[int] = None
    content: str = ""
    assistant_name: Optional[str] = None
    tokens_used: int = 0


# === Private channel events ===

class PartialEvent(BaseModel):
    """One streamed fragment, sent to the requesting user only."""
    operation_id: str
    chunk: str
    room_id: int

    def to_broadcast(self) -> dict:
        return {
            "type": "ai:partial",
            "operationId": self.operation_id,
            "chunk": self.chunk,
            "roomId": self.room_id,
        }


class DoneEvent(BaseModel):
    """Terminal event for completed or cancelled operations."""
    operation_id: str
    saved_message_id: Optional[int] = None
    cancelled: bool = False
    room_id: int

    def to_broadcast(self) -> dict:
        return {
            "type": "ai:done",
            "operationId": self.operation_id,
            "savedMessageId": self.saved_message_id,
            "cancelled": self.cancelled,
            "roomId": self.room_id,
        }


class ErrorEvent(BaseModel):
    """Terminal event for failed operations."""
    operation_id: str
    message: str
    saved_message_id: Optional[int] = None
    room_id: Optional[int] = None

    def to_broadcast(self) -> dict:
        result = {
            "type": "ai:error",
            "operationId": self.operation_id,
            "error": self.message,
        }
        if self.saved_message_id is not None:
            result["savedMessageId"] = self.saved_message_id
            result["roomId"] = self.room_id
        return result


class RoomAddedEvent(BaseModel):
    """A new assistant room was provisioned for the user."""
    id: int
    name: str
    type: str = "ai"
    created_at: datetime

    def to_broadcast(self) -> dict:
        return {
            "type": "room_added",
            "id": self.id,
            "name": self.name,
            "roomType": self.type,
            "last_message": None,
            "unread_count": 0,
            "created_at": self.created_at.isoformat(),
        }


# === Room channel events ===

class NewMessageEvent(BaseModel):
    """The finished assistant message, broadcast once to the room."""
    id: int
    room_id: int
    user_id: Optional[int] = None
    content: str
    author_name: str = "Assistant"
    display_name: str
    created_at: datetime
    meta: dict[str, Any] = Field(default_factory=dict)

    def to_broadcast(self) -> dict:
        return {
            "type": "new_message",
            "id": self.id,
            "roomId": self.room_id,
            "userId": self.user_id,
            "content": self.content,
            "authorName": self.author_name,
            "displayName": self.display_name,
            "createdAt": self.created_at.isoformat(),
            "ai": True,
            "meta": self.meta,
        }
