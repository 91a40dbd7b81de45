"""
Persistence & Broadcast Coordinator

Owns every write and every push an operation makes:

- start: persist the prompt before the caller is acknowledged
- streaming: one private ``ai:partial`` per fragment
- finalize: save the reply (if any) and its usage record in one commit,
  broadcast the reply to the room once, and send the owner exactly one
  terminal event
"""

import logging
from typing import Optional

from sparkle.models.models import AICall

from .hub import EventSink
from .models import (
    DoneEvent,
    ErrorEvent,
    FinalizeResult,
    NewMessageEvent,
    OperationState,
    PartialEvent,
)
from .storage import MessageStore, SavedMessage

logger = logging.getLogger(__name__)


class PersistenceCoordinator:
    """
    Args:
        store: Message and usage persistence
        sink: Push transport for private and room channels
        model_id: Model recorded in message metadata and usage records
    """

    def __init__(self, store: MessageStore, sink: EventSink, model_id: str):
        self.store = store
        self.sink = sink
        self.model_id = model_id

    async def begin(self, room_id: int, user_id: int, prompt: str, operation_id: str) -> SavedMessage:
        """Persist the prompt message."""
        return await self.store.save_prompt(room_id, user_id, prompt, operation_id)

    async def publish_partial(self, user_id: int, operation_id: str, room_id: int, chunk: str) -> None:
        """Forward one raw fragment to the requesting user only."""
        event = PartialEvent(operation_id=operation_id, chunk=chunk, room_id=room_id)
        await self.sink.send_to_user(user_id, event.to_broadcast())

    async def finalize(
        self,
        *,
        operation_id: str,
        user_id: int,
        room_id: int,
        content: str,
        assistant_name: str,
        tokens_used: int,
        state: OperationState,
        error: Optional[str] = None,
        regenerate_id: Optional[int] = None,
    ) -> FinalizeResult:
        """
        Terminal step for one operation. Called exactly once per operation.

        ``state`` must be terminal. A failed operation with text still gets
        its text saved, but the owner is told about the failure rather than
        a normal completion.
        """
        if not state.is_terminal:
            raise ValueError(f"Cannot finalize operation {operation_id} in state {state.value}")

        cancelled = state is OperationState.CANCELLED
        failed = state is OperationState.FAILED

        if not content.strip():
            if failed:
                await self._send_error(user_id, operation_id, error)
            else:
                done = DoneEvent(operation_id=operation_id, cancelled=cancelled, room_id=room_id)
                await self.sink.send_to_user(user_id, done.to_broadcast())
            logger.info(f"Operation {operation_id} finished {state.value} with no content")
            return FinalizeResult(state=state, assistant_name=assistant_name, tokens_used=tokens_used)

        meta = {
            "ai": True,
            "operationId": operation_id,
            "model": self.model_id,
            "cancelled": cancelled,
            "displayName": assistant_name,
        }
        if failed:
            meta["failed"] = True

        saved = None
        if regenerate_id is not None:
            saved = await self.store.replace_assistant(
                regenerate_id, content, meta, usage=self._usage(operation_id, user_id, room_id, tokens_used, state)
            )
            if saved is None:
                logger.warning(f"Message {regenerate_id} vanished before regenerate; saving a new one")
        if saved is None:
            saved = await self.store.save_assistant(
                room_id, user_id, content, meta, usage=self._usage(operation_id, user_id, room_id, tokens_used, state)
            )

        message = NewMessageEvent(
            id=saved.id,
            room_id=room_id,
            user_id=user_id,
            content=content,
            display_name=assistant_name,
            created_at=saved.created_at,
            meta=meta,
        )
        # The reply is stored at this point, so the owner still gets a terminal event
        try:
            await self.sink.send_to_room(room_id, message.to_broadcast())
        except Exception as e:
            logger.exception(f"Broadcast of message {saved.id} to room {room_id} failed: {e}")

        if failed:
            await self._send_error(user_id, operation_id, error, saved_message_id=saved.id, room_id=room_id)
        else:
            done = DoneEvent(
                operation_id=operation_id,
                saved_message_id=saved.id,
                cancelled=cancelled,
                room_id=room_id,
            )
            await self.sink.send_to_user(user_id, done.to_broadcast())

        logger.info(
            f"Operation {operation_id} finished {state.value}: "
            f"message {saved.id}, {len(content)} chars, {tokens_used} tokens"
        )
        return FinalizeResult(
            state=state,
            saved_message_id=saved.id,
            content=content,
            assistant_name=assistant_name,
            tokens_used=tokens_used,
        )

    def _usage(
        self,
        operation_id: str,
        user_id: int,
        room_id: int,
        tokens_used: int,
        state: OperationState,
    ) -> AICall:
        return AICall(
            user_id=user_id,
            room_id=room_id,
            operation_id=operation_id,
            model=self.model_id,
            tokens_used=tokens_used,
            status=state.value,
        )

    async def _send_error(
        self,
        user_id: int,
        operation_id: str,
        message: Optional[str],
        saved_message_id: Optional[int] = None,
        room_id: Optional[int] = None,
    ) -> None:
        event = ErrorEvent(
            operation_id=operation_id,
            message=message or "Generation failed",
            saved_message_id=saved_message_id,
            room_id=room_id,
        )
        await self.sink.send_to_user(user_id, event.to_broadcast())

    async def report_failure(self, user_id: int, operation_id: str, message: str) -> None:
        """Terminal error for an operation whose finalize itself broke."""
        await self._send_error(user_id, operation_id, message)
