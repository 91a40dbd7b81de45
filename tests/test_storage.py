"""
Tests for the persistence layer: assistant identity, rooms, message history
and the finalize coordinator.
"""

import logging
from contextlib import contextmanager

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from sparkle.assistant.coordinator import PersistenceCoordinator
from sparkle.assistant.errors import DirectiveApplicationFailure
from sparkle.assistant.identity import AssistantIdentityStore
from sparkle.assistant.models import OperationState
from sparkle.assistant.rooms import RoomProvisioner
from sparkle.assistant.storage import MessageStore
from sparkle.models.models import AICall, Message, RoomMember


@pytest.fixture
def rooms(session_factory, hub):
    return RoomProvisioner(session_factory, sink=hub)


@pytest.fixture
def store(session_factory):
    return MessageStore(session_factory)


@pytest.fixture
def coordinator(store, hub):
    return PersistenceCoordinator(store, hub, model_id="mock-model")


class TestIdentityStore:

    @pytest.mark.asyncio
    async def test_default_name(self, session_factory):
        identity = AssistantIdentityStore(session_factory, default_name="Sparkle AI")
        assert await identity.get_name(1) == "Sparkle AI"

    @pytest.mark.asyncio
    async def test_set_name_creates_and_updates(self, session_factory):
        identity = AssistantIdentityStore(session_factory)

        await identity.set_name(1, "Jarvis")
        assert await identity.get_name(1) == "Jarvis"

        await identity.set_name(1, "Friday")
        assert await identity.get_name(1) == "Friday"
        assert await identity.get_name(2) == "Sparkle AI"

    @pytest.mark.asyncio
    async def test_rename_logs_previous_name(self, session_factory, caplog):
        identity = AssistantIdentityStore(session_factory)

        with caplog.at_level(logging.INFO, logger="sparkle.assistant.identity"):
            await identity.set_name(1, "Jarvis")
            await identity.set_name(1, "Friday")

        assert "'Sparkle AI' -> 'Jarvis'" in caplog.text
        assert "'Jarvis' -> 'Friday'" in caplog.text

    @pytest.mark.asyncio
    async def test_write_failure(self):
        @contextmanager
        def broken_factory():
            raise OperationalError("UPDATE ai_sessions", {}, Exception("database is locked"))
            yield

        identity = AssistantIdentityStore(broken_factory)
        with pytest.raises(DirectiveApplicationFailure):
            await identity.set_name(1, "Jarvis")


class TestRoomProvisioner:

    @pytest.mark.asyncio
    async def test_room_created_once(self, rooms, hub):
        room_id = await rooms.ensure_room(1)
        assert await rooms.ensure_room(1) == room_id

        added = [m for _, m in hub.private if m["type"] == "room_added"]
        assert len(added) == 1
        assert added[0]["id"] == room_id
        assert added[0]["roomType"] == "ai"

        assert await rooms.members(room_id) == [1]
        assert await rooms.is_member(room_id, 1)
        assert not await rooms.is_member(room_id, 2)

    @pytest.mark.asyncio
    async def test_get_session_unhides_room(self, rooms, session_factory):
        room_id = await rooms.ensure_room(1)
        with session_factory() as session:
            membership = session.get(RoomMember, (room_id, 1))
            membership.is_hidden = True
            session.add(membership)
            session.commit()

        assert await rooms.get_session(1) == (room_id, "Sparkle AI")

        with session_factory() as session:
            assert session.get(RoomMember, (room_id, 1)).is_hidden is False


class TestHistory:

    @pytest.mark.asyncio
    async def test_history_filters_and_orders(self, rooms, store, session_factory):
        room_id = await rooms.ensure_room(1)

        first = await store.save_prompt(room_id, 1, "first question", "op-1")
        await store.save_assistant(room_id, 1, "first answer", {"ai": True, "cancelled": False})
        await store.save_assistant(room_id, 1, "abandoned", {"ai": True, "cancelled": True})

        with session_factory() as session:
            errored = Message(room_id=room_id, user_id=1, content="oops", status="error")
            session.add(errored)
            session.commit()

        current = await store.save_prompt(room_id, 1, "second question", "op-2")

        history = await store.load_history(room_id, limit=20, exclude_id=current.id)
        assert history == [
            {"role": "user", "content": "first question"},
            {"role": "assistant", "content": "first answer"},
        ]

        assert await store.load_history(room_id, limit=1, exclude_id=current.id) == [
            {"role": "assistant", "content": "first answer"},
        ]
        assert await store.load_history(room_id, limit=0) == []
        assert await store.load_history(room_id, limit=20, before=first.created_at) == []


    @pytest.mark.asyncio
    async def test_reply_and_usage_commit_together(self, rooms, store, db):
        room_id = await rooms.ensure_room(1)
        # status is NOT NULL, so the usage insert fails the whole commit
        usage = AICall(user_id=1, room_id=room_id, operation_id="op-1", model="mock-model", status=None)

        with pytest.raises(IntegrityError):
            await store.save_assistant(room_id, 1, "answer", {"ai": True}, usage=usage)

        assert db.assistant_messages(room_id) == []
        assert db.usage_records("op-1") == []

class TestCoordinator:

    @pytest.mark.asyncio
    async def test_completed_with_text(self, rooms, coordinator, hub, db):
        room_id = await rooms.ensure_room(1)

        result = await coordinator.finalize(
            operation_id="op-1",
            user_id=1,
            room_id=room_id,
            content="Hello there",
            assistant_name="Jarvis",
            tokens_used=2,
            state=OperationState.COMPLETED,
        )

        saved = db.message(result.saved_message_id)
        assert saved.content == "Hello there"
        assert saved.meta["cancelled"] is False
        assert saved.meta["model"] == "mock-model"
        assert saved.meta["operationId"] == "op-1"

        [usage] = db.usage_records("op-1")
        assert usage.status == "completed"
        assert usage.tokens_used == 2

        [broadcast] = hub.broadcasts("op-1")
        assert broadcast["type"] == "new_message"
        assert broadcast["displayName"] == "Jarvis"
        assert broadcast["id"] == saved.id

        assert hub.terminal_events("op-1") == [{
            "type": "ai:done",
            "operationId": "op-1",
            "savedMessageId": saved.id,
            "cancelled": False,
            "roomId": room_id,
        }]

    @pytest.mark.asyncio
    async def test_cancelled_without_text(self, rooms, coordinator, hub, db):
        room_id = await rooms.ensure_room(1)

        result = await coordinator.finalize(
            operation_id="op-1",
            user_id=1,
            room_id=room_id,
            content="",
            assistant_name="Sparkle AI",
            tokens_used=0,
            state=OperationState.CANCELLED,
        )

        assert result.saved_message_id is None
        assert db.assistant_messages(room_id) == []
        assert db.usage_records("op-1") == []
        assert hub.broadcasts("op-1") == []
        [done] = hub.terminal_events("op-1")
        assert done["type"] == "ai:done"
        assert done["cancelled"] is True
        assert done["savedMessageId"] is None

    @pytest.mark.asyncio
    async def test_failed_without_text(self, rooms, coordinator, hub, db):
        room_id = await rooms.ensure_room(1)

        await coordinator.finalize(
            operation_id="op-1",
            user_id=1,
            room_id=room_id,
            content="",
            assistant_name="Sparkle AI",
            tokens_used=0,
            state=OperationState.FAILED,
            error="Failed to generate response",
        )

        assert db.assistant_messages(room_id) == []
        assert hub.terminal_events("op-1") == [{
            "type": "ai:error",
            "operationId": "op-1",
            "error": "Failed to generate response",
        }]

    @pytest.mark.asyncio
    async def test_failed_with_text_is_saved(self, rooms, coordinator, hub, db):
        room_id = await rooms.ensure_room(1)

        result = await coordinator.finalize(
            operation_id="op-1",
            user_id=1,
            room_id=room_id,
            content="Half an ans",
            assistant_name="Sparkle AI",
            tokens_used=3,
            state=OperationState.FAILED,
            error="Failed to generate response",
        )

        saved = db.message(result.saved_message_id)
        assert saved.meta["failed"] is True
        assert db.usage_records("op-1")[0].status == "failed"
        assert len(hub.broadcasts("op-1")) == 1

        [error] = hub.terminal_events("op-1")
        assert error["type"] == "ai:error"
        assert error["savedMessageId"] == saved.id

    @pytest.mark.asyncio
    async def test_room_push_failure_still_sends_done(self, rooms, store, broken_room_hub, db):
        coordinator = PersistenceCoordinator(store, broken_room_hub, model_id="mock-model")
        room_id = await rooms.ensure_room(1)

        result = await coordinator.finalize(
            operation_id="op-1",
            user_id=1,
            room_id=room_id,
            content="Hello there",
            assistant_name="Sparkle AI",
            tokens_used=2,
            state=OperationState.COMPLETED,
        )

        assert db.message(result.saved_message_id).content == "Hello there"
        [done] = broken_room_hub.terminal_events("op-1")
        assert done["type"] == "ai:done"
        assert done["savedMessageId"] == result.saved_message_id

    @pytest.mark.asyncio
    async def test_non_terminal_state_rejected(self, rooms, coordinator, hub, db):
        room_id = await rooms.ensure_room(1)

        with pytest.raises(ValueError):
            await coordinator.finalize(
                operation_id="op-1",
                user_id=1,
                room_id=room_id,
                content="Hello there",
                assistant_name="Sparkle AI",
                tokens_used=2,
                state=OperationState.STREAMING,
            )

        assert db.assistant_messages(room_id) == []
        assert hub.terminal_events("op-1") == []

    @pytest.mark.asyncio
    async def test_regenerate_replaces_message(self, rooms, store, coordinator, db):
        room_id = await rooms.ensure_room(1)
        original = await store.save_assistant(room_id, 1, "old answer", {"ai": True})

        result = await coordinator.finalize(
            operation_id="op-2",
            user_id=1,
            room_id=room_id,
            content="new answer",
            assistant_name="Sparkle AI",
            tokens_used=2,
            state=OperationState.COMPLETED,
            regenerate_id=original.id,
        )

        assert result.saved_message_id == original.id
        [message] = db.assistant_messages(room_id)
        assert message.content == "new answer"
        assert message.meta["operationId"] == "op-2"
