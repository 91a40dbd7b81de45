import asyncio
import os

# Keep the app's default engine off the on-disk database
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlmodel import create_engine, select
from sqlmodel.pool import StaticPool

from sparkle.assistant import (
    AssistantConfig,
    AssistantIdentityStore,
    GenerationOrchestrator,
    MessageStore,
    PersistenceCoordinator,
    PromptGate,
    RoomProvisioner,
)
from sparkle.assistant.providers import MockStreamProvider
from sparkle.models.base import init_db, make_session_factory
from sparkle.models.models import AICall, Message


class RecordingHub:
    """Event sink that keeps everything it was asked to deliver."""

    def __init__(self):
        self.private: list[tuple[int, dict]] = []
        self.room: list[tuple[int, dict]] = []

    async def send_to_user(self, user_id: int, message: dict) -> None:
        self.private.append((user_id, message))

    async def send_to_room(self, room_id: int, message: dict) -> None:
        self.room.append((room_id, message))

    def events(self, operation_id: str, type: str = None) -> list[dict]:
        return [
            message for _, message in self.private
            if message.get("operationId") == operation_id
            and (type is None or message["type"] == type)
        ]

    def terminal_events(self, operation_id: str) -> list[dict]:
        return [
            message for message in self.events(operation_id)
            if message["type"] in ("ai:done", "ai:error")
        ]

    def chunks(self, operation_id: str) -> list[str]:
        return [message["chunk"] for message in self.events(operation_id, "ai:partial")]

    def broadcasts(self, operation_id: str) -> list[dict]:
        return [
            message for _, message in self.room
            if message["meta"].get("operationId") == operation_id
        ]


class StallingHub(RecordingHub):
    """Room pushes never complete."""

    def __init__(self):
        super().__init__()
        self.stalled = asyncio.Event()

    async def send_to_room(self, room_id: int, message: dict) -> None:
        self.stalled.set()
        await asyncio.Event().wait()


class BrokenRoomHub(RecordingHub):
    async def send_to_room(self, room_id: int, message: dict) -> None:
        raise ConnectionError("room socket gone")


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    return make_session_factory(engine)


@pytest.fixture(name="hub")
def hub_fixture():
    return RecordingHub()


@pytest.fixture(name="stalling_hub")
def stalling_hub_fixture():
    return StallingHub()


@pytest.fixture(name="broken_room_hub")
def broken_room_hub_fixture():
    return BrokenRoomHub()


@pytest.fixture(name="provider")
def provider_fixture():
    return MockStreamProvider(fragments=["Hello", " there"])


@pytest.fixture(name="make_orchestrator")
def make_orchestrator_fixture(session_factory, hub):
    """Build an orchestrator around a given provider over the test database."""

    def _make(provider, gate=None, identity=None, config=None, sink=None, store=None):
        sink = sink or hub
        store = store or MessageStore(session_factory)
        return GenerationOrchestrator(
            provider=provider,
            coordinator=PersistenceCoordinator(store, sink, model_id=provider.model),
            store=store,
            identity=identity or AssistantIdentityStore(session_factory),
            rooms=RoomProvisioner(session_factory, sink=sink),
            gate=gate or PromptGate(),
            config=config or AssistantConfig(),
        )

    return _make


@pytest.fixture(name="orchestrator")
def orchestrator_fixture(make_orchestrator, provider):
    return make_orchestrator(provider)


@pytest.fixture(name="db")
def db_fixture(session_factory):
    """Read helpers for assertions."""

    class _DB:
        def assistant_messages(self, room_id: int) -> list[Message]:
            with session_factory() as session:
                statement = select(Message).where(
                    Message.room_id == room_id,
                    Message.author_name == "Assistant",
                )
                return list(session.exec(statement).all())

        def usage_records(self, operation_id: str) -> list[AICall]:
            with session_factory() as session:
                statement = select(AICall).where(AICall.operation_id == operation_id)
                return list(session.exec(statement).all())

        def message(self, message_id: int):
            with session_factory() as session:
                return session.get(Message, message_id)

        def messages(self, room_id: int) -> list[Message]:
            with session_factory() as session:
                statement = select(Message).where(Message.room_id == room_id)
                return list(session.exec(statement).all())

    return _DB()
