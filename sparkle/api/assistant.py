"""
Assistant API Routes

Provides endpoints for:
- Starting and cancelling a streaming generation
- Looking up the user's assistant room and name
- WebSocket push channel (partials, terminal events, room broadcasts)
- Health check

The caller's identity comes from the auth layer in front of this service
as an ``X-User-Id`` header.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, WebSocket, WebSocketDisconnect

from sparkle.assistant import (
    AssistantConfig,
    CancelRequest,
    ChannelHub,
    GenerationOrchestrator,
    MessageStore,
    AssistantIdentityStore,
    PersistenceCoordinator,
    PolicyViolation,
    PromptGate,
    QueryRequest,
    RateLimitExceeded,
    RoomAccessDenied,
    RoomProvisioner,
    StreamProvider,
    ValidationError,
    get_config,
)
from sparkle.models.base import get_engine, make_session_factory

logger = logging.getLogger(__name__)

router = APIRouter(tags=["assistant"])


# ==================== Component wiring ====================

@dataclass
class AssistantComponents:
    """Everything the routes need, built once per process."""
    config: AssistantConfig
    provider: StreamProvider
    hub: ChannelHub
    rooms: RoomProvisioner
    orchestrator: GenerationOrchestrator

    async def close(self) -> None:
        await self.orchestrator.shutdown()
        await self.provider.close()


def build_components(
    config: AssistantConfig,
    session_factory,
    provider: Optional[StreamProvider] = None,
    gate: Optional[PromptGate] = None,
) -> AssistantComponents:
    """Wire the assistant together over one database."""
    provider = provider or config.create_provider()

    rooms = RoomProvisioner(session_factory, default_name=config.default_assistant_name)
    hub = ChannelHub(resolve_members=rooms.members)
    rooms.sink = hub

    store = MessageStore(session_factory)
    orchestrator = GenerationOrchestrator(
        provider=provider,
        coordinator=PersistenceCoordinator(store, hub, model_id=provider.model),
        store=store,
        identity=AssistantIdentityStore(session_factory, default_name=config.default_assistant_name),
        rooms=rooms,
        gate=gate or PromptGate.from_config(config),
        config=config,
    )

    logger.info(f"Assistant initialized with provider {provider.name}")
    return AssistantComponents(
        config=config,
        provider=provider,
        hub=hub,
        rooms=rooms,
        orchestrator=orchestrator,
    )


# ==================== Singleton Components ====================

_components: Optional[AssistantComponents] = None


def get_components() -> AssistantComponents:
    """Get or create the components singleton."""
    global _components

    if _components is None:
        _components = build_components(get_config(), make_session_factory(get_engine()))

    return _components


async def close_components() -> None:
    """Shut down the singleton, if it was ever built."""
    global _components

    if _components is not None:
        await _components.close()
        _components = None


def get_orchestrator() -> GenerationOrchestrator:
    return get_components().orchestrator


def get_hub() -> ChannelHub:
    return get_components().hub


def get_rooms() -> RoomProvisioner:
    return get_components().rooms


def get_current_user_id(x_user_id: Optional[int] = Header(default=None, alias="X-User-Id")) -> int:
    """Authenticated user id, supplied by the auth layer."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return x_user_id


# ==================== HTTP Endpoints ====================

@router.post("/api/ai/query")
async def start_query(
    body: QueryRequest,
    user_id: int = Depends(get_current_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """
    Accept a prompt and start streaming a reply.

    Returns as soon as the prompt is stored. The reply arrives over the
    user's WebSocket as ``ai:partial`` events followed by one ``ai:done``
    or ``ai:error``.
    """
    try:
        result = await orchestrator.start_query(
            user_id,
            body.prompt,
            room_id=body.room_id,
            regenerate_id=body.regenerate_id,
        )
    except (PolicyViolation, RoomAccessDenied) as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RateLimitExceeded as e:
        raise HTTPException(
            status_code=429,
            detail=str(e),
            headers={"Retry-After": str(e.retry_after)},
        )

    return result.to_response()


@router.post("/api/ai/cancel")
async def cancel_query(
    body: CancelRequest,
    user_id: int = Depends(get_current_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Stop a running generation. Whatever was produced so far is kept."""
    # Someone else's operation looks the same as a missing one
    if not await orchestrator.cancel_query(body.operation_id, user_id=user_id):
        raise HTTPException(status_code=404, detail="Operation not found")

    logger.info(f"User {user_id} cancelled operation {body.operation_id}")
    return {"ok": True}


@router.get("/api/ai/session")
async def get_session(
    user_id: int = Depends(get_current_user_id),
    rooms: RoomProvisioner = Depends(get_rooms),
):
    """The user's assistant room and the assistant's current name."""
    room_id, ai_name = await rooms.get_session(user_id)
    return {"roomId": room_id, "aiName": ai_name}


@router.get("/api/ai/health")
async def health(
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    hub: ChannelHub = Depends(get_hub),
):
    """Read-only status, safe to expose publicly."""
    stats = hub.get_stats()
    return {
        "status": "ok",
        "activeOperations": orchestrator.active_count,
        "connectedUsers": stats["user_count"],
    }


# ==================== WebSocket Endpoint ====================

@router.websocket("/ws/ai")
async def assistant_stream(
    websocket: WebSocket,
    user_id: Optional[int] = Header(default=None, alias="X-User-Id"),
    hub: ChannelHub = Depends(get_hub),
):
    """
    WebSocket endpoint for assistant events.

    Messages sent (server -> client):
    - { type: 'connected', userId }
    - { type: 'ai:partial' | 'ai:done' | 'ai:error', operationId, ... }
    - { type: 'new_message', ... } for rooms the user is in
    - { type: 'room_added', ... }

    Client messages are ignored.
    """
    # Identity comes from the authenticated header only
    if user_id is None:
        await websocket.close(code=1008)
        return

    try:
        await hub.connect(user_id, websocket)

        while True:
            try:
                # Keep connection alive, ignore client messages
                await websocket.receive_text()
            except WebSocketDisconnect:
                break

    except Exception as e:
        logger.error(f"Assistant WebSocket error: {e}")

    finally:
        await hub.disconnect(user_id, websocket)
