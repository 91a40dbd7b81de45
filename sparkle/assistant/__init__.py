"""
Streaming Assistant Module

Streams a model's reply to one user while it is generated, lets the user
cancel mid-stream, and persists whatever was produced exactly once. The
model can rename itself by opening its reply with a NAME_CHANGE marker.

Components:
- directives: Marker grammar and once-per-operation tracking
- registry: Live operations and their cancellation handles
- providers: Cancellable upstream streaming (OpenRouter, mock)
- identity: Per-user assistant display name
- storage: Messages, usage records and conversation history
- coordinator: Persistence and private/room event delivery
- orchestrator: Operation state machine and task tracking
- hub: WebSocket fan-out for private and room channels
- gate: Rate limit and content policy
"""

from .config import AssistantConfig, get_config, reload_config
from .errors import (
    AssistantError,
    ValidationError,
    PolicyViolation,
    RateLimitExceeded,
    RoomAccessDenied,
    UpstreamTransportError,
    StreamCancelled,
    DirectiveApplicationFailure,
    DuplicateOperationError,
)
from .models import (
    OperationState,
    QueryRequest,
    CancelRequest,
    StartQueryResult,
    FinalizeResult,
    PartialEvent,
    DoneEvent,
    ErrorEvent,
    NewMessageEvent,
    RoomAddedEvent,
)
from .directives import DirectiveStatus, DirectiveTracker, ParseResult, RenameDirective, parse_directive
from .registry import OperationRegistry
from .providers import CancellationHandle, StreamProvider, StreamRequest, UpstreamStream
from .identity import AssistantIdentityStore
from .storage import MessageStore
from .coordinator import PersistenceCoordinator
from .hub import ChannelHub, EventSink
from .rooms import RoomProvisioner
from .gate import ContentPolicy, PromptGate, RateLimiter
from .orchestrator import GenerationOperation, GenerationOrchestrator

__all__ = [
    # Config
    "AssistantConfig",
    "get_config",
    "reload_config",
    # Errors
    "AssistantError",
    "ValidationError",
    "PolicyViolation",
    "RateLimitExceeded",
    "RoomAccessDenied",
    "UpstreamTransportError",
    "StreamCancelled",
    "DirectiveApplicationFailure",
    "DuplicateOperationError",
    # Models
    "OperationState",
    "QueryRequest",
    "CancelRequest",
    "StartQueryResult",
    "FinalizeResult",
    "PartialEvent",
    "DoneEvent",
    "ErrorEvent",
    "NewMessageEvent",
    "RoomAddedEvent",
    # Directives
    "DirectiveStatus",
    "DirectiveTracker",
    "ParseResult",
    "RenameDirective",
    "parse_directive",
    # Core components
    "OperationRegistry",
    "AssistantIdentityStore",
    "MessageStore",
    "PersistenceCoordinator",
    "ChannelHub",
    "EventSink",
    "RoomProvisioner",
    "PromptGate",
    "RateLimiter",
    "ContentPolicy",
    "GenerationOrchestrator",
    "GenerationOperation",
    # Providers
    "CancellationHandle",
    "StreamProvider",
    "StreamRequest",
    "UpstreamStream",
]
