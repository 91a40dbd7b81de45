"""
Generation Orchestrator

Runs one prompt from acceptance to its terminal event:

    Queued -> Streaming -> Finalizing -> {Completed, Cancelled, Failed}

``start_query`` does everything that must happen before the caller is
acknowledged (gate, room, prompt row, registry entry) and then spawns one
background task per operation. That task streams fragments, watches for the
rename directive and finalizes exactly once. Tasks are tracked so shutdown
and tests can await them.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .config import AssistantConfig
from .coordinator import PersistenceCoordinator
from .directives import DirectiveTracker
from .errors import (
    DirectiveApplicationFailure,
    RoomAccessDenied,
    StreamCancelled,
    UpstreamTransportError,
    ValidationError,
)
from .gate import PromptGate
from .identity import AssistantIdentityStore
from .models import FinalizeResult, OperationState, StartQueryResult
from .prompts import build_messages
from .providers.base import CancellationHandle, StreamProvider, StreamRequest
from .registry import OperationRegistry
from .rooms import RoomProvisioner
from .storage import MessageStore

logger = logging.getLogger(__name__)


@dataclass
class GenerationOperation:
    """In-memory state of one operation. Discarded after finalize."""
    user_id: int
    room_id: int
    prompt: str
    assistant_name: str                     # Snapshot taken at start
    operation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    cancel: CancellationHandle = field(default_factory=CancellationHandle)
    tracker: DirectiveTracker = field(default_factory=DirectiveTracker)
    prompt_message_id: Optional[int] = None
    regenerate_id: Optional[int] = None
    history_cutoff: Optional[datetime] = None
    tokens_consumed: int = 0
    completion_tokens: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: OperationState = OperationState.QUEUED
    effective_name: Optional[str] = None    # Set when a rename is applied
    error: Optional[str] = None
    terminated: bool = False                # Terminal event handed to the sink

    @property
    def display_name(self) -> str:
        return self.effective_name or self.assistant_name


class GenerationOrchestrator:
    """
    Top-level state machine wiring provider, registry, identity and
    persistence together.

    Args:
        provider: Upstream stream provider
        coordinator: Persistence and broadcast
        store: Message store (history and regenerate lookups)
        identity: Assistant name store
        rooms: Default room resolution
        registry: Live operations; a fresh one is created if omitted
        gate: Rate limit and content policy; prompts only get validated if omitted
        config: Model parameters and history size
    """

    def __init__(
        self,
        provider: StreamProvider,
        coordinator: PersistenceCoordinator,
        store: MessageStore,
        identity: AssistantIdentityStore,
        rooms: RoomProvisioner,
        registry: Optional[OperationRegistry] = None,
        gate: Optional[PromptGate] = None,
        config: Optional[AssistantConfig] = None,
    ):
        self.provider = provider
        self.coordinator = coordinator
        self.store = store
        self.identity = identity
        self.rooms = rooms
        self.registry = registry or OperationRegistry()
        self.gate = gate or PromptGate()
        self.config = config or AssistantConfig()

        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def active_count(self) -> int:
        """Operations still running (registered or finalizing)."""
        return len(self._tasks)

    # ==================== Inbound ====================

    async def start_query(
        self,
        user_id: int,
        prompt: Optional[str],
        room_id: Optional[int] = None,
        regenerate_id: Optional[int] = None,
    ) -> StartQueryResult:
        """
        Accept a prompt and start generating.

        Returns once the prompt is persisted and the operation registered;
        output arrives over the user's private channel.

        Raises:
            ValidationError: Empty prompt, blocked content, or bad regenerate target
            RateLimitExceeded: User is over a ceiling
            RoomAccessDenied: User is not in the addressed room
        """
        prompt = self.gate.check(user_id, prompt)

        history_cutoff = None
        if regenerate_id is not None:
            target = await self.store.get_message(regenerate_id)
            if target is None or not target.is_assistant:
                raise ValidationError("Nothing to regenerate")
            if room_id is not None and target.room_id != room_id:
                raise ValidationError("Message belongs to another room")
            room_id = target.room_id
            history_cutoff = target.created_at

        if room_id is None:
            room_id = await self.rooms.ensure_room(user_id)
        elif not await self.rooms.is_member(room_id, user_id):
            raise RoomAccessDenied(f"User {user_id} is not a member of room {room_id}")

        operation = GenerationOperation(
            user_id=user_id,
            room_id=room_id,
            prompt=prompt,
            assistant_name=await self.identity.get_name(user_id),
            regenerate_id=regenerate_id,
            history_cutoff=history_cutoff,
        )

        # A regenerate reuses the original prompt row
        if regenerate_id is None:
            saved = await self.coordinator.begin(room_id, user_id, prompt, operation.operation_id)
            operation.prompt_message_id = saved.id

        await self.registry.register(operation.operation_id, operation.cancel, owner=user_id)

        task = asyncio.create_task(self._run(operation), name=f"generation-{operation.operation_id}")
        self._tasks[operation.operation_id] = task
        task.add_done_callback(lambda t, op_id=operation.operation_id: self._tasks.pop(op_id, None))

        logger.info(
            f"Operation {operation.operation_id} started for user {user_id} "
            f"in room {room_id}" + (f" (regenerating {regenerate_id})" if regenerate_id else "")
        )

        return StartQueryResult(
            operation_id=operation.operation_id,
            room_id=room_id,
            prompt_message_id=operation.prompt_message_id,
        )

    async def cancel_query(self, operation_id: str, user_id: Optional[int] = None) -> bool:
        """
        Request cancellation.

        When ``user_id`` is given only the operation's owner may cancel it.
        False means the operation is unknown, already finalizing, or owned
        by someone else.
        """
        return await self.registry.cancel(operation_id, user_id=user_id)

    # ==================== Task tracking ====================

    def task_for(self, operation_id: str) -> Optional[asyncio.Task]:
        return self._tasks.get(operation_id)

    async def wait(self, operation_id: str) -> Optional[FinalizeResult]:
        """Wait for one operation to finish. None if it is not running."""
        task = self._tasks.get(operation_id)
        if task is None:
            return None
        return await task

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for every running operation to finish."""
        tasks = list(self._tasks.values())
        if not tasks:
            return
        await asyncio.wait(tasks, timeout=timeout)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Cancel all operations, let them finalize, then drop stragglers."""
        cancelled = await self.registry.cancel_all()
        if cancelled:
            logger.info(f"Cancelled {cancelled} operations for shutdown")

        await self.drain(timeout=timeout)

        stragglers = list(self._tasks.values())
        for task in stragglers:
            task.cancel()
        if stragglers:
            logger.warning(f"{len(stragglers)} operations did not finalize before shutdown")
            await asyncio.gather(*stragglers, return_exceptions=True)

    # ==================== Generation ====================

    async def _run(self, operation: GenerationOperation) -> FinalizeResult:
        try:
            return await self._generate(operation)
        except asyncio.CancelledError:
            # Task killed from outside (shutdown stragglers); the owner still hears about it
            if not operation.terminated:
                await self.registry.remove(operation.operation_id)
                operation.state = OperationState.FAILED
                logger.warning(f"Operation {operation.operation_id} interrupted before finalizing")
                await self.coordinator.report_failure(
                    operation.user_id,
                    operation.operation_id,
                    "Generation interrupted",
                )
                operation.terminated = True
            raise

    async def _generate(self, operation: GenerationOperation) -> FinalizeResult:
        outcome = OperationState.COMPLETED

        try:
            history = await self.store.load_history(
                operation.room_id,
                self.config.history_limit,
                exclude_id=operation.prompt_message_id,
                before=operation.history_cutoff,
            )
            request = StreamRequest(
                messages=build_messages(operation.assistant_name, history, operation.prompt),
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            )

            async with await self.provider.connect(request, operation.cancel) as stream:
                operation.state = OperationState.STREAMING
                logger.debug(f"Operation {operation.operation_id} streaming from {self.provider.name}")

                async for fragment in stream:
                    operation.tracker.append(fragment)
                    operation.tokens_consumed += 1
                    await self._apply_directive(operation)
                    await self.coordinator.publish_partial(
                        operation.user_id,
                        operation.operation_id,
                        operation.room_id,
                        fragment,
                    )

                operation.completion_tokens = stream.completion_tokens

        except StreamCancelled:
            outcome = OperationState.CANCELLED
        except UpstreamTransportError as e:
            logger.warning(
                f"Operation {operation.operation_id} upstream error "
                f"(status={e.status_code}, retryable={e.retryable}): {e}"
            )
            outcome = OperationState.FAILED
            operation.error = "Failed to generate response"
        except Exception as e:
            logger.exception(f"Operation {operation.operation_id} failed: {e}")
            outcome = OperationState.FAILED
            operation.error = "Generation failed"

        return await self._finalize(operation, outcome)

    async def _apply_directive(self, operation: GenerationOperation) -> None:
        directive = operation.tracker.scan()
        if directive is None:
            return

        # The new name is used for this operation even if the write fails
        operation.effective_name = directive.new_name
        try:
            await self.identity.set_name(operation.user_id, directive.new_name)
        except DirectiveApplicationFailure as e:
            logger.warning(f"Operation {operation.operation_id}: {e}")

    async def _finalize(self, operation: GenerationOperation, outcome: OperationState) -> FinalizeResult:
        # Removing the entry first turns any later cancel into a no-op
        await self.registry.remove(operation.operation_id)
        operation.state = OperationState.FINALIZING

        # A cancel that landed between the last fragment and the removal above
        if outcome is OperationState.COMPLETED and operation.cancel.cancelled:
            outcome = OperationState.CANCELLED

        await self._apply_directive(operation)

        try:
            result = await self.coordinator.finalize(
                operation_id=operation.operation_id,
                user_id=operation.user_id,
                room_id=operation.room_id,
                content=operation.tracker.clean_text,
                assistant_name=operation.display_name,
                tokens_used=operation.completion_tokens or operation.tokens_consumed,
                state=outcome,
                error=operation.error,
                regenerate_id=operation.regenerate_id,
            )
        except Exception as e:
            logger.exception(f"Operation {operation.operation_id} finalize failed: {e}")
            operation.state = OperationState.FAILED
            await self.coordinator.report_failure(
                operation.user_id,
                operation.operation_id,
                "Failed to save response",
            )
            operation.terminated = True
            return FinalizeResult(state=OperationState.FAILED, assistant_name=operation.display_name)

        operation.terminated = True
        operation.state = outcome
        return result
