"""
Abstract Stream Provider

Base classes for the upstream streaming call. A provider opens an
``UpstreamStream``; iterating the stream yields text fragments until one of
three terminal conditions:

- natural end: iteration stops (``StopAsyncIteration``)
- cancellation: ``StreamCancelled`` once the handle has been triggered
- transport/provider failure: ``UpstreamTransportError``

Cancellation is cooperative. Triggering the handle wakes up a pending read,
which is abandoned, and the stream closes its connection on exit.
"""

from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Optional, TypeVar
import logging

from ..errors import StreamCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationHandle:
    """One-shot cancellation signal shared by the registry and a stream."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(coro: Awaitable[T], cancel: CancellationHandle) -> T:
    """
    Await ``coro`` unless the handle fires first.

    Raises:
        StreamCancelled: The handle fired before (or while) the awaitable ran
    """
    if cancel.cancelled:
        if asyncio.iscoroutine(coro):
            coro.close()
        raise StreamCancelled("Stream cancelled")

    task = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()

    if task.done() and not task.cancelled():
        return task.result()

    # Let the abandoned call unwind before the caller closes the connection
    await asyncio.gather(task, return_exceptions=True)
    raise StreamCancelled("Stream cancelled")


@dataclass
class StreamRequest:
    """Everything the provider needs for one streaming call."""
    messages: list[dict[str, Any]]
    max_tokens: int
    temperature: float = 1.0
    extra: dict[str, Any] = field(default_factory=dict)


class UpstreamStream(ABC):
    """
    An open streaming response.

    Use as an async context manager and iterate it:

        async with await provider.connect(request, handle) as stream:
            async for fragment in stream:
                ...

    Implementations provide ``_read_fragment`` (None at end of stream) and
    ``aclose``.
    """

    def __init__(self, cancel: CancellationHandle):
        self._cancel = cancel
        self.completion_tokens: Optional[int] = None  # Reported by the provider, if any

    async def __aenter__(self) -> "UpstreamStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def __aiter__(self) -> "UpstreamStream":
        return self

    async def __anext__(self) -> str:
        fragment = await run_cancellable(self._read_fragment(), self._cancel)
        if fragment is None:
            raise StopAsyncIteration
        return fragment

    @abstractmethod
    async def _read_fragment(self) -> Optional[str]:
        """Return the next non-empty text fragment, or None at end of stream."""
        ...

    @abstractmethod
    async def aclose(self) -> None:
        """Release the underlying connection."""
        ...


class StreamProvider(ABC):
    """
    Abstract base for streaming text-generation providers.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier for logging."""
        ...

    @property
    @abstractmethod
    def model(self) -> str:
        """The model identifier being used."""
        ...

    @abstractmethod
    async def connect(
        self,
        request: StreamRequest,
        cancel: CancellationHandle,
    ) -> UpstreamStream:
        """
        Open a streaming call.

        Args:
            request: Messages and sampling parameters
            cancel: Handle that aborts the call when triggered

        Returns:
            An open UpstreamStream

        Raises:
            StreamCancelled: The handle fired before the stream was established
            UpstreamTransportError: The call could not be established
        """
        ...

    async def close(self) -> None:
        """Clean up resources. Override if provider needs cleanup."""
        pass
