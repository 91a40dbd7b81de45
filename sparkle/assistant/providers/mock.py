"""
Mock stream provider for dry-run mode and tests.

Streams a scripted list of fragments without any network calls.
"""

import asyncio
from typing import Optional

from .base import CancellationHandle, StreamProvider, StreamRequest, UpstreamStream
from ..errors import StreamCancelled, UpstreamTransportError


class MockStream(UpstreamStream):
    """Replays fragments, optionally pausing between them or failing midway."""

    def __init__(
        self,
        fragments: list[str],
        cancel: CancellationHandle,
        delay: float = 0.0,
        fail_after: Optional[int] = None,
        hold_open: bool = False,
        completion_tokens: Optional[int] = None,
    ):
        super().__init__(cancel)
        self._fragments = list(fragments)
        self._index = 0
        self._delay = delay
        self._fail_after = fail_after
        self._hold_open = hold_open
        self._reported_tokens = completion_tokens
        self.closed = False

    async def _read_fragment(self) -> Optional[str]:
        if self._fail_after is not None and self._index >= self._fail_after:
            raise UpstreamTransportError("Connection reset by peer", retryable=True)

        if self._index >= len(self._fragments):
            if self._hold_open:
                # Behave like a provider that stalls until the caller gives up
                await asyncio.Event().wait()
            self.completion_tokens = self._reported_tokens
            return None

        if self._delay:
            await asyncio.sleep(self._delay)

        fragment = self._fragments[self._index]
        self._index += 1
        return fragment

    async def aclose(self) -> None:
        self.closed = True


class MockStreamProvider(StreamProvider):
    """
    Scripted provider.

    Args:
        fragments: Text fragments to stream, in order
        model: Model id reported for usage records
        delay: Seconds to sleep before each fragment
        fail_after: Raise UpstreamTransportError after this many fragments
        fail_on_connect: Raise UpstreamTransportError instead of opening
        hold_open: After the last fragment, stall until cancelled
        completion_tokens: Usage figure to report at natural end
    """

    def __init__(
        self,
        fragments: Optional[list[str]] = None,
        model: str = "mock-model",
        delay: float = 0.0,
        fail_after: Optional[int] = None,
        fail_on_connect: bool = False,
        hold_open: bool = False,
        completion_tokens: Optional[int] = None,
    ):
        self.fragments = list(fragments or [])
        self._model = model
        self.delay = delay
        self.fail_after = fail_after
        self.fail_on_connect = fail_on_connect
        self.hold_open = hold_open
        self.completion_tokens = completion_tokens
        self.requests: list[StreamRequest] = []
        self.streams: list[MockStream] = []

    @property
    def name(self) -> str:
        return f"mock/{self._model}"

    @property
    def model(self) -> str:
        return self._model

    async def connect(self, request: StreamRequest, cancel: CancellationHandle) -> MockStream:
        self.requests.append(request)

        if cancel.cancelled:
            raise StreamCancelled("Stream cancelled")
        if self.fail_on_connect:
            raise UpstreamTransportError("HTTP 502", status_code=502, retryable=True)

        stream = MockStream(
            fragments=self.fragments,
            cancel=cancel,
            delay=self.delay,
            fail_after=self.fail_after,
            hold_open=self.hold_open,
            completion_tokens=self.completion_tokens,
        )
        self.streams.append(stream)
        return stream
