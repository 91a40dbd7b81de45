"""
OpenRouter Stream Provider

Streams chat completions from OpenRouter's OpenAI-compatible endpoint as
server-sent events. Each ``data:`` line carries a JSON chunk whose
``choices[0].delta.content`` is the next text fragment; ``data: [DONE]``
ends the stream. Lines starting with ``:`` are keep-alive comments.

Usage accounting is requested with ``usage: {include: true}``; when the
provider reports it, the final chunk carries ``usage.completion_tokens``.
"""

import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from .base import (
    CancellationHandle,
    StreamProvider,
    StreamRequest,
    UpstreamStream,
    run_cancellable,
)
from ..errors import StreamCancelled, UpstreamTransportError

logger = logging.getLogger(__name__)


class OpenRouterStream(UpstreamStream):
    """An open SSE response from OpenRouter."""

    def __init__(self, response: httpx.Response, cancel: CancellationHandle):
        super().__init__(cancel)
        self._response = response
        self._lines: AsyncIterator[str] = response.aiter_lines()
        self._closed = False

    async def _read_fragment(self) -> Optional[str]:
        while True:
            try:
                line = await self._lines.__anext__()
            except StopAsyncIteration:
                return None
            except httpx.HTTPError as e:
                raise UpstreamTransportError(f"Stream interrupted: {e}", retryable=True) from e

            line = line.strip()
            if not line or line.startswith(":"):
                continue
            if not line.startswith("data:"):
                # event:/id:/retry: fields carry nothing we use
                continue

            data = line[5:].strip()
            if data == "[DONE]":
                return None

            fragment = self._parse_chunk(data)
            if fragment:
                return fragment

    def _parse_chunk(self, data: str) -> str:
        """Extract the text delta from one SSE data payload."""
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError as e:
            raise UpstreamTransportError(f"Malformed stream frame: {data[:100]}") from e

        if not isinstance(chunk, dict):
            raise UpstreamTransportError(f"Malformed stream frame: {data[:100]}")

        error = chunk.get("error")
        if error:
            message = error.get("message", "Provider error") if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            raise UpstreamTransportError(
                f"Provider error: {message}",
                status_code=code if isinstance(code, int) else None,
            )

        usage = chunk.get("usage")
        if usage and usage.get("completion_tokens") is not None:
            self.completion_tokens = int(usage["completion_tokens"])

        choices = chunk.get("choices") or []
        if not choices:
            return ""

        delta = choices[0].get("delta") or {}
        return delta.get("content") or ""

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._response.aclose()


class OpenRouterStreamProvider(StreamProvider):
    """
    OpenRouter streaming chat provider.

    One shared httpx.AsyncClient serves every operation; each call holds its
    own streaming response.
    """

    BASE_URL = "https://openrouter.ai/api/v1"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        site_url: Optional[str] = None,
        site_name: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize OpenRouter provider.

        Args:
            api_key: OpenRouter API key
            model: Model identifier (e.g., "openai/gpt-oss-120b")
            base_url: Override the API base URL
            timeout: Transport timeout in seconds, the only deadline on a stream
            site_url: Optional site URL for rankings
            site_name: Optional site name for rankings
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self._api_key = api_key
        self._model = model
        self._base_url = base_url or self.BASE_URL
        self._timeout = timeout
        self._site_url = site_url
        self._site_name = site_name
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def name(self) -> str:
        return f"openrouter/{self._model}"

    @property
    def model(self) -> str:
        return self._model

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            }
            if self._site_url:
                headers["HTTP-Referer"] = self._site_url
            if self._site_name:
                headers["X-Title"] = self._site_name

            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def _build_payload(self, request: StreamRequest) -> dict[str, Any]:
        payload = {
            "model": self._model,
            "messages": request.messages,
            "stream": True,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "usage": {"include": True},
        }
        payload.update(request.extra)
        return payload

    async def connect(
        self,
        request: StreamRequest,
        cancel: CancellationHandle,
    ) -> OpenRouterStream:
        client = await self._get_client()
        http_request = client.build_request(
            "POST",
            "/chat/completions",
            json=self._build_payload(request),
        )

        try:
            response = await run_cancellable(client.send(http_request, stream=True), cancel)
        except httpx.HTTPError as e:
            raise UpstreamTransportError(f"Connection failed: {e}", retryable=True) from e

        if response.status_code != 200:
            # Body stays in the log; callers only see the status
            await response.aread()
            await response.aclose()
            logger.warning(f"{self.name} returned HTTP {response.status_code}: {response.text[:200]}")
            raise UpstreamTransportError(
                f"HTTP {response.status_code}",
                status_code=response.status_code,
                retryable=response.status_code >= 500,
            )

        if cancel.cancelled:
            await response.aclose()
            raise StreamCancelled("Stream cancelled")

        logger.debug(f"Stream opened for {self.name}")
        return OpenRouterStream(response, cancel)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
