"""
Stream Providers

Abstract streaming client with the OpenRouter implementation and a scripted
mock for dry runs.
"""

from .base import (
    CancellationHandle,
    StreamProvider,
    StreamRequest,
    UpstreamStream,
    run_cancellable,
)
from .openrouter import OpenRouterStream, OpenRouterStreamProvider
from .mock import MockStream, MockStreamProvider

__all__ = [
    # Base
    "CancellationHandle",
    "StreamProvider",
    "StreamRequest",
    "UpstreamStream",
    "run_cancellable",
    # Providers
    "OpenRouterStream",
    "OpenRouterStreamProvider",
    "MockStream",
    "MockStreamProvider",
]
