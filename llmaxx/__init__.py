"""LLMAXX provider client core: queued, cancellable chat/generate/stream against model backends."""

from llmaxx.core.client import AIClient
from llmaxx.core.errors import (
    LlmaxxError,
    ProtocolError,
    ProviderError,
    ProviderTimeoutError,
    RequestCancelledError,
    TransportError,
    UnsupportedOperationError,
)
from llmaxx.core.types import ChatMessage, ChatResult, GenerationOptions, StatusResult, StreamChunk

__version__ = "1.0.0"

__all__ = [
    "AIClient",
    "ChatMessage",
    "ChatResult",
    "GenerationOptions",
    "StatusResult",
    "StreamChunk",
    "LlmaxxError",
    "ProviderError",
    "TransportError",
    "ProviderTimeoutError",
    "ProtocolError",
    "UnsupportedOperationError",
    "RequestCancelledError",
]
