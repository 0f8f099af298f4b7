"""Backend adapters: local Ollama server and cloud providers."""

from llmaxx.providers.base import BaseProvider, Capability
from llmaxx.providers.cloud import AnthropicProvider, GoogleProvider, OpenAIProvider
from llmaxx.providers.ollama import OllamaProvider
from llmaxx.providers.streaming import StreamDecoder, decode_stream

__all__ = [
    "BaseProvider",
    "Capability",
    "OllamaProvider",
    "OpenAIProvider",
    "AnthropicProvider",
    "GoogleProvider",
    "StreamDecoder",
    "decode_stream",
]
