"""Client facade: the programmatic surface the UI layer talks to.

send_message / generate_text / stream_message go through the RequestSerializer, so the
client has at most one request in flight against its providers. The active provider is
resolved when a request reaches the head of the queue, not when it is submitted.
check_status / get_models are liveness probes and bypass the queue; they never raise.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

import httpx

from llmaxx.core.errors import LlmaxxError
from llmaxx.core.registry import ProviderRegistry
from llmaxx.core.serializer import END_OF_STREAM, QueueEntry, RequestSerializer
from llmaxx.core.types import (
    ChatResult,
    GenerationOptions,
    MessagesInput,
    ModelInfo,
    Request,
    RequestKind,
    StatusResult,
    StreamChunk,
    normalize_messages,
)
from llmaxx.providers.base import BaseProvider

if TYPE_CHECKING:
    from llmaxx.config.loader import Config

logger = logging.getLogger(__name__)

OptionsInput = Optional[Union[GenerationOptions, dict[str, Any]]]


def _options(options: OptionsInput) -> GenerationOptions:
    if options is None:
        return GenerationOptions()
    if isinstance(options, GenerationOptions):
        return options
    return GenerationOptions.model_validate(options)


class AIClient:
    """Holds the providers, the active-provider selector and the request queue of one session."""

    def __init__(self, registry: ProviderRegistry, active_provider: str = "ollama") -> None:
        if not len(registry):
            raise ValueError("AIClient needs at least one provider")
        if active_provider not in registry:
            fallback = registry.names()[0]
            logger.warning("unknown active provider %s, using %s", active_provider, fallback)
            active_provider = fallback
        self._registry = registry
        self._active = active_provider
        self._serializer = RequestSerializer(self._dispatch)

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "AIClient":
        from llmaxx.providers.cloud import AnthropicProvider, GoogleProvider, OpenAIProvider
        from llmaxx.providers.ollama import OllamaProvider

        defaults = config.defaults.to_options()
        registry = ProviderRegistry()
        registry.register(
            OllamaProvider(
                config.ollama.base_url,
                timeout=config.ollama.timeout,
                status_timeout=config.ollama.status_timeout,
                pull_timeout=config.ollama.pull_timeout,
                defaults=defaults,
                transport=transport,
            )
        )
        registry.register(
            OpenAIProvider(
                config.openai.base_url,
                api_key=config.openai.api_key,
                timeout=config.openai.timeout,
                status_timeout=config.openai.status_timeout,
                defaults=defaults,
            )
        )
        for provider_cls, section in (
            (AnthropicProvider, config.anthropic),
            (GoogleProvider, config.google),
        ):
            registry.register(
                provider_cls(
                    section.base_url,
                    api_key=section.api_key,
                    timeout=section.timeout,
                    status_timeout=section.status_timeout,
                    defaults=defaults,
                    transport=transport,
                )
            )
        return cls(registry, active_provider=config.client.active_provider)

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def serializer(self) -> RequestSerializer:
        return self._serializer

    @property
    def active_provider(self) -> str:
        return self._active

    def set_active_provider(self, name: str) -> bool:
        if name not in self._registry:
            return False
        self._active = name
        logger.info("active provider set", extra={"provider": name})
        return True

    def get_provider(self, name: str | None = None) -> BaseProvider | None:
        return self._registry.get(name or self._active)

    # Liveness probes

    async def check_status(self, provider_name: str | None = None) -> StatusResult:
        name = provider_name or self._active
        provider = self._registry.get(name)
        if provider is None:
            return StatusResult(online=False, provider=name, error=f"Unknown provider: {name}")
        try:
            online = await provider.check_status()
            models = await provider.list_models() if online else []
        except Exception as e:
            logger.warning("check_status %s failed: %s", name, e)
            return StatusResult(
                online=False,
                provider=name,
                endpoint=provider.base_url,
                error=str(e) or type(e).__name__,
            )
        if not online:
            return StatusResult(
                online=False,
                provider=name,
                endpoint=provider.base_url,
                error=f"{name} is not reachable at {provider.base_url}",
            )
        return StatusResult(
            online=True,
            models=[m.name for m in models],
            provider=name,
            endpoint=provider.base_url,
        )

    async def get_models(self, provider_name: str | None = None) -> list[ModelInfo]:
        provider = self.get_provider(provider_name)
        if provider is None:
            return []
        return await provider.list_models()

    async def pull_model(self, model: str, provider_name: str | None = None) -> bool:
        provider = self.get_provider(provider_name)
        if provider is None:
            return False
        return await provider.pull_model(model)

    async def delete_model(self, model: str, provider_name: str | None = None) -> bool:
        provider = self.get_provider(provider_name)
        if provider is None:
            return False
        return await provider.delete_model(model)

    # Queued operations

    def send_message(
        self, messages: MessagesInput, options: OptionsInput = None
    ) -> asyncio.Future[ChatResult]:
        """Enqueue a chat request now; await the returned handle for the ChatResult."""
        request = Request(
            kind=RequestKind.CHAT, messages=normalize_messages(messages), options=_options(options)
        )
        return self._serializer.submit(request).future

    def generate_text(self, prompt: str, options: OptionsInput = None) -> asyncio.Future[ChatResult]:
        request = Request(kind=RequestKind.GENERATE, prompt=prompt, options=_options(options))
        return self._serializer.submit(request).future

    def stream_message(
        self, messages: MessagesInput, options: OptionsInput = None
    ) -> "ChunkStream":
        """Enqueue a streaming request now; iterate the result for chunks.

        The provider is read one chunk per iteration step. Closing the stream, or
        dropping it, before the end cancels the request. Errors raised mid-stream
        arrive after the chunks already delivered.
        """
        request = Request(
            kind=RequestKind.STREAM, messages=normalize_messages(messages), options=_options(options)
        )
        return ChunkStream(self._serializer.submit(request), self._abandon)

    def cancel_request(self) -> bool:
        """Cancel the executing request only. Queued requests are untouched. No-op when idle."""
        entry = self._serializer.executing
        if entry is None:
            return False
        return self._cancel_entry(entry)

    def _abandon(self, entry: QueueEntry) -> None:
        if entry.finished:
            return
        entry.abandon()
        if self._serializer.executing is entry:
            self._cancel_entry(entry)

    def _cancel_entry(self, entry: QueueEntry) -> bool:
        provider = self._registry.get(entry.provider_name) if entry.provider_name else None
        if provider is None:
            return False
        logger.debug("cancel request", extra={"index": entry.index, "provider": entry.provider_name})
        return provider.cancel()

    async def _dispatch(self, entry: QueueEntry) -> Any:
        name = self._active
        provider = self._registry.get(name)
        if provider is None:
            raise LlmaxxError(f"Unknown provider: {name}")
        entry.provider_name = name
        request = entry.request
        logger.debug("dispatch request", extra={"index": entry.index, "provider": name})
        if request.kind is RequestKind.CHAT:
            return await provider.chat(request.messages, request.options)
        if request.kind is RequestKind.GENERATE:
            return await provider.generate(request.prompt, request.options)
        stream = provider.stream(request.messages, request.options)
        try:
            while True:
                await entry.wait_for_demand()
                if entry.abandoned:
                    break
                try:
                    chunk = await stream.__anext__()
                except StopAsyncIteration:
                    break
                entry.chunks.put_nowait(chunk)
        finally:
            await stream.aclose()
        return None

    async def aclose(self) -> None:
        await self._serializer.close()
        for name in self._registry.names():
            await self._registry.get(name).aclose()


class ChunkStream:
    """Async iterator over one queued stream request.

    Each __anext__ asks the dispatcher for exactly one chunk. aclose(), or the
    iterator being garbage collected, abandons the request even if iteration
    never started.
    """

    def __init__(self, entry: QueueEntry, abandon: Callable[[QueueEntry], None]) -> None:
        self._entry = entry
        self._done = False
        self._finalizer = weakref.finalize(self, abandon, entry)
        self._finalizer.atexit = False

    @property
    def entry(self) -> QueueEntry:
        return self._entry

    def __aiter__(self) -> "ChunkStream":
        return self

    async def __anext__(self) -> StreamChunk:
        if self._done:
            raise StopAsyncIteration
        self._entry.request_chunk()
        item = await self._entry.chunks.get()
        if item is END_OF_STREAM:
            self._done = True
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            self._done = True
            raise item
        return item

    async def aclose(self) -> None:
        self._done = True
        self._finalizer()
