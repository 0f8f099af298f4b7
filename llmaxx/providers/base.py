"""Base provider: closed capability set, option defaults, cancellation and httpx error mapping.

Every provider exposes the same operations. An operation outside the provider's declared
capabilities raises UnsupportedOperationError instead of failing with a missing method.
check_status() and list_models() never raise: they are liveness probes.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Iterator

import httpx

from llmaxx.core.cancellation import CancellationController, CancellationToken
from llmaxx.core.errors import (
    ProtocolError,
    ProviderTimeoutError,
    RequestCancelledError,
    TransportError,
    UnsupportedOperationError,
)
from llmaxx.core.types import (
    ChatMessage,
    ChatResult,
    GenerationOptions,
    MessagesInput,
    ModelInfo,
    StreamChunk,
    normalize_messages,
)

logger = logging.getLogger(__name__)

DEFAULT_OPTIONS = GenerationOptions(model="llama2", temperature=0.7, top_p=0.9, max_tokens=2048)


class Capability(str, Enum):
    STATUS = "status"
    MODEL_LIST = "model-list"
    CHAT = "chat"
    GENERATE = "generate"
    STREAM = "stream"
    MODEL_MANAGE = "model-manage"


async def _read_next(it: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await it.__anext__()
    except StopAsyncIteration:
        return None


async def guarded_bytes(token: CancellationToken, source: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    """Re-yield source, running each read through the token so cancel() interrupts a pending read."""
    it = source.__aiter__()
    while True:
        data = await token.run(_read_next(it))
        if data is None:
            return
        yield data


class BaseProvider:
    """One backend. Immutable configuration; owns its own cancellation state."""

    name: str = "base"
    capabilities: frozenset[Capability] = frozenset()

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        status_timeout: float = 3.0,
        defaults: GenerationOptions | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._timeout = timeout
        self._status_timeout = min(status_timeout, timeout)
        self._defaults = defaults or DEFAULT_OPTIONS
        self._transport = transport
        self._cancellation = CancellationController()

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def status_timeout(self) -> float:
        return self._status_timeout

    @property
    def defaults(self) -> GenerationOptions:
        return self._defaults

    @property
    def cancellation(self) -> CancellationController:
        return self._cancellation

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def _require(self, capability: Capability) -> None:
        if not self.supports(capability):
            raise UnsupportedOperationError(capability.value, provider=self.name)

    def resolve_options(self, options: GenerationOptions | dict[str, Any] | None) -> GenerationOptions:
        if options is None:
            return self._defaults
        if isinstance(options, dict):
            options = GenerationOptions.model_validate(options)
        return options.merged_with(self._defaults)

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout if timeout is None else timeout,
            transport=self._transport,
        )

    @contextmanager
    def _translate_errors(self, timeout: float | None = None) -> Iterator[None]:
        """Map httpx failures onto the provider error taxonomy. timeout is the deadline the call used."""
        try:
            yield
        except httpx.TimeoutException as e:
            deadline = self._timeout if timeout is None else timeout
            raise ProviderTimeoutError(
                f"{self.name}: request timed out after {deadline:g}s", provider=self.name
            ) from e
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            raise TransportError(
                f"{self.name}: HTTP {code}: {e.response.reason_phrase}",
                provider=self.name,
                status_code=code,
            ) from e
        except httpx.RequestError as e:
            raise TransportError(f"{self.name}: {e or type(e).__name__}", provider=self.name) from e
        except ValueError as e:
            raise ProtocolError(f"{self.name}: invalid JSON response: {e}", provider=self.name) from e

    # Liveness probes: never raise.

    async def check_status(self) -> bool:
        if not self.supports(Capability.STATUS):
            return False
        try:
            return await self._probe()
        except Exception as e:
            logger.debug("%s status probe failed: %s", self.name, e)
            return False

    async def list_models(self) -> list[ModelInfo]:
        if not self.supports(Capability.MODEL_LIST):
            return []
        try:
            return await self._list_models()
        except Exception as e:
            logger.warning("%s list_models failed: %s", self.name, e)
            return []

    # Request operations: typed errors propagate.

    async def chat(
        self,
        messages: MessagesInput,
        options: GenerationOptions | dict[str, Any] | None = None,
    ) -> ChatResult:
        self._require(Capability.CHAT)
        msgs = normalize_messages(messages)
        opts = self.resolve_options(options)
        with self._cancellation.attempt() as token:
            return await self._chat(msgs, opts, token)

    async def generate(
        self,
        prompt: str,
        options: GenerationOptions | dict[str, Any] | None = None,
    ) -> ChatResult:
        self._require(Capability.GENERATE)
        opts = self.resolve_options(options)
        with self._cancellation.attempt() as token:
            return await self._generate(prompt, opts, token)

    async def stream(
        self,
        messages: MessagesInput,
        options: GenerationOptions | dict[str, Any] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Lazy, finite, non-restartable. Cancellation ends iteration without an error."""
        self._require(Capability.STREAM)
        msgs = normalize_messages(messages)
        opts = self.resolve_options(options)
        with self._cancellation.attempt() as token:
            source = self._stream(msgs, opts, token)
            try:
                async for chunk in source:
                    yield chunk
                    # Chunks decoded from one read must not leak out after cancel().
                    if token.cancelled:
                        break
            except RequestCancelledError:
                logger.debug("%s stream cancelled", self.name)
            finally:
                await source.aclose()

    def cancel(self) -> bool:
        return self._cancellation.cancel()

    async def aclose(self) -> None:
        """Release long-lived resources. httpx clients here are per call, so nothing by default."""

    async def pull_model(self, name: str) -> bool:
        self._require(Capability.MODEL_MANAGE)
        try:
            return await self._pull_model(name)
        except Exception as e:
            logger.warning("%s pull_model %s failed: %s", self.name, name, e)
            return False

    async def delete_model(self, name: str) -> bool:
        self._require(Capability.MODEL_MANAGE)
        try:
            return await self._delete_model(name)
        except Exception as e:
            logger.warning("%s delete_model %s failed: %s", self.name, name, e)
            return False

    # Backend hooks. Defaults report the capability as unsupported.

    async def _probe(self) -> bool:
        raise UnsupportedOperationError(Capability.STATUS.value, provider=self.name)

    async def _list_models(self) -> list[ModelInfo]:
        raise UnsupportedOperationError(Capability.MODEL_LIST.value, provider=self.name)

    async def _chat(
        self, messages: list[ChatMessage], options: GenerationOptions, token: CancellationToken
    ) -> ChatResult:
        raise UnsupportedOperationError(Capability.CHAT.value, provider=self.name)

    async def _generate(
        self, prompt: str, options: GenerationOptions, token: CancellationToken
    ) -> ChatResult:
        raise UnsupportedOperationError(Capability.GENERATE.value, provider=self.name)

    def _stream(
        self, messages: list[ChatMessage], options: GenerationOptions, token: CancellationToken
    ) -> AsyncIterator[StreamChunk]:
        raise UnsupportedOperationError(Capability.STREAM.value, provider=self.name)

    async def _pull_model(self, name: str) -> bool:
        raise UnsupportedOperationError(Capability.MODEL_MANAGE.value, provider=self.name)

    async def _delete_model(self, name: str) -> bool:
        raise UnsupportedOperationError(Capability.MODEL_MANAGE.value, provider=self.name)
