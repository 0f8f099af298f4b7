"""Cloud providers. OpenAI through the official SDK; Anthropic and Google expose status and listing only."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, AsyncIterator, Iterator

import openai
from openai import AsyncOpenAI

from llmaxx.core.cancellation import CancellationToken
from llmaxx.core.errors import ProtocolError, ProviderTimeoutError, TransportError, UnsupportedOperationError
from llmaxx.core.types import ChatMessage, ChatResult, GenerationOptions, ModelInfo, StreamChunk
from llmaxx.providers.base import BaseProvider, Capability

logger = logging.getLogger(__name__)


class OpenAIProvider(BaseProvider):
    """OpenAI or compatible cloud. Without an API key it reports offline and refuses requests."""

    name = "openai"
    capabilities = frozenset(
        {Capability.STATUS, Capability.MODEL_LIST, Capability.CHAT, Capability.GENERATE, Capability.STREAM}
    )

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        *,
        api_key: str = "",
        **kwargs: Any,
    ) -> None:
        super().__init__(base_url, **kwargs)
        self._api_key = api_key
        self._sdk: AsyncOpenAI | None = None

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def aclose(self) -> None:
        if self._sdk is not None:
            await self._sdk.close()
            self._sdk = None

    def _openai(self, capability: Capability) -> AsyncOpenAI:
        if not self._api_key:
            raise UnsupportedOperationError(
                capability.value,
                provider=self.name,
                message=f"openai: no API key configured for {capability.value}",
            )
        if self._sdk is None:
            self._sdk = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self._timeout,
                max_retries=0,
            )
        return self._sdk

    @contextmanager
    def _translate_sdk_errors(self) -> Iterator[None]:
        try:
            yield
        except openai.APITimeoutError as e:
            raise ProviderTimeoutError(f"{self.name}: request timed out", provider=self.name) from e
        except openai.APIConnectionError as e:
            raise TransportError(f"{self.name}: {e}", provider=self.name) from e
        except openai.APIStatusError as e:
            raise TransportError(
                f"{self.name}: HTTP {e.status_code}: {e.message}",
                provider=self.name,
                status_code=e.status_code,
            ) from e

    async def _probe(self) -> bool:
        if not self.configured:
            return False
        with self._translate_sdk_errors():
            await self._openai(Capability.STATUS).models.list()
        return True

    async def _list_models(self) -> list[ModelInfo]:
        if not self.configured:
            return []
        with self._translate_sdk_errors():
            page = await self._openai(Capability.MODEL_LIST).models.list()
        return [ModelInfo(name=m.id) for m in page.data]

    def _params(self, options: GenerationOptions) -> dict[str, Any]:
        params: dict[str, Any] = {"model": options.model}
        if options.temperature is not None:
            params["temperature"] = options.temperature
        if options.top_p is not None:
            params["top_p"] = options.top_p
        if options.max_tokens is not None:
            params["max_tokens"] = options.max_tokens
        params.update(options.extra)
        return params

    async def _complete(
        self,
        messages: list[dict[str, str]],
        options: GenerationOptions,
        token: CancellationToken,
        capability: Capability,
    ) -> ChatResult:
        client = self._openai(capability)
        with self._translate_sdk_errors():
            resp = await token.run(
                client.chat.completions.create(messages=messages, **self._params(options))
            )
        if not resp.choices:
            raise ProtocolError(f"{self.name}: response has no choices", provider=self.name)
        choice = resp.choices[0]
        if choice.finish_reason is None:
            raise ProtocolError(f"{self.name}: backend reported an incomplete response", provider=self.name)
        usage = resp.usage.model_dump() if resp.usage is not None else None
        return ChatResult(
            content=choice.message.content or "",
            model=resp.model or options.model or "",
            done=True,
            usage=usage,
        )

    async def _chat(
        self, messages: list[ChatMessage], options: GenerationOptions, token: CancellationToken
    ) -> ChatResult:
        return await self._complete(
            [m.model_dump() for m in messages], options, token, Capability.CHAT
        )

    async def _generate(
        self, prompt: str, options: GenerationOptions, token: CancellationToken
    ) -> ChatResult:
        return await self._complete(
            [{"role": "user", "content": prompt}], options, token, Capability.GENERATE
        )

    async def _stream(
        self, messages: list[ChatMessage], options: GenerationOptions, token: CancellationToken
    ) -> AsyncIterator[StreamChunk]:
        client = self._openai(Capability.STREAM)
        model = options.model or ""
        with self._translate_sdk_errors():
            stream = await token.run(
                client.chat.completions.create(
                    messages=[m.model_dump() for m in messages],
                    stream=True,
                    **self._params(options),
                )
            )
            it = stream.__aiter__()
            try:
                while True:
                    chunk = await token.run(_next_or_none(it))
                    if chunk is None:
                        break
                    model = chunk.model or model
                    if not chunk.choices:
                        continue
                    choice = chunk.choices[0]
                    content = (choice.delta.content or "") if choice.delta else ""
                    if choice.finish_reason is not None:
                        yield StreamChunk(content=content, model=model, done=True)
                        return
                    if content:
                        yield StreamChunk(content=content, model=model, done=False)
            finally:
                await stream.close()
        raise ProtocolError("stream ended before the terminal frame", provider=self.name)


async def _next_or_none(it: AsyncIterator[Any]) -> Any:
    try:
        return await it.__anext__()
    except StopAsyncIteration:
        return None


class _KeyedCloudProvider(BaseProvider):
    """Cloud backend reachable with an API key. Chat, generate and stream are not implemented yet."""

    capabilities = frozenset({Capability.STATUS, Capability.MODEL_LIST})

    def __init__(self, base_url: str, *, api_key: str = "", **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)
        self._api_key = api_key

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _auth(self) -> tuple[dict[str, str], dict[str, str]]:
        """Headers and query params for an authenticated request."""
        raise NotImplementedError

    def _parse_models(self, data: dict[str, Any]) -> list[ModelInfo]:
        raise NotImplementedError

    async def _get_models(self, timeout: float | None = None) -> dict[str, Any]:
        headers, params = self._auth()
        with self._translate_errors(timeout):
            async with self._client(timeout) as client:
                r = await client.get(f"{self._base_url}/models", headers=headers, params=params)
                r.raise_for_status()
                data = r.json()
        if not isinstance(data, dict):
            raise ProtocolError(f"{self.name}: expected a JSON object", provider=self.name)
        return data

    async def _probe(self) -> bool:
        if not self.configured:
            return False
        await self._get_models(self._status_timeout)
        return True

    async def _list_models(self) -> list[ModelInfo]:
        if not self.configured:
            return []
        return self._parse_models(await self._get_models())


class AnthropicProvider(_KeyedCloudProvider):
    name = "anthropic"

    def __init__(self, base_url: str = "https://api.anthropic.com/v1", **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)

    def _auth(self) -> tuple[dict[str, str], dict[str, str]]:
        return {"x-api-key": self._api_key, "anthropic-version": "2023-06-01"}, {}

    def _parse_models(self, data: dict[str, Any]) -> list[ModelInfo]:
        return [
            ModelInfo(name=item["id"])
            for item in data.get("data") or []
            if isinstance(item, dict) and item.get("id")
        ]


class GoogleProvider(_KeyedCloudProvider):
    name = "google"

    def __init__(
        self, base_url: str = "https://generativelanguage.googleapis.com/v1", **kwargs: Any
    ) -> None:
        super().__init__(base_url, **kwargs)

    def _auth(self) -> tuple[dict[str, str], dict[str, str]]:
        return {}, {"key": self._api_key}

    def _parse_models(self, data: dict[str, Any]) -> list[ModelInfo]:
        out: list[ModelInfo] = []
        for item in data.get("models") or []:
            if isinstance(item, dict) and item.get("name"):
                # Google prefixes ids with "models/"
                out.append(ModelInfo(name=item["name"].removeprefix("models/")))
        return out
