"""Ollama native API via httpx: /api/tags, /api/chat, /api/generate, /api/pull, /api/delete."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

import httpx

from llmaxx.core.cancellation import CancellationToken
from llmaxx.core.errors import ProtocolError
from llmaxx.core.types import ChatMessage, ChatResult, GenerationOptions, ModelInfo, StreamChunk
from llmaxx.providers.base import BaseProvider, Capability, guarded_bytes
from llmaxx.providers.streaming import decode_stream

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"


def _ollama_options(options: GenerationOptions) -> dict[str, Any]:
    """Ollama calls the output token limit num_predict. extra is passed through as-is."""
    out: dict[str, Any] = {}
    if options.temperature is not None:
        out["temperature"] = options.temperature
    if options.top_p is not None:
        out["top_p"] = options.top_p
    if options.max_tokens is not None:
        out["num_predict"] = options.max_tokens
    out.update(options.extra)
    return out


def _usage(data: dict[str, Any]) -> dict[str, Any] | None:
    if isinstance(data.get("usage"), dict):
        return data["usage"]
    prompt = data.get("prompt_eval_count")
    completion = data.get("eval_count")
    if not isinstance(prompt, int) and not isinstance(completion, int):
        return None
    prompt = prompt if isinstance(prompt, int) else 0
    completion = completion if isinstance(completion, int) else 0
    return {
        "prompt_tokens": prompt,
        "completion_tokens": completion,
        "total_tokens": prompt + completion,
    }


class OllamaProvider(BaseProvider):
    """Local model server. Every capability is implemented."""

    name = "ollama"
    capabilities = frozenset(Capability)

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        pull_timeout: float = 600.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(base_url or DEFAULT_BASE_URL, **kwargs)
        self._pull_timeout = pull_timeout

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    async def _probe(self) -> bool:
        async with self._client(self._status_timeout) as client:
            r = await client.get(self._url("/api/tags"))
        return r.is_success

    async def _list_models(self) -> list[ModelInfo]:
        with self._translate_errors():
            async with self._client() as client:
                r = await client.get(self._url("/api/tags"))
                r.raise_for_status()
                data = r.json()
        models = data.get("models") if isinstance(data, dict) else None
        out: list[ModelInfo] = []
        for item in models or []:
            if isinstance(item, dict) and item.get("name"):
                out.append(ModelInfo.model_validate(item))
        return out

    def _payload(self, options: GenerationOptions, stream: bool, **body: Any) -> dict[str, Any]:
        return {
            "model": options.model,
            **body,
            "stream": stream,
            "options": _ollama_options(options),
        }

    async def _post_json(self, path: str, payload: dict[str, Any], token: CancellationToken) -> dict[str, Any]:
        with self._translate_errors():
            async with self._client() as client:
                r = await token.run(client.post(self._url(path), json=payload))
                r.raise_for_status()
                data = r.json()
        if not isinstance(data, dict):
            raise ProtocolError(f"{self.name}: expected a JSON object from {path}", provider=self.name)
        if data.get("error"):
            raise ProtocolError(f"{self.name}: {data['error']}", provider=self.name)
        if data.get("done") is False:
            raise ProtocolError(
                f"{self.name}: backend reported an incomplete response", provider=self.name
            )
        return data

    def _text_field(self, data: dict[str, Any], key: str, what: str) -> str:
        value = data.get(key)
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ProtocolError(f"{self.name}: {what} is not text", provider=self.name)
        return value

    async def _chat(
        self, messages: list[ChatMessage], options: GenerationOptions, token: CancellationToken
    ) -> ChatResult:
        payload = self._payload(
            options, False, messages=[m.model_dump() for m in messages]
        )
        data = await self._post_json("/api/chat", payload, token)
        message = data.get("message")
        if not isinstance(message, dict):
            raise ProtocolError(f"{self.name}: chat response has no message", provider=self.name)
        return ChatResult(
            content=self._text_field(message, "content", "chat message content"),
            model=self._text_field(data, "model", "model name") or options.model or "",
            done=True,
            usage=_usage(data),
        )

    async def _generate(
        self, prompt: str, options: GenerationOptions, token: CancellationToken
    ) -> ChatResult:
        payload = self._payload(options, False, prompt=prompt)
        data = await self._post_json("/api/generate", payload, token)
        return ChatResult(
            content=self._text_field(data, "response", "generate response"),
            model=self._text_field(data, "model", "model name") or options.model or "",
            done=True,
            usage=_usage(data),
        )

    async def _stream(
        self, messages: list[ChatMessage], options: GenerationOptions, token: CancellationToken
    ) -> AsyncIterator[StreamChunk]:
        payload = self._payload(options, True, messages=[m.model_dump() for m in messages])
        with self._translate_errors():
            async with self._client() as client:
                request = client.build_request("POST", self._url("/api/chat"), json=payload)
                resp = await token.run(client.send(request, stream=True))
                try:
                    resp.raise_for_status()
                    async for chunk in decode_stream(
                        guarded_bytes(token, resp.aiter_bytes()), options.model or ""
                    ):
                        yield chunk
                finally:
                    await resp.aclose()

    async def _pull_model(self, name: str) -> bool:
        async with self._client(self._pull_timeout) as client:
            r = await client.post(self._url("/api/pull"), json={"name": name, "stream": False})
        if not r.is_success:
            logger.warning("ollama pull %s: HTTP %s", name, r.status_code)
        return r.is_success

    async def _delete_model(self, name: str) -> bool:
        async with self._client() as client:
            r = await client.request("DELETE", self._url("/api/delete"), json={"name": name})
        if not r.is_success:
            logger.warning("ollama delete %s: HTTP %s", name, r.status_code)
        return r.is_success
