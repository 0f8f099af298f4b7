"""Tests for the Ollama provider against an in-process mock transport."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from llmaxx.core.errors import (
    ProtocolError,
    ProviderTimeoutError,
    TransportError,
)
from llmaxx.core.types import ChatMessage, GenerationOptions
from llmaxx.providers.base import Capability
from llmaxx.providers.ollama import OllamaProvider

HELLO = {"message": {"role": "assistant", "content": "hello"}, "model": "x", "done": True}


def _json_handler(body, status=200, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=body)

    return handler


@pytest.mark.asyncio
async def test_chat_returns_content_model_done(make_ollama):
    seen: list[httpx.Request] = []
    provider = make_ollama(_json_handler(HELLO, seen=seen))
    result = await provider.chat([{"role": "user", "content": "hi"}])
    assert result.content == "hello"
    assert result.model == "x"
    assert result.done is True
    assert result.usage is None

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/api/chat"
    body = json.loads(request.content)
    assert body["messages"] == [{"role": "user", "content": "hi"}]
    assert body["stream"] is False
    assert body["model"] == "llama2"
    assert body["options"] == {"temperature": 0.7, "top_p": 0.9, "num_predict": 2048}


@pytest.mark.asyncio
async def test_string_message_becomes_user_message(make_ollama):
    seen: list[httpx.Request] = []
    provider = make_ollama(_json_handler(HELLO, seen=seen))
    await provider.chat("hi")
    assert json.loads(seen[0].content)["messages"] == [{"role": "user", "content": "hi"}]


@pytest.mark.asyncio
async def test_options_merge_field_by_field(make_ollama):
    seen: list[httpx.Request] = []
    provider = make_ollama(_json_handler(HELLO, seen=seen))
    await provider.chat(
        [ChatMessage(content="hi")],
        GenerationOptions(model="mistral", temperature=0.0, extra={"seed": 7}),
    )
    body = json.loads(seen[0].content)
    assert body["model"] == "mistral"
    assert body["options"] == {"temperature": 0.0, "top_p": 0.9, "num_predict": 2048, "seed": 7}


@pytest.mark.asyncio
async def test_provider_defaults_are_configurable(make_ollama):
    seen: list[httpx.Request] = []
    provider = make_ollama(
        _json_handler(HELLO, seen=seen),
        defaults=GenerationOptions(model="phi3", temperature=1.0, top_p=0.5, max_tokens=64),
    )
    await provider.chat("hi", {"max_tokens": 10})
    body = json.loads(seen[0].content)
    assert body["model"] == "phi3"
    assert body["options"] == {"temperature": 1.0, "top_p": 0.5, "num_predict": 10}


@pytest.mark.asyncio
async def test_generate_uses_response_field(make_ollama):
    seen: list[httpx.Request] = []
    body = {"response": "42", "model": "x", "done": True, "prompt_eval_count": 3, "eval_count": 2}
    provider = make_ollama(_json_handler(body, seen=seen))
    result = await provider.generate("answer?")
    assert result.content == "42"
    assert result.usage == {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5}
    assert seen[0].url.path == "/api/generate"
    assert json.loads(seen[0].content)["prompt"] == "answer?"


@pytest.mark.asyncio
async def test_missing_done_counts_as_complete(make_ollama):
    provider = make_ollama(_json_handler({"message": {"content": "ok"}, "model": "x"}))
    result = await provider.chat("hi")
    assert result.done is True


@pytest.mark.asyncio
async def test_explicit_done_false_is_protocol_error(make_ollama):
    provider = make_ollama(_json_handler({"message": {"content": "ha"}, "model": "x", "done": False}))
    with pytest.raises(ProtocolError, match="incomplete"):
        await provider.chat("hi")


@pytest.mark.asyncio
async def test_missing_message_is_protocol_error(make_ollama):
    provider = make_ollama(_json_handler({"model": "x", "done": True}))
    with pytest.raises(ProtocolError):
        await provider.chat("hi")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"message": {"content": 5}, "model": "x", "done": True},
        {"message": {"content": "ok"}, "model": ["x"], "done": True},
    ],
)
async def test_non_text_chat_fields_are_protocol_errors(make_ollama, body):
    provider = make_ollama(_json_handler(body))
    with pytest.raises(ProtocolError, match="not text"):
        await provider.chat("hi")


@pytest.mark.asyncio
async def test_non_text_generate_response_is_protocol_error(make_ollama):
    provider = make_ollama(_json_handler({"response": {"text": "42"}, "model": "x", "done": True}))
    with pytest.raises(ProtocolError, match="not text"):
        await provider.generate("answer?")


@pytest.mark.asyncio
async def test_invalid_json_is_protocol_error(make_ollama):
    provider = make_ollama(lambda request: httpx.Response(200, content=b"<html>oops"))
    with pytest.raises(ProtocolError):
        await provider.chat("hi")


@pytest.mark.asyncio
async def test_http_error_is_transport_error(make_ollama):
    provider = make_ollama(_json_handler({"error": "boom"}, status=500))
    with pytest.raises(TransportError) as exc_info:
        await provider.chat("hi")
    assert exc_info.value.status_code == 500
    assert exc_info.value.provider == "ollama"


@pytest.mark.asyncio
async def test_connection_refused_is_transport_error(make_ollama):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider = make_ollama(handler)
    with pytest.raises(TransportError, match="connection refused"):
        await provider.generate("hi")


@pytest.mark.asyncio
async def test_timeout_is_distinct_error(make_ollama):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    provider = make_ollama(handler, timeout=5.0)
    with pytest.raises(ProviderTimeoutError) as exc_info:
        await provider.chat("hi")
    assert isinstance(exc_info.value, TimeoutError)
    assert not isinstance(exc_info.value, TransportError)


@pytest.mark.asyncio
async def test_check_status_probes_tags_with_short_timeout(make_ollama):
    seen: list[httpx.Request] = []
    provider = make_ollama(_json_handler({"models": []}, seen=seen))
    assert await provider.check_status() is True
    assert seen[0].method == "GET"
    assert seen[0].url.path == "/api/tags"
    assert seen[0].extensions["timeout"]["read"] == provider.status_timeout
    assert provider.status_timeout < provider.timeout


@pytest.mark.asyncio
async def test_check_status_never_raises(make_ollama):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider = make_ollama(handler)
    assert await provider.check_status() is False
    assert await make_ollama(_json_handler({}, status=503)).check_status() is False


@pytest.mark.asyncio
async def test_list_models(make_ollama):
    body = {
        "models": [
            {"name": "llama2:latest", "size": 3825819519, "digest": "abc", "details": {"family": "llama"}},
            {"name": "mistral:7b", "quantization": "q4"},
            {"size": 1},
        ]
    }
    models = await make_ollama(_json_handler(body)).list_models()
    assert [m.name for m in models] == ["llama2:latest", "mistral:7b"]
    assert models[0].details == {"family": "llama"}


@pytest.mark.asyncio
async def test_list_models_absorbs_failures(make_ollama):
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    assert await make_ollama(handler).list_models() == []
    assert await make_ollama(_json_handler({"error": "x"}, status=500)).list_models() == []


@pytest.mark.asyncio
async def test_stream_three_lines(make_ollama, ndjson):
    raw = ndjson(
        {"message": {"content": "he"}, "model": "x", "done": False},
        {"message": {"content": "llo"}, "model": "x", "done": False},
        {"done": True},
    )
    seen: list[httpx.Request] = []

    async def body():
        yield raw[:7]
        yield raw[7:60]
        yield raw[60:]

    def handler(request):
        seen.append(request)
        return httpx.Response(200, content=body())

    provider = make_ollama(handler)
    chunks = [c async for c in provider.stream([{"role": "user", "content": "hi"}])]
    assert [c.content for c in chunks if c.content] == ["he", "llo"]
    assert chunks[-1].done is True
    assert sum(c.done for c in chunks) == 1
    assert json.loads(seen[0].content)["stream"] is True
    assert provider.cancellation.active is None


@pytest.mark.asyncio
async def test_stream_failure_keeps_delivered_chunks(make_ollama, ndjson):
    async def body():
        yield ndjson({"message": {"content": "par"}, "done": False})
        raise httpx.ReadError("connection reset")

    provider = make_ollama(lambda request: httpx.Response(200, content=body()))
    received = []
    with pytest.raises(TransportError, match="connection reset"):
        async for chunk in provider.stream("hi"):
            received.append(chunk.content)
    assert received == ["par"]


@pytest.mark.asyncio
async def test_stream_http_error(make_ollama):
    provider = make_ollama(_json_handler({"error": "model not found"}, status=404))
    with pytest.raises(TransportError) as exc_info:
        async for _ in provider.stream("hi"):
            pass
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_cancel_stream_after_first_chunk_ends_cleanly(make_ollama, ndjson):
    release = asyncio.Event()

    async def body():
        yield ndjson({"message": {"content": "one"}, "done": False})
        await release.wait()
        yield ndjson({"message": {"content": "two"}, "done": False}, {"done": True})

    provider = make_ollama(lambda request: httpx.Response(200, content=body()))
    received = []
    async for chunk in provider.stream("hi"):
        received.append(chunk.content)
        token = provider.cancellation.active
        assert provider.cancel() is True
    assert received == ["one"]
    assert token.cancelled is True
    assert provider.cancellation.active is None
    assert provider.cancel() is False


@pytest.mark.asyncio
async def test_cancel_single_shot_request(make_ollama):
    from llmaxx.core.errors import RequestCancelledError

    entered = asyncio.Event()

    async def handler(request):
        entered.set()
        await asyncio.sleep(10)
        return httpx.Response(200, json=HELLO)

    provider = make_ollama(handler)
    task = asyncio.create_task(provider.chat("hi"))
    await entered.wait()
    provider.cancel()
    with pytest.raises(RequestCancelledError):
        await task


@pytest.mark.asyncio
async def test_pull_and_delete_model(make_ollama):
    seen: list[httpx.Request] = []
    provider = make_ollama(_json_handler({"status": "success"}, seen=seen))
    assert await provider.pull_model("llama2") is True
    assert await provider.delete_model("llama2") is True
    assert (seen[0].method, seen[0].url.path) == ("POST", "/api/pull")
    assert json.loads(seen[0].content) == {"name": "llama2", "stream": False}
    assert (seen[1].method, seen[1].url.path) == ("DELETE", "/api/delete")
    assert json.loads(seen[1].content) == {"name": "llama2"}


@pytest.mark.asyncio
async def test_model_management_failures_return_false(make_ollama):
    assert await make_ollama(_json_handler({"error": "nope"}, status=404)).delete_model("x") is False

    def handler(request):
        raise httpx.ConnectError("down", request=request)

    assert await make_ollama(handler).pull_model("x") is False


def test_declares_every_capability():
    provider = OllamaProvider()
    assert all(provider.supports(c) for c in Capability)
    assert provider.base_url == "http://localhost:11434"
