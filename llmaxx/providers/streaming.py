"""Streaming contract for provider responses.

Ollama streams newline-delimited JSON: one object per line, each line a frame.
A frame may carry one token, several tokens or nothing (keep-alive). The frame with
``"done": true`` ends the stream whether or not it carries content.

- StreamDecoder: bytes -> frames (dicts). Output does not depend on how the bytes
  were split across reads; the trailing partial line stays buffered.
- decode_stream: frames -> StreamChunk. One chunk per frame with content, exactly
  one terminal chunk (done=True) at the end.
- Outbound contract: AsyncIterator[StreamChunk]; the client facade hands it to the caller.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator

from llmaxx.core.errors import ProtocolError
from llmaxx.core.types import StreamChunk

logger = logging.getLogger(__name__)


class StreamDecoder:
    """Incremental NDJSON decoder. Malformed lines are logged and skipped."""

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Text of the incomplete trailing line."""
        return self._buffer

    def feed(self, data: bytes) -> list[dict[str, Any]]:
        self._buffer += self._utf8.decode(data)
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return self._parse_lines(lines)

    def flush(self) -> list[dict[str, Any]]:
        """End of input: parse whatever is left in the buffer."""
        self._buffer += self._utf8.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        return self._parse_lines([rest])

    def _parse_lines(self, lines: list[str]) -> list[dict[str, Any]]:
        frames: list[dict[str, Any]] = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                frame = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("skipping malformed stream line", extra={"line": line[:200]})
                continue
            if not isinstance(frame, dict):
                logger.warning("skipping non-object stream frame", extra={"line": line[:200]})
                continue
            frames.append(frame)
        return frames


def frame_content(frame: dict[str, Any]) -> str:
    """Chat frames carry message.content, generate frames carry response."""
    message = frame.get("message")
    if isinstance(message, dict):
        content = message.get("content")
        return content if isinstance(content, str) else ""
    response = frame.get("response")
    return response if isinstance(response, str) else ""


async def decode_stream(
    source: AsyncIterable[bytes],
    default_model: str = "",
) -> AsyncIterator[StreamChunk]:
    """Yield StreamChunks from raw bytes until the terminal frame. Stops reading after it."""
    decoder = StreamDecoder()
    model = default_model

    def _chunks(frames: list[dict[str, Any]]) -> tuple[list[StreamChunk], bool]:
        nonlocal model
        out: list[StreamChunk] = []
        for frame in frames:
            if frame.get("error"):
                raise ProtocolError(f"Provider stream error: {frame['error']}")
            if isinstance(frame.get("model"), str) and frame["model"]:
                model = frame["model"]
            content = frame_content(frame)
            if frame.get("done") is True:
                out.append(StreamChunk(content=content, model=model, done=True))
                return out, True
            if content:
                out.append(StreamChunk(content=content, model=model, done=False))
        return out, False

    async for data in source:
        chunks, finished = _chunks(decoder.feed(data))
        for chunk in chunks:
            yield chunk
        if finished:
            return
    chunks, finished = _chunks(decoder.flush())
    for chunk in chunks:
        yield chunk
    if not finished:
        raise ProtocolError("stream ended before the terminal frame")
