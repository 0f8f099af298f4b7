"""Request/result payloads shared by providers, the queue and the client. All are Pydantic models."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field


class RequestKind(str, Enum):
    CHAT = "chat"
    GENERATE = "generate"
    STREAM = "stream"


class ChatMessage(BaseModel):
    """One role-tagged message (system | user | assistant)."""

    model_config = ConfigDict(frozen=True)

    role: str = "user"
    content: str = ""


MessagesInput = Union[str, Sequence[Union[ChatMessage, dict[str, Any]]]]


def normalize_messages(messages: MessagesInput) -> list[ChatMessage]:
    """A bare string becomes a single user message; dicts are validated."""
    if isinstance(messages, str):
        return [ChatMessage(role="user", content=messages)]
    out: list[ChatMessage] = []
    for m in messages:
        out.append(m if isinstance(m, ChatMessage) else ChatMessage.model_validate(m))
    return out


class GenerationOptions(BaseModel):
    """Sampling options. None means 'use the provider default'."""

    model_config = ConfigDict(frozen=True)

    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    extra: dict[str, Any] = Field(
        default_factory=dict, description="Backend-specific options passed through verbatim"
    )

    def merged_with(self, defaults: "GenerationOptions") -> "GenerationOptions":
        """Field-by-field merge: every value set here wins, the rest comes from defaults."""
        data = defaults.model_dump()
        for key, value in self.model_dump(exclude={"extra"}).items():
            if value is not None:
                data[key] = value
        data["extra"] = {**defaults.extra, **self.extra}
        return GenerationOptions(**data)


class Request(BaseModel):
    """What a caller submits. Never mutated after enqueue."""

    model_config = ConfigDict(frozen=True)

    kind: RequestKind
    messages: list[ChatMessage] = Field(default_factory=list)
    prompt: str = ""
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class ChatResult(BaseModel):
    """Result of a single-shot chat or generate call."""

    content: str = ""
    model: str = ""
    done: bool = True
    usage: Optional[dict[str, Any]] = None


class StreamChunk(BaseModel):
    """One decoded unit of streamed output. done=True marks the terminal chunk."""

    content: str = ""
    model: str = ""
    done: bool = False


class ModelInfo(BaseModel):
    """Model descriptor as reported by a backend. Unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    name: str
    size: Optional[int] = None
    digest: Optional[str] = None
    modified_at: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


class StatusResult(BaseModel):
    """Liveness probe result. Recomputed on every call."""

    online: bool = False
    models: list[str] = Field(default_factory=list)
    provider: str = ""
    endpoint: str = ""
    error: Optional[str] = None
