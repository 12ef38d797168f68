"""Canonical, vendor-neutral request/response types.

Every adapter converts to and from these at its boundary; nothing outside
``polymind.infrastructure.llm`` ever sees a vendor payload.
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Literal


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class FinishReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TextPart:
    text: str
    type: Literal["text"] = "text"


@dataclass(frozen=True)
class ImagePart:
    url: str
    detail: Literal["low", "high", "auto"] = "auto"
    type: Literal["image_url"] = "image_url"


ContentPart = TextPart | ImagePart


def part_to_dict(part: ContentPart) -> dict[str, str]:
    if isinstance(part, ImagePart):
        return {"type": part.type, "url": part.url, "detail": part.detail}
    return {"type": part.type, "text": part.text}


def part_from_dict(data: object) -> ContentPart | None:
    """Inverse of ``part_to_dict``; None for anything unrecognised."""
    if not isinstance(data, dict):
        return None
    if data.get("type") == "text" and isinstance(data.get("text"), str):
        return TextPart(data["text"])
    if data.get("type") == "image_url" and isinstance(data.get("url"), str):
        detail = data.get("detail")
        return ImagePart(data["url"], detail if detail in ("low", "high", "auto") else "auto")
    return None


@dataclass
class CanonicalMessage:
    """One turn in a conversation, either plain text or ordered parts."""

    role: Role
    content: str | list[ContentPart]
    name: str | None = None

    def __post_init__(self) -> None:
        self.role = Role(self.role)
        if isinstance(self.content, list) and not self.content:
            raise ValueError("structured message content must not be empty")

    @property
    def text(self) -> str:
        """Text content; image parts are ignored."""
        if isinstance(self.content, str):
            return self.content
        return "".join(part.text for part in self.content if isinstance(part, TextPart))

    def serialized_content(self) -> str:
        """Content as sent over the wire: the string itself, or the parts as JSON."""
        if isinstance(self.content, str):
            return self.content
        return json.dumps([part_to_dict(part) for part in self.content], ensure_ascii=False)

    def to_dict(self) -> dict[str, Any]:
        content: str | list[dict[str, str]]
        if isinstance(self.content, str):
            content = self.content
        else:
            content = [part_to_dict(part) for part in self.content]
        data: dict[str, Any] = {"role": self.role.value, "content": content}
        if self.name:
            data["name"] = self.name
        return data


@dataclass
class GenerationRequest:
    model: str
    messages: list[CanonicalMessage]
    temperature: float = 0.7
    max_output_tokens: int = 2048
    top_p: float | None = None
    stop: list[str] | None = None
    stream: bool = False

    def with_messages(self, messages: list[CanonicalMessage]) -> GenerationRequest:
        return replace(self, messages=messages)


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def of(cls, prompt_tokens: int | None, completion_tokens: int | None) -> Usage:
        p = prompt_tokens or 0
        c = completion_tokens or 0
        return cls(prompt_tokens=p, completion_tokens=c, total_tokens=p + c)


@dataclass
class GenerationResult:
    model: str
    message: CanonicalMessage
    finish_reason: FinishReason = FinishReason.STOP
    usage: Usage = field(default_factory=Usage)
    id: str = field(default_factory=lambda: f"gen-{uuid.uuid4().hex}")
    created_at: int = field(default_factory=lambda: int(time.time()))

    @property
    def content(self) -> str:
        return self.message.text


@dataclass(frozen=True)
class StreamDelta:
    content: str
    finish_reason: FinishReason | None = None


def _non_blank(value: str | None) -> str | None:
    return value.strip() if value and value.strip() else None


@dataclass(frozen=True)
class ProviderCredential:
    """Everything needed to talk to one vendor account.

    ``secret_key`` is only used by vendors with a client-credentials
    exchange (Wenxin).
    """

    api_key: str
    endpoint: str | None = None
    organization_id: str | None = None
    secret_key: str | None = None
    timeout: float = 60.0
    max_retries: int = 0

    def merged(self, override: CredentialOverride) -> ProviderCredential:
        """Non-blank override fields win; blank or whitespace ones keep the default."""
        return replace(
            self,
            api_key=_non_blank(override.api_key) or self.api_key,
            endpoint=_non_blank(override.endpoint) or self.endpoint,
            organization_id=_non_blank(override.organization_id) or self.organization_id,
            secret_key=_non_blank(override.secret_key) or self.secret_key,
        )


@dataclass(frozen=True)
class CredentialOverride:
    """Caller-supplied credential fields, e.g. from an agent's own settings."""

    api_key: str | None = None
    endpoint: str | None = None
    organization_id: str | None = None
    secret_key: str | None = None

    @property
    def is_blank(self) -> bool:
        return not any(
            (value or "").strip()
            for value in (self.api_key, self.endpoint, self.organization_id, self.secret_key)
        )


OnDelta = Callable[[StreamDelta], Awaitable[None]]
OnComplete = Callable[[str], Awaitable[None]]
OnError = Callable[[Exception], Awaitable[None]]


@dataclass
class StreamCallbacks:
    """Receivers for a streamed generation.

    ``on_delta`` fires zero or more times, then exactly one of
    ``on_complete`` (with the full text) or ``on_error``.
    """

    on_delta: OnDelta
    on_complete: OnComplete
    on_error: OnError
