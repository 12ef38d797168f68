"""Anthropic Claude adapter.

Claude takes the system prompt as a top-level field and only accepts
``user``/``assistant`` turns, so the canonical message list is reshaped
before every call.
"""

from collections.abc import AsyncIterator
from typing import Any

import anthropic
import httpx

from polymind.infrastructure.llm.base import BaseProviderAdapter, alternating_turns, split_system
from polymind.infrastructure.llm.types import (
    CanonicalMessage,
    FinishReason,
    GenerationRequest,
    GenerationResult,
    ImagePart,
    ProviderCredential,
    Role,
    StreamDelta,
    Usage,
)
from polymind.shared.exceptions import PolymindError, TransportError

ANTHROPIC_VERSION = "2023-06-01"

_STOP_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "tool_use": FinishReason.TOOL_CALLS,
    "refusal": FinishReason.CONTENT_FILTER,
}


def map_stop_reason(value: str | None) -> FinishReason | None:
    if value is None:
        return None
    return _STOP_REASONS.get(value, FinishReason.UNKNOWN)


def _content_blocks(message: CanonicalMessage) -> list[dict[str, Any]]:
    if isinstance(message.content, str):
        return [{"type": "text", "text": message.content}]
    return [
        {"type": "image", "source": {"type": "url", "url": part.url}}
        if isinstance(part, ImagePart)
        else {"type": "text", "text": part.text}
        for part in message.content
    ]


def to_claude_messages(messages: list[CanonicalMessage]) -> list[dict[str, Any]]:
    """Alternating user/assistant turns starting with user, same-role turns merged."""
    return [
        {
            "role": "assistant" if role == Role.ASSISTANT else "user",
            "content": [block for message in turn for block in _content_blocks(message)],
        }
        for role, turn in alternating_turns(messages)
    ]


class ClaudeAdapter(BaseProviderAdapter):
    provider_name = "claude"
    display_name = "Anthropic (Claude)"
    default_endpoint = "https://api.anthropic.com"
    _default_model = "claude-sonnet-4-20250514"
    _supported_models = (
        "claude-opus-4-20250514",
        "claude-sonnet-4-20250514",
        "claude-haiku-3-20250514",
        "claude-opus-3-20250219",
        "claude-sonnet-3-20240229",
        "claude-haiku-3-20240307",
    )

    def __init__(
        self,
        credential: ProviderCredential,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(credential)
        self._http_client = http_client
        self._client: anthropic.AsyncAnthropic | None = None

    @property
    def endpoint(self) -> str:
        # The SDK appends /v1/messages itself
        url = super().endpoint
        for suffix in ("/v1/messages", "/v1"):
            if url.endswith(suffix):
                return url[: -len(suffix)]
        return url

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self.credential.api_key,
                base_url=self.endpoint,
                timeout=self.credential.timeout,
                max_retries=0,
                default_headers={"anthropic-version": ANTHROPIC_VERSION},
                http_client=self._http_client,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    def _build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        system, rest = split_system(request.messages)
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": to_claude_messages(rest),
            "max_tokens": request.max_output_tokens,
            "temperature": request.temperature,
        }
        if system:
            payload["system"] = system
        if request.top_p is not None:
            payload["top_p"] = request.top_p
        if request.stop:
            payload["stop_sequences"] = request.stop
        return payload

    async def _send(self, request: GenerationRequest) -> GenerationResult:
        response = await self._get_client().messages.create(**self._build_payload(request))
        text = "".join(block.text for block in response.content if block.type == "text")
        return GenerationResult(
            id=response.id,
            model=response.model or request.model,
            message=CanonicalMessage(role=Role.ASSISTANT, content=text),
            finish_reason=map_stop_reason(response.stop_reason) or FinishReason.UNKNOWN,
            usage=Usage.of(response.usage.input_tokens, response.usage.output_tokens),
        )

    async def _iter_deltas(self, request: GenerationRequest) -> AsyncIterator[StreamDelta]:
        stream = await self._get_client().messages.create(
            **self._build_payload(request), stream=True
        )
        async for event in stream:
            if event.type == "content_block_delta" and event.delta.type == "text_delta":
                yield StreamDelta(content=event.delta.text)
            elif event.type == "message_delta":
                reason = map_stop_reason(event.delta.stop_reason)
                if reason is not None:
                    yield StreamDelta(content="", finish_reason=reason)

    async def _probe(self) -> None:
        await self._get_client().models.list(limit=1)

    async def _fetch_models(self) -> list[str]:
        page = await self._get_client().models.list(limit=100)
        return [model.id for model in page.data if model.id.startswith("claude")]

    def _translate_error(self, exc: Exception) -> PolymindError:
        if isinstance(exc, anthropic.APITimeoutError):
            return TransportError(
                f"claude request timed out after {self.credential.timeout:g}s",
                provider=self.provider_name,
            )
        if isinstance(exc, anthropic.APIConnectionError):
            return TransportError(
                f"Cannot connect to claude at {self.endpoint}; "
                "check the network and the endpoint setting",
                provider=self.provider_name,
            )
        if isinstance(exc, anthropic.APIStatusError):
            return self._vendor_error(exc.status_code, exc.body if exc.body else exc.message)
        return super()._translate_error(exc)
