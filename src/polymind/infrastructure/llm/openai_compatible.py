"""Adapters for vendors that speak the OpenAI chat-completions protocol.

OpenAI itself, DeepSeek, Qwen (DashScope compatible mode), Kimi (Moonshot)
and GLM (Zhipu) all accept the same payload and stream ``data:`` frames
terminated by ``[DONE]``; they differ in base URL, version segment and model
naming. The ``openai`` SDK handles the framing.
"""

import re
from collections.abc import AsyncIterator
from typing import Any

import httpx
import openai

from polymind.infrastructure.llm.base import BaseProviderAdapter
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

_VERSION_SUFFIX = re.compile(r"/v\d+[a-z]*$")
_REQUEST_PATHS = ("/chat/completions", "/completions")

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "content_filter": FinishReason.CONTENT_FILTER,
    "sensitive": FinishReason.CONTENT_FILTER,  # GLM
}


def normalize_endpoint(raw: str, version: str = "v1") -> str:
    """Coerce a user-entered endpoint into a base URL the SDK can extend.

    >>> normalize_endpoint("https://api.deepseek.com/chat/completions")
    'https://api.deepseek.com/v1'
    >>> normalize_endpoint("https://open.bigmodel.cn/api/paas/", "v4")
    'https://open.bigmodel.cn/api/paas/v4'
    """
    url = raw.strip().rstrip("/")
    for path in _REQUEST_PATHS:
        if url.endswith(path):
            url = url[: -len(path)].rstrip("/")
            break
    if not _VERSION_SUFFIX.search(url):
        url = f"{url}/{version}"
    return url


def map_finish_reason(value: str | None) -> FinishReason | None:
    if value is None:
        return None
    return _FINISH_REASONS.get(value, FinishReason.UNKNOWN)


def to_openai_message(message: CanonicalMessage) -> dict[str, Any]:
    data: dict[str, Any] = {"role": message.role.value}
    if isinstance(message.content, str):
        data["content"] = message.content
    else:
        data["content"] = [
            {"type": "image_url", "image_url": {"url": part.url, "detail": part.detail}}
            if isinstance(part, ImagePart)
            else {"type": "text", "text": part.text}
            for part in message.content
        ]
    if message.name:
        data["name"] = message.name
    return data


class OpenAICompatibleAdapter(BaseProviderAdapter):
    """Base for every chat-completions vendor."""

    api_version = "v1"
    # Prefixes that identify chat models in the vendor's /models listing
    model_prefixes: tuple[str, ...] = ()

    def __init__(
        self,
        credential: ProviderCredential,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(credential)
        self._http_client = http_client
        self._client: openai.AsyncOpenAI | None = None

    @property
    def endpoint(self) -> str:
        return normalize_endpoint(super().endpoint, self.api_version)

    def _get_client(self) -> openai.AsyncOpenAI:
        """Get or create the SDK client."""
        if self._client is None:
            # Retries are driven by the adapter, not the SDK
            self._client = openai.AsyncOpenAI(
                api_key=self.credential.api_key,
                base_url=self.endpoint,
                organization=self.credential.organization_id or None,
                timeout=self.credential.timeout,
                max_retries=0,
                http_client=self._http_client,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    def _build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [to_openai_message(m) for m in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_output_tokens,
        }
        if request.top_p is not None:
            payload["top_p"] = request.top_p
        if request.stop:
            payload["stop"] = request.stop
        return payload

    async def _send(self, request: GenerationRequest) -> GenerationResult:
        response = await self._get_client().chat.completions.create(
            **self._build_payload(request), stream=False
        )
        if not response.choices:
            raise ValueError("response has no choices")
        choice = response.choices[0]
        usage = response.usage
        return GenerationResult(
            id=response.id,
            created_at=response.created,
            model=response.model or request.model,
            message=CanonicalMessage(role=Role.ASSISTANT, content=choice.message.content or ""),
            finish_reason=map_finish_reason(choice.finish_reason) or FinishReason.UNKNOWN,
            usage=Usage.of(
                usage.prompt_tokens if usage else None,
                usage.completion_tokens if usage else None,
            ),
        )

    async def _iter_deltas(self, request: GenerationRequest) -> AsyncIterator[StreamDelta]:
        stream = await self._get_client().chat.completions.create(
            **self._build_payload(request), stream=True
        )
        async for chunk in stream:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            content = choice.delta.content if choice.delta else None
            yield StreamDelta(
                content=content or "",
                finish_reason=map_finish_reason(choice.finish_reason),
            )

    async def _probe(self) -> None:
        await self._get_client().models.list()

    async def _fetch_models(self) -> list[str]:
        page = await self._get_client().models.list()
        ids = [model.id for model in page.data]
        if self.model_prefixes:
            ids = [i for i in ids if i.startswith(self.model_prefixes)]
        return sorted(ids)

    def _translate_error(self, exc: Exception) -> PolymindError:
        if isinstance(exc, openai.APITimeoutError):
            return TransportError(
                f"{self.provider_name} request timed out after {self.credential.timeout:g}s",
                provider=self.provider_name,
            )
        if isinstance(exc, openai.APIConnectionError):
            return TransportError(
                f"Cannot connect to {self.provider_name} at {self.endpoint}; "
                "check the network and the endpoint setting",
                provider=self.provider_name,
            )
        if isinstance(exc, openai.APIStatusError):
            return self._vendor_error(exc.status_code, exc.body if exc.body else exc.message)
        return super()._translate_error(exc)


class OpenAIAdapter(OpenAICompatibleAdapter):
    provider_name = "openai"
    display_name = "OpenAI (GPT-4/3.5)"
    default_endpoint = "https://api.openai.com/v1"
    model_prefixes = ("gpt",)
    _default_model = "gpt-3.5-turbo"
    _supported_models = (
        "gpt-4",
        "gpt-4-turbo",
        "gpt-4o",
        "gpt-4o-mini",
        "gpt-3.5-turbo",
        "gpt-3.5-turbo-16k",
        "gpt-3.5-turbo-0125",
    )


class DeepSeekAdapter(OpenAICompatibleAdapter):
    provider_name = "deepseek"
    display_name = "DeepSeek (深度求索)"
    default_endpoint = "https://api.deepseek.com/v1"
    model_prefixes = ("deepseek",)
    _default_model = "deepseek-chat"
    _supported_models = ("deepseek-chat", "deepseek-reasoner")


class QwenAdapter(OpenAICompatibleAdapter):
    provider_name = "qwen"
    display_name = "阿里云 (通义千问)"
    default_endpoint = "https://dashscope.aliyuncs.com/compatible-mode/v1"
    model_prefixes = ("qwen",)
    _default_model = "qwen-plus"
    _supported_models = ("qwen-turbo", "qwen-plus", "qwen-max", "qwen-long")


class KimiAdapter(OpenAICompatibleAdapter):
    provider_name = "kimi"
    display_name = "Moonshot (Kimi)"
    default_endpoint = "https://api.moonshot.cn/v1"
    model_prefixes = ("moonshot", "kimi")
    _default_model = "moonshot-v1-8k"
    _supported_models = ("moonshot-v1-8k", "moonshot-v1-32k", "moonshot-v1-128k")


class GlmAdapter(OpenAICompatibleAdapter):
    provider_name = "glm"
    display_name = "智谱AI (GLM)"
    default_endpoint = "https://open.bigmodel.cn/api/paas/v4"
    api_version = "v4"
    model_prefixes = ("glm", "characterglm")
    _default_model = "glm-4"
    _supported_models = ("glm-4", "glm-4v", "glm-3-turbo", "characterglm")
