"""Baidu Wenxin (ERNIE) adapter.

Baidu authenticates with an API key / secret key pair that is exchanged at
``/oauth/2.0/token`` for an access token valid for about 30 days. The token
is cached per adapter and refreshed by a single in-flight exchange that all
concurrent callers wait on.

Chat responses come back with HTTP 200 even on failure; errors are signalled
by ``error_code``/``error_msg`` in the body. Streamed frames carry an
``is_end`` flag on the last one.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx

from polymind.infrastructure.llm.base import HTTPProviderAdapter, alternating_turns, split_system
from polymind.infrastructure.llm.streaming import iter_json_frames
from polymind.infrastructure.llm.types import (
    CanonicalMessage,
    FinishReason,
    GenerationRequest,
    GenerationResult,
    ProviderCredential,
    Role,
    StreamDelta,
    Usage,
)
from polymind.shared.exceptions import ConfigurationError, VendorError
from polymind.shared.logging import get_logger

logger = get_logger(__name__)

# Refresh this many seconds before the vendor-reported expiry
TOKEN_EXPIRY_MARGIN_SECONDS = 300

# Access token invalid / expired
_TOKEN_ERROR_CODES = {110, 111}

# Public model names -> chat endpoint path segment
MODEL_PATHS = {
    "ernie-bot-4": "completions_pro",
    "ernie-bot": "completions",
    "ernie-bot-turbo": "eb-instant",
    "ernie-speed-8k": "ernie_speed",
    "ernie-speed-128k": "ernie-speed-128k",
    "ernie-lite-8k": "ernie-lite-8k",
    "ernie-lite-128k": "ernie-lite-128k",
}

_FINISH_REASONS = {
    "normal": FinishReason.STOP,
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
    "function_call": FinishReason.TOOL_CALLS,
}


def to_wenxin_messages(messages: list[CanonicalMessage]) -> list[dict[str, str]]:
    """Wenxin needs strictly alternating user/assistant turns starting with user."""
    return [
        {
            "role": "assistant" if role == Role.ASSISTANT else "user",
            "content": "\n\n".join(message.text for message in turn),
        }
        for role, turn in alternating_turns(messages)
    ]


class WenxinAdapter(HTTPProviderAdapter):
    provider_name = "wenxin"
    display_name = "百度 (文心一言)"
    default_endpoint = "https://aip.baidubce.com"
    _default_model = "ernie-bot-4"
    _supported_models = tuple(MODEL_PATHS)

    def __init__(
        self,
        credential: ProviderCredential,
        *,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(credential, http_client=http_client)
        self._clock = clock
        self._access_token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    @property
    def endpoint(self) -> str:
        # Older agent records stored the secret key in the endpoint column
        raw = self.credential.endpoint or ""
        if raw.startswith(("http://", "https://")):
            return raw.rstrip("/")
        return self.default_endpoint

    @property
    def secret_key(self) -> str:
        if self.credential.secret_key:
            return self.credential.secret_key
        raw = self.credential.endpoint or ""
        if raw and not raw.startswith(("http://", "https://")):
            return raw
        return ""

    # ----- OAuth token cache -----

    def _token_is_fresh(self) -> bool:
        return self._access_token is not None and self._clock() < self._token_expires_at

    def invalidate_token(self) -> None:
        self._access_token = None
        self._token_expires_at = 0.0

    async def get_access_token(self) -> str:
        """Return a cached token, exchanging credentials if it expired."""
        if self._token_is_fresh():
            return self._access_token  # type: ignore[return-value]
        async with self._token_lock:
            # Another caller may have refreshed while we waited
            if self._token_is_fresh():
                return self._access_token  # type: ignore[return-value]
            token, expires_in = await self._exchange_token()
            self._access_token = token
            self._token_expires_at = self._clock() + max(
                expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0
            )
            logger.debug("wenxin_token_refreshed", expires_in=expires_in)
            return token

    async def _exchange_token(self) -> tuple[str, int]:
        if not self.credential.api_key or not self.secret_key:
            raise ConfigurationError(
                "Wenxin needs both an API key and a secret key",
                details={"provider": self.provider_name},
            )
        client = await self._get_client()
        response = await client.post(
            f"{self.endpoint}/oauth/2.0/token",
            params={
                "grant_type": "client_credentials",
                "client_id": self.credential.api_key,
                "client_secret": self.secret_key,
            },
        )
        await self._raise_for_status(response)
        body = response.json()
        token = body.get("access_token")
        if not token:
            detail = body.get("error_description") or body.get("error") or "no access_token"
            raise VendorError(
                f"wenxin token exchange failed: {detail}", provider=self.provider_name
            )
        return token, int(body.get("expires_in", 0))

    # ----- chat -----

    def _chat_url(self, model: str) -> str:
        path = MODEL_PATHS.get(model, model)
        return f"{self.endpoint}/rpc/2.0/ai_custom/v1/wenxinworkshop/chat/{path}"

    def _build_payload(self, request: GenerationRequest, stream: bool) -> dict[str, Any]:
        system, rest = split_system(request.messages)
        payload: dict[str, Any] = {
            "messages": to_wenxin_messages(rest),
            # Baidu rejects 0 and anything above 1
            "temperature": min(max(request.temperature, 0.01), 1.0),
            "max_output_tokens": request.max_output_tokens,
            "stream": stream,
        }
        if system:
            payload["system"] = system
        if request.top_p is not None:
            payload["top_p"] = request.top_p
        if request.stop:
            payload["stop"] = request.stop
        return payload

    def _check_body(self, body: dict[str, Any]) -> None:
        code = body.get("error_code")
        if code is None:
            return
        if code in _TOKEN_ERROR_CODES:
            self.invalidate_token()
        raise VendorError(
            f"wenxin API error ({code}): {body.get('error_msg') or 'unknown error'}",
            provider=self.provider_name,
            details={"error_code": code},
        )

    async def _send(self, request: GenerationRequest) -> GenerationResult:
        token = await self.get_access_token()
        client = await self._get_client()
        response = await client.post(
            self._chat_url(request.model),
            params={"access_token": token},
            json=self._build_payload(request, stream=False),
        )
        await self._raise_for_status(response)
        body = response.json()
        self._check_body(body)
        usage = body.get("usage") or {}
        kwargs: dict[str, Any] = {}
        if body.get("id"):
            kwargs["id"] = body["id"]
        if body.get("created"):
            kwargs["created_at"] = body["created"]
        return GenerationResult(
            model=request.model,
            message=CanonicalMessage(role=Role.ASSISTANT, content=body.get("result") or ""),
            finish_reason=_FINISH_REASONS.get(body.get("finish_reason") or "normal", FinishReason.UNKNOWN),
            usage=Usage.of(usage.get("prompt_tokens"), usage.get("completion_tokens")),
            **kwargs,
        )

    async def _iter_deltas(self, request: GenerationRequest) -> AsyncIterator[StreamDelta]:
        token = await self.get_access_token()
        client = await self._get_client()
        async with client.stream(
            "POST",
            self._chat_url(request.model),
            params={"access_token": token},
            json=self._build_payload(request, stream=True),
        ) as response:
            await self._raise_for_status(response)
            async for frame in iter_json_frames(response.aiter_lines()):
                self._check_body(frame)
                if frame.get("is_end"):
                    yield StreamDelta(
                        content=frame.get("result") or "",
                        finish_reason=_FINISH_REASONS.get(
                            frame.get("finish_reason") or "normal", FinishReason.UNKNOWN
                        ),
                    )
                    return
                yield StreamDelta(content=frame.get("result") or "")

    async def _probe(self) -> None:
        self.invalidate_token()
        await self.get_access_token()
