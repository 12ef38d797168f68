"""Provider adapter contract and the behaviour shared by every vendor.

Subclasses only translate: canonical request -> vendor call and vendor
response/frames -> canonical result/deltas. The terminal-event discipline
of streaming, retries and error conversion live here.
"""

import asyncio
import json
import math
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from typing import Any, Protocol, runtime_checkable

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from polymind.infrastructure.llm.types import (
    CanonicalMessage,
    FinishReason,
    GenerationRequest,
    GenerationResult,
    ProviderCredential,
    Role,
    StreamCallbacks,
    StreamDelta,
)
from polymind.shared.exceptions import PolymindError, TransportError, VendorError
from polymind.shared.logging import get_logger, scrub

logger = get_logger(__name__)


@runtime_checkable
class ProviderAdapter(Protocol):
    """Capability set every vendor adapter offers."""

    provider_name: str
    credential: ProviderCredential

    @property
    def default_model(self) -> str: ...

    @property
    def supported_models(self) -> tuple[str, ...]: ...

    async def send_message(self, request: GenerationRequest) -> GenerationResult: ...

    async def stream_message(
        self,
        request: GenerationRequest,
        callbacks: StreamCallbacks,
        *,
        cancellation: asyncio.Event | None = None,
    ) -> str | None: ...

    async def validate_credential(self) -> bool: ...

    async def list_models(self) -> list[str]: ...

    def estimate_token_count(self, messages: Iterable[CanonicalMessage]) -> int: ...

    async def aclose(self) -> None: ...


def estimate_token_count(messages: Iterable[CanonicalMessage]) -> int:
    """Rough token estimate: one token per four characters, rounded up.

    Structured content is counted as its JSON form.
    """
    total_chars = sum(len(message.serialized_content()) for message in messages)
    return math.ceil(total_chars / 4)


def split_system(
    messages: Iterable[CanonicalMessage],
) -> tuple[str | None, list[CanonicalMessage]]:
    """Separate system messages for vendors that want them hoisted."""
    system_parts: list[str] = []
    rest: list[CanonicalMessage] = []
    for message in messages:
        if message.role == Role.SYSTEM:
            if message.text:
                system_parts.append(message.text)
        else:
            rest.append(message)
    return ("\n\n".join(system_parts) or None), rest


def alternating_turns(
    messages: Iterable[CanonicalMessage],
) -> list[tuple[Role, list[CanonicalMessage]]]:
    """Group messages, system prompt already split off, into user/assistant turns.

    The result starts with a user turn and alternates: leading assistant
    messages are dropped and adjacent messages of the same role share a
    turn. Any non-assistant role counts as user.
    """
    turns: list[tuple[Role, list[CanonicalMessage]]] = []
    for message in messages:
        role = Role.ASSISTANT if message.role == Role.ASSISTANT else Role.USER
        if not turns and role == Role.ASSISTANT:
            continue
        if turns and turns[-1][0] == role:
            turns[-1][1].append(message)
        else:
            turns.append((role, [message]))
    return turns


async def _close_iterator(iterator: AsyncIterator[Any]) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()


def extract_error_message(body: Any) -> str | None:
    """Find the human message in the assorted vendor error envelopes."""
    if isinstance(body, (bytes, str)):
        try:
            body = json.loads(body)
        except ValueError:
            text = body.decode(errors="replace") if isinstance(body, bytes) else body
            return text.strip()[:500] or None
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("message") or error.get("code")
    if isinstance(error, str):
        return error
    # Baidu: {"error_code": 17, "error_msg": "..."}
    return body.get("error_msg") or body.get("message")


class BaseProviderAdapter(ABC):
    """Shared implementation of the ProviderAdapter contract."""

    provider_name: str = ""
    display_name: str = ""
    default_endpoint: str = ""
    _default_model: str = ""
    _supported_models: tuple[str, ...] = ()

    def __init__(self, credential: ProviderCredential) -> None:
        self.credential = credential

    @property
    def default_model(self) -> str:
        return self._default_model

    @property
    def supported_models(self) -> tuple[str, ...]:
        return self._supported_models

    @property
    def endpoint(self) -> str:
        return (self.credential.endpoint or self.default_endpoint).rstrip("/")

    # ----- vendor hooks -----

    @abstractmethod
    async def _send(self, request: GenerationRequest) -> GenerationResult:
        """Perform one non-streaming vendor call."""

    @abstractmethod
    def _iter_deltas(self, request: GenerationRequest) -> AsyncIterator[StreamDelta]:
        """Yield canonical deltas in vendor emission order."""

    @abstractmethod
    async def _probe(self) -> None:
        """Cheap authenticated call; raises when the credential is unusable."""

    async def _fetch_models(self) -> list[str]:
        return list(self.supported_models)

    async def aclose(self) -> None:
        return None

    # ----- error conversion -----

    def _translate_error(self, exc: Exception) -> PolymindError:
        """Map a raw failure onto the error taxonomy.

        Subclasses handle their SDK exception types and defer here for the rest.
        """
        if isinstance(exc, PolymindError):
            return exc
        if isinstance(exc, httpx.TimeoutException):
            return TransportError(
                f"{self.provider_name} request timed out after {self.credential.timeout:g}s",
                provider=self.provider_name,
            )
        if isinstance(exc, httpx.ConnectError):
            return TransportError(
                f"Cannot connect to {self.provider_name} at {self.endpoint}; "
                "check the network and the endpoint setting",
                provider=self.provider_name,
            )
        if isinstance(exc, httpx.TransportError):
            return TransportError(
                f"Network error talking to {self.provider_name}: {type(exc).__name__}",
                provider=self.provider_name,
            )
        if isinstance(exc, httpx.HTTPStatusError):
            return self._vendor_error(exc.response.status_code, exc.response.content)
        if isinstance(exc, (ValueError, KeyError, TypeError)):
            return VendorError(
                f"{self.provider_name} returned a malformed response: {exc}",
                provider=self.provider_name,
            )
        return VendorError(
            f"Unexpected {self.provider_name} error: {exc}",
            provider=self.provider_name,
        )

    def _vendor_error(self, status_code: int | None, body: Any) -> VendorError:
        detail = extract_error_message(body) or "no error message"
        prefix = f"{self.provider_name} API error"
        if status_code is not None:
            prefix = f"{prefix} ({status_code})"
        return VendorError(f"{prefix}: {detail}", provider=self.provider_name, status_code=status_code)

    def _scrubbed(self, error: PolymindError) -> PolymindError:
        error.message = scrub(error.message, self.credential.api_key, self.credential.secret_key)
        error.args = (error.message,)
        return error

    async def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        body = await response.aread()
        raise self._vendor_error(response.status_code, body)

    # ----- public contract -----

    async def send_message(self, request: GenerationRequest) -> GenerationResult:
        """Run one generation to completion.

        Transport failures are retried ``credential.max_retries`` times.
        """
        if self.credential.max_retries <= 0:
            return await self._send_once(request)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.credential.max_retries + 1),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(TransportError),
            reraise=True,
        ):
            with attempt:
                return await self._send_once(request)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _send_once(self, request: GenerationRequest) -> GenerationResult:
        start_time = time.monotonic()
        try:
            result = await self._send(request)
        except Exception as exc:
            error = self._scrubbed(self._translate_error(exc))
            logger.warning(
                "llm_send_failed",
                provider=self.provider_name,
                model=request.model,
                error=error.message,
            )
            raise error from exc

        if not result.content:
            raise VendorError(
                f"{self.provider_name} returned no content", provider=self.provider_name
            )

        logger.debug(
            "llm_send_success",
            provider=self.provider_name,
            model=request.model,
            prompt_tokens=result.usage.prompt_tokens,
            completion_tokens=result.usage.completion_tokens,
            latency_ms=round((time.monotonic() - start_time) * 1000, 2),
        )
        return result

    async def stream_message(
        self,
        request: GenerationRequest,
        callbacks: StreamCallbacks,
        *,
        cancellation: asyncio.Event | None = None,
    ) -> str | None:
        """Stream a generation into ``callbacks``.

        Exactly one terminal callback fires. Returns the full text on success
        and None on failure. ``cancellation`` is accepted but not acted on;
        a stream runs until the vendor finishes or fails.
        """
        parts: list[str] = []
        finish_reason: FinishReason | None = None
        deltas = aiter(self._iter_deltas(request))
        while True:
            # Only failures raised while pulling from the vendor are translated
            try:
                delta = await anext(deltas)
            except StopAsyncIteration:
                break
            except Exception as exc:
                error = self._scrubbed(self._translate_error(exc))
                logger.warning(
                    "llm_stream_failed",
                    provider=self.provider_name,
                    model=request.model,
                    error=error.message,
                )
                await callbacks.on_error(error)
                return None

            if delta.finish_reason is not None:
                finish_reason = delta.finish_reason
            if not delta.content:
                continue
            parts.append(delta.content)
            try:
                await callbacks.on_delta(delta)
            except Exception as exc:
                logger.warning(
                    "llm_stream_delta_handler_failed",
                    provider=self.provider_name,
                    model=request.model,
                    error=type(exc).__name__,
                )
                await _close_iterator(deltas)
                await callbacks.on_error(exc)
                return None

        text = "".join(parts)
        if not text:
            await callbacks.on_error(
                VendorError(f"{self.provider_name} returned no content", provider=self.provider_name)
            )
            return None

        logger.debug(
            "llm_stream_complete",
            provider=self.provider_name,
            model=request.model,
            chars=len(text),
            finish_reason=finish_reason.value if finish_reason else None,
        )
        await callbacks.on_complete(text)
        return text

    async def validate_credential(self) -> bool:
        """True if the vendor accepts the credential; any failure is False."""
        if not self.credential.api_key:
            return False
        try:
            await self._probe()
        except Exception as exc:
            logger.info(
                "llm_credential_invalid",
                provider=self.provider_name,
                error=self._scrubbed(self._translate_error(exc)).message,
            )
            return False
        return True

    async def list_models(self) -> list[str]:
        """Models offered by the vendor, or the built-in list if that fails."""
        try:
            models = await self._fetch_models()
        except Exception as exc:
            logger.info(
                "llm_list_models_fallback",
                provider=self.provider_name,
                error=self._scrubbed(self._translate_error(exc)).message,
            )
            return list(self.supported_models)
        return models or list(self.supported_models)

    def estimate_token_count(self, messages: Iterable[CanonicalMessage]) -> int:
        return estimate_token_count(messages)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} provider={self.provider_name} endpoint={self.endpoint}>"


class HTTPProviderAdapter(BaseProviderAdapter):
    """Adapter that talks to its vendor over a plain httpx client."""

    def __init__(
        self,
        credential: ProviderCredential,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(credential)
        self._client: httpx.AsyncClient | None = http_client

    def _client_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "Accept": "application/json"}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.credential.timeout,
                headers=self._client_headers(),
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
