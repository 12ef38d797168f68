"""Google Gemini adapter (Generative Language REST API).

Streaming uses ``:streamGenerateContent?alt=sse``: one JSON object per
frame and no terminating sentinel, so end of stream is completion.
"""

from collections.abc import AsyncIterator
from typing import Any

from polymind.infrastructure.llm.base import HTTPProviderAdapter, alternating_turns, split_system
from polymind.infrastructure.llm.streaming import iter_json_frames
from polymind.infrastructure.llm.types import (
    CanonicalMessage,
    FinishReason,
    GenerationRequest,
    GenerationResult,
    Role,
    StreamDelta,
    Usage,
)
from polymind.shared.exceptions import VendorError

_FINISH_REASONS = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
    "SAFETY": FinishReason.CONTENT_FILTER,
    "RECITATION": FinishReason.CONTENT_FILTER,
    "BLOCKLIST": FinishReason.CONTENT_FILTER,
    "PROHIBITED_CONTENT": FinishReason.CONTENT_FILTER,
    "SPII": FinishReason.CONTENT_FILTER,
}


def map_finish_reason(value: str | None) -> FinishReason | None:
    if not value or value == "FINISH_REASON_UNSPECIFIED":
        return None
    return _FINISH_REASONS.get(value, FinishReason.UNKNOWN)


class GeminiAdapter(HTTPProviderAdapter):
    provider_name = "gemini"
    display_name = "Google (Gemini)"
    default_endpoint = "https://generativelanguage.googleapis.com/v1beta"
    _default_model = "gemini-1.5-flash"
    _supported_models = (
        "gemini-1.5-pro",
        "gemini-1.5-flash",
        "gemini-1.0-pro",
        "gemini-pro",
    )

    def _auth_headers(self) -> dict[str, str]:
        # Header rather than ?key= so the key never lands in access logs
        return {"x-goog-api-key": self.credential.api_key}

    def _build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        system, rest = split_system(request.messages)
        contents = [
            {
                "role": "model" if role == Role.ASSISTANT else "user",
                "parts": [{"text": message.text} for message in turn],
            }
            for role, turn in alternating_turns(rest)
        ]
        generation_config: dict[str, Any] = {
            "temperature": request.temperature,
            "maxOutputTokens": request.max_output_tokens,
        }
        if request.top_p is not None:
            generation_config["topP"] = request.top_p
        if request.stop:
            generation_config["stopSequences"] = request.stop

        payload: dict[str, Any] = {"contents": contents, "generationConfig": generation_config}
        if system:
            payload["system_instruction"] = {"parts": [{"text": system}]}
        return payload

    def _model_url(self, model: str, method: str) -> str:
        model = model.removeprefix("models/")
        return f"{self.endpoint}/models/{model}:{method}"

    def _candidate_text(self, body: dict[str, Any]) -> tuple[str, FinishReason | None]:
        if "error" in body:
            raise self._vendor_error(body["error"].get("code"), body)
        candidates = body.get("candidates") or []
        if not candidates:
            block_reason = (body.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                raise VendorError(
                    f"gemini blocked the prompt: {block_reason}", provider=self.provider_name
                )
            return "", None
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        return text, map_finish_reason(candidate.get("finishReason"))

    async def _send(self, request: GenerationRequest) -> GenerationResult:
        client = await self._get_client()
        response = await client.post(
            self._model_url(request.model, "generateContent"),
            json=self._build_payload(request),
            headers=self._auth_headers(),
        )
        await self._raise_for_status(response)
        body = response.json()
        text, finish_reason = self._candidate_text(body)
        usage = body.get("usageMetadata") or {}
        return GenerationResult(
            model=body.get("modelVersion") or request.model,
            message=CanonicalMessage(role=Role.ASSISTANT, content=text),
            finish_reason=finish_reason or FinishReason.STOP,
            usage=Usage.of(usage.get("promptTokenCount"), usage.get("candidatesTokenCount")),
        )

    async def _iter_deltas(self, request: GenerationRequest) -> AsyncIterator[StreamDelta]:
        client = await self._get_client()
        async with client.stream(
            "POST",
            self._model_url(request.model, "streamGenerateContent"),
            params={"alt": "sse"},
            json=self._build_payload(request),
            headers=self._auth_headers(),
        ) as response:
            await self._raise_for_status(response)
            async for frame in iter_json_frames(response.aiter_lines()):
                text, finish_reason = self._candidate_text(frame)
                yield StreamDelta(content=text, finish_reason=finish_reason)

    async def _list_model_entries(self) -> list[dict[str, Any]]:
        client = await self._get_client()
        response = await client.get(f"{self.endpoint}/models", headers=self._auth_headers())
        await self._raise_for_status(response)
        return response.json().get("models", [])

    async def _probe(self) -> None:
        await self._list_model_entries()

    async def _fetch_models(self) -> list[str]:
        entries = await self._list_model_entries()
        return [
            entry["name"].removeprefix("models/")
            for entry in entries
            if "generateContent" in entry.get("supportedGenerationMethods", [])
        ]
