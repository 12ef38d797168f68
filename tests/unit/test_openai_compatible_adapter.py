"""Unit tests for the chat-completions adapters (OpenAI, DeepSeek, Qwen, Kimi, GLM).

The SDK is pointed at an httpx.MockTransport so the real request/response
handling runs without network access.
"""

import json
import os

os.environ["APP_SECRET_KEY"] = "test-secret-key-for-encryption-32chars"

import httpx
import pytest

from polymind.infrastructure.llm.openai_compatible import (
    DeepSeekAdapter,
    GlmAdapter,
    OpenAIAdapter,
    QwenAdapter,
    map_finish_reason,
    normalize_endpoint,
)
from polymind.infrastructure.llm.types import (
    CanonicalMessage,
    FinishReason,
    GenerationRequest,
    ImagePart,
    ProviderCredential,
    Role,
    StreamCallbacks,
    TextPart,
)
from polymind.shared.exceptions import TransportError, VendorError

API_KEY = "sk-live-abcdef123456"


def _completion(content: str) -> dict:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "gpt-4o",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
    }


def _chunk(content: str | None, finish_reason: str | None = None) -> str:
    delta = {} if content is None else {"content": content}
    body = {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": "gpt-4o",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }
    return f"data: {json.dumps(body)}\n\n"


def _sse(*parts: str | None) -> str:
    frames = [_chunk(part) for part in parts]
    frames.append(_chunk(None, "stop"))
    frames.append("data: [DONE]\n\n")
    return "".join(frames)


class MockVendor:
    """Records requests and replies with canned bodies."""

    def __init__(self, reply: str = "Hello there!", status_code: int = 200, error_body=None):
        self.reply = reply
        self.status_code = status_code
        self.error_body = error_body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json=self.error_body or {})
        if request.url.path.endswith("/models"):
            return httpx.Response(
                200,
                json={
                    "object": "list",
                    "data": [
                        {"id": model, "object": "model", "created": 1, "owned_by": "x"}
                        for model in ("gpt-4o", "whisper-1", "gpt-3.5-turbo", "dall-e-3")
                    ],
                },
            )
        payload = json.loads(request.content)
        if payload.get("stream"):
            words = self.reply.split(" ")
            pieces = [w if i == 0 else f" {w}" for i, w in enumerate(words)]
            return httpx.Response(
                200,
                text=_sse(*pieces),
                headers={"content-type": "text/event-stream"},
            )
        return httpx.Response(200, json=_completion(self.reply))

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class Collector:
    def __init__(self) -> None:
        self.deltas: list[str] = []
        self.completed: list[str] = []
        self.errors: list[Exception] = []

    async def on_delta(self, delta):
        self.deltas.append(delta.content)

    async def on_complete(self, text):
        self.completed.append(text)

    async def on_error(self, exc):
        self.errors.append(exc)

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(self.on_delta, self.on_complete, self.on_error)


def _request(**kwargs) -> GenerationRequest:
    defaults = {
        "model": "gpt-4o",
        "messages": [
            CanonicalMessage(role=Role.SYSTEM, content="Be brief."),
            CanonicalMessage(role=Role.USER, content="Hi"),
        ],
    }
    defaults.update(kwargs)
    return GenerationRequest(**defaults)


class TestNormalizeEndpoint:
    """Test user-entered endpoint normalization."""

    @pytest.mark.parametrize(
        ("raw", "version", "expected"),
        [
            ("https://api.openai.com/v1", "v1", "https://api.openai.com/v1"),
            ("https://api.openai.com/v1/", "v1", "https://api.openai.com/v1"),
            ("https://api.deepseek.com", "v1", "https://api.deepseek.com/v1"),
            ("https://api.deepseek.com/chat/completions", "v1", "https://api.deepseek.com/v1"),
            ("https://proxy.local/v1/chat/completions", "v1", "https://proxy.local/v1"),
            ("https://open.bigmodel.cn/api/paas/", "v4", "https://open.bigmodel.cn/api/paas/v4"),
            ("https://generativelanguage.googleapis.com/v1beta", "v1", "https://generativelanguage.googleapis.com/v1beta"),
        ],
    )
    def test_normalize(self, raw, version, expected):
        """Test request paths are stripped and a version segment ensured."""
        assert normalize_endpoint(raw, version) == expected

    def test_finish_reasons(self):
        """Test vendor finish reasons map onto the canonical set."""
        assert map_finish_reason("stop") == FinishReason.STOP
        assert map_finish_reason("length") == FinishReason.LENGTH
        assert map_finish_reason("sensitive") == FinishReason.CONTENT_FILTER
        assert map_finish_reason("something_new") == FinishReason.UNKNOWN
        assert map_finish_reason(None) is None


class TestOpenAIAdapterSend:
    """Test non-streaming generation."""

    @pytest.mark.asyncio
    async def test_send_message(self):
        """Test a completion is parsed into the canonical result."""
        vendor = MockVendor(reply="Hello there!")
        adapter = OpenAIAdapter(ProviderCredential(api_key=API_KEY), http_client=vendor.client())

        result = await adapter.send_message(_request(temperature=0.2, max_output_tokens=64))

        assert result.content == "Hello there!"
        assert result.message.role == Role.ASSISTANT
        assert result.finish_reason == FinishReason.STOP
        assert result.usage.total_tokens == 7

        sent = vendor.requests[0]
        assert str(sent.url) == "https://api.openai.com/v1/chat/completions"
        assert sent.headers["authorization"] == f"Bearer {API_KEY}"
        body = json.loads(sent.content)
        assert body["messages"][0] == {"role": "system", "content": "Be brief."}
        assert body["temperature"] == 0.2
        assert body["max_tokens"] == 64
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_structured_content_is_forwarded(self):
        """Test image parts are sent as image_url blocks."""
        vendor = MockVendor()
        adapter = OpenAIAdapter(ProviderCredential(api_key=API_KEY), http_client=vendor.client())
        message = CanonicalMessage(
            role=Role.USER,
            content=[TextPart("What is this?"), ImagePart("https://img.example/cat.png")],
        )

        await adapter.send_message(_request(messages=[message]))

        body = json.loads(vendor.requests[0].content)
        assert body["messages"][0]["content"] == [
            {"type": "text", "text": "What is this?"},
            {"type": "image_url", "image_url": {"url": "https://img.example/cat.png", "detail": "auto"}},
        ]

    @pytest.mark.asyncio
    async def test_http_error_becomes_vendor_error(self):
        """Test a 401 surfaces status and vendor message without the key."""
        vendor = MockVendor(
            status_code=401,
            error_body={"error": {"message": f"Incorrect API key provided: {API_KEY}", "type": "invalid_request_error"}},
        )
        adapter = OpenAIAdapter(ProviderCredential(api_key=API_KEY), http_client=vendor.client())

        with pytest.raises(VendorError) as exc_info:
            await adapter.send_message(_request())

        assert exc_info.value.status_code == 401
        assert "openai API error (401)" in exc_info.value.message
        assert "Incorrect API key provided" in exc_info.value.message
        assert API_KEY not in exc_info.value.message
        assert API_KEY not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_connection_failure_becomes_transport_error(self):
        """Test an unreachable endpoint surfaces as TransportError."""

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        adapter = OpenAIAdapter(
            ProviderCredential(api_key=API_KEY),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)),
        )

        with pytest.raises(TransportError) as exc_info:
            await adapter.send_message(_request())

        assert exc_info.value.provider == "openai"

    @pytest.mark.asyncio
    async def test_empty_completion_is_vendor_error(self):
        """Test that an empty reply is not treated as success."""
        vendor = MockVendor(reply="")
        adapter = OpenAIAdapter(ProviderCredential(api_key=API_KEY), http_client=vendor.client())

        with pytest.raises(VendorError, match="no content"):
            await adapter.send_message(_request())


class TestOpenAIAdapterStream:
    """Test streaming generation."""

    @pytest.mark.asyncio
    async def test_stream_deltas_in_order(self):
        """Test deltas arrive in order and the final text is their concatenation."""
        vendor = MockVendor(reply="Hello there friend")
        adapter = OpenAIAdapter(ProviderCredential(api_key=API_KEY), http_client=vendor.client())
        collector = Collector()

        text = await adapter.stream_message(_request(stream=True), collector.callbacks())

        assert collector.deltas == ["Hello", " there", " friend"]
        assert collector.completed == ["Hello there friend"]
        assert collector.errors == []
        assert text == "Hello there friend"
        assert json.loads(vendor.requests[0].content)["stream"] is True

    @pytest.mark.asyncio
    async def test_stream_matches_send(self):
        """Test streamed and non-streamed calls agree on content."""
        vendor = MockVendor(reply="Same answer both ways")
        adapter = OpenAIAdapter(ProviderCredential(api_key=API_KEY), http_client=vendor.client())
        collector = Collector()

        sent = await adapter.send_message(_request())
        streamed = await adapter.stream_message(_request(), collector.callbacks())

        assert sent.content == streamed

    @pytest.mark.asyncio
    async def test_stream_error_fires_on_error_once(self):
        """Test a failing stream reports exactly one error and no completion."""
        vendor = MockVendor(status_code=500, error_body={"error": {"message": "overloaded"}})
        adapter = OpenAIAdapter(ProviderCredential(api_key=API_KEY), http_client=vendor.client())
        collector = Collector()

        text = await adapter.stream_message(_request(), collector.callbacks())

        assert text is None
        assert collector.completed == []
        assert len(collector.errors) == 1
        assert isinstance(collector.errors[0], VendorError)
        assert "overloaded" in collector.errors[0].message


class TestCompatibleVendors:
    """Test vendor-specific endpoints and model listing."""

    @pytest.mark.asyncio
    async def test_deepseek_endpoint_with_request_path(self):
        """Test a pasted full request URL still hits the right path."""
        vendor = MockVendor()
        adapter = DeepSeekAdapter(
            ProviderCredential(api_key=API_KEY, endpoint="https://api.deepseek.com/chat/completions"),
            http_client=vendor.client(),
        )

        await adapter.send_message(_request(model="deepseek-chat"))

        assert str(vendor.requests[0].url) == "https://api.deepseek.com/v1/chat/completions"

    @pytest.mark.asyncio
    async def test_glm_uses_v4(self):
        """Test GLM's base URL keeps its v4 segment."""
        vendor = MockVendor()
        adapter = GlmAdapter(ProviderCredential(api_key=API_KEY), http_client=vendor.client())

        await adapter.send_message(_request(model="glm-4"))

        assert str(vendor.requests[0].url) == "https://open.bigmodel.cn/api/paas/v4/chat/completions"

    def test_qwen_default_endpoint(self):
        """Test Qwen uses DashScope's compatible mode."""
        adapter = QwenAdapter(ProviderCredential(api_key=API_KEY))

        assert adapter.endpoint == "https://dashscope.aliyuncs.com/compatible-mode/v1"
        assert adapter.default_model == "qwen-plus"

    @pytest.mark.asyncio
    async def test_list_models_filters_chat_models(self):
        """Test the live listing keeps only chat models."""
        vendor = MockVendor()
        adapter = OpenAIAdapter(ProviderCredential(api_key=API_KEY), http_client=vendor.client())

        assert await adapter.list_models() == ["gpt-3.5-turbo", "gpt-4o"]

    @pytest.mark.asyncio
    async def test_list_models_falls_back(self):
        """Test the built-in list is returned when listing fails."""
        vendor = MockVendor(status_code=403, error_body={"error": {"message": "forbidden"}})
        adapter = OpenAIAdapter(ProviderCredential(api_key=API_KEY), http_client=vendor.client())

        assert await adapter.list_models() == list(adapter.supported_models)

    @pytest.mark.asyncio
    async def test_validate_credential(self):
        """Test validation is True on success and False on rejection."""
        ok = OpenAIAdapter(ProviderCredential(api_key=API_KEY), http_client=MockVendor().client())
        rejected = OpenAIAdapter(
            ProviderCredential(api_key=API_KEY),
            http_client=MockVendor(status_code=401, error_body={"error": {"message": "bad key"}}).client(),
        )

        assert await ok.validate_credential() is True
        assert await rejected.validate_credential() is False
        assert await OpenAIAdapter(ProviderCredential(api_key="")).validate_credential() is False
