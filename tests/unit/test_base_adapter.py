"""Unit tests for behaviour shared by every provider adapter."""

import math
import os

os.environ["APP_SECRET_KEY"] = "test-secret-key-for-encryption-32chars"

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from fakes import StubAdapter
from polymind.infrastructure.llm.base import (
    ProviderAdapter,
    alternating_turns,
    estimate_token_count,
    extract_error_message,
    split_system,
)
from polymind.infrastructure.llm.types import (
    CanonicalMessage,
    GenerationRequest,
    ImagePart,
    ProviderCredential,
    Role,
    StreamCallbacks,
    TextPart,
)
from polymind.shared.exceptions import TransportError, VendorError

SECRET = "sk-very-secret-value-42"


def _request() -> GenerationRequest:
    return GenerationRequest(
        model="stub-model",
        messages=[CanonicalMessage(role=Role.USER, content="Hi")],
    )


class Collector:
    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    async def on_delta(self, delta):
        self.events.append(("delta", delta.content))

    async def on_complete(self, text):
        self.events.append(("complete", text))

    async def on_error(self, exc):
        self.events.append(("error", exc))

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(self.on_delta, self.on_complete, self.on_error)

    @property
    def terminal(self) -> list[tuple[str, object]]:
        return [event for event in self.events if event[0] != "delta"]


class TestHelpers:
    """Test module-level helpers."""

    @pytest.mark.parametrize(
        ("texts", "expected"),
        [([], 0), (["Hello world"], 3), (["Hello", " world"], 3), (["a" * 1000], 250), (["x"], 1)],
    )
    def test_estimate_token_count(self, texts, expected):
        """Test the ceil(chars / 4) estimate."""
        messages = [CanonicalMessage(role=Role.USER, content=text) for text in texts]

        assert estimate_token_count(messages) == expected

    def test_estimate_counts_structured_content_as_json(self):
        """Test image parts contribute to the estimate through their JSON form."""
        message = CanonicalMessage(
            role=Role.USER,
            content=[TextPart("Look"), ImagePart("https://img.example/cat.png")],
        )

        assert estimate_token_count([message]) == math.ceil(len(message.serialized_content()) / 4)
        assert estimate_token_count([message]) > estimate_token_count(
            [CanonicalMessage(role=Role.USER, content="Look")]
        )

    def test_alternating_turns(self):
        """Test leading assistant messages drop and same-role neighbours group."""
        turns = alternating_turns(
            [
                CanonicalMessage(role=Role.ASSISTANT, content="Welcome"),
                CanonicalMessage(role=Role.USER, content="a"),
                CanonicalMessage(role=Role.TOOL, content="b"),
                CanonicalMessage(role=Role.ASSISTANT, content="c"),
            ]
        )

        assert [role for role, _ in turns] == [Role.USER, Role.ASSISTANT]
        assert [m.text for m in turns[0][1]] == ["a", "b"]

    def test_split_system(self):
        """Test system messages are joined and removed from the list."""
        system, rest = split_system(
            [
                CanonicalMessage(role=Role.SYSTEM, content="One"),
                CanonicalMessage(role=Role.USER, content="Hi"),
                CanonicalMessage(role=Role.SYSTEM, content="Two"),
            ]
        )

        assert system == "One\n\nTwo"
        assert [m.text for m in rest] == ["Hi"]

    def test_split_system_without_system(self):
        """Test None is returned when there is no system text."""
        system, rest = split_system([CanonicalMessage(role=Role.USER, content="Hi")])

        assert system is None
        assert len(rest) == 1

    @pytest.mark.parametrize(
        ("body", "expected"),
        [
            ({"error": {"message": "bad key"}}, "bad key"),
            ({"error": {"code": "rate_limited"}}, "rate_limited"),
            ({"error": "quota exceeded"}, "quota exceeded"),
            ({"error_code": 17, "error_msg": "Open api daily request limit reached"}, "Open api daily request limit reached"),
            ({"message": "plain"}, "plain"),
            (b'{"error": {"message": "from bytes"}}', "from bytes"),
            ("<html>Bad Gateway</html>", "<html>Bad Gateway</html>"),
            ([], None),
        ],
    )
    def test_extract_error_message(self, body, expected):
        """Test the vendor error envelopes are understood."""
        assert extract_error_message(body) == expected

    def test_stub_satisfies_protocol(self):
        """Test adapters satisfy the runtime-checkable contract."""
        assert isinstance(StubAdapter(ProviderCredential(api_key="k")), ProviderAdapter)


class TestStreamMessage:
    """Test the terminal-event discipline."""

    @pytest.mark.asyncio
    async def test_success(self):
        """Test deltas are followed by exactly one completion."""
        adapter = StubAdapter(ProviderCredential(api_key="k"), chunks=["Hel", "", "lo"])
        collector = Collector()

        text = await adapter.stream_message(_request(), collector.callbacks())

        assert text == "Hello"
        assert collector.events == [("delta", "Hel"), ("delta", "lo"), ("complete", "Hello")]

    @pytest.mark.asyncio
    async def test_mid_stream_failure(self):
        """Test earlier deltas stand and a single error follows them."""
        adapter = StubAdapter(
            ProviderCredential(api_key="k"),
            chunks=["partial"],
            error=httpx.ReadError("connection reset"),
        )
        collector = Collector()

        text = await adapter.stream_message(_request(), collector.callbacks())

        assert text is None
        assert collector.events[0] == ("delta", "partial")
        assert len(collector.terminal) == 1
        kind, error = collector.terminal[0]
        assert kind == "error"
        assert isinstance(error, TransportError)

    @pytest.mark.asyncio
    async def test_empty_stream_is_error(self):
        """Test a stream with no content does not complete."""
        adapter = StubAdapter(ProviderCredential(api_key="k"), chunks=[])
        collector = Collector()

        text = await adapter.stream_message(_request(), collector.callbacks())

        assert text is None
        assert len(collector.terminal) == 1
        kind, error = collector.terminal[0]
        assert kind == "error"
        assert isinstance(error, VendorError)
        assert "no content" in error.message

    @pytest.mark.asyncio
    async def test_error_text_never_contains_key(self):
        """Test the credential is masked in surfaced error text."""
        adapter = StubAdapter(
            ProviderCredential(api_key=SECRET),
            chunks=[],
            error=RuntimeError(f"request with key {SECRET} rejected"),
        )
        collector = Collector()

        await adapter.stream_message(_request(), collector.callbacks())

        _, error = collector.terminal[0]
        assert SECRET not in error.message
        assert SECRET not in str(error)
        assert "sk-v***" in error.message

    @pytest.mark.asyncio
    async def test_timeout_is_transport_error(self):
        """Test timeouts surface as TransportError naming the limit."""
        adapter = StubAdapter(
            ProviderCredential(api_key="k", timeout=15),
            chunks=[],
            error=httpx.ReadTimeout("timed out"),
        )
        collector = Collector()

        await adapter.stream_message(_request(), collector.callbacks())

        _, error = collector.terminal[0]
        assert isinstance(error, TransportError)
        assert "15s" in error.message

    @pytest.mark.asyncio
    async def test_delta_handler_failure_is_not_a_vendor_error(self):
        """Test a failing subscriber ends the stream with its own exception."""
        adapter = StubAdapter(ProviderCredential(api_key="k"), chunks=["a", "b"])
        collector = Collector()

        async def failing_on_delta(delta):
            raise ConnectionError("redis down")

        callbacks = StreamCallbacks(failing_on_delta, collector.on_complete, collector.on_error)

        text = await adapter.stream_message(_request(), callbacks)

        assert text is None
        assert len(collector.terminal) == 1
        kind, error = collector.terminal[0]
        assert kind == "error"
        assert isinstance(error, ConnectionError)
        assert not isinstance(error, (VendorError, TransportError))


class TestSendMessage:
    """Test non-streaming calls and retries."""

    @pytest.mark.asyncio
    async def test_no_retry_by_default(self):
        """Test a transport failure is raised immediately."""
        adapter = StubAdapter(ProviderCredential(api_key="k"), error=httpx.ConnectError("refused"))

        with pytest.raises(TransportError):
            await adapter.send_message(_request())

        assert len(adapter.requests) == 1

    @pytest.mark.asyncio
    async def test_transport_failure_retried(self):
        """Test configured retries re-run the call after a transport failure."""
        adapter = StubAdapter(ProviderCredential(api_key="k", max_retries=1))
        original = adapter._send
        calls = {"n": 0}

        async def flaky(request):
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ConnectError("refused")
            return await original(request)

        adapter._send = flaky
        with patch("asyncio.sleep", new=AsyncMock()):
            result = await adapter.send_message(_request())

        assert result.content == "Hello there!"
        assert calls["n"] == 2

    @pytest.mark.asyncio
    async def test_vendor_error_not_retried(self):
        """Test vendor rejections are not retried."""
        adapter = StubAdapter(
            ProviderCredential(api_key="k", max_retries=3),
            error=VendorError("stub API error (400): bad", provider="stub", status_code=400),
        )

        with pytest.raises(VendorError):
            await adapter.send_message(_request())

        assert len(adapter.requests) == 1


class TestValidateAndList:
    """Test credential validation and model listing."""

    @pytest.mark.asyncio
    async def test_validate(self):
        """Test validation never raises."""
        assert await StubAdapter(ProviderCredential(api_key="k")).validate_credential() is True
        assert await StubAdapter(ProviderCredential(api_key="")).validate_credential() is False
        failing = StubAdapter(ProviderCredential(api_key="k"), error=RuntimeError("nope"))
        assert await failing.validate_credential() is False

    @pytest.mark.asyncio
    async def test_list_models_fallback(self):
        """Test the built-in list is used when the vendor listing fails."""
        adapter = StubAdapter(ProviderCredential(api_key="k"))
        adapter._fetch_models = AsyncMock(side_effect=httpx.ConnectError("refused"))

        assert await adapter.list_models() == ["stub-model"]

    @pytest.mark.asyncio
    async def test_list_models_empty_listing(self):
        """Test an empty listing also falls back."""
        adapter = StubAdapter(ProviderCredential(api_key="k"))
        adapter._fetch_models = AsyncMock(return_value=[])

        assert await adapter.list_models() == ["stub-model"]
