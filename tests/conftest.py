"""
Pytest configuration and fixtures for Polymind tests.

The chat domain is exercised against in-memory implementations of its
storage, notification and search ports, and against scripted adapters
registered under real provider names.
"""
import os
import uuid
from uuid import UUID

import pytest

os.environ.setdefault("APP_SECRET_KEY", "test-secret-key-for-encryption-32chars")

from fakes import (  # noqa: E402
    FakeRoomDirectory,
    FakeSearch,
    InMemoryContextStore,
    InMemoryMessageStore,
    RecordingNotifier,
    StubAdapter,
    make_credential,
)
from polymind.domain.chat.context_manager import ContextManager  # noqa: E402
from polymind.domain.chat.orchestrator import ChatOrchestrator  # noqa: E402
from polymind.domain.chat.types import AgentProfile  # noqa: E402
from polymind.infrastructure.llm.base import BaseProviderAdapter  # noqa: E402
from polymind.infrastructure.llm.registry import ProviderRegistry  # noqa: E402
from polymind.infrastructure.llm.types import ProviderCredential  # noqa: E402


@pytest.fixture
def room_id() -> UUID:
    return uuid.uuid4()


@pytest.fixture
def context_store() -> InMemoryContextStore:
    return InMemoryContextStore()


@pytest.fixture
def message_store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def context_manager(
    context_store: InMemoryContextStore, message_store: InMemoryMessageStore
) -> ContextManager:
    return ContextManager(context_store, message_store)


@pytest.fixture
def stub_adapters() -> dict[str, StubAdapter]:
    """Default adapters the stub registry created, keyed by provider id."""
    return {}


@pytest.fixture
def ephemeral_adapters() -> list[StubAdapter]:
    """Adapters created for per-agent credential overrides."""
    return []


@pytest.fixture
def stub_registry(
    stub_adapters: dict[str, StubAdapter], ephemeral_adapters: list[StubAdapter]
) -> ProviderRegistry:
    """Registry whose openai/claude/gemini/deepseek slots are scripted stubs.

    deepseek has no API key. Tests script behaviour by mutating the
    adapters in ``stub_adapters``.
    """

    def factory(name: str, credential: ProviderCredential) -> BaseProviderAdapter:
        adapter = StubAdapter(credential)
        adapter.provider_name = name
        if name in stub_adapters:
            ephemeral_adapters.append(adapter)
        else:
            stub_adapters[name] = adapter
        return adapter

    credentials = {name: make_credential() for name in ("openai", "claude", "gemini")}
    credentials["deepseek"] = make_credential(api_key="")
    return ProviderRegistry(credentials, adapter_factory=factory)


@pytest.fixture
def orchestrator_factory(
    stub_registry: ProviderRegistry,
    context_manager: ContextManager,
    message_store: InMemoryMessageStore,
    notifier: RecordingNotifier,
):
    def build(
        agents: dict[UUID, list[AgentProfile]],
        search: FakeSearch | None = None,
    ) -> ChatOrchestrator:
        return ChatOrchestrator(
            registry=stub_registry,
            context_manager=context_manager,
            message_store=message_store,
            room_directory=FakeRoomDirectory(agents),
            notifier=notifier,
            search=search,
        )

    return build
