"""Provider name normalization and adapter resolution.

The registry is built once at startup from settings and handed to whoever
needs it; there is no module-level instance.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass

from polymind.config import Settings
from polymind.infrastructure.llm.base import BaseProviderAdapter
from polymind.infrastructure.llm.claude import ClaudeAdapter
from polymind.infrastructure.llm.gemini import GeminiAdapter
from polymind.infrastructure.llm.openai_compatible import (
    DeepSeekAdapter,
    GlmAdapter,
    KimiAdapter,
    OpenAIAdapter,
    QwenAdapter,
)
from polymind.infrastructure.llm.types import CredentialOverride, ProviderCredential
from polymind.infrastructure.llm.wenxin import WenxinAdapter
from polymind.shared.exceptions import ConfigurationError
from polymind.shared.logging import get_logger

logger = get_logger(__name__)

ADAPTER_CLASSES: dict[str, type[BaseProviderAdapter]] = {
    "openai": OpenAIAdapter,
    "claude": ClaudeAdapter,
    "gemini": GeminiAdapter,
    "qwen": QwenAdapter,
    "wenxin": WenxinAdapter,
    "glm": GlmAdapter,
    "kimi": KimiAdapter,
    "deepseek": DeepSeekAdapter,
}

SUPPORTED_PROVIDERS: tuple[str, ...] = tuple(ADAPTER_CLASSES)

# Checked in order; longer and more specific aliases come first so that
# e.g. "通义千问" does not fall through to a shorter partial match.
PROVIDER_ALIASES: tuple[tuple[str, str], ...] = (
    ("anthropic", "claude"),
    ("claude", "claude"),
    ("chatgpt", "openai"),
    ("openai", "openai"),
    ("gpt", "openai"),
    ("google", "gemini"),
    ("gemini", "gemini"),
    ("bard", "gemini"),
    ("dashscope", "qwen"),
    ("tongyi", "qwen"),
    ("通义千问", "qwen"),
    ("通义", "qwen"),
    ("千问", "qwen"),
    ("阿里", "qwen"),
    ("qwen", "qwen"),
    ("ernie", "wenxin"),
    ("baidu", "wenxin"),
    ("文心一言", "wenxin"),
    ("文心", "wenxin"),
    ("百度", "wenxin"),
    ("wenxin", "wenxin"),
    ("zhipu", "glm"),
    ("chatglm", "glm"),
    ("智谱", "glm"),
    ("glm", "glm"),
    ("moonshot", "kimi"),
    ("月之暗面", "kimi"),
    ("kimi", "kimi"),
    ("deepseek", "deepseek"),
    ("深度求索", "deepseek"),
)


def normalize_provider_name(name: str) -> str:
    """Map free-text vendor names to a canonical provider id.

    Unknown input is returned lowercased so the lookup that follows fails
    with a clear error instead of silently picking a vendor.
    """
    candidate = (name or "").strip().lower()
    if candidate in ADAPTER_CLASSES:
        return candidate
    for alias, canonical in PROVIDER_ALIASES:
        if alias in candidate:
            return canonical
    return candidate


@dataclass(frozen=True)
class ProviderInfo:
    name: str
    display_name: str
    models: list[str]


def credentials_from_settings(settings: Settings) -> dict[str, ProviderCredential]:
    """Process-lifetime default credentials, one per provider."""

    def credential(api_key: str, endpoint: str, **extra: str | None) -> ProviderCredential:
        return ProviderCredential(
            api_key=api_key,
            endpoint=endpoint or None,
            timeout=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
            **extra,
        )

    return {
        "openai": credential(
            settings.openai_api_key,
            settings.openai_api_endpoint,
            organization_id=settings.openai_org_id or None,
        ),
        "claude": credential(settings.claude_api_key, settings.claude_api_endpoint),
        "gemini": credential(settings.gemini_api_key, settings.gemini_api_endpoint),
        "qwen": credential(settings.qwen_api_key, settings.qwen_api_endpoint),
        "wenxin": credential(
            settings.wenxin_api_key,
            settings.wenxin_api_endpoint,
            secret_key=settings.wenxin_secret_key or None,
        ),
        "glm": credential(settings.glm_api_key, settings.glm_api_endpoint),
        "kimi": credential(settings.kimi_api_key, settings.kimi_api_endpoint),
        "deepseek": credential(settings.deepseek_api_key, settings.deepseek_api_endpoint),
    }


AdapterFactory = Callable[[str, ProviderCredential], BaseProviderAdapter]


def default_adapter_factory(provider: str, credential: ProviderCredential) -> BaseProviderAdapter:
    return ADAPTER_CLASSES[provider](credential)


class ProviderRegistry:
    """Resolves provider names to adapters.

    Default adapters are shared for the process lifetime. A call that brings
    its own credential gets a fresh adapter which the caller owns and must
    close; it is never cached or shared.
    """

    def __init__(
        self,
        credentials: Mapping[str, ProviderCredential],
        adapter_factory: AdapterFactory = default_adapter_factory,
    ) -> None:
        self._credentials = dict(credentials)
        self._factory = adapter_factory
        self._defaults: dict[str, BaseProviderAdapter] = {
            name: adapter_factory(name, credential)
            for name, credential in self._credentials.items()
            if name in ADAPTER_CLASSES
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        adapter_factory: AdapterFactory = default_adapter_factory,
    ) -> "ProviderRegistry":
        return cls(credentials_from_settings(settings), adapter_factory)

    def supported_providers(self) -> list[str]:
        return list(SUPPORTED_PROVIDERS)

    def is_supported(self, name: str) -> bool:
        return normalize_provider_name(name) in self._defaults

    def resolve(
        self,
        name: str,
        override: CredentialOverride | None = None,
    ) -> BaseProviderAdapter:
        """Return the adapter for ``name``.

        Raises:
            ConfigurationError: provider is unknown
        """
        canonical = normalize_provider_name(name)
        default = self._defaults.get(canonical)
        if default is None:
            raise ConfigurationError(
                f"Unsupported provider '{name}' (normalized to '{canonical}'). "
                f"Supported: {', '.join(SUPPORTED_PROVIDERS)}",
                details={"provider": name, "normalized": canonical},
            )
        if override is None or override.is_blank:
            return default

        logger.debug("ephemeral_adapter_created", provider=canonical)
        return self._factory(canonical, default.credential.merged(override))

    def configured_providers(self) -> list[str]:
        """Providers whose default credential carries an API key."""
        return [
            name
            for name, adapter in self._defaults.items()
            if adapter.credential.api_key.strip()
        ]

    def is_shared(self, adapter: BaseProviderAdapter) -> bool:
        """True for default adapters, which callers must not close."""
        return any(adapter is shared for shared in self._defaults.values())

    def providers_info(self) -> list[ProviderInfo]:
        return [
            ProviderInfo(
                name=name,
                display_name=adapter.display_name,
                models=list(adapter.supported_models),
            )
            for name, adapter in self._defaults.items()
        ]

    async def aclose(self) -> None:
        for adapter in self._defaults.values():
            await adapter.aclose()
