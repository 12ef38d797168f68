"""Vendor adapters behind one canonical text-generation contract."""

from polymind.infrastructure.llm.base import (
    BaseProviderAdapter,
    ProviderAdapter,
    estimate_token_count,
)
from polymind.infrastructure.llm.registry import (
    SUPPORTED_PROVIDERS,
    ProviderInfo,
    ProviderRegistry,
    normalize_provider_name,
)
from polymind.infrastructure.llm.types import (
    CanonicalMessage,
    CredentialOverride,
    FinishReason,
    GenerationRequest,
    GenerationResult,
    ProviderCredential,
    Role,
    StreamCallbacks,
    StreamDelta,
    Usage,
)

__all__ = [
    "BaseProviderAdapter",
    "CanonicalMessage",
    "CredentialOverride",
    "FinishReason",
    "GenerationRequest",
    "GenerationResult",
    "ProviderAdapter",
    "ProviderCredential",
    "ProviderInfo",
    "ProviderRegistry",
    "Role",
    "SUPPORTED_PROVIDERS",
    "StreamCallbacks",
    "StreamDelta",
    "Usage",
    "estimate_token_count",
    "normalize_provider_name",
]
