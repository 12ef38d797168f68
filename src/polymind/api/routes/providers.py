"""Provider catalogue and credential checks."""

from fastapi import APIRouter, Request

from polymind.api.deps import RegistryDep
from polymind.api.ratelimit import RATE_LIMIT_VALIDATE, limiter
from polymind.api.schemas import (
    ModelListResponse,
    ProviderInfoResponse,
    ValidateCredentialRequest,
    ValidateCredentialResponse,
)
from polymind.infrastructure.llm.registry import normalize_provider_name
from polymind.infrastructure.llm.types import CredentialOverride
from polymind.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/providers", tags=["Providers"])


@router.get("", response_model=list[ProviderInfoResponse])
async def list_providers(registry: RegistryDep) -> list[ProviderInfoResponse]:
    return [
        ProviderInfoResponse(name=info.name, display_name=info.display_name, models=info.models)
        for info in registry.providers_info()
    ]


@router.post("/validate", response_model=ValidateCredentialResponse)
@limiter.limit(RATE_LIMIT_VALIDATE)
async def validate_credential(
    request: Request,
    body: ValidateCredentialRequest,
    registry: RegistryDep,
) -> ValidateCredentialResponse:
    """Check a key against the vendor without storing it."""
    _ = request
    override = CredentialOverride(api_key=body.api_key, endpoint=body.api_endpoint)
    adapter = registry.resolve(body.provider, override)
    try:
        valid = await adapter.validate_credential()
    finally:
        if not registry.is_shared(adapter):
            await adapter.aclose()
    provider = normalize_provider_name(body.provider)
    logger.info("credential_validated", provider=provider, valid=valid)
    return ValidateCredentialResponse(provider=provider, valid=valid)


@router.get("/{provider}/models", response_model=ModelListResponse)
async def list_models(provider: str, registry: RegistryDep) -> ModelListResponse:
    adapter = registry.resolve(provider)
    models = await adapter.list_models()
    return ModelListResponse(provider=adapter.provider_name, models=models)
