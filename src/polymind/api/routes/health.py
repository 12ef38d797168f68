"""Liveness and readiness probes."""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import literal, select
from sqlalchemy.ext.asyncio import AsyncSession

from polymind import __version__
from polymind.infrastructure.database.connection import get_session
from polymind.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    providers: int
    configured_providers: list[str]


class ReadyResponse(BaseModel):
    ready: bool
    checks: dict[str, bool]


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Process is up. Also lists which vendors have a default key."""
    registry = getattr(request.app.state, "provider_registry", None)
    if registry is None:
        return HealthResponse(
            status="healthy", version=__version__, providers=0, configured_providers=[]
        )
    return HealthResponse(
        status="healthy",
        version=__version__,
        providers=len(registry.supported_providers()),
        configured_providers=registry.configured_providers(),
    )


@router.get("/ready", response_model=ReadyResponse)
async def readiness_check(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadyResponse:
    """Ready when Postgres and the Redis notification bus answer.

    ``providers`` is informational: agents may bring their own keys, so a
    deployment without default keys is still ready.
    """
    checks: dict[str, bool] = {}

    try:
        await session.execute(select(literal(1)))
        checks["database"] = True
    except Exception as e:
        logger.warning("readiness_database_failed", error=str(e))
        checks["database"] = False

    try:
        await request.app.state.redis_client.ping()
        checks["redis"] = True
    except Exception as e:
        logger.warning("readiness_redis_failed", error=str(e))
        checks["redis"] = False

    registry = getattr(request.app.state, "provider_registry", None)
    providers_ok = registry is not None and bool(registry.configured_providers())

    return ReadyResponse(ready=all(checks.values()), checks={**checks, "providers": providers_ok})
