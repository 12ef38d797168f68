"""Prometheus metrics for the HTTP surface and for agent turns."""

import time
from collections.abc import Awaitable, Callable

from fastapi import FastAPI, Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response

HTTP_REQUESTS = Counter(
    "polymind_http_requests_total",
    "HTTP requests by route template",
    ["method", "route", "status_code"],
)
HTTP_LATENCY = Histogram(
    "polymind_http_request_duration_seconds",
    "HTTP handler latency",
    ["method", "route"],
)

AGENT_TURNS = Counter(
    "polymind_agent_turns_total",
    "Finished agent turns",
    ["provider", "outcome"],
)
AGENT_TURN_DURATION = Histogram(
    "polymind_agent_turn_duration_seconds",
    "Wall time of one agent turn, placeholder to terminal state",
    ["provider"],
    buckets=(0.5, 1, 2, 5, 10, 20, 30, 60, 120),
)
AGENT_TURNS_IN_PROGRESS = Gauge(
    "polymind_agent_turns_in_progress",
    "Agent turns currently dispatched or streaming",
)


def record_agent_turn(provider: str, outcome: str, duration_seconds: float) -> None:
    AGENT_TURNS.labels(provider=provider, outcome=outcome).inc()
    AGENT_TURN_DURATION.labels(provider=provider).observe(duration_seconds)


def _route_template(request: Request) -> str:
    # Template, not raw path, so room ids don't explode label cardinality
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


def setup_metrics(app: FastAPI) -> None:
    """Install the request middleware and expose ``/metrics``."""

    @app.middleware("http")
    async def metrics_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start = time.perf_counter()
        status_code = "500"
        try:
            response = await call_next(request)
            status_code = str(response.status_code)
            return response
        finally:
            route = _route_template(request)
            HTTP_LATENCY.labels(method=request.method, route=route).observe(
                time.perf_counter() - start
            )
            HTTP_REQUESTS.labels(
                method=request.method, route=route, status_code=status_code
            ).inc()

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
