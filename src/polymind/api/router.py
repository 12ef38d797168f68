"""Main API router aggregating all v1 routes."""

from fastapi import APIRouter

from polymind.api.routes import chat, contexts, health, providers

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(providers.router)
api_router.include_router(chat.router)
api_router.include_router(contexts.router)
