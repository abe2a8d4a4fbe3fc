"""Composition of API routers."""

from __future__ import annotations

from fastapi import APIRouter

from chai.api.events import router as events_router
from chai.api.health import router as health_router
from chai.api.prompt import router as prompt_router
from chai.api.sessions import router as sessions_router

api_router = APIRouter(prefix="/api")
api_router.include_router(sessions_router)
api_router.include_router(prompt_router)
api_router.include_router(events_router)

root_router = APIRouter()
root_router.include_router(health_router)
