"""API package for session, prompt and event endpoints."""

from __future__ import annotations

from chai.api.router import api_router, root_router

__all__ = ["api_router", "root_router"]
