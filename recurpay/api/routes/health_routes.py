"""Health check route."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from aiohttp import web


def register_health_routes(app: web.Application, time_provider: Callable[[], datetime], version: str) -> None:
    async def health_check(_request: web.Request) -> web.Response:
        """Liveness probe; does not touch the store."""
        return web.json_response(
            {"status": "ok", "server_time_iso": time_provider().isoformat(), "version": version}
        )

    app.router.add_get("/api/health", health_check)
