"""
Minimal health check server for container monitoring.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from aiohttp import web

from .metrics import FeedMonitor, MetricsRegistry

logger = structlog.get_logger()


def build_health_payload(
    *,
    feed_monitor: FeedMonitor | None = None,
    metrics: MetricsRegistry | None = None,
    session=None,
) -> Dict[str, Any]:
    data: Dict[str, Any] = {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    if feed_monitor is not None:
        data["feeds"] = feed_monitor.snapshot()
    if metrics is not None:
        data["metrics"] = metrics.snapshot()
    if session is not None:
        snapshot = session.snapshot()
        data["subscriptions"] = snapshot["subscriptions"]
        data["feed_unavailable"] = snapshot["feed_unavailable"]
        data["cart"] = {
            "state": snapshot["cart"]["state"],
            "submitting": snapshot["submitting"],
            "totals": snapshot["cart"]["summary"],
        }
        if any(v is not None for v in snapshot["feed_unavailable"].values()):
            data["status"] = "degraded"

    return data


async def _health_handler(request: web.Request) -> web.Response:
    data = build_health_payload(
        feed_monitor=request.app.get("feed_monitor"),
        metrics=request.app.get("metrics"),
        session=request.app.get("session"),
    )
    return web.json_response(data)


async def run_health_server(
    host: str = "0.0.0.0",
    port: int = 8081,
    *,
    feed_monitor: FeedMonitor | None = None,
    metrics: MetricsRegistry | None = None,
    session=None,
) -> None:
    app = web.Application()
    if feed_monitor is not None:
        app["feed_monitor"] = feed_monitor
    if metrics is not None:
        app["metrics"] = metrics
    if session is not None:
        app["session"] = session
    app.router.add_get("/health", _health_handler)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info("Health server started", host=host, port=port)

    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        logger.info("Health server stopping")
        raise
    finally:
        await runner.cleanup()
