"""
Betslip odds service - Entry Point
"""

from __future__ import annotations

import asyncio
import signal
from dataclasses import dataclass
from typing import List, Optional

import structlog

from betslip.api.client import OddsApiClient
from betslip.config import Settings, settings
from betslip.data.event_bus import (
    EVENT_FEED_NOTICE,
    EVENT_ODDS_ALERT,
    EVENT_ODDS_DRIFT,
    EVENT_SUBMISSION_RESULT,
    EventBus,
)
from betslip.data.odds_cache import OddsFeedCache
from betslip.data.subscription import SubscriptionSupervisor
from betslip.execution.submission import SubmissionPipeline
from betslip.session import BettingSession
from betslip.state.cart import BetCart
from betslip.state.reconciliation import ReconciliationEngine
from betslip.utils.health import run_health_server
from betslip.utils.logging import configure_logging
from betslip.utils.metrics import FeedMonitor, MetricsRegistry

logger = structlog.get_logger()

NOTICE_TOPICS = (EVENT_FEED_NOTICE, EVENT_ODDS_DRIFT, EVENT_ODDS_ALERT, EVENT_SUBMISSION_RESULT)


@dataclass(frozen=True)
class AppComponents:
    client: OddsApiClient
    event_bus: EventBus
    feed_monitor: FeedMonitor
    metrics: MetricsRegistry
    cache: OddsFeedCache
    supervisor: SubscriptionSupervisor
    reconciliation: ReconciliationEngine
    cart: BetCart
    pipeline: SubmissionPipeline
    session: BettingSession


def _parse_event_ids(raw: str) -> List[str]:
    if not raw:
        return []
    return [event_id.strip() for event_id in raw.split(",") if event_id.strip()]


def build_client(app_settings: Settings) -> OddsApiClient:
    return OddsApiClient(
        base_url=app_settings.api_base_url,
        token=app_settings.api_token,
        rate_limit=app_settings.api_rate_limit,
        max_retries=app_settings.api_max_retries,
        timeout=app_settings.api_timeout,
    )


def build_components(app_settings: Settings, client: Optional[OddsApiClient] = None) -> AppComponents:
    client = client or build_client(app_settings)
    event_bus = EventBus()
    feed_monitor = FeedMonitor(stale_after_seconds=app_settings.feed_stale_seconds)
    metrics = MetricsRegistry()

    cache = OddsFeedCache(client, event_bus=event_bus, feed_monitor=feed_monitor, metrics=metrics)
    supervisor = SubscriptionSupervisor(
        cache,
        stream_url=app_settings.stream_url,
        token=app_settings.api_token,
        poll_interval_seconds=app_settings.poll_interval_seconds,
        reconnect_initial_delay=app_settings.reconnect_initial_delay,
        reconnect_max_delay=app_settings.reconnect_max_delay,
        reconnect_max_attempts=app_settings.reconnect_max_attempts,
    )
    reconciliation = ReconciliationEngine(
        cache,
        event_bus=event_bus,
        drift_tolerance=app_settings.odds_drift_tolerance,
    )
    cart = BetCart(
        min_stake=app_settings.min_stake,
        max_stake=app_settings.max_stake,
        min_odds=app_settings.min_odds,
        max_odds=app_settings.max_odds,
        max_lines=app_settings.max_lines,
    )
    pipeline = SubmissionPipeline(
        cart,
        client,
        reconciliation,
        cache=cache,
        event_bus=event_bus,
        metrics=metrics,
    )
    session = BettingSession(cache, supervisor, reconciliation, cart, pipeline)

    return AppComponents(
        client=client,
        event_bus=event_bus,
        feed_monitor=feed_monitor,
        metrics=metrics,
        cache=cache,
        supervisor=supervisor,
        reconciliation=reconciliation,
        cart=cart,
        pipeline=pipeline,
        session=session,
    )


async def log_notices(event_bus: EventBus, topic: str) -> None:
    """Headless stand-in for the presentation layer: log every notice."""
    queue = event_bus.subscribe(topic)
    try:
        while True:
            payload = await queue.get()
            level = getattr(getattr(payload, "level", None), "value", "info")
            message = getattr(payload, "message", None) or str(payload)
            event_id = getattr(payload, "event_id", None)
            if level == "info":
                logger.info("Notice", topic=topic, message=message, event_id=event_id)
            else:
                logger.warning("Notice", topic=topic, level=level, message=message, event_id=event_id)
    finally:
        event_bus.unsubscribe(topic, queue)


async def main() -> None:
    configure_logging(
        log_level=settings.log_level,
        log_file=settings.log_file,
        log_json=settings.log_json,
    )
    event_ids = _parse_event_ids(settings.watch_events)
    logger.info("Betslip starting...", events=event_ids, api=settings.api_base_url)

    components = build_components(settings)

    # ---------------------------------------------------------------------
    # Shutdown handling (SIGTERM/SIGINT)
    # ---------------------------------------------------------------------
    shutdown_event = asyncio.Event()
    shutdown_signal: Optional[str] = None

    def _handle_shutdown(sig: signal.Signals) -> None:
        nonlocal shutdown_signal
        if shutdown_signal is None:
            shutdown_signal = sig.name
        shutdown_event.set()

    try:
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGTERM, _handle_shutdown, signal.SIGTERM)
        loop.add_signal_handler(signal.SIGINT, _handle_shutdown, signal.SIGINT)
    except NotImplementedError:
        # Some platforms/event loops may not support signal handlers.
        pass

    async with components.client:
        tasks: List[asyncio.Task] = [
            asyncio.create_task(
                run_health_server(
                    settings.health_host,
                    settings.health_port,
                    feed_monitor=components.feed_monitor,
                    metrics=components.metrics,
                    session=components.session,
                ),
                name="health",
            ),
        ]
        for topic in NOTICE_TOPICS:
            tasks.append(asyncio.create_task(log_notices(components.event_bus, topic), name=f"notices_{topic}"))

        for event_id in event_ids:
            components.session.open_event(event_id)

        logger.info("Betslip ready", events=len(event_ids))

        try:
            await shutdown_event.wait()
            logger.warning("Shutdown signal received, detaching subscriptions...", signal=shutdown_signal)
        finally:
            await components.session.close()
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    logger.info("Betslip stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
