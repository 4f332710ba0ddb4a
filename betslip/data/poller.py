"""
REST odds polling.

Runs alongside the push channel for every attached event, whatever the push
health. The cache absorbs fetch failures (last-known quotes stay put and a
feed notice is published), so the loop itself never stops on an error.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog

from ..api.result import Result
from .odds_cache import OddsFeedCache

logger = structlog.get_logger()


@dataclass
class OddsPoller:
    cache: OddsFeedCache
    event_id: str
    interval_seconds: float = 30.0

    polls: int = 0
    failures: int = 0
    last_poll_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    _running: bool = False

    async def poll_once(self) -> Result:
        result = await self.cache.load_odds(self.event_id, source="poll")
        self.polls += 1
        self.last_poll_at = datetime.now(timezone.utc)
        if result.ok:
            self.last_success_at = self.last_poll_at
        else:
            self.failures += 1
            logger.debug(
                "Odds poll failed",
                event_id=self.event_id,
                kind=result.kind.value,
                failures=self.failures,
            )
        return result

    async def run(self) -> None:
        self._running = True

        interval = self.interval_seconds if self.interval_seconds and self.interval_seconds > 0 else 30.0

        logger.info("Odds poller started", event_id=self.event_id, interval_seconds=interval)

        while self._running:
            try:
                await self.poll_once()
            except Exception as exc:
                self.polls += 1
                self.failures += 1
                self.last_poll_at = datetime.now(timezone.utc)
                logger.warning(
                    "Odds poll crashed",
                    event_id=self.event_id,
                    error=repr(exc),
                    failures=self.failures,
                )
            await asyncio.sleep(interval)

    def stop(self) -> None:
        self._running = False

    @property
    def running(self) -> bool:
        return self._running
