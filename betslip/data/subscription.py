"""
Subscription supervisor.

Keeps exactly one live data path per viewed event: a push channel drained
into the cache plus a poller that refreshes on a fixed interval regardless
of push health. Leaving the view detaches the event and cancels both.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog

from ..api.push import OddsPushChannel
from .odds_cache import OddsFeedCache
from .poller import OddsPoller

logger = structlog.get_logger()

ChannelFactory = Callable[[str], OddsPushChannel]


@dataclass(frozen=True)
class ConnectionHealth:
    connected: bool
    last_update_at: Optional[datetime]
    reconnect_attempts: int
    poll_only: bool

    def to_dict(self) -> dict:
        return {
            "connected": self.connected,
            "last_update_at": self.last_update_at.isoformat() if self.last_update_at else None,
            "reconnect_attempts": self.reconnect_attempts,
            "poll_only": self.poll_only,
        }


class Subscription:
    """
    Handle for one attached event.

    ``channel`` may be None when no stream URL is configured; the
    subscription is then poll-only from the start.
    """

    def __init__(
        self,
        event_id: str,
        cache: OddsFeedCache,
        poller: OddsPoller,
        channel: Optional[OddsPushChannel] = None,
    ) -> None:
        self.event_id = str(event_id)
        self.cache = cache
        self.poller = poller
        self.channel = channel
        self._tasks: List[asyncio.Task] = []
        self._last_push_at: Optional[datetime] = None

    @property
    def active(self) -> bool:
        return any(not t.done() for t in self._tasks)

    @property
    def health(self) -> ConnectionHealth:
        candidates = [t for t in (self._last_push_at, self.poller.last_success_at) if t is not None]
        return ConnectionHealth(
            connected=self.channel is not None and self.channel.is_connected,
            last_update_at=max(candidates) if candidates else None,
            reconnect_attempts=self.channel.reconnect_attempts if self.channel is not None else 0,
            poll_only=self.channel is None or self.channel.gave_up,
        )

    def start(self) -> None:
        """Spawn the poll loop and, when available, the push reader and its consumer."""
        if self.active:
            return
        self._tasks = [
            asyncio.create_task(self.poller.run(), name=f"poll_{self.event_id}"),
        ]
        if self.channel is not None:
            self._tasks.append(asyncio.create_task(self.channel.run(), name=f"push_{self.event_id}"))
            self._tasks.append(asyncio.create_task(self._consume(), name=f"consume_{self.event_id}"))
        logger.info(
            "Subscription started",
            event_id=self.event_id,
            push=self.channel is not None,
            interval_seconds=self.poller.interval_seconds,
        )

    async def stop(self) -> None:
        """Close the push channel and cancel the poll timer."""
        self.poller.stop()
        if self.channel is not None:
            await self.channel.close()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Subscription stopped", event_id=self.event_id)

    async def _consume(self) -> None:
        assert self.channel is not None
        while True:
            quote = await self.channel.queue.get()
            if quote.event_id != self.event_id:
                logger.debug(
                    "Dropping quote for another event",
                    event_id=self.event_id,
                    quote_event_id=quote.event_id,
                )
                continue
            self._last_push_at = self.channel.last_message_at
            self.cache.apply_update(quote, source="push")


class SubscriptionSupervisor:
    """
    Attach/detach odds subscriptions per viewed event.

    Attaching an already attached event returns the existing handle, so at
    most one push channel and one poller exist per event.
    """

    def __init__(
        self,
        cache: OddsFeedCache,
        stream_url: str = "",
        token: str = "",
        poll_interval_seconds: float = 30.0,
        reconnect_initial_delay: float = OddsPushChannel.INITIAL_RECONNECT_DELAY,
        reconnect_max_delay: float = OddsPushChannel.MAX_RECONNECT_DELAY,
        reconnect_max_attempts: int = OddsPushChannel.MAX_RECONNECT_ATTEMPTS,
        channel_factory: Optional[ChannelFactory] = None,
    ) -> None:
        self.cache = cache
        self.stream_url = stream_url
        self.token = token
        self.poll_interval_seconds = poll_interval_seconds
        self.reconnect_initial_delay = reconnect_initial_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.reconnect_max_attempts = reconnect_max_attempts
        self._channel_factory = channel_factory
        self._subscriptions: Dict[str, Subscription] = {}

    def _make_channel(self, event_id: str) -> Optional[OddsPushChannel]:
        if self._channel_factory is not None:
            return self._channel_factory(event_id)
        if not self.stream_url:
            return None
        return OddsPushChannel(
            self.stream_url,
            event_id,
            token=self.token,
            initial_delay=self.reconnect_initial_delay,
            max_delay=self.reconnect_max_delay,
            max_attempts=self.reconnect_max_attempts,
        )

    def attach(self, event_id: str) -> Subscription:
        event_id = str(event_id)
        existing = self._subscriptions.get(event_id)
        if existing is not None and existing.active:
            return existing

        subscription = Subscription(
            event_id,
            self.cache,
            OddsPoller(self.cache, event_id, interval_seconds=self.poll_interval_seconds),
            self._make_channel(event_id),
        )
        self._subscriptions[event_id] = subscription
        subscription.start()
        return subscription

    async def detach(self, event_id: str) -> bool:
        subscription = self._subscriptions.pop(str(event_id), None)
        if subscription is None:
            return False
        await subscription.stop()
        return True

    async def detach_all(self) -> None:
        for event_id in list(self._subscriptions):
            await self.detach(event_id)

    def get(self, event_id: str) -> Optional[Subscription]:
        return self._subscriptions.get(str(event_id))

    @property
    def event_ids(self) -> List[str]:
        return list(self._subscriptions)

    def health(self) -> Dict[str, ConnectionHealth]:
        return {event_id: sub.health for event_id, sub in self._subscriptions.items()}
