"""
Minimal in-process pub/sub for odds updates and user-facing notices.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

logger = structlog.get_logger()

EVENT_ODDS_UPDATE = "odds_update"
EVENT_ODDS_DRIFT = "odds_drift"
EVENT_ODDS_ALERT = "odds_alert"
EVENT_FEED_NOTICE = "feed_notice"
EVENT_SUBMISSION_RESULT = "submission_result"


class NoticeLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    BLOCKING = "blocking"


@dataclass(frozen=True)
class Notice:
    """
    Message for the presentation layer.

    BLOCKING notices require explicit user action; the rest are toasts.
    """

    level: NoticeLevel
    message: str
    event_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventBus:
    """
    Simple in-memory event bus.

    Publishing never blocks: every subscriber owns a queue and a full queue
    drops the payload for that subscriber only.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[asyncio.Queue]] = defaultdict(list)

    def subscribe(self, topic: str, maxsize: int = 0) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers[topic].append(queue)
        logger.debug("Event bus subscribed", topic=topic, total=len(self._subscribers[topic]))
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        if queue in self._subscribers.get(topic, []):
            self._subscribers[topic].remove(queue)
        logger.debug("Event bus unsubscribed", topic=topic)

    def publish(self, topic: str, payload: Any) -> int:
        delivered = 0
        for queue in list(self._subscribers.get(topic, [])):
            try:
                queue.put_nowait(payload)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Event bus queue full", topic=topic)
        return delivered

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))
