"""
Lightweight metrics and feed liveness tracking.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class MetricsRegistry:
    """
    Simple in-memory metrics store.
    """

    def __init__(self) -> None:
        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, Any] = {}

    def increment(self, name: str, value: int = 1) -> None:
        self._counters[name] += value

    def set_gauge(self, name: str, value: Any) -> None:
        self._gauges[name] = value

    def counter(self, name: str) -> int:
        return self._counters.get(name, 0)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
        }


@dataclass
class FeedStatus:
    last_update: Optional[datetime] = None
    source: Optional[str] = None


class FeedMonitor:
    """
    Track per-event feed liveness for health checks.

    Feeds are keyed by event id; ``source`` records whether the last update
    came from the push channel or the poller.
    """

    def __init__(self, stale_after_seconds: int = 60) -> None:
        self._stale_after_seconds = stale_after_seconds
        self._feeds: Dict[str, FeedStatus] = {}

    def mark_update(
        self,
        feed_name: str,
        timestamp: Optional[datetime] = None,
        source: Optional[str] = None,
    ) -> None:
        ts = timestamp or datetime.now(timezone.utc)
        self._feeds[feed_name] = FeedStatus(last_update=ts, source=source)

    def forget(self, feed_name: str) -> None:
        self._feeds.pop(feed_name, None)

    def is_stale(self, feed_name: str, now: Optional[datetime] = None) -> bool:
        status = self._feeds.get(feed_name)
        if status is None or status.last_update is None:
            return True
        now = now or datetime.now(timezone.utc)
        return (now - _aware(status.last_update)).total_seconds() > self._stale_after_seconds

    def snapshot(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        result: Dict[str, Any] = {}
        for name, status in self._feeds.items():
            last = status.last_update
            age = (now - _aware(last)).total_seconds() if last else None
            result[name] = {
                "last_update": last.isoformat() if last else None,
                "source": status.source,
                "age_seconds": age,
                "stale": age is not None and age > self._stale_after_seconds,
            }
        return result


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)
