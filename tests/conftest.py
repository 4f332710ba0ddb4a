"""
Shared fixtures: an in-memory collaborator client and quote builders.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from betslip.data.event_bus import EventBus
from betslip.data.models import (
    BetRecord,
    CreateBetRequest,
    OddsQuote,
    OddsStatistics,
    OddsTrend,
    RegisterBetRequest,
    VolumeRecord,
)
from betslip.data.odds_cache import OddsFeedCache
from betslip.utils.metrics import FeedMonitor, MetricsRegistry

BASE_TIME = datetime(2025, 3, 1, 18, 0, tzinfo=timezone.utc)


class FakeOddsClient:
    """
    Stand-in for OddsApiClient.

    Any value stored as an Exception is raised by the matching call.
    ``create_outcomes`` is consumed in order, one entry per create_bet call.
    """

    def __init__(self) -> None:
        self.odds: Dict[str, Any] = {}
        self.volume: Dict[str, Any] = {}
        self.statistics: Dict[str, Any] = {}
        self.trends: Any = []
        self.register_response: Any = None
        self.create_outcomes: List[Any] = []

        self.odds_calls: List[str] = []
        self.created: List[CreateBetRequest] = []
        self.registered: List[RegisterBetRequest] = []

    @staticmethod
    def _resolve(value: Any) -> Any:
        if isinstance(value, Exception):
            raise value
        return value

    async def get_event_odds(self, event_id: str) -> List[OddsQuote]:
        self.odds_calls.append(event_id)
        return list(self._resolve(self.odds.get(event_id, [])))

    async def get_trends(self, event_id=None, filters=None) -> List[OddsTrend]:
        return list(self._resolve(self.trends))

    async def get_volume(self, event_id: str) -> List[VolumeRecord]:
        return list(self._resolve(self.volume.get(event_id, [])))

    async def get_statistics(self, event_id: str) -> OddsStatistics:
        return self._resolve(self.statistics.get(event_id, OddsStatistics(event_id=event_id)))

    async def get_history(self, event_id: str, outcome_code=None, page=None, size=None):
        return []

    async def get_summary(self):
        raise NotImplementedError

    async def register_bet(self, request: RegisterBetRequest) -> List[OddsQuote]:
        self.registered.append(request)
        return list(self._resolve(self.register_response or []))

    async def create_bet(self, request: CreateBetRequest) -> BetRecord:
        self.created.append(request)
        outcome: Optional[Any] = self.create_outcomes.pop(0) if self.create_outcomes else None
        self._resolve(outcome)
        if isinstance(outcome, BetRecord):
            return outcome
        return BetRecord.model_validate(
            {
                "idApuesta": len(self.created),
                "idEvento": request.event_id,
                "tipoApuesta": request.market_code,
                "montoApuesta": str(request.stake),
                "cuotaApuesta": str(request.odds),
                "estadoApuesta": "PENDIENTE",
            }
        )


def build_quote(
    event_id: str = "55",
    outcome_code: str = "LOCAL",
    value: str = "1.90",
    seconds: int = 0,
    active: bool = True,
    previous: Optional[str] = None,
) -> OddsQuote:
    return OddsQuote(
        event_id=event_id,
        outcome_code=outcome_code,
        current_value=Decimal(value),
        previous_value=Decimal(previous) if previous is not None else None,
        last_updated=BASE_TIME + timedelta(seconds=seconds),
        active=active,
    )


@pytest.fixture
def make_quote():
    return build_quote


@pytest.fixture
def fake_client():
    return FakeOddsClient()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def metrics():
    return MetricsRegistry()


@pytest.fixture
def feed_monitor():
    return FeedMonitor(stale_after_seconds=60)


@pytest.fixture
def cache(fake_client, event_bus, feed_monitor, metrics):
    return OddsFeedCache(fake_client, event_bus=event_bus, feed_monitor=feed_monitor, metrics=metrics)
