"""
Odds feed cache.

Holds the latest known price per (event, outcome) plus the trend, volume and
statistics views derived from it. Updates arrive from the poller, the push
channel and stake registration; all of them go through ``apply_update`` so
ordering is decided by the server timestamp, never by arrival order.

Read-path failures never clear state: the last-known values stay cached and
the failure is reported as an ``Err`` result plus a feed notice.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import structlog

from ..api.result import Err, Ok, Result, capture
from ..errors import FeedUnavailable, NetworkError
from ..utils.metrics import FeedMonitor, MetricsRegistry
from .event_bus import (
    EVENT_FEED_NOTICE,
    EVENT_ODDS_ALERT,
    EVENT_ODDS_UPDATE,
    EventBus,
    Notice,
    NoticeLevel,
)
from .models import (
    AlertSide,
    OddsAlert,
    OddsHistoryEntry,
    OddsQuote,
    OddsStatistics,
    OddsSummary,
    OddsTrend,
    RegisterBetRequest,
    TrendFilter,
    VolumeRecord,
)
from .trends import derive_trend, filter_trends

logger = structlog.get_logger()


class OddsFeedCache:
    """
    Single source of truth for what each outcome is currently priced at.

    ``client`` is any object exposing the ``OddsApiClient`` read methods.
    """

    def __init__(
        self,
        client: Any,
        event_bus: Optional[EventBus] = None,
        feed_monitor: Optional[FeedMonitor] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._client = client
        self._event_bus = event_bus
        self._feed_monitor = feed_monitor
        self._metrics = metrics

        self._quotes: Dict[str, Dict[str, OddsQuote]] = {}
        self._volume: Dict[str, Dict[str, VolumeRecord]] = {}
        self._trends: Dict[str, Dict[str, OddsTrend]] = {}
        self._server_trends: Dict[Optional[str], List[OddsTrend]] = {}
        self._statistics: Dict[str, OddsStatistics] = {}
        self._history: Dict[Tuple[str, Optional[str]], List[OddsHistoryEntry]] = {}
        self._summary: Optional[OddsSummary] = None
        self._unavailable: Dict[str, FeedUnavailable] = {}
        self._alerts: Dict[str, OddsAlert] = {}

    # =========================================================================
    # Loading
    # =========================================================================

    async def load_odds(self, event_id: str, source: str = "poll") -> Result:
        """
        Fetch every quote for an event and merge it into the cache.

        Quotes are applied one by one through the timestamp guard, so a slow
        response cannot regress a newer push update. Cached outcomes missing
        from a successful response are marked inactive.
        """
        event_id = str(event_id)
        result = await capture(self._client.get_event_odds(event_id))
        if isinstance(result, Err):
            self._read_failed(event_id, "odds", result)
            self._unavailable[event_id] = FeedUnavailable(event_id, reason=result.message)
            return result

        quotes: List[OddsQuote] = result.value
        seen = set()
        for quote in quotes:
            seen.add(quote.outcome_code)
            self.apply_update(quote, source=source)

        for outcome_code, cached in list(self._quotes.get(event_id, {}).items()):
            if outcome_code not in seen and cached.active:
                self._store(cached.model_copy(update={"active": False}), source=source)
                logger.info("Outcome withdrawn from feed", event_id=event_id, outcome=outcome_code)

        self._unavailable.pop(event_id, None)
        if self._feed_monitor is not None:
            self._feed_monitor.mark_update(event_id, source=source)
        logger.debug("Odds loaded", event_id=event_id, quotes=len(quotes), source=source)
        return Ok(self.quotes_for(event_id))

    async def load_trends(
        self,
        event_id: Optional[str] = None,
        filters: Optional[TrendFilter] = None,
    ) -> Result:
        key = str(event_id) if event_id is not None else None
        result = await capture(self._client.get_trends(key, filters))
        if isinstance(result, Err):
            self._read_failed(key, "trends", result)
            return result
        self._server_trends[key] = result.value
        return Ok(result.value)

    async def load_volume(self, event_id: str) -> Result:
        event_id = str(event_id)
        result = await capture(self._client.get_volume(event_id))
        if isinstance(result, Err):
            self._read_failed(event_id, "volume", result)
            return result
        for record in result.value:
            self.apply_volume(record)
        return Ok(self.volume_for(event_id))

    async def load_statistics(self, event_id: str) -> Result:
        event_id = str(event_id)
        result = await capture(self._client.get_statistics(event_id))
        if isinstance(result, Err):
            self._read_failed(event_id, "statistics", result)
            return result
        self._statistics[event_id] = result.value
        return Ok(result.value)

    async def load_history(self, event_id: str, outcome_code: Optional[str] = None) -> Result:
        event_id = str(event_id)
        result = await capture(self._client.get_history(event_id, outcome_code))
        if isinstance(result, Err):
            self._read_failed(event_id, "history", result)
            return result
        self._history[(event_id, outcome_code)] = result.value
        return Ok(result.value)

    async def load_summary(self) -> Result:
        result = await capture(self._client.get_summary())
        if isinstance(result, Err):
            self._read_failed(None, "summary", result)
            return result
        self._summary = result.value
        return Ok(result.value)

    async def register_bet(
        self,
        event_id: str,
        outcome_code: str,
        amount: Decimal,
        odds_used: Decimal,
    ) -> Result:
        """Report a placed stake and apply the prices the backend recomputes."""
        request = RegisterBetRequest(
            event_id=str(event_id),
            outcome_code=outcome_code,
            amount=amount,
            odds_used=odds_used,
        )
        result = await capture(self._client.register_bet(request))
        if isinstance(result, Err):
            logger.warning(
                "Stake registration failed",
                event_id=event_id,
                outcome=outcome_code,
                kind=result.kind.value,
                error=result.message,
            )
            return result
        for quote in result.value:
            self.apply_update(quote, source="register")
        return Ok(result.value)

    def _read_failed(self, event_id: Optional[str], what: str, err: Err) -> None:
        logger.warning(
            "Feed read failed, serving cached data",
            event_id=event_id,
            view=what,
            kind=err.kind.value,
            error=err.message,
        )
        if self._metrics is not None:
            self._metrics.increment("feed_errors")
        if self._event_bus is not None:
            error = NetworkError(err.message)
            self._event_bus.publish(
                EVENT_FEED_NOTICE,
                Notice(
                    level=NoticeLevel.WARNING,
                    message=f"Could not refresh {what}; showing last known values",
                    event_id=event_id,
                    data={"view": what, "kind": err.kind.value, "error": str(error)},
                ),
            )

    # =========================================================================
    # Updates
    # =========================================================================

    def apply_update(self, quote: OddsQuote, source: str = "push") -> bool:
        """
        Upsert one quote.

        Ignored when the quote is older than the cached one for the same
        outcome. Returns True when the cache changed.
        """
        cached = self._quotes.get(quote.event_id, {}).get(quote.outcome_code)
        if cached is not None:
            if quote.last_updated < cached.last_updated:
                logger.debug(
                    "Ignoring stale quote",
                    event_id=quote.event_id,
                    outcome=quote.outcome_code,
                    incoming=quote.last_updated.isoformat(),
                    cached=cached.last_updated.isoformat(),
                    source=source,
                )
                if self._metrics is not None:
                    self._metrics.increment("quotes_stale_ignored")
                return False
            if quote.previous_value is None:
                if quote.current_value != cached.current_value:
                    previous = cached.current_value
                else:
                    previous = cached.previous_value
                quote = quote.model_copy(update={"previous_value": previous})
            if quote == cached:
                return False

        self._store(quote, source=source)
        return True

    def _store(self, quote: OddsQuote, source: str) -> None:
        self._quotes.setdefault(quote.event_id, {})[quote.outcome_code] = quote
        self._refresh_trend(quote.event_id, quote.outcome_code)
        self._unavailable.pop(quote.event_id, None)

        if self._metrics is not None:
            self._metrics.increment("quotes_applied")
        if self._feed_monitor is not None:
            self._feed_monitor.mark_update(quote.event_id, quote.last_updated, source=source)
        if self._event_bus is not None:
            self._event_bus.publish(EVENT_ODDS_UPDATE, quote)

        self._check_alerts(quote)

    def apply_volume(self, record: VolumeRecord) -> bool:
        """
        Merge a volume record.

        Volume only grows while the event is open; a lower total is ignored.
        """
        cached = self._volume.get(record.event_id, {}).get(record.outcome_code)
        if cached is not None and (
            record.total_staked < cached.total_staked or record.bet_count < cached.bet_count
        ):
            logger.debug(
                "Ignoring regressing volume",
                event_id=record.event_id,
                outcome=record.outcome_code,
                incoming=str(record.total_staked),
                cached=str(cached.total_staked),
            )
            return False
        self._volume.setdefault(record.event_id, {})[record.outcome_code] = record
        self._refresh_trend(record.event_id, record.outcome_code)
        return True

    def _refresh_trend(self, event_id: str, outcome_code: str) -> None:
        quote = self._quotes.get(event_id, {}).get(outcome_code)
        if quote is None:
            return
        volume = self._volume.get(event_id, {}).get(outcome_code)
        self._trends.setdefault(event_id, {})[outcome_code] = derive_trend(quote, volume)

    def close_event(self, event_id: str) -> None:
        """Drop everything known about a closed event."""
        event_id = str(event_id)
        self._quotes.pop(event_id, None)
        self._volume.pop(event_id, None)
        self._trends.pop(event_id, None)
        self._server_trends.pop(event_id, None)
        self._statistics.pop(event_id, None)
        self._unavailable.pop(event_id, None)
        for key in [k for k in self._history if k[0] == event_id]:
            del self._history[key]
        for alert_id in [a.alert_id for a in self._alerts.values() if a.event_id == event_id]:
            del self._alerts[alert_id]
        if self._feed_monitor is not None:
            self._feed_monitor.forget(event_id)
        logger.info("Event closed, odds dropped", event_id=event_id)

    # =========================================================================
    # Alerts
    # =========================================================================

    def add_alert(
        self,
        event_id: str,
        outcome_code: str,
        target: Decimal,
        side: AlertSide = AlertSide.ABOVE,
    ) -> OddsAlert:
        alert = OddsAlert(event_id=str(event_id), outcome_code=outcome_code, target=target, side=side)
        self._alerts[alert.alert_id] = alert
        logger.info(
            "Odds alert added",
            alert_id=alert.alert_id,
            event_id=alert.event_id,
            outcome=outcome_code,
            target=str(target),
            side=side.value,
        )
        return alert

    def remove_alert(self, alert_id: str) -> bool:
        return self._alerts.pop(alert_id, None) is not None

    def alerts(self, active_only: bool = False) -> List[OddsAlert]:
        return [a for a in self._alerts.values() if a.active or not active_only]

    def _check_alerts(self, quote: OddsQuote) -> None:
        if not quote.active:
            return
        for alert in self._alerts.values():
            if not alert.active or alert.event_id != quote.event_id or alert.outcome_code != quote.outcome_code:
                continue
            if alert.is_triggered_by(quote.current_value):
                alert.active = False
                logger.info(
                    "Odds alert triggered",
                    alert_id=alert.alert_id,
                    event_id=quote.event_id,
                    outcome=quote.outcome_code,
                    value=str(quote.current_value),
                )
                if self._event_bus is not None:
                    self._event_bus.publish(EVENT_ODDS_ALERT, (alert, quote))

    # =========================================================================
    # Queries
    # =========================================================================

    def get_quote(self, event_id: str, outcome_code: str) -> Optional[OddsQuote]:
        return self._quotes.get(str(event_id), {}).get(outcome_code)

    def quotes_for(self, event_id: str) -> List[OddsQuote]:
        return list(self._quotes.get(str(event_id), {}).values())

    def trend_for(self, event_id: str, outcome_code: str) -> Optional[OddsTrend]:
        return self._trends.get(str(event_id), {}).get(outcome_code)

    def trends_for(self, event_id: str, filters: Optional[TrendFilter] = None) -> List[OddsTrend]:
        return filter_trends(self._trends.get(str(event_id), {}).values(), filters)

    def server_trends(self, event_id: Optional[str] = None) -> List[OddsTrend]:
        key = str(event_id) if event_id is not None else None
        return list(self._server_trends.get(key, []))

    def volume_for(self, event_id: str) -> List[VolumeRecord]:
        return list(self._volume.get(str(event_id), {}).values())

    def statistics_for(self, event_id: str) -> Optional[OddsStatistics]:
        return self._statistics.get(str(event_id))

    def history_for(self, event_id: str, outcome_code: Optional[str] = None) -> List[OddsHistoryEntry]:
        return list(self._history.get((str(event_id), outcome_code), []))

    @property
    def summary(self) -> Optional[OddsSummary]:
        return self._summary

    def unavailable_reason(self, event_id: str) -> Optional[FeedUnavailable]:
        return self._unavailable.get(str(event_id))

    def events(self) -> List[str]:
        return list(self._quotes.keys())
