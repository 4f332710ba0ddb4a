"""
Odds reconciliation between what the user saw and what the feed knows.

At add time a cached active quote wins over the displayed price. At submit
time the cache is read again and the live value is always the one sent; a
move beyond the drift tolerance is surfaced as a non-blocking notice.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import structlog

from ..data.event_bus import EVENT_ODDS_DRIFT, EventBus, Notice, NoticeLevel
from ..data.odds_cache import OddsFeedCache
from ..errors import FeedUnavailable
from .cart import to_decimal

logger = structlog.get_logger()

DEFAULT_DRIFT_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class ResolvedOdds:
    """
    Odds chosen for a line.

    ``confirmed`` is False when no live quote backed the value.
    """
    value: Decimal
    confirmed: bool
    source: str  # "feed" | "displayed" | "at_add"
    drift: Optional[Decimal] = None


class ReconciliationEngine:
    def __init__(
        self,
        cache: OddsFeedCache,
        event_bus: Optional[EventBus] = None,
        drift_tolerance: Decimal = DEFAULT_DRIFT_TOLERANCE,
    ) -> None:
        self.cache = cache
        self.event_bus = event_bus
        self.drift_tolerance = to_decimal(drift_tolerance)

    def resolve_for_add(
        self,
        event_id: str,
        outcome_code: str,
        displayed_odds: Optional[Decimal] = None,
    ) -> ResolvedOdds:
        """
        Pick the odds a new cart line starts with.

        Raises:
            FeedUnavailable: The outcome is suspended, or nothing at all is known
        """
        quote = self.cache.get_quote(event_id, outcome_code)
        if quote is not None:
            if not quote.active:
                raise FeedUnavailable(str(event_id), outcome_code, reason="outcome suspended")
            return ResolvedOdds(value=quote.current_value, confirmed=True, source="feed")

        if displayed_odds is None:
            outage = self.cache.unavailable_reason(event_id)
            raise FeedUnavailable(
                str(event_id),
                outcome_code,
                reason=outage.reason if outage is not None else "no quote received",
            )

        logger.info(
            "Using displayed odds, no live quote",
            event_id=event_id,
            outcome=outcome_code,
            odds=str(displayed_odds),
        )
        return ResolvedOdds(value=to_decimal(displayed_odds), confirmed=False, source="displayed")

    def resolve_for_submit(self, line: Any) -> ResolvedOdds:
        """
        Re-read the cache for a line about to be submitted.

        ``line`` needs ``line_id``, ``event_id``, ``market_code`` and
        ``odds_at_add``.
        """
        quote = self.cache.get_quote(line.event_id, line.market_code)
        if quote is None:
            logger.info(
                "No live quote at submit, keeping odds at add",
                line_id=line.line_id,
                event_id=line.event_id,
                outcome=line.market_code,
            )
            return ResolvedOdds(value=line.odds_at_add, confirmed=False, source="at_add")

        if not quote.active:
            raise FeedUnavailable(line.event_id, line.market_code, reason="outcome suspended")

        drift = quote.current_value - line.odds_at_add
        if abs(drift) > self.drift_tolerance:
            logger.info(
                "Odds drifted since add",
                line_id=line.line_id,
                event_id=line.event_id,
                outcome=line.market_code,
                odds_at_add=str(line.odds_at_add),
                live=str(quote.current_value),
            )
            if self.event_bus is not None:
                self.event_bus.publish(
                    EVENT_ODDS_DRIFT,
                    Notice(
                        level=NoticeLevel.WARNING,
                        message=(
                            f"Odds for {line.market_code} changed from "
                            f"{line.odds_at_add} to {quote.current_value}"
                        ),
                        event_id=line.event_id,
                        data={
                            "line_id": line.line_id,
                            "outcome_code": line.market_code,
                            "odds_at_add": str(line.odds_at_add),
                            "live": str(quote.current_value),
                            "drift": str(drift),
                        },
                    ),
                )
        return ResolvedOdds(value=quote.current_value, confirmed=True, source="feed", drift=drift)
