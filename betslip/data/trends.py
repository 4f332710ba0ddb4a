"""
Trend derivation helpers.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

from .models import OddsQuote, OddsTrend, TrendDirection, TrendFilter, VolumeRecord

_PCT_QUANT = Decimal("0.0001")


def percent_change(current: Decimal, previous: Optional[Decimal], quantize: bool = True) -> Decimal:
    """
    Percent move from ``previous`` to ``current``; 0 without a usable base.

    Rounded to four places for display unless ``quantize`` is False.
    """
    if previous is None or previous <= 0:
        return Decimal("0")
    change = (current - previous) / previous * Decimal("100")
    if not quantize:
        return change
    return change.quantize(_PCT_QUANT, rounding=ROUND_HALF_UP)


def classify_trend(change: Decimal) -> TrendDirection:
    return TrendDirection.from_change(change)


def derive_trend(quote: OddsQuote, volume: Optional[VolumeRecord] = None) -> OddsTrend:
    change = percent_change(quote.current_value, quote.previous_value, quantize=False)
    trend = OddsTrend(
        event_id=quote.event_id,
        outcome_code=quote.outcome_code,
        current_value=quote.current_value,
        percent_change=change.quantize(_PCT_QUANT, rounding=ROUND_HALF_UP),
        aggregate_volume=volume.total_staked if volume is not None else Decimal("0"),
    )
    # Direction follows the exact change, not the rounded percentage.
    trend.direction = classify_trend(change)
    return trend


def filter_trends(trends: Iterable[OddsTrend], trend_filter: Optional[TrendFilter]) -> List[OddsTrend]:
    if trend_filter is None:
        return list(trends)
    result = []
    for trend in trends:
        if trend_filter.direction is not None and trend.direction != trend_filter.direction:
            continue
        if trend_filter.min_odds is not None and trend.current_value < trend_filter.min_odds:
            continue
        if trend_filter.max_odds is not None and trend.current_value > trend_filter.max_odds:
            continue
        result.append(trend)
    return result
