"""
Odds data package.

This package provides Pydantic models for API data, trend derivation, and
the in-process event bus. The cache, poller and subscription supervisor
live in their own modules.
"""

from .models import (
    # Enums
    TrendDirection,
    AlertSide,
    # Odds models
    OddsQuote,
    OddsTrend,
    VolumeRecord,
    OddsStatistics,
    OddsHistoryEntry,
    OddsSummary,
    TrendFilter,
    OddsAlert,
    # Bet models
    RegisterBetRequest,
    CreateBetRequest,
    BetRecord,
)
from .event_bus import (
    EVENT_FEED_NOTICE,
    EVENT_ODDS_ALERT,
    EVENT_ODDS_DRIFT,
    EVENT_ODDS_UPDATE,
    EVENT_SUBMISSION_RESULT,
    EventBus,
    Notice,
    NoticeLevel,
)
from .trends import classify_trend, derive_trend, filter_trends, percent_change

__all__ = [
    # Enums
    "TrendDirection",
    "AlertSide",
    # Odds models
    "OddsQuote",
    "OddsTrend",
    "VolumeRecord",
    "OddsStatistics",
    "OddsHistoryEntry",
    "OddsSummary",
    "TrendFilter",
    "OddsAlert",
    # Bet models
    "RegisterBetRequest",
    "CreateBetRequest",
    "BetRecord",
    # Event bus
    "EVENT_FEED_NOTICE",
    "EVENT_ODDS_ALERT",
    "EVENT_ODDS_DRIFT",
    "EVENT_ODDS_UPDATE",
    "EVENT_SUBMISSION_RESULT",
    "EventBus",
    "Notice",
    "NoticeLevel",
    # Trends
    "classify_trend",
    "derive_trend",
    "filter_trends",
    "percent_change",
]
