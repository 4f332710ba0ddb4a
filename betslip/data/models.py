"""
Pydantic data models for the odds and bet-creation API.

Wire names follow the backend (``eventoId``, ``valorCuota``...); English
camelCase and the Python field names are accepted as well so push messages
and fixtures can use either.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, Optional
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# Helpers
# =============================================================================

def _aliases(*names: str) -> AliasChoices:
    return AliasChoices(*names)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_str(value: Any) -> Any:
    if isinstance(value, int):
        return str(value)
    return value


# Backend ids are numeric; the core keys everything by string.
IdStr = Annotated[str, BeforeValidator(_as_str)]


# =============================================================================
# Enums
# =============================================================================

TREND_THRESHOLD = Decimal("5")


class TrendDirection(str, Enum):
    """Short-term direction of an odds change."""
    UP = "UP"
    DOWN = "DOWN"
    STABLE = "STABLE"

    @classmethod
    def from_change(cls, percent_change: Decimal) -> "TrendDirection":
        # Strict inequalities: exactly +/-5% is still STABLE.
        if percent_change > TREND_THRESHOLD:
            return cls.UP
        if percent_change < -TREND_THRESHOLD:
            return cls.DOWN
        return cls.STABLE


# Backend spelling -> TrendDirection
_BACKEND_DIRECTIONS = {
    "SUBIENDO": TrendDirection.UP,
    "BAJANDO": TrendDirection.DOWN,
    "ESTABLE": TrendDirection.STABLE,
}
_DIRECTION_TO_BACKEND = {v: k for k, v in _BACKEND_DIRECTIONS.items()}


class AlertSide(str, Enum):
    """Fire when the price moves above or below the target."""
    ABOVE = "ABOVE"
    BELOW = "BELOW"


# =============================================================================
# Odds Models
# =============================================================================

class OddsQuote(BaseModel):
    """
    Latest known price for one outcome of an event.

    ``previous_value`` is kept for trend display only.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    event_id: IdStr = Field(validation_alias=_aliases("eventoId", "eventId", "event_id"))
    outcome_code: str = Field(validation_alias=_aliases("tipoResultado", "outcomeCode", "outcome_code"))
    current_value: Decimal = Field(gt=0, validation_alias=_aliases("valorCuota", "currentValue", "current_value"))
    previous_value: Optional[Decimal] = Field(
        default=None,
        validation_alias=_aliases("cuotaAnterior", "previousValue", "previous_value"),
    )
    last_updated: datetime = Field(
        validation_alias=_aliases("fechaActualizacion", "lastUpdated", "last_updated"),
    )
    active: bool = Field(default=True, validation_alias=_aliases("activa", "active"))
    quote_id: Optional[IdStr] = Field(default=None, validation_alias=_aliases("id", "quoteId", "quote_id"))

    @field_validator("last_updated")
    @classmethod
    def _normalize_ts(cls, value: datetime) -> datetime:
        return _utc(value)

    @property
    def key(self) -> tuple:
        return (self.event_id, self.outcome_code)


class OddsTrend(BaseModel):
    """
    Derived trend for one outcome.

    ``direction`` is always recomputed from ``percent_change`` so server and
    locally derived trends classify identically.
    """
    model_config = ConfigDict(populate_by_name=True)

    outcome_code: str = Field(validation_alias=_aliases("tipoResultado", "outcomeCode", "outcome_code"))
    current_value: Decimal = Field(validation_alias=_aliases("cuotaActual", "currentValue", "current_value"))
    direction: TrendDirection = Field(
        default=TrendDirection.STABLE,
        validation_alias=_aliases("tendencia", "direction"),
    )
    percent_change: Decimal = Field(
        default=Decimal("0"),
        validation_alias=_aliases("porcentajeCambio", "percentChange", "percent_change"),
    )
    aggregate_volume: Decimal = Field(
        default=Decimal("0"),
        validation_alias=_aliases("volumenTotal", "aggregateVolume", "aggregate_volume"),
    )
    event_id: Optional[IdStr] = Field(default=None, validation_alias=_aliases("eventoId", "eventId", "event_id"))

    @field_validator("direction", mode="before")
    @classmethod
    def _map_backend_direction(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _BACKEND_DIRECTIONS.get(value.upper(), value.upper())
        return value

    @model_validator(mode="after")
    def _derive_direction(self) -> "OddsTrend":
        self.direction = TrendDirection.from_change(self.percent_change)
        return self


class VolumeRecord(BaseModel):
    """Stake volume recorded for one outcome."""
    model_config = ConfigDict(populate_by_name=True)

    event_id: IdStr = Field(validation_alias=_aliases("eventoId", "eventId", "event_id"))
    outcome_code: str = Field(validation_alias=_aliases("tipoResultado", "outcomeCode", "outcome_code"))
    total_staked: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        validation_alias=_aliases("volumenTotal", "totalStaked", "total_staked"),
    )
    bet_count: int = Field(default=0, ge=0, validation_alias=_aliases("numeroApuestas", "betCount", "bet_count"))
    last_bet_at: Optional[datetime] = Field(
        default=None,
        validation_alias=_aliases("fechaUltimaApuesta", "lastBetAt", "last_bet_at"),
    )

    @field_validator("last_bet_at")
    @classmethod
    def _normalize_ts(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _utc(value)

    @property
    def key(self) -> tuple:
        return (self.event_id, self.outcome_code)


class OddsStatistics(BaseModel):
    """Per-event aggregate statistics."""
    model_config = ConfigDict(populate_by_name=True)

    event_id: IdStr = Field(validation_alias=_aliases("eventoId", "eventId", "event_id"))
    total_markets: int = Field(default=0, validation_alias=_aliases("totalMercados", "totalMarkets", "total_markets"))
    most_popular_market: Optional[str] = Field(
        default=None,
        validation_alias=_aliases("mercadoMasPopular", "mostPopularMarket", "most_popular_market"),
    )
    total_volume: Decimal = Field(
        default=Decimal("0"),
        validation_alias=_aliases("volumenTotalEvento", "totalVolume", "total_volume"),
    )
    last_updated: Optional[datetime] = Field(
        default=None,
        validation_alias=_aliases("ultimaActualizacion", "lastUpdated", "last_updated"),
    )


class OddsHistoryEntry(BaseModel):
    """One recorded price change."""
    model_config = ConfigDict(populate_by_name=True)

    entry_id: Optional[IdStr] = Field(default=None, validation_alias=_aliases("id", "entryId", "entry_id"))
    quote_id: Optional[IdStr] = Field(default=None, validation_alias=_aliases("cuotaEventoId", "quoteId", "quote_id"))
    previous_value: Decimal = Field(validation_alias=_aliases("cuotaAnterior", "previousValue", "previous_value"))
    new_value: Decimal = Field(validation_alias=_aliases("cuotaNueva", "newValue", "new_value"))
    changed_at: datetime = Field(validation_alias=_aliases("fechaCambio", "changedAt", "changed_at"))
    reason: Optional[str] = Field(default=None, validation_alias=_aliases("motivoCambio", "reason"))
    accumulated_volume: Decimal = Field(
        default=Decimal("0"),
        validation_alias=_aliases("volumenAcumulado", "accumulatedVolume", "accumulated_volume"),
    )


class OddsSummary(BaseModel):
    """Feed-wide summary across events."""
    model_config = ConfigDict(populate_by_name=True)

    total_events: int = Field(default=0, validation_alias=_aliases("totalEventos", "totalEvents", "total_events"))
    total_quotes: int = Field(default=0, validation_alias=_aliases("totalCuotas", "totalQuotes", "total_quotes"))
    updated_quotes: int = Field(
        default=0,
        validation_alias=_aliases("cuotasActualizadas", "updatedQuotes", "updated_quotes"),
    )
    rising_trends: int = Field(
        default=0,
        validation_alias=_aliases("tendenciasPositivas", "risingTrends", "rising_trends"),
    )
    falling_trends: int = Field(
        default=0,
        validation_alias=_aliases("tendenciasNegativas", "fallingTrends", "falling_trends"),
    )
    last_updated: Optional[datetime] = Field(
        default=None,
        validation_alias=_aliases("ultimaActualizacion", "lastUpdated", "last_updated"),
    )


class TrendFilter(BaseModel):
    """Filters accepted by the trends endpoint."""
    direction: Optional[TrendDirection] = None
    min_odds: Optional[Decimal] = None
    max_odds: Optional[Decimal] = None

    def to_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self.direction is not None:
            params["tendencia"] = _DIRECTION_TO_BACKEND[self.direction]
        if self.min_odds is not None:
            params["cuotaMinima"] = str(self.min_odds)
        if self.max_odds is not None:
            params["cuotaMaxima"] = str(self.max_odds)
        return params


class OddsAlert(BaseModel):
    """Local one-shot price alert."""
    alert_id: str = Field(default_factory=lambda: uuid4().hex)
    event_id: str
    outcome_code: str
    target: Decimal = Field(gt=0)
    side: AlertSide = AlertSide.ABOVE
    active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def is_triggered_by(self, value: Decimal) -> bool:
        if self.side == AlertSide.ABOVE:
            return value >= self.target
        return value <= self.target


# =============================================================================
# Bet Models
# =============================================================================

class RegisterBetRequest(BaseModel):
    """Stake report that makes the backend recompute prices."""
    event_id: str
    outcome_code: str
    amount: Decimal
    odds_used: Decimal

    def to_api_payload(self) -> dict:
        return {
            "eventoId": self.event_id,
            "tipoResultado": self.outcome_code,
            "monto": str(self.amount),
            "cuotaUtilizada": str(self.odds_used),
        }


class CreateBetRequest(BaseModel):
    """Request body for creating a bet."""
    event_id: str
    market_code: str
    stake: Decimal = Field(gt=0)
    odds: Decimal = Field(gt=0)
    prediction: str
    detail: Optional[str] = None
    odds_confirmed: bool = True
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    match_time: Optional[datetime] = None

    def to_api_payload(self) -> dict:
        """Convert to API request payload."""
        payload = {
            "idEvento": self.event_id,
            "tipoApuesta": self.market_code,
            "montoApuesta": str(self.stake),
            "cuotaApuesta": str(self.odds),
            "prediccionUsuario": self.prediction,
            "cuotaConfirmada": self.odds_confirmed,
        }
        if self.detail is not None:
            payload["detalleApuesta"] = self.detail
        if self.home_team is not None:
            payload["equipoLocal"] = self.home_team
        if self.away_team is not None:
            payload["equipoVisitante"] = self.away_team
        if self.match_time is not None:
            payload["fechaEvento"] = self.match_time.date().isoformat()
        return payload


class BetRecord(BaseModel):
    """Bet as persisted by the backend."""
    model_config = ConfigDict(populate_by_name=True)

    bet_id: IdStr = Field(validation_alias=_aliases("idApuesta", "betId", "bet_id", "id"))
    event_id: IdStr = Field(validation_alias=_aliases("idEvento", "eventId", "event_id"))
    market_code: str = Field(validation_alias=_aliases("tipoApuesta", "marketCode", "market_code"))
    stake: Decimal = Field(validation_alias=_aliases("montoApuesta", "stake"))
    odds: Decimal = Field(validation_alias=_aliases("cuotaApuesta", "odds"))
    potential_payout: Optional[Decimal] = Field(
        default=None,
        validation_alias=_aliases("gananciaPotencial", "potentialPayout", "potential_payout"),
    )
    status: Optional[str] = Field(default=None, validation_alias=_aliases("estadoApuesta", "status"))
    created_at: Optional[datetime] = Field(
        default=None,
        validation_alias=_aliases("fechaCreacion", "createdAt", "created_at"),
    )
