"""
Bet cart state.

Lines are kept in insertion order. Totals are never stored; they are derived
from the lines on every read, so they cannot drift from the line list.
Mutations are synchronous and only allowed while the cart is OPEN.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

import structlog

from ..errors import CartLockedError, ValidationError

logger = structlog.get_logger()


def to_decimal(value: Any) -> Decimal:
    """Convert user input to Decimal; floats go through ``str`` to keep their written value."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))



# =============================================================================
# Data Classes
# =============================================================================

class CartState(str, Enum):
    """Cart lifecycle: OPEN -> SUBMITTING -> SUCCESS | PARTIAL_FAILURE -> OPEN."""
    OPEN = "open"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"


@dataclass
class CartLine:
    """
    One selection in the cart.

    Attributes:
        line_id: Locally generated identifier
        event_id: Event the selection belongs to
        market_code: Outcome code the odds are quoted for (e.g. LOCAL)
        odds_at_add: Odds resolved when the line was added
        stake: Amount wagered
        market_label: Human readable market name
        prediction: Prediction sent with the bet
        detail_code: Optional bet detail code
        event_name: Display name of the event
        home_team: Home team name
        away_team: Away team name
        match_time: Scheduled start of the event
        confirmed: False when the odds were not backed by a live quote
        added_at: When the line was added
    """
    event_id: str
    market_code: str
    odds_at_add: Decimal
    stake: Decimal
    market_label: Optional[str] = None
    prediction: Optional[str] = None
    detail_code: Optional[str] = None
    event_name: Optional[str] = None
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    match_time: Optional[datetime] = None
    confirmed: bool = True
    line_id: str = field(default_factory=lambda: uuid4().hex)
    added_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def potential_payout(self) -> Decimal:
        return self.stake * self.odds_at_add

    @property
    def key(self) -> tuple:
        return (self.event_id, self.market_code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line_id": self.line_id,
            "event_id": self.event_id,
            "event_name": self.event_name,
            "market_code": self.market_code,
            "market_label": self.market_label,
            "odds_at_add": str(self.odds_at_add),
            "stake": str(self.stake),
            "potential_payout": str(self.potential_payout),
            "confirmed": self.confirmed,
            "added_at": self.added_at.isoformat(),
        }


@dataclass(frozen=True)
class CartTotals:
    count: int
    total_stake: Decimal
    total_potential: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "total_stake": str(self.total_stake),
            "total_potential": str(self.total_potential),
        }


@dataclass(frozen=True)
class CartSummary:
    """
    Totals plus accumulator statistics.

    ``combined_odds`` is the product of every line's odds, as if the lines
    were placed as a single accumulator.
    """
    totals: CartTotals
    combined_odds: Decimal
    average_stake: Decimal
    average_odds: Decimal

    def to_dict(self) -> Dict[str, Any]:
        data = self.totals.to_dict()
        data.update(
            combined_odds=str(self.combined_odds),
            average_stake=str(self.average_stake),
            average_odds=str(self.average_odds),
        )
        return data


# =============================================================================
# Cart
# =============================================================================

class BetCart:
    """
    Ordered collection of cart lines with limits and a submission lock.

    Example:
        >>> cart = BetCart()
        >>> line = cart.add_line("55", "LOCAL", Decimal("1.90"), Decimal("10"))
        >>> cart.totals.total_potential
        Decimal('19.00')
    """

    DEFAULT_MIN_STAKE = Decimal("0")
    DEFAULT_MAX_STAKE = Decimal("10000")
    DEFAULT_MIN_ODDS = Decimal("1.01")
    DEFAULT_MAX_ODDS = Decimal("50.0")
    DEFAULT_MAX_LINES = 10

    def __init__(
        self,
        min_stake: Decimal = DEFAULT_MIN_STAKE,
        max_stake: Decimal = DEFAULT_MAX_STAKE,
        min_odds: Decimal = DEFAULT_MIN_ODDS,
        max_odds: Decimal = DEFAULT_MAX_ODDS,
        max_lines: int = DEFAULT_MAX_LINES,
    ) -> None:
        """
        Initialize an empty cart.

        Args:
            min_stake: Exclusive lower bound for a stake
            max_stake: Inclusive upper bound for a stake
            min_odds: Lowest odds accepted on a line
            max_odds: Highest odds accepted on a line
            max_lines: Maximum number of lines
        """
        self.min_stake = to_decimal(min_stake)
        self.max_stake = to_decimal(max_stake)
        self.min_odds = to_decimal(min_odds)
        self.max_odds = to_decimal(max_odds)
        self.max_lines = max_lines

        self._lines: List[CartLine] = []
        self._state = CartState.OPEN
        self.last_outcome: Optional[CartState] = None
        self.last_error: Optional[str] = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> CartState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CartState.OPEN

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def totals(self) -> CartTotals:
        return CartTotals(
            count=len(self._lines),
            total_stake=sum((line.stake for line in self._lines), Decimal("0")),
            total_potential=sum((line.potential_payout for line in self._lines), Decimal("0")),
        )

    def summary(self) -> CartSummary:
        totals = self.totals
        combined = Decimal("1")
        for line in self._lines:
            combined *= line.odds_at_add
        if not self._lines:
            return CartSummary(totals, Decimal("0"), Decimal("0"), Decimal("0"))
        count = Decimal(totals.count)
        return CartSummary(
            totals=totals,
            combined_odds=combined,
            average_stake=totals.total_stake / count,
            average_odds=sum((line.odds_at_add for line in self._lines), Decimal("0")) / count,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_line(self, line_id: str) -> Optional[CartLine]:
        for line in self._lines:
            if line.line_id == line_id:
                return line
        return None

    def find(self, event_id: str, market_code: str) -> Optional[CartLine]:
        key = (str(event_id), market_code)
        for line in self._lines:
            if line.key == key:
                return line
        return None

    def contains(self, event_id: str, market_code: str) -> bool:
        return self.find(event_id, market_code) is not None

    def lines_for_event(self, event_id: str) -> List[CartLine]:
        return [line for line in self._lines if line.event_id == str(event_id)]

    # =========================================================================
    # Mutations
    # =========================================================================

    def _require_open(self, action: str) -> None:
        if self._state != CartState.OPEN:
            raise CartLockedError(f"Cannot {action} while cart is {self._state.value}")

    def _validate_stake(self, stake: Decimal) -> Decimal:
        try:
            stake = to_decimal(stake)
        except (ArithmeticError, TypeError, ValueError):
            raise ValidationError(f"Invalid stake: {stake!r}")
        if not stake.is_finite() or stake <= self.min_stake:
            raise ValidationError(f"Stake must be greater than {self.min_stake}")
        if stake > self.max_stake:
            raise ValidationError(f"Stake must not exceed {self.max_stake}")
        return stake

    def _validate_odds(self, odds: Decimal) -> Decimal:
        try:
            odds = to_decimal(odds)
        except (ArithmeticError, TypeError, ValueError):
            raise ValidationError(f"Invalid odds: {odds!r}")
        if not odds.is_finite() or odds < self.min_odds or odds > self.max_odds:
            raise ValidationError(f"Odds must be between {self.min_odds} and {self.max_odds}")
        return odds

    def add_line(
        self,
        event_id: str,
        market_code: str,
        odds: Decimal,
        stake: Decimal,
        *,
        confirmed: bool = True,
        market_label: Optional[str] = None,
        prediction: Optional[str] = None,
        detail_code: Optional[str] = None,
        event_name: Optional[str] = None,
        home_team: Optional[str] = None,
        away_team: Optional[str] = None,
        match_time: Optional[datetime] = None,
    ) -> CartLine:
        """
        Append a line.

        Adding an (event, market) pair already in the cart changes nothing
        and returns the existing line; ``last_error`` explains why.

        Raises:
            CartLockedError: Cart is not OPEN
            ValidationError: Stake or odds out of range, or cart full
        """
        self._require_open("add a line")

        existing = self.find(event_id, market_code)
        if existing is not None:
            self.last_error = f"Selection {market_code} for event {event_id} is already in the cart"
            logger.info(
                "Duplicate selection ignored",
                event_id=str(event_id),
                market_code=market_code,
                line_id=existing.line_id,
            )
            return existing

        if len(self._lines) >= self.max_lines:
            raise ValidationError(f"Cart is full ({self.max_lines} lines)")

        line = CartLine(
            event_id=str(event_id),
            market_code=market_code,
            odds_at_add=self._validate_odds(odds),
            stake=self._validate_stake(stake),
            market_label=market_label,
            prediction=prediction,
            detail_code=detail_code,
            event_name=event_name,
            home_team=home_team,
            away_team=away_team,
            match_time=match_time,
            confirmed=confirmed,
        )
        self._lines.append(line)
        self.last_error = None
        logger.info(
            "Line added",
            line_id=line.line_id,
            event_id=line.event_id,
            market_code=market_code,
            odds=str(line.odds_at_add),
            stake=str(line.stake),
            confirmed=confirmed,
            count=len(self._lines),
        )
        return line

    def remove_line(self, line_id: str) -> Optional[CartLine]:
        self._require_open("remove a line")
        line = self.get_line(line_id)
        if line is None:
            return None
        self._lines.remove(line)
        logger.info("Line removed", line_id=line_id, count=len(self._lines))
        return line

    def update_stake(self, line_id: str, stake: Decimal) -> CartLine:
        self._require_open("update a stake")
        line = self.get_line(line_id)
        if line is None:
            raise ValidationError(f"Unknown line: {line_id}")
        line.stake = self._validate_stake(stake)
        logger.debug("Stake updated", line_id=line_id, stake=str(line.stake))
        return line

    def reorder(self, line_ids: Iterable[str]) -> None:
        """Reorder lines; ``line_ids`` must name every line exactly once."""
        self._require_open("reorder lines")
        order = list(line_ids)
        by_id = {line.line_id: line for line in self._lines}
        if len(order) != len(by_id) or set(order) != set(by_id):
            raise ValidationError("Reorder must list every line exactly once")
        self._lines = [by_id[line_id] for line_id in order]

    def clear(self) -> None:
        self._require_open("clear the cart")
        self._lines.clear()
        self.last_error = None
        logger.info("Cart cleared")

    # =========================================================================
    # Submission lock
    # =========================================================================

    def lock(self) -> None:
        """OPEN -> SUBMITTING. Acts as the idempotency guard for submission."""
        if self._state != CartState.OPEN:
            raise CartLockedError(f"Cart is already {self._state.value}")
        self._state = CartState.SUBMITTING
        logger.debug("Cart locked", count=len(self._lines))

    def discard_submitted(self, line_id: str) -> Optional[CartLine]:
        """Drop a line that was persisted during the current submission."""
        if self._state != CartState.SUBMITTING:
            raise CartLockedError("Lines can only be discarded while submitting")
        line = self.get_line(line_id)
        if line is not None:
            self._lines.remove(line)
        return line

    def unlock(self, outcome: CartState) -> None:
        """Record the submission outcome and return to OPEN."""
        if outcome not in (CartState.SUCCESS, CartState.PARTIAL_FAILURE):
            raise ValueError(f"Invalid submission outcome: {outcome}")
        self._state = outcome
        self.last_outcome = outcome
        logger.info("Submission finished", outcome=outcome.value, remaining=len(self._lines))
        self._state = CartState.OPEN

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "lines": [line.to_dict() for line in self._lines],
            "summary": self.summary().to_dict(),
            "last_error": self.last_error,
        }
