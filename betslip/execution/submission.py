"""
Cart submission pipeline.

Lines are submitted one at a time, in cart order. The backend offers no
batch endpoint and no rollback, so the first failure stops the run: lines
already placed stay placed, the failed line and everything after it stay in
the cart for an explicit retry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from ..api.result import Err, ErrorKind, Ok, capture
from ..data.event_bus import EVENT_SUBMISSION_RESULT, EventBus, Notice, NoticeLevel
from ..data.models import BetRecord, CreateBetRequest
from ..data.odds_cache import OddsFeedCache
from ..errors import CartLockedError, FeedUnavailable, PartialSubmissionError, ValidationError
from ..state.cart import BetCart, CartLine, CartState
from ..state.reconciliation import ReconciliationEngine, ResolvedOdds
from ..utils.metrics import MetricsRegistry

logger = structlog.get_logger()


@dataclass
class PlacedBet:
    line: CartLine
    record: BetRecord
    odds: ResolvedOdds


@dataclass
class SubmissionResult:
    """
    Outcome of one submit() call.

    Attributes:
        outcome: SUCCESS or PARTIAL_FAILURE
        placed: Bets persisted by the backend, in submission order
        failed_line: Line whose submission failed, if any
        error: Summary of an interrupted run
        error_kind: Classification of the failure cause
        finished_at: When the run ended
    """
    outcome: CartState
    placed: List[PlacedBet] = field(default_factory=list)
    failed_line: Optional[CartLine] = None
    error: Optional[PartialSubmissionError] = None
    error_kind: Optional[ErrorKind] = None
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ok(self) -> bool:
        return self.outcome == CartState.SUCCESS

    @property
    def succeeded(self) -> int:
        return len(self.placed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "placed": [
                {
                    "line_id": bet.line.line_id,
                    "bet_id": bet.record.bet_id,
                    "odds": str(bet.odds.value),
                    "confirmed": bet.odds.confirmed,
                }
                for bet in self.placed
            ],
            "failed_line_id": self.failed_line.line_id if self.failed_line else None,
            "error": self.error.to_dict() if self.error else None,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "finished_at": self.finished_at.isoformat(),
        }


class SubmissionPipeline:
    """
    Submits every cart line through the create-bet endpoint.

    ``client`` is any object exposing an async ``create_bet``. Stake
    registration for odds recalculation goes through ``cache`` when given.
    """

    def __init__(
        self,
        cart: BetCart,
        client: Any,
        reconciliation: ReconciliationEngine,
        cache: Optional[OddsFeedCache] = None,
        event_bus: Optional[EventBus] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self.cart = cart
        self.client = client
        self.reconciliation = reconciliation
        self.cache = cache
        self.event_bus = event_bus
        self.metrics = metrics

    async def submit(self) -> SubmissionResult:
        """
        Submit the cart.

        Raises:
            CartLockedError: Cart is not OPEN (a submission is in flight)
            ValidationError: Cart is empty
        """
        if self.cart.state != CartState.OPEN:
            raise CartLockedError(f"Cannot submit while cart is {self.cart.state.value}")
        if self.cart.is_empty:
            raise ValidationError("Cart is empty")

        self.cart.lock()
        lines = self.cart.lines
        logger.info("Submitting cart", lines=len(lines))

        placed: List[PlacedBet] = []
        failed_line: Optional[CartLine] = None
        cause: Optional[str] = None
        error_kind: Optional[ErrorKind] = None
        outcome = CartState.PARTIAL_FAILURE
        try:
            for line in lines:
                try:
                    resolved = self.reconciliation.resolve_for_submit(line)
                    result = await capture(self.client.create_bet(self._build_request(line, resolved)))
                except FeedUnavailable as exc:
                    failed_line, cause = line, str(exc)
                    break
                except Exception as exc:
                    logger.error(
                        "Unexpected error submitting line",
                        line_id=line.line_id,
                        event_id=line.event_id,
                        error=repr(exc),
                    )
                    failed_line, cause = line, f"{type(exc).__name__}: {exc}"
                    break

                if isinstance(result, Err):
                    failed_line, cause, error_kind = line, result.message, result.kind
                    break

                self.cart.discard_submitted(line.line_id)
                placed.append(PlacedBet(line=line, record=result.value, odds=resolved))
                logger.info(
                    "Bet placed",
                    line_id=line.line_id,
                    bet_id=result.value.bet_id,
                    event_id=line.event_id,
                    odds=str(resolved.value),
                    confirmed=resolved.confirmed,
                )
                await self._register_stake(line, resolved)

            if failed_line is None:
                outcome = CartState.SUCCESS
        finally:
            self.cart.unlock(outcome)

        return self._finish(outcome, lines, placed, failed_line, cause, error_kind)

    def _build_request(self, line: CartLine, resolved: ResolvedOdds) -> CreateBetRequest:
        return CreateBetRequest(
            event_id=line.event_id,
            market_code=line.market_code,
            stake=line.stake,
            odds=resolved.value,
            prediction=line.prediction or line.market_label or line.market_code,
            detail=line.detail_code,
            odds_confirmed=resolved.confirmed,
            home_team=line.home_team,
            away_team=line.away_team,
            match_time=line.match_time,
        )

    async def _register_stake(self, line: CartLine, resolved: ResolvedOdds) -> None:
        if self.cache is None:
            return
        try:
            result = await self.cache.register_bet(line.event_id, line.market_code, line.stake, resolved.value)
        except Exception as exc:
            logger.warning("Stake registration crashed", line_id=line.line_id, error=repr(exc))
            result = None
        if not isinstance(result, Ok) and self.metrics is not None:
            self.metrics.increment("stake_registration_failures")

    def _finish(
        self,
        outcome: CartState,
        lines: List[CartLine],
        placed: List[PlacedBet],
        failed_line: Optional[CartLine],
        cause: Optional[str],
        error_kind: Optional[ErrorKind],
    ) -> SubmissionResult:
        result = SubmissionResult(outcome=outcome, placed=placed, failed_line=failed_line, error_kind=error_kind)

        if self.metrics is not None:
            self.metrics.increment("submissions")
            self.metrics.increment("bets_placed", len(placed))

        if outcome == CartState.SUCCESS:
            logger.info("Cart submitted", placed=len(placed))
            notice = Notice(
                level=NoticeLevel.INFO,
                message=f"{len(placed)} bet(s) placed",
                data=result.to_dict(),
            )
        else:
            remaining = len(lines) - len(placed) - 1
            result.error = PartialSubmissionError(
                succeeded=len(placed),
                failed=1,
                remaining=remaining,
                cause=cause,
            )
            if self.metrics is not None:
                self.metrics.increment("bets_failed")
            logger.warning(
                "Cart submission interrupted",
                placed=len(placed),
                failed_line_id=failed_line.line_id if failed_line else None,
                remaining=remaining,
                error=cause,
            )
            notice = Notice(
                level=NoticeLevel.BLOCKING,
                message=str(result.error),
                event_id=failed_line.event_id if failed_line else None,
                data=result.to_dict(),
            )

        if self.event_bus is not None:
            self.event_bus.publish(EVENT_SUBMISSION_RESULT, notice)
        return result
