"""
Betting session context.

One explicitly constructed object owning the odds cache, the subscription
supervisor, reconciliation, the cart and the submission pipeline. The
presentation layer receives it by injection and never reaches for globals.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog

from .data.odds_cache import OddsFeedCache
from .data.subscription import Subscription, SubscriptionSupervisor
from .errors import CartLockedError, ValidationError
from .execution.submission import SubmissionPipeline, SubmissionResult
from .state.cart import BetCart, CartLine
from .state.reconciliation import ReconciliationEngine

logger = structlog.get_logger()


class BettingSession:
    def __init__(
        self,
        cache: OddsFeedCache,
        supervisor: SubscriptionSupervisor,
        reconciliation: ReconciliationEngine,
        cart: BetCart,
        pipeline: SubmissionPipeline,
    ) -> None:
        self.cache = cache
        self.supervisor = supervisor
        self.reconciliation = reconciliation
        self.cart = cart
        self.pipeline = pipeline

        self.last_result: Optional[SubmissionResult] = None
        self._submit_task: Optional[asyncio.Task] = None

    # =========================================================================
    # Views
    # =========================================================================

    def open_event(self, event_id: str) -> Subscription:
        """Entering an event view attaches its odds subscription."""
        return self.supervisor.attach(event_id)

    async def close_view(self, event_id: str) -> None:
        """Leaving an event view detaches its subscription."""
        await self.supervisor.detach(event_id)

    # =========================================================================
    # Cart
    # =========================================================================

    def add_selection(
        self,
        event_id: str,
        market_code: str,
        stake: Decimal,
        displayed_odds: Optional[Decimal] = None,
        **metadata: Any,
    ) -> CartLine:
        """
        Reconcile the odds for a selection and add it to the cart.

        Raises:
            FeedUnavailable: No usable odds for the outcome
            ValidationError: Stake or odds out of range, or cart full
            CartLockedError: A submission is in flight
        """
        if not self.cart.is_open:
            raise CartLockedError(f"Cannot add a line while cart is {self.cart.state.value}")
        resolved = self.reconciliation.resolve_for_add(event_id, market_code, displayed_odds)
        return self.cart.add_line(
            event_id,
            market_code,
            resolved.value,
            stake,
            confirmed=resolved.confirmed,
            **metadata,
        )

    def remove_selection(self, line_id: str) -> Optional[CartLine]:
        return self.cart.remove_line(line_id)

    def update_stake(self, line_id: str, stake: Decimal) -> CartLine:
        return self.cart.update_stake(line_id, stake)

    def clear_cart(self) -> None:
        self.cart.clear()

    # =========================================================================
    # Submission
    # =========================================================================

    @property
    def submitting(self) -> bool:
        return self._submit_task is not None and not self._submit_task.done()

    async def submit(self) -> SubmissionResult:
        """
        Submit the cart.

        The pipeline runs in its own task; cancelling the caller (navigating
        away) does not cancel the submission, which completes in the
        background and is recorded in ``last_result``.
        """
        if self.submitting:
            raise CartLockedError("A submission is already in flight")
        if not self.cart.is_open:
            raise CartLockedError(f"Cannot submit while cart is {self.cart.state.value}")
        if self.cart.is_empty:
            raise ValidationError("Cart is empty")

        task = asyncio.create_task(self.pipeline.submit(), name="cart_submit")
        task.add_done_callback(self._record_result)
        self._submit_task = task
        return await asyncio.shield(task)

    def _record_result(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Submission task failed", error=repr(exc))
            return
        self.last_result = task.result()

    async def wait_for_submission(self) -> Optional[SubmissionResult]:
        """Await a submission that may have outlived its caller."""
        if self._submit_task is None:
            return self.last_result
        return await self._submit_task

    # =========================================================================
    # Snapshot
    # =========================================================================

    def snapshot(self) -> Dict[str, Any]:
        unavailable: Dict[str, Optional[str]] = {}
        for event_id in self.supervisor.event_ids:
            outage = self.cache.unavailable_reason(event_id)
            unavailable[event_id] = str(outage) if outage is not None else None
        return {
            "cart": self.cart.snapshot(),
            "submitting": self.submitting,
            "subscriptions": {k: v.to_dict() for k, v in self.supervisor.health().items()},
            "feed_unavailable": unavailable,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }

    async def close(self) -> None:
        """Detach every subscription and let an in-flight submission finish."""
        await self.supervisor.detach_all()
        if self.submitting:
            await asyncio.gather(self._submit_task, return_exceptions=True)
