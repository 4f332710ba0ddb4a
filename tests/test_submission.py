"""
Tests for the submission pipeline and the betting session.

Run with: pytest tests/test_submission.py -v
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from betslip.api.client import BetRejectedError, EventClosedError, TransportError
from betslip.api.result import ErrorKind
from betslip.data.event_bus import EVENT_SUBMISSION_RESULT, NoticeLevel
from betslip.data.subscription import SubscriptionSupervisor
from betslip.errors import CartLockedError, FeedUnavailable, PartialSubmissionError, ValidationError
from betslip.execution.submission import SubmissionPipeline
from betslip.session import BettingSession
from betslip.state.cart import BetCart, CartState
from betslip.state.reconciliation import ReconciliationEngine


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def cart():
    return BetCart()


@pytest.fixture
def reconciliation(cache, event_bus):
    return ReconciliationEngine(cache, event_bus=event_bus)


@pytest.fixture
def pipeline(cart, fake_client, reconciliation, cache, event_bus, metrics):
    return SubmissionPipeline(cart, fake_client, reconciliation, cache=cache, event_bus=event_bus, metrics=metrics)


@pytest.fixture
def session(cache, reconciliation, cart, pipeline):
    supervisor = SubscriptionSupervisor(cache, poll_interval_seconds=3600)
    return BettingSession(cache, supervisor, reconciliation, cart, pipeline)


# =============================================================================
# Pipeline
# =============================================================================

class TestSubmissionPipeline:
    @pytest.mark.asyncio
    async def test_all_lines_succeed(self, pipeline, cart, fake_client, metrics):
        cart.add_line("55", "LOCAL", Decimal("1.90"), Decimal("10"))
        cart.add_line("56", "EMPATE", Decimal("3.20"), Decimal("5"))

        result = await pipeline.submit()

        assert result.ok
        assert result.outcome == CartState.SUCCESS
        assert result.succeeded == 2
        assert result.error is None
        assert cart.is_empty
        assert cart.state == CartState.OPEN
        assert cart.last_outcome == CartState.SUCCESS
        assert [r.event_id for r in fake_client.created] == ["55", "56"]
        assert metrics.counter("bets_placed") == 2

    @pytest.mark.asyncio
    async def test_second_line_fails_without_rollback(self, pipeline, cart, fake_client, event_bus):
        notices = event_bus.subscribe(EVENT_SUBMISSION_RESULT)
        first = cart.add_line("55", "LOCAL", Decimal("1.90"), Decimal("10"))
        second = cart.add_line("56", "EMPATE", Decimal("3.20"), Decimal("5"))
        fake_client.create_outcomes = [None, BetRejectedError("Saldo insuficiente", status_code=422)]

        result = await pipeline.submit()

        assert result.outcome == CartState.PARTIAL_FAILURE
        assert isinstance(result.error, PartialSubmissionError)
        assert (result.error.succeeded, result.error.failed, result.error.remaining) == (1, 1, 0)
        assert result.placed[0].line is first
        assert result.failed_line is second
        assert result.error_kind == ErrorKind.REJECTED
        assert cart.state == CartState.OPEN
        assert cart.lines == [second]

        notice = notices.get_nowait()
        assert notice.level == NoticeLevel.BLOCKING
        assert notice.data["error"]["remaining"] == 0

    @pytest.mark.asyncio
    async def test_first_failure_stops_the_loop(self, pipeline, cart, fake_client):
        cart.add_line("55", "LOCAL", Decimal("1.90"), Decimal("10"))
        cart.add_line("56", "EMPATE", Decimal("3.20"), Decimal("5"))
        cart.add_line("57", "VISITANTE", Decimal("2.10"), Decimal("5"))
        fake_client.create_outcomes = [EventClosedError("Evento cerrado", status_code=409)]

        result = await pipeline.submit()

        assert len(fake_client.created) == 1
        assert result.error.to_dict()["succeeded"] == 0
        assert (result.error.failed, result.error.remaining) == (1, 2)
        assert len(cart) == 3

    @pytest.mark.asyncio
    async def test_submit_sends_reconciled_live_odds(self, pipeline, cart, cache, fake_client, make_quote):
        cart.add_line("55", "LOCAL", Decimal("1.90"), Decimal("10"))
        cache.apply_update(make_quote(value="2.05"))

        await pipeline.submit()

        request = fake_client.created[0]
        assert request.odds == Decimal("2.05")
        assert request.odds_confirmed is True
        assert request.prediction == "LOCAL"

    @pytest.mark.asyncio
    async def test_unconfirmed_odds_are_flagged(self, pipeline, cart, fake_client):
        cart.add_line("55", "LOCAL", Decimal("1.90"), Decimal("10"), prediction="Home win")

        await pipeline.submit()

        request = fake_client.created[0]
        assert request.odds == Decimal("1.90")
        assert request.odds_confirmed is False
        assert request.prediction == "Home win"

    @pytest.mark.asyncio
    async def test_suspended_outcome_fails_the_line(self, pipeline, cart, cache, fake_client, make_quote):
        cart.add_line("55", "LOCAL", Decimal("1.90"), Decimal("10"))
        cache.apply_update(make_quote(active=False))

        result = await pipeline.submit()

        assert fake_client.created == []
        assert result.outcome == CartState.PARTIAL_FAILURE
        assert "suspended" in result.error.cause

    @pytest.mark.asyncio
    async def test_registration_failure_never_fails_the_line(self, pipeline, cart, fake_client, metrics):
        cart.add_line("55", "LOCAL", Decimal("1.90"), Decimal("10"))
        fake_client.register_response = TransportError("unreachable")

        result = await pipeline.submit()

        assert result.ok
        assert len(fake_client.registered) == 1
        assert metrics.counter("stake_registration_failures") == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported_as_line_failure(self, pipeline, cart, fake_client, event_bus):
        notices = event_bus.subscribe(EVENT_SUBMISSION_RESULT)
        cart.add_line("55", "LOCAL", Decimal("1.90"), Decimal("10"))
        second = cart.add_line("56", "EMPATE", Decimal("3.20"), Decimal("5"))
        cart.add_line("57", "VISITANTE", Decimal("2.10"), Decimal("5"))
        fake_client.create_outcomes = [None, ValueError("Expecting value: line 1 column 1 (char 0)")]

        result = await pipeline.submit()

        assert result.outcome == CartState.PARTIAL_FAILURE
        assert result.failed_line is second
        assert (result.error.succeeded, result.error.failed, result.error.remaining) == (1, 1, 1)
        assert "ValueError" in result.error.cause
        assert cart.state == CartState.OPEN
        assert cart.last_outcome == CartState.PARTIAL_FAILURE
        assert len(cart) == 2

        notice = notices.get_nowait()
        assert notice.level == NoticeLevel.BLOCKING
        assert notice.event_id == "56"

    @pytest.mark.asyncio
    async def test_unexpected_registration_error_never_fails_the_line(self, pipeline, cart, fake_client, metrics):
        cart.add_line("55", "LOCAL", Decimal("1.90"), Decimal("10"))
        fake_client.register_response = RuntimeError("boom")

        result = await pipeline.submit()

        assert result.ok
        assert metrics.counter("stake_registration_failures") == 1

    @pytest.mark.asyncio
    async def test_empty_cart_is_rejected(self, pipeline, cart):
        with pytest.raises(ValidationError):
            await pipeline.submit()
        assert cart.state == CartState.OPEN

    @pytest.mark.asyncio
    async def test_locked_cart_is_rejected(self, pipeline, cart):
        cart.add_line("55", "LOCAL", Decimal("1.90"), Decimal("10"))
        cart.lock()

        with pytest.raises(CartLockedError):
            await pipeline.submit()


# =============================================================================
# Session
# =============================================================================

class TestBettingSession:
    def test_add_selection_uses_cached_quote(self, session, cache, make_quote):
        cache.apply_update(make_quote(value="1.95"))

        line = session.add_selection("55", "LOCAL", Decimal("10"), displayed_odds=Decimal("1.80"))

        assert line.odds_at_add == Decimal("1.95")
        assert line.confirmed is True

    def test_add_selection_without_any_odds(self, session):
        with pytest.raises(FeedUnavailable):
            session.add_selection("55", "LOCAL", Decimal("10"))

    @pytest.mark.asyncio
    async def test_submit_survives_caller_cancellation(self, session, cart, fake_client):
        cart.add_line("55", "LOCAL", Decimal("1.90"), Decimal("10"))
        gate = asyncio.Event()
        original = fake_client.create_bet

        async def slow_create(request):
            await gate.wait()
            return await original(request)

        fake_client.create_bet = slow_create

        caller = asyncio.create_task(session.submit())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert session.submitting

        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        gate.set()
        result = await session.wait_for_submission()

        assert result.ok
        assert session.last_result is result
        assert cart.is_empty
        assert cart.state == CartState.OPEN

    @pytest.mark.asyncio
    async def test_second_submit_while_in_flight_is_rejected(self, session, cart, fake_client):
        cart.add_line("55", "LOCAL", Decimal("1.90"), Decimal("10"))
        gate = asyncio.Event()
        original = fake_client.create_bet

        async def slow_create(request):
            await gate.wait()
            return await original(request)

        fake_client.create_bet = slow_create

        first = asyncio.create_task(session.submit())
        await asyncio.sleep(0)

        with pytest.raises(CartLockedError):
            await session.submit()

        gate.set()
        result = await first
        assert result.ok
        assert len(fake_client.created) == 1

    @pytest.mark.asyncio
    async def test_snapshot_reports_cart_and_feed(self, session, cache, fake_client, make_quote):
        fake_client.odds["55"] = TransportError("down")
        session.open_event("55")
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        cache.apply_update(make_quote(event_id="56"))
        session.add_selection("56", "LOCAL", Decimal("10"))

        snapshot = session.snapshot()

        assert snapshot["cart"]["summary"]["count"] == 1
        assert snapshot["cart"]["state"] == "open"
        assert snapshot["subscriptions"]["55"]["poll_only"] is True
        assert snapshot["feed_unavailable"]["55"] is not None
        await session.close()
        assert session.supervisor.event_ids == []
