"""
Tests for the push channel, poller and subscription supervisor.

Run with: pytest tests/test_push_subscription.py -v
"""

from __future__ import annotations

import asyncio
import json
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from betslip.api.client import TransportError
from betslip.api.push import ConnectionState, OddsPushChannel
from betslip.data.poller import OddsPoller
from betslip.data.subscription import SubscriptionSupervisor


# =============================================================================
# Helpers
# =============================================================================

class FakeWebSocket:
    """Async-iterable socket; with ``hold`` it stays open until closed."""

    def __init__(self, messages, hold: bool = False):
        self.messages = list(messages)
        self.hold = hold
        self.closed = False
        self._closed_event = asyncio.Event()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message
        if self.hold:
            await self._closed_event.wait()

    async def close(self):
        self.closed = True
        self._closed_event.set()


def stream_message(value: str, seconds: int = 60, outcome: str = "LOCAL", event_id=None) -> str:
    body = {
        "tipoResultado": outcome,
        "valorCuota": value,
        "fechaActualizacion": f"2025-03-01T18:{seconds // 60:02d}:{seconds % 60:02d}Z",
        "activa": True,
    }
    if event_id is not None:
        body["eventoId"] = event_id
    return json.dumps(body)


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# Push channel
# =============================================================================

class TestPushChannelMessages:
    def test_url_includes_event(self):
        channel = OddsPushChannel("ws://odds.test/stream/", "55")

        assert channel.url == "ws://odds.test/stream/55"
        assert channel.state == ConnectionState.DISCONNECTED

    def test_valid_message_is_queued_with_channel_event(self):
        channel = OddsPushChannel("ws://odds.test/stream", "55")

        channel._handle_message(stream_message("2.05"))

        quote = channel.queue.get_nowait()
        assert quote.event_id == "55"
        assert quote.current_value == Decimal("2.05")
        assert channel.last_message_at is not None

    def test_bad_messages_are_dropped(self):
        channel = OddsPushChannel("ws://odds.test/stream", "55")

        channel._handle_message("not json")
        channel._handle_message(json.dumps([1, 2, 3]))
        channel._handle_message(json.dumps({"tipoResultado": "LOCAL", "valorCuota": "-1"}))

        assert channel.queue.empty()


class TestPushChannelReconnect:
    @pytest.mark.asyncio
    async def test_backoff_doubles_up_to_cap_then_gives_up(self):
        connect = AsyncMock(side_effect=OSError("connection refused"))
        channel = OddsPushChannel(
            "ws://odds.test/stream",
            "55",
            initial_delay=1.0,
            max_delay=1.5,
            max_attempts=4,
            connect=connect,
        )

        with patch("betslip.api.push.asyncio.sleep", new=AsyncMock()) as sleep:
            await channel.run()

        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 1.5, 1.5]
        assert channel.state == ConnectionState.GAVE_UP
        assert channel.gave_up
        assert channel.reconnect_attempts == 4
        assert connect.await_count == 4
        assert "connection refused" in channel.last_error

    @pytest.mark.asyncio
    async def test_successful_connect_resets_attempts(self):
        ws = FakeWebSocket([stream_message("2.05")])
        connect = AsyncMock(side_effect=[OSError("boom"), ws, OSError("boom"), OSError("boom")])
        channel = OddsPushChannel("ws://odds.test/stream", "55", max_attempts=2, connect=connect)

        with patch("betslip.api.push.asyncio.sleep", new=AsyncMock()):
            await channel.run()

        # fail, connect (reset), server close, fail -> gave up at 2
        assert channel.gave_up
        assert channel.reconnect_attempts == 2
        assert connect.await_count == 3
        assert channel.queue.qsize() == 1

    @pytest.mark.asyncio
    async def test_bearer_token_is_sent(self):
        connect = AsyncMock(side_effect=OSError("nope"))
        channel = OddsPushChannel("ws://odds.test/stream", "55", token="abc", max_attempts=1, connect=connect)

        await channel.run()

        assert connect.await_args.kwargs["additional_headers"] == {"Authorization": "Bearer abc"}


# =============================================================================
# Poller
# =============================================================================

@pytest.mark.asyncio
async def test_poller_counts_failures(cache, fake_client, make_quote):
    poller = OddsPoller(cache, "55", interval_seconds=30)
    fake_client.odds["55"] = TransportError("down")

    await poller.poll_once()
    fake_client.odds["55"] = [make_quote()]
    await poller.poll_once()

    assert poller.polls == 2
    assert poller.failures == 1
    assert poller.last_success_at is not None
    assert cache.get_quote("55", "LOCAL") is not None


@pytest.mark.asyncio
async def test_poller_keeps_running_after_unexpected_error(cache, fake_client, make_quote):
    poller = OddsPoller(cache, "55", interval_seconds=0.01)
    fake_client.odds["55"] = RuntimeError("boom")

    task = asyncio.create_task(poller.run())
    await asyncio.sleep(0.05)

    assert not task.done()
    assert poller.failures >= 2

    fake_client.odds["55"] = [make_quote()]
    await asyncio.sleep(0.05)
    poller.stop()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert poller.last_success_at is not None
    assert cache.get_quote("55", "LOCAL") is not None


# =============================================================================
# Supervisor
# =============================================================================

class TestSubscriptionSupervisor:
    @pytest.mark.asyncio
    async def test_attach_runs_push_and_poll_then_detach_stops_both(self, cache, fake_client, make_quote):
        fake_client.odds["55"] = [make_quote(value="1.90", seconds=0)]
        ws = FakeWebSocket([stream_message("2.05", seconds=60)], hold=True)
        supervisor = SubscriptionSupervisor(
            cache,
            poll_interval_seconds=3600,
            channel_factory=lambda event_id: OddsPushChannel(
                "ws://odds.test/stream", event_id, connect=AsyncMock(return_value=ws)
            ),
        )

        subscription = supervisor.attach("55")
        await settle()

        assert fake_client.odds_calls == ["55"]
        assert cache.get_quote("55", "LOCAL").current_value == Decimal("2.05")
        health = subscription.health
        assert health.connected is True
        assert health.poll_only is False
        assert health.reconnect_attempts == 0
        assert health.last_update_at is not None

        assert await supervisor.detach("55") is True

        assert subscription.active is False
        assert ws.closed is True
        assert subscription.channel.state == ConnectionState.DISCONNECTED
        assert supervisor.get("55") is None
        assert await supervisor.detach("55") is False

    @pytest.mark.asyncio
    async def test_attach_twice_returns_same_subscription(self, cache):
        supervisor = SubscriptionSupervisor(cache, poll_interval_seconds=3600)

        first = supervisor.attach("55")
        second = supervisor.attach(55)

        assert first is second
        assert supervisor.event_ids == ["55"]
        await supervisor.detach_all()
        assert supervisor.event_ids == []

    @pytest.mark.asyncio
    async def test_no_stream_url_means_poll_only(self, cache):
        supervisor = SubscriptionSupervisor(cache, stream_url="", poll_interval_seconds=3600)

        subscription = supervisor.attach("55")
        await settle()

        assert subscription.channel is None
        assert subscription.health.poll_only is True
        assert subscription.active is True
        await supervisor.detach_all()

    @pytest.mark.asyncio
    async def test_push_give_up_falls_back_to_poll_only(self, cache, fake_client, make_quote):
        fake_client.odds["55"] = [make_quote()]
        supervisor = SubscriptionSupervisor(
            cache,
            poll_interval_seconds=3600,
            channel_factory=lambda event_id: OddsPushChannel(
                "ws://odds.test/stream",
                event_id,
                max_attempts=1,
                connect=AsyncMock(side_effect=OSError("refused")),
            ),
        )

        subscription = supervisor.attach("55")
        await settle()

        health = subscription.health
        assert health.connected is False
        assert health.poll_only is True
        assert health.reconnect_attempts == 1
        # The poll loop is still alive.
        assert subscription.active is True
        assert cache.get_quote("55", "LOCAL") is not None
        await supervisor.detach_all()

    @pytest.mark.asyncio
    async def test_quotes_for_other_events_are_ignored(self, cache):
        ws = FakeWebSocket([stream_message("2.05", event_id=99)], hold=True)
        supervisor = SubscriptionSupervisor(
            cache,
            poll_interval_seconds=3600,
            channel_factory=lambda event_id: OddsPushChannel(
                "ws://odds.test/stream", event_id, connect=AsyncMock(return_value=ws)
            ),
        )

        supervisor.attach("55")
        await settle()

        assert cache.quotes_for("99") == []
        await supervisor.detach_all()
