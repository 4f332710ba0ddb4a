"""
Tests for the REST client and tagged results.

Run with: pytest tests/test_client_result.py -v
"""

from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from betslip.api.client import (
    APIError,
    BetRejectedError,
    EventClosedError,
    InvalidPayloadError,
    MalformedResponseError,
    OddsApiClient,
    RateLimitError,
    TransportError,
)
from betslip.api.result import Err, ErrorKind, Ok, capture, classify_error
from betslip.data.models import CreateBetRequest, TrendDirection, TrendFilter
from betslip.data.odds_cache import OddsFeedCache
from betslip.errors import NetworkError


# =============================================================================
# Helpers
# =============================================================================

def make_client(handler, **kwargs) -> OddsApiClient:
    client = OddsApiClient("http://odds.test/api", rate_limit=1000, **kwargs)
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


def bet_request() -> CreateBetRequest:
    return CreateBetRequest(
        event_id="55",
        market_code="LOCAL",
        stake=Decimal("10"),
        odds=Decimal("1.90"),
        prediction="LOCAL",
    )


# =============================================================================
# Client
# =============================================================================

class TestOddsApiClient:
    @pytest.mark.asyncio
    async def test_get_event_odds(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(
                200,
                json=[
                    {"tipoResultado": "LOCAL", "valorCuota": 1.9, "fechaActualizacion": "2025-03-01T18:00:00"},
                    {"tipoResultado": "EMPATE", "valorCuota": 3.2, "fechaActualizacion": "2025-03-01T18:00:00"},
                ],
            )

        client = make_client(handler, token="secret")
        quotes = await client.get_event_odds("55")
        await client.close()

        assert seen["path"] == "/api/cuotas-dinamicas/evento/55/cuotas"
        assert seen["auth"] == "Bearer secret"
        assert [q.outcome_code for q in quotes] == ["LOCAL", "EMPATE"]
        assert all(q.event_id == "55" for q in quotes)

    @pytest.mark.asyncio
    async def test_get_trends_sends_filters(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"content": [{"tipoResultado": "LOCAL", "cuotaActual": "2.2", "porcentajeCambio": "10"}]})

        client = make_client(handler)
        trends = await client.get_trends("55", TrendFilter(direction=TrendDirection.UP))
        await client.close()

        assert seen["params"] == {"eventoId": "55", "tendencia": "SUBIENDO"}
        assert trends[0].direction == TrendDirection.UP
        assert trends[0].event_id == "55"

    @pytest.mark.asyncio
    async def test_reads_retry_server_errors(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, json={"message": "busy"})
            return httpx.Response(200, json=[])

        client = make_client(handler, max_retries=3)
        with patch("betslip.api.client.asyncio.sleep", new=AsyncMock()):
            quotes = await client.get_event_odds("55")
        await client.close()

        assert quotes == []
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_create_bet_is_never_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(json.loads(request.content))
            return httpx.Response(503, json={"message": "busy"})

        client = make_client(handler, max_retries=3)
        with pytest.raises(APIError) as exc_info:
            await client.create_bet(bet_request())
        await client.close()

        assert len(calls) == 1
        assert calls[0]["idEvento"] == "55"
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_create_bet_parses_record(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                201,
                json={
                    "idApuesta": 1001,
                    "idEvento": 55,
                    "tipoApuesta": "LOCAL",
                    "montoApuesta": 10,
                    "cuotaApuesta": 1.9,
                    "gananciaPotencial": 19,
                    "estadoApuesta": "PENDIENTE",
                },
            )

        client = make_client(handler)
        record = await client.create_bet(bet_request())
        await client.close()

        assert record.bet_id == "1001"
        assert record.event_id == "55"
        assert record.potential_payout == Decimal("19")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code, status, expected",
        [
            ("EVENTO_CERRADO", 409, EventClosedError),
            ("SALDO_INSUFICIENTE", 422, BetRejectedError),
            ("UNKNOWN_THING", 400, APIError),
        ],
    )
    async def test_error_codes_map_to_exceptions(self, code, status, expected):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json={"error": {"code": code, "message": "nope"}})

        client = make_client(handler)
        with pytest.raises(expected) as exc_info:
            await client.create_bet(bet_request())
        await client.close()

        assert exc_info.value.error_code == code
        assert str(exc_info.value) == "nope"

    @pytest.mark.asyncio
    async def test_network_errors_become_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler, max_retries=2)
        with patch("betslip.api.client.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(TransportError) as exc_info:
                await client.get_volume("55")
        await client.close()

        assert isinstance(exc_info.value, NetworkError)

    @pytest.mark.asyncio
    async def test_non_json_success_body_raises_malformed_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>", headers={"Content-Type": "text/html"})

        client = make_client(handler)
        with pytest.raises(MalformedResponseError) as exc_info:
            await client.get_event_odds("55")
        await client.close()

        assert isinstance(exc_info.value, InvalidPayloadError)
        assert exc_info.value.status_code == 200
        assert classify_error(exc_info.value) == ErrorKind.INVALID_PAYLOAD

    @pytest.mark.asyncio
    async def test_non_json_body_falls_back_to_cached_quotes(self, event_bus, make_quote):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>")

        client = make_client(handler)
        cache = OddsFeedCache(client, event_bus=event_bus)
        cache.apply_update(make_quote(value="1.90"))

        result = await cache.load_odds("55")
        await client.close()

        assert isinstance(result, Err)
        assert result.kind == ErrorKind.INVALID_PAYLOAD
        assert cache.get_quote("55", "LOCAL").current_value == Decimal("1.90")


# =============================================================================
# Results
# =============================================================================

class TestResults:
    @pytest.mark.parametrize(
        "exc, kind",
        [
            (RateLimitError("slow down", status_code=429), ErrorKind.RATE_LIMITED),
            (TransportError("down"), ErrorKind.NETWORK),
            (BetRejectedError("no", status_code=422), ErrorKind.REJECTED),
            (APIError("boom", status_code=500), ErrorKind.SERVER),
        ],
    )
    def test_classify_error(self, exc, kind):
        assert classify_error(exc) == kind

    @pytest.mark.asyncio
    async def test_capture_ok(self):
        async def call():
            return 42

        result = await capture(call())

        assert isinstance(result, Ok)
        assert result.ok and result.value == 42

    @pytest.mark.asyncio
    async def test_capture_err(self):
        async def call():
            raise EventClosedError("closed", status_code=409)

        result = await capture(call())

        assert isinstance(result, Err)
        assert not result.ok
        assert result.kind == ErrorKind.REJECTED
        assert result.message == "closed"

    @pytest.mark.asyncio
    async def test_capture_does_not_swallow_unrelated_errors(self):
        async def call():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await capture(call())
