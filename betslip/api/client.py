"""
Async REST client for the dynamic-odds and bet-creation API.

This module provides a fully async HTTP client with rate limiting,
retry logic, and typed error handling.
"""

import asyncio
from typing import Any, Dict, List, Optional

import httpx
from asyncio_throttle import Throttler
import structlog

from ..errors import NetworkError
from ..data.models import (
    BetRecord,
    CreateBetRequest,
    OddsHistoryEntry,
    OddsQuote,
    OddsStatistics,
    OddsSummary,
    OddsTrend,
    RegisterBetRequest,
    TrendFilter,
    VolumeRecord,
)

logger = structlog.get_logger()

ODDS_PATH = "/cuotas-dinamicas"
BETS_PATH = "/apuestas"


# =============================================================================
# Exceptions
# =============================================================================

class APIError(Exception):
    """Base exception for API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        response: Optional[Any] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.response = response


class RateLimitError(APIError):
    """Raised when rate limit is exceeded."""
    pass


class TransportError(APIError, NetworkError):
    """Raised when the backend could not be reached after all retries."""
    pass


class BetRejectedError(APIError):
    """Raised when the backend refuses to create a bet."""
    pass


class EventClosedError(APIError):
    """Raised when betting on an event that no longer accepts bets."""
    pass


class InvalidPayloadError(APIError):
    """Raised when request parameters are invalid."""
    pass


class MalformedResponseError(InvalidPayloadError):
    """Raised when a successful response body is not valid JSON."""
    pass


# =============================================================================
# Client
# =============================================================================

class OddsApiClient:
    """
    Async REST client for the odds collaborator.

    Features:
    - Optional bearer token forwarded from configuration
    - Rate limiting (configurable, default 10 req/sec)
    - Automatic retries with exponential backoff for reads
    - Typed responses using Pydantic models

    Example:
        >>> async with OddsApiClient("http://localhost:8080/api") as client:
        ...     quotes = await client.get_event_odds("55")
        ...     print([q.current_value for q in quotes])
    """

    DEFAULT_BASE_URL = "http://localhost:8080/api"
    DEFAULT_RATE_LIMIT = 10  # requests per second
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_TIMEOUT = 30.0

    # Map backend error codes to exceptions
    ERROR_MAP = {
        "RATE_LIMITED": RateLimitError,
        "EVENT_CLOSED": EventClosedError,
        "EVENTO_CERRADO": EventClosedError,
        "INSUFFICIENT_BALANCE": BetRejectedError,
        "SALDO_INSUFICIENTE": BetRejectedError,
        "INVALID_ODDS": InvalidPayloadError,
        "CUOTA_INVALIDA": InvalidPayloadError,
        "INVALID_AMOUNT": InvalidPayloadError,
        "MONTO_INVALIDO": InvalidPayloadError,
    }

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        token: str = "",
        rate_limit: int = DEFAULT_RATE_LIMIT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize the API client.

        Args:
            base_url: API base URL
            token: Optional bearer token sent with every request
            rate_limit: Maximum requests per second
            max_retries: Maximum attempts for transient errors on reads
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.max_retries = max_retries
        self.timeout = timeout

        # Rate limiter
        self._throttler = Throttler(rate_limit=rate_limit, period=1.0)

        # HTTP client (created lazily or on context enter)
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "OddsApiClient":
        """Async context manager entry."""
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure HTTP client is initialized."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _parse_error(self, response: httpx.Response) -> APIError:
        """Parse error response and return appropriate exception."""
        data: Any = None
        try:
            data = response.json()
            error = data.get("error", {}) if isinstance(data, dict) else {}
            if isinstance(error, str):
                error = {"message": error}
            code = error.get("code") or data.get("code") or "UNKNOWN"
            message = error.get("message") or data.get("message") or response.text
        except (ValueError, AttributeError):
            code = "UNKNOWN"
            message = response.text

        exception_class = self.ERROR_MAP.get(code, APIError)
        if exception_class is APIError and response.status_code == 429:
            exception_class = RateLimitError
        return exception_class(
            message=message or f"HTTP {response.status_code}",
            status_code=response.status_code,
            error_code=code,
            response=data,
        )

    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
        retry: bool = True,
    ) -> Any:
        """
        Make an API request with retry logic.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: API path starting with /
            data: JSON body for POST/PUT requests
            params: Query parameters
            retry: Retry transient failures. Bet creation passes False so
                a timed-out request is never replayed.

        Returns:
            Decoded JSON response

        Raises:
            APIError: On API errors
        """
        client = await self._ensure_client()
        url = f"{self.base_url}{path}"
        attempts = self.max_retries if retry else 1

        last_exception: Optional[Exception] = None
        last_response: Optional[httpx.Response] = None

        for attempt in range(attempts):
            try:
                # Rate limiting
                async with self._throttler:
                    logger.debug(
                        "API request",
                        method=method,
                        path=path,
                        attempt=attempt + 1,
                    )

                    response = await client.request(
                        method=method,
                        url=url,
                        headers=self._headers(),
                        json=data,
                        params=params,
                    )

                # Success
                if response.is_success:
                    if not response.content:
                        return None
                    try:
                        return response.json()
                    except ValueError as e:
                        logger.warning(
                            "Non-JSON response body",
                            path=path,
                            status_code=response.status_code,
                            content_type=response.headers.get("Content-Type"),
                        )
                        raise MalformedResponseError(
                            message=f"Invalid JSON from {path}: {e}",
                            status_code=response.status_code,
                            error_code="MALFORMED_RESPONSE",
                        ) from e

                last_response = response

                # Rate limit - retry after the advertised delay
                if response.status_code == 429 and attempt + 1 < attempts:
                    retry_after = int(response.headers.get("Retry-After", 1))
                    logger.warning(
                        "Rate limited",
                        retry_after=retry_after,
                        attempt=attempt + 1,
                    )
                    await asyncio.sleep(retry_after)
                    continue

                # Server errors - retry with exponential backoff
                if response.status_code >= 500 and attempt + 1 < attempts:
                    delay = (2 ** attempt) * 0.5  # 0.5, 1, 2 seconds
                    logger.warning(
                        "Server error, retrying",
                        status_code=response.status_code,
                        delay=delay,
                        attempt=attempt + 1,
                    )
                    await asyncio.sleep(delay)
                    continue

                raise self._parse_error(response)

            except (httpx.TimeoutException, httpx.NetworkError) as e:
                last_exception = e
                if attempt + 1 >= attempts:
                    break
                delay = (2 ** attempt) * 0.5
                logger.warning(
                    "Network error, retrying",
                    error=str(e),
                    delay=delay,
                    attempt=attempt + 1,
                )
                await asyncio.sleep(delay)
                continue

        if last_response is not None and last_exception is None:
            raise self._parse_error(last_response)
        raise TransportError(f"Request failed after {attempts} attempts: {last_exception}")

    # =========================================================================
    # Odds Endpoints
    # =========================================================================

    async def get_event_odds(self, event_id: str) -> List[OddsQuote]:
        """
        Get every quote currently offered for an event.

        Args:
            event_id: Event identifier

        Returns:
            List of OddsQuote objects
        """
        data = await self._request("GET", f"{ODDS_PATH}/evento/{event_id}/cuotas")
        quotes = []
        for item in _as_list(data):
            item = dict(item)
            item.setdefault("eventoId", event_id)
            quotes.append(OddsQuote.model_validate(item))
        return quotes

    async def get_trends(
        self,
        event_id: Optional[str] = None,
        filters: Optional[TrendFilter] = None,
    ) -> List[OddsTrend]:
        """
        Get odds trends, optionally scoped to one event.

        Args:
            event_id: Event identifier, or None for every event
            filters: Direction and odds-range filters

        Returns:
            List of OddsTrend objects
        """
        params: Dict[str, str] = {}
        if event_id:
            params["eventoId"] = str(event_id)
        if filters is not None:
            params.update(filters.to_params())
        data = await self._request("GET", f"{ODDS_PATH}/tendencias", params=params or None)
        trends = []
        for item in _as_list(data):
            trend = OddsTrend.model_validate(item)
            if trend.event_id is None and event_id:
                trend.event_id = str(event_id)
            trends.append(trend)
        return trends

    async def get_volume(self, event_id: str) -> List[VolumeRecord]:
        """Get stake volume per outcome for an event."""
        data = await self._request("GET", f"{ODDS_PATH}/volumen/{event_id}")
        records = []
        for item in _as_list(data):
            item = dict(item)
            item.setdefault("eventoId", event_id)
            records.append(VolumeRecord.model_validate(item))
        return records

    async def get_statistics(self, event_id: str) -> OddsStatistics:
        """Get aggregate odds statistics for an event."""
        data = await self._request("GET", f"{ODDS_PATH}/estadisticas/{event_id}")
        data = dict(data or {})
        data.setdefault("eventoId", event_id)
        return OddsStatistics.model_validate(data)

    async def get_history(
        self,
        event_id: str,
        outcome_code: Optional[str] = None,
        page: Optional[int] = None,
        size: Optional[int] = None,
    ) -> List[OddsHistoryEntry]:
        """
        Get recorded price changes for an event.

        Args:
            event_id: Event identifier
            outcome_code: Restrict to one outcome
            page: Zero-based page index
            size: Page size
        """
        params: Dict[str, str] = {}
        if outcome_code:
            params["tipoResultado"] = outcome_code
        if page is not None:
            params["page"] = str(page)
        if size is not None:
            params["size"] = str(size)
        data = await self._request("GET", f"{ODDS_PATH}/historial/{event_id}", params=params or None)
        if isinstance(data, dict):
            data = data.get("data", [])
        return [OddsHistoryEntry.model_validate(item) for item in _as_list(data)]

    async def get_summary(self) -> OddsSummary:
        """Get the feed-wide odds summary."""
        data = await self._request("GET", f"{ODDS_PATH}/resumen")
        return OddsSummary.model_validate(data or {})

    async def register_bet(self, request: RegisterBetRequest) -> List[OddsQuote]:
        """
        Report a placed stake so the backend recomputes prices.

        Returns:
            The recomputed quotes for the event
        """
        data = await self._request(
            "POST",
            f"{ODDS_PATH}/registrar-apuesta",
            data=request.to_api_payload(),
            retry=False,
        )
        quotes = []
        for item in _as_list(data):
            item = dict(item)
            item.setdefault("eventoId", request.event_id)
            quotes.append(OddsQuote.model_validate(item))
        return quotes

    # =========================================================================
    # Bet Endpoints
    # =========================================================================

    async def create_bet(self, request: CreateBetRequest) -> BetRecord:
        """
        Persist one bet.

        Args:
            request: Bet parameters, odds already reconciled

        Returns:
            The stored BetRecord

        Raises:
            BetRejectedError: If the backend refuses the bet
            EventClosedError: If the event no longer accepts bets
        """
        logger.info(
            "Creating bet",
            event_id=request.event_id,
            market_code=request.market_code,
            stake=str(request.stake),
            odds=str(request.odds),
            odds_confirmed=request.odds_confirmed,
        )
        data = await self._request("POST", BETS_PATH, data=request.to_api_payload(), retry=False)
        return BetRecord.model_validate(data)


def _as_list(data: Any) -> List[Dict[str, Any]]:
    if data is None:
        return []
    if isinstance(data, dict):
        # Some endpoints wrap collections in a page object
        for key in ("content", "data", "items"):
            if isinstance(data.get(key), list):
                return data[key]
        return [data]
    return list(data)
