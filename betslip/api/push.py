"""
WebSocket push channel for real-time odds changes.

One channel streams one event. Every message is a JSON ``OddsQuote`` body;
decoded quotes are delivered to a single consumer through an asyncio queue.
The channel reconnects with exponential backoff and gives up after a bounded
number of consecutive failures, leaving the poller as the only data path.
"""

import asyncio
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import WebSocketException

from ..data.models import OddsQuote

logger = structlog.get_logger()


# =============================================================================
# Enums
# =============================================================================

class ConnectionState(str, Enum):
    """Push channel connection states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    GAVE_UP = "gave_up"


# Type alias for the connect factory (websockets' connect by default)
ConnectFactory = Callable[..., Awaitable[Any]]


# =============================================================================
# Push Channel
# =============================================================================

class OddsPushChannel:
    """
    Async WebSocket reader for one event's odds stream.

    Features:
    - Typed ``OddsQuote`` delivery through ``queue``
    - Auto-reconnect with exponential backoff
    - Permanent give-up after ``max_attempts`` consecutive failures

    Example:
        >>> channel = OddsPushChannel("ws://localhost:8080/api/cuotas-dinamicas/stream", "55")
        >>> task = asyncio.create_task(channel.run())
        >>> quote = await channel.queue.get()
        >>> await channel.close()
    """

    PING_INTERVAL = 20
    PING_TIMEOUT = 10
    INITIAL_RECONNECT_DELAY = 1.0
    MAX_RECONNECT_DELAY = 30.0
    MAX_RECONNECT_ATTEMPTS = 5

    def __init__(
        self,
        base_url: str,
        event_id: str,
        *,
        token: str = "",
        initial_delay: float = INITIAL_RECONNECT_DELAY,
        max_delay: float = MAX_RECONNECT_DELAY,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        connect: Optional[ConnectFactory] = None,
        queue_size: int = 0,
    ):
        """
        Initialize the push channel.

        Args:
            base_url: Stream base URL; the event id is appended as a path segment
            event_id: Event to stream
            token: Optional bearer token
            initial_delay: First reconnect delay in seconds
            max_delay: Reconnect delay cap in seconds
            max_attempts: Consecutive failures tolerated before giving up
            connect: Connect factory, ``websockets.asyncio.client.connect`` by default
            queue_size: Bound for the delivery queue (0 = unbounded)
        """
        self.url = f"{base_url.rstrip('/')}/{event_id}"
        self.event_id = str(event_id)
        self.token = token
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self._connect = connect or ws_connect

        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

        self._ws: Any = None
        self._state = ConnectionState.DISCONNECTED
        self._running = False
        self._reconnect_delay = initial_delay
        self.reconnect_attempts = 0
        self.last_message_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self._ws is not None

    @property
    def gave_up(self) -> bool:
        return self._state == ConnectionState.GAVE_UP

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def _open(self) -> None:
        self._state = ConnectionState.CONNECTING
        headers: Dict[str, str] = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        logger.info("Connecting to odds stream", url=self.url, event_id=self.event_id)
        self._ws = await self._connect(
            self.url,
            additional_headers=headers or None,
            ping_interval=self.PING_INTERVAL,
            ping_timeout=self.PING_TIMEOUT,
        )
        self._state = ConnectionState.CONNECTED
        self._reconnect_delay = self.initial_delay
        self.reconnect_attempts = 0
        self.last_error = None
        logger.info("Odds stream connected", event_id=self.event_id)

    async def close(self) -> None:
        """Stop reading and close the socket."""
        self._running = False
        if self._ws is not None:
            try:
                await self._ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug("Error closing odds stream", error=str(e))
            self._ws = None
        if self._state != ConnectionState.GAVE_UP:
            self._state = ConnectionState.DISCONNECTED
        logger.info("Odds stream closed", event_id=self.event_id)

    def _record_failure(self, error: str) -> bool:
        """
        Count a push failure.

        Returns:
            True when another reconnect attempt is allowed
        """
        self._ws = None
        self.reconnect_attempts += 1
        self.last_error = error
        if self.reconnect_attempts >= self.max_attempts:
            self._state = ConnectionState.GAVE_UP
            logger.warning(
                "Odds stream gave up, poll-only from now on",
                event_id=self.event_id,
                attempts=self.reconnect_attempts,
                error=error,
            )
            return False
        self._state = ConnectionState.RECONNECTING
        logger.warning(
            "Odds stream lost",
            event_id=self.event_id,
            attempts=self.reconnect_attempts,
            next_delay=self._reconnect_delay,
            error=error,
        )
        return True

    # =========================================================================
    # Message Processing
    # =========================================================================

    async def run(self) -> None:
        """
        Main loop: connect, read, reconnect.

        Returns when ``close()`` is called or the channel gives up.
        """
        self._running = True

        while self._running:
            try:
                await self._open()
                async for raw_message in self._ws:
                    if not self._running:
                        break
                    self._handle_message(raw_message)
                if not self._running:
                    break
                error = "stream closed by server"
            except asyncio.CancelledError:
                raise
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                if not self._running:
                    break
                error = str(e) or e.__class__.__name__

            if not self._record_failure(error):
                return

            await asyncio.sleep(self._reconnect_delay)
            self._reconnect_delay = min(self._reconnect_delay * 2, self.max_delay)

    def _handle_message(self, raw_message: Any) -> None:
        """
        Decode one message and hand it to the consumer.

        Args:
            raw_message: Raw JSON text (or bytes)
        """
        try:
            data = json.loads(raw_message)
        except (TypeError, ValueError):
            logger.error("Invalid JSON on odds stream", message=str(raw_message)[:100])
            return

        if not isinstance(data, dict):
            logger.debug("Ignoring non-object stream message", event_id=self.event_id)
            return

        data.setdefault("eventoId", self.event_id)
        try:
            quote = OddsQuote.model_validate(data)
        except PydanticValidationError as e:
            logger.warning("Rejected stream quote", event_id=self.event_id, error=str(e))
            return

        self.last_message_at = datetime.now(timezone.utc)
        try:
            self.queue.put_nowait(quote)
        except asyncio.QueueFull:
            logger.warning("Odds stream queue full, dropping quote", event_id=self.event_id)
