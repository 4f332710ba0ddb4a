"""
Odds collaborator API package.

This package provides the REST client, tagged results for read paths, and
the WebSocket push channel for live odds.
"""

from .client import (
    OddsApiClient,
    APIError,
    RateLimitError,
    TransportError,
    BetRejectedError,
    EventClosedError,
    InvalidPayloadError,
    MalformedResponseError,
)
from .result import Err, ErrorKind, Ok, Result, capture, classify_error
from .push import ConnectionState, OddsPushChannel

__all__ = [
    # Client
    "OddsApiClient",
    "APIError",
    "RateLimitError",
    "TransportError",
    "BetRejectedError",
    "EventClosedError",
    "InvalidPayloadError",
    "MalformedResponseError",
    # Results
    "Ok",
    "Err",
    "ErrorKind",
    "Result",
    "capture",
    "classify_error",
    # Push
    "ConnectionState",
    "OddsPushChannel",
]
