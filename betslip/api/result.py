"""
Tagged results for collaborator calls.

The REST client raises typed ``APIError`` subclasses; read paths that must
degrade gracefully wrap calls in :func:`capture` and branch on ``Ok``/``Err``
instead of handling every exception shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Generic, TypeVar, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from .client import APIError, MalformedResponseError, RateLimitError, TransportError

T = TypeVar("T")


class ErrorKind(str, Enum):
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    REJECTED = "rejected"
    SERVER = "server"
    INVALID_PAYLOAD = "invalid_payload"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


def classify_error(exc: Exception) -> ErrorKind:
    if isinstance(exc, RateLimitError):
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, (TransportError, httpx.TransportError)):
        return ErrorKind.NETWORK
    if isinstance(exc, (PydanticValidationError, MalformedResponseError)):
        return ErrorKind.INVALID_PAYLOAD
    if isinstance(exc, APIError):
        if exc.status_code is not None and exc.status_code >= 500:
            return ErrorKind.SERVER
        return ErrorKind.REJECTED
    return ErrorKind.NETWORK


async def capture(call: Awaitable[T]) -> Result:
    """Await a collaborator call and normalize its outcome."""
    try:
        return Ok(await call)
    except (APIError, httpx.HTTPError, PydanticValidationError) as exc:
        return Err(kind=classify_error(exc), message=str(exc))
