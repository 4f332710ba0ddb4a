"""
Domain error taxonomy.

Read-path failures (feed, trends, volume) degrade to cached data and are
reported as notices. Write-path failures (submission) stop forward progress
and wait for an explicit retry.
"""

from __future__ import annotations

from typing import Optional


class BetslipError(Exception):
    """Base exception for betslip errors."""


class ValidationError(BetslipError):
    """Rejected locally; never reaches the network."""


class CartLockedError(BetslipError):
    """Raised when the cart is mutated or submitted outside the OPEN state."""


class NetworkError(BetslipError):
    """Transient fetch or push failure."""


class FeedUnavailable(BetslipError):
    """No usable quote is known for an outcome."""

    def __init__(self, event_id: str, outcome_code: Optional[str] = None, reason: str = "") -> None:
        self.event_id = event_id
        self.outcome_code = outcome_code
        self.reason = reason
        target = f"{event_id}/{outcome_code}" if outcome_code else event_id
        message = f"No odds available for {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class PartialSubmissionError(BetslipError):
    """
    Some cart lines were persisted before a failure interrupted submission.

    ``remaining`` counts the lines after the failed one that were never
    attempted.
    """

    def __init__(self, succeeded: int, failed: int, remaining: int, cause: Optional[str] = None) -> None:
        self.succeeded = succeeded
        self.failed = failed
        self.remaining = remaining
        self.cause = cause
        message = (
            f"Submission interrupted: {succeeded} placed, {failed} failed, "
            f"{remaining} not attempted"
        )
        if cause:
            message = f"{message} ({cause})"
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "remaining": self.remaining,
            "cause": self.cause,
        }
