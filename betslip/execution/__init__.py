"""
Execution module for cart submission.
"""

from .submission import (
    PlacedBet,
    SubmissionPipeline,
    SubmissionResult,
)

__all__ = [
    "PlacedBet",
    "SubmissionPipeline",
    "SubmissionResult",
]
