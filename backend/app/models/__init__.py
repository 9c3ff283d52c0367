"""Expose SQLAlchemy models for convenient imports."""

from .closing_session import (
    ClosingSession,
    ClosingSessionStatus,
    ClosureAttempt,
    ClosureAttemptOutcome,
)
from .invoice import CloseOption, InvoiceStatus, MissingPriceBehavior

__all__ = [
    "ClosingSession",
    "ClosingSessionStatus",
    "ClosureAttempt",
    "ClosureAttemptOutcome",
    "CloseOption",
    "InvoiceStatus",
    "MissingPriceBehavior",
]
