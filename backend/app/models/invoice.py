"""Enumerations shared with the remote invoicing service."""

from __future__ import annotations

import enum


class InvoiceStatus(str, enum.Enum):
    """Lifecycle of an invoice as reported by the invoicing service."""

    DRAFT = "Draft"
    OPEN = "Open"
    CLOSED = "Closed"
    OVERDUE = "Overdue"
    CANCELLED = "Cancelled"


class MissingPriceBehavior(enum.IntEnum):
    """What the invoicing service does when an entry has no active price."""

    BLOCK = 0
    ALLOW_MANUAL = 1


class CloseOption(str, enum.Enum):
    """Whether a closure is billed in one payment or split in installments."""

    WITHOUT_INSTALLMENTS = "without_installments"
    WITH_INSTALLMENTS = "with_installments"
