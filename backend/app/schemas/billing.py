"""Snapshots of billing data received from the surrounding application."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field, model_validator

from ..models.invoice import InvoiceStatus
from .common import CamelModel, WireAmount


class BillingEntry(CamelModel):
    """Record of service usage for a client on a given date."""

    id: str
    client_id: str
    service_id: str
    quantity: Decimal = Field(..., ge=1, description="Units consumed")
    service_date: date
    notes: Optional[str] = None
    is_billable: bool = True
    invoice_id: Optional[str] = Field(
        default=None, description="Invoice that already consumed the entry"
    )
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None

    @property
    def is_invoiced(self) -> bool:
        return bool(self.invoice_id)


class ClientServicePrice(CamelModel):
    """Unit price agreed with a client for a service."""

    id: Optional[str] = None
    client_id: str
    service_id: str
    unit_price: Decimal = Field(..., gt=0)
    start_date: date
    end_date: Optional[date] = None
    is_active: bool = True

    @model_validator(mode="after")
    def validate_range(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self

    def applies_on(self, reference: date) -> bool:
        if not self.is_active or self.start_date > reference:
            return False
        return self.end_date is None or self.end_date >= reference


class ClientSummary(CamelModel):
    """Minimal client data needed to close its billing entries."""

    id: str
    trade_name: str = Field(..., description="Display name shown to the operator")
    legal_name: Optional[str] = None
    billing_due_day: Optional[int] = Field(
        default=None, ge=1, le=31, description="Day of month invoices fall due"
    )


class Invoice(CamelModel):
    """Invoice as reported by the invoicing service (read-only)."""

    id: str
    client_id: str
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    status: InvoiceStatus
    total_amount: WireAmount
