"""Expose Pydantic schemas for convenient imports."""

from .billing import BillingEntry, ClientServicePrice, ClientSummary, Invoice
from .closing import (
    CloseRequest,
    ClosingConfiguration,
    ClosingStepRequest,
    ClosingGroupSummary,
    ClosingSessionCreate,
    ClosingSessionListResponse,
    ClosingSessionRead,
    ClosingStepResult,
    ClosureAttemptRead,
    ClosureBatch,
    ClosureGroup,
    ClosureLine,
    Installment,
    InstallmentPreview,
    MissingPrice,
    RejectionReason,
)
from .common import CamelModel, PaginatedResponse

__all__ = [
    "BillingEntry",
    "ClientServicePrice",
    "ClientSummary",
    "Invoice",
    "CloseRequest",
    "ClosingConfiguration",
    "ClosingStepRequest",
    "ClosingGroupSummary",
    "ClosingSessionCreate",
    "ClosingSessionListResponse",
    "ClosingSessionRead",
    "ClosingStepResult",
    "ClosureAttemptRead",
    "ClosureBatch",
    "ClosureGroup",
    "ClosureLine",
    "Installment",
    "InstallmentPreview",
    "MissingPrice",
    "RejectionReason",
    "CamelModel",
    "PaginatedResponse",
]
