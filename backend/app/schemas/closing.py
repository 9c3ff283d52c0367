"""Schemas for closing billing entries into invoices."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import ConfigDict, Field, model_validator

from ..models.closing_session import ClosingSessionStatus, ClosureAttemptOutcome
from ..models.invoice import CloseOption, MissingPriceBehavior
from .billing import BillingEntry, ClientServicePrice, ClientSummary
from .common import CamelModel, PaginatedResponse, WireAmount


class Installment(CamelModel):
    """One dated slice of an invoice total."""

    number: int = Field(..., ge=1)
    amount: WireAmount
    due_date: date


class ClosureLine(CamelModel):
    """Priced view of a billing entry inside a closure group."""

    entry_id: str
    service_id: str
    service_date: date
    quantity: Decimal
    unit_price: Optional[Decimal] = None
    line_total: Decimal = Decimal("0.00")


class MissingPrice(CamelModel):
    """Entry whose (client, service) pair had no applicable price."""

    entry_id: str
    service_id: str


class ClosureGroup(CamelModel):
    """Unbilled entries of a single client closed in one workflow step."""

    client: ClientSummary
    entries: list[BillingEntry]
    lines: list[ClosureLine] = Field(default_factory=list)
    total_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    missing_prices: list[MissingPrice] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_single_client(self):
        foreign = [entry.id for entry in self.entries if entry.client_id != self.client.id]
        if foreign:
            raise ValueError(
                f"Entries {', '.join(foreign)} do not belong to client {self.client.id}"
            )
        return self

    @property
    def client_id(self) -> str:
        return self.client.id

    @property
    def has_missing_prices(self) -> bool:
        return bool(self.missing_prices)


class RejectionReason(CamelModel):
    """Selected entry left out of the closure without blocking the batch."""

    entry_id: str
    code: str
    message: str


class ClosureBatch(CamelModel):
    """Result of grouping a selection of billing entries per client."""

    groups: list[ClosureGroup]
    rejected: list[RejectionReason] = Field(default_factory=list)


class ClosingConfiguration(CamelModel):
    """Operator choices for the group currently being closed."""

    missing_price_behavior: MissingPriceBehavior = MissingPriceBehavior.BLOCK
    close_option: CloseOption = CloseOption.WITHOUT_INSTALLMENTS
    installment_count: int = 2
    first_due_date: Optional[date] = None
    override_due_date: Optional[date] = None
    override_total_amount: Optional[Decimal] = Field(default=None, gt=0)

    @property
    def with_installments(self) -> bool:
        return self.close_option is CloseOption.WITH_INSTALLMENTS


class ClosingStepRequest(ClosingConfiguration):
    """Configuration for the group the operator is looking at.

    ``group_index`` must match the session's current group, so a repeated or
    stale request cannot act on the next client.
    """

    group_index: int = Field(..., ge=0)

    def to_configuration(self) -> ClosingConfiguration:
        return ClosingConfiguration.model_validate(self.model_dump(exclude={"group_index"}))


class CloseRequest(CamelModel):
    """Command sent to the invoicing service to close one client's entries."""

    client_id: str
    issue_date: date
    missing_price_behavior: MissingPriceBehavior
    total_amount: Optional[WireAmount] = None
    due_date: Optional[date] = None
    installments: Optional[list[Installment]] = None

    @model_validator(mode="after")
    def validate_installments(self):
        if not self.installments:
            return self

        numbers = [installment.number for installment in self.installments]
        if numbers != list(range(1, len(numbers) + 1)):
            raise ValueError("Installments must be numbered contiguously from 1")

        due_dates = [installment.due_date for installment in self.installments]
        if any(earlier > later for earlier, later in zip(due_dates, due_dates[1:])):
            raise ValueError("Installment due dates must not decrease")

        if self.total_amount is not None:
            scheduled = sum((i.amount for i in self.installments), Decimal("0"))
            if scheduled != self.total_amount:
                raise ValueError("Installments must add up to the total amount")
        return self

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ClosingSessionCreate(CamelModel):
    """Selection and snapshots used to open a closing session."""

    entry_ids: list[str] = Field(..., description="Billing entries selected for closure")
    entries: list[BillingEntry]
    clients: list[ClientSummary]
    prices: list[ClientServicePrice] = Field(default_factory=list)
    closing_date: Optional[date] = Field(
        default=None, description="Date used to resolve prices (defaults to today)"
    )
    created_by: Optional[str] = None


class ClosingGroupSummary(CamelModel):
    """Per-client line of a closing session shown to the operator."""

    index: int
    client: ClientSummary
    entry_count: int
    total_amount: WireAmount
    formatted_total: str
    running_total: WireAmount
    missing_price_entry_ids: list[str] = Field(default_factory=list)
    closed: bool = False


class ClosingSessionRead(CamelModel):
    """State of a closing session."""

    id: str
    status: ClosingSessionStatus
    current_index: int
    total_groups: int
    progress: str
    closing_date: date
    created_by: Optional[str] = None
    last_error: Optional[str] = None
    current_group: Optional[ClosingGroupSummary] = None
    groups: list[ClosingGroupSummary]
    rejected: list[RejectionReason] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class ClosingSessionListResponse(PaginatedResponse[ClosingSessionRead]):
    """Paginated closing session listing."""

    pass


class InstallmentPreview(CamelModel):
    """Schedule the current configuration would submit."""

    client_id: str
    group_index: int
    total_amount: WireAmount
    installments: list[Installment]


class ClosingStepResult(CamelModel):
    """Outcome of submitting the current group of a session."""

    success: bool
    client_id: str
    message: str
    session: ClosingSessionRead


class ClosureAttemptRead(CamelModel):
    """Audit record of one submission to the invoicing service."""

    id: str
    session_id: str
    attempt_number: int
    group_index: int
    client_id: str
    outcome: ClosureAttemptOutcome
    response_code: Optional[int] = None
    error_message: Optional[str] = None
    payload: Optional[dict] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
