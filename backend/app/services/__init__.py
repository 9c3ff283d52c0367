"""Service layer encapsulating the billing closure logic used by the API routers."""

from .closing_sessions import (
    ClosingSessionNotFoundError,
    ClosingSessionService,
    ClosingSessionServiceError,
)
from .closing_workflow import ClosingWorkflow, ClosingWorkflowError, StepOutcome
from .closure_groups import (
    AlreadyInvoicedError,
    ClosureValidationError,
    EmptySelectionError,
    NonBillableEntriesError,
    build_groups,
)
from .due_dates import derive_default_due_date
from .installments import InvalidScheduleError, schedule_installments
from .invoice_gateway import (
    ConsoleInvoiceGateway,
    GatewayResult,
    HttpInvoiceGateway,
    InvoiceGateway,
    InvoiceGatewayError,
    build_invoice_gateway_from_env,
)
from .price_resolver import PriceNotFoundError, PriceResolver, resolve_price

__all__ = [
    "ClosingSessionNotFoundError",
    "ClosingSessionService",
    "ClosingSessionServiceError",
    "ClosingWorkflow",
    "ClosingWorkflowError",
    "StepOutcome",
    "AlreadyInvoicedError",
    "ClosureValidationError",
    "EmptySelectionError",
    "NonBillableEntriesError",
    "build_groups",
    "derive_default_due_date",
    "InvalidScheduleError",
    "schedule_installments",
    "ConsoleInvoiceGateway",
    "GatewayResult",
    "HttpInvoiceGateway",
    "InvoiceGateway",
    "InvoiceGatewayError",
    "build_invoice_gateway_from_env",
    "PriceNotFoundError",
    "PriceResolver",
    "resolve_price",
]
