"""State machine closing a batch of closure groups one client at a time.

The workflow presents one group, lets the operator configure it, submits a
single close request to the invoicing service and only moves to the next
client after the service confirms the closure. A failed submission keeps the
workflow on the same group so the operator can adjust the configuration and
retry, or cancel the remaining groups. Groups already closed are never rolled
back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional, Sequence, Union

from ..models.closing_session import ClosingSessionStatus
from ..schemas.closing import (
    CloseRequest,
    ClosingConfiguration,
    ClosureGroup,
    Installment,
)
from .due_dates import derive_default_due_date
from .installments import InvalidScheduleError, normalize_amount, schedule_installments
from .invoice_gateway import GatewayResult, InvoiceGateway, InvoiceGatewayError

LOGGER = logging.getLogger(__name__)

WorkflowState = ClosingSessionStatus

_TRANSITIONS: dict[WorkflowState, frozenset[WorkflowState]] = {
    WorkflowState.IDLE: frozenset({WorkflowState.PRESENTING, WorkflowState.CANCELLED}),
    WorkflowState.PRESENTING: frozenset({WorkflowState.SUBMITTING, WorkflowState.CANCELLED}),
    WorkflowState.SUBMITTING: frozenset({WorkflowState.PRESENTING, WorkflowState.DONE}),
    WorkflowState.DONE: frozenset(),
    WorkflowState.CANCELLED: frozenset(),
}

INTERRUPTED_SUBMISSION_MESSAGE = (
    "O envio anterior foi interrompido; confirme no faturamento antes de reenviar."
)


class ClosingWorkflowError(RuntimeError):
    """Raised when the workflow is driven through an invalid transition."""


@dataclass(frozen=True)
class Start:
    """Event: present the first group."""


@dataclass(frozen=True)
class Configure:
    """Event: replace or update the current group's configuration."""

    configuration: Optional[ClosingConfiguration] = None
    changes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Submit:
    """Event: close the current group."""


@dataclass(frozen=True)
class Cancel:
    """Event: abandon the groups not submitted yet."""


WorkflowEvent = Union[Start, Configure, Submit, Cancel]


@dataclass
class StepOutcome:
    """Result of submitting one closure group."""

    success: bool
    group_index: int
    client_id: str
    message: str
    request: Optional[CloseRequest] = None
    status_code: Optional[int] = None


class ClosingWorkflow:
    """Drive the sequential closure of ``groups`` through ``gateway``."""

    def __init__(
        self,
        groups: Iterable[ClosureGroup],
        gateway: Optional[InvoiceGateway] = None,
        *,
        today: Optional[Callable[[], date]] = None,
        on_complete: Optional[Callable[["ClosingWorkflow"], None]] = None,
    ) -> None:
        self.groups: list[ClosureGroup] = list(groups)
        if not self.groups:
            raise ClosingWorkflowError("There are no closure groups to process")
        self.gateway = gateway
        self._today = today or date.today
        self._on_complete = on_complete
        self.state = WorkflowState.IDLE
        self.index = 0
        self.configuration = ClosingConfiguration()
        self.last_error: Optional[str] = None
        self.closed_client_ids: list[str] = []

    @classmethod
    def resume(
        cls,
        groups: Iterable[ClosureGroup],
        gateway: Optional[InvoiceGateway] = None,
        *,
        state: WorkflowState,
        index: int,
        closed_client_ids: Sequence[str] = (),
        last_error: Optional[str] = None,
        today: Optional[Callable[[], date]] = None,
        on_complete: Optional[Callable[["ClosingWorkflow"], None]] = None,
    ) -> "ClosingWorkflow":
        """Rebuild a workflow from persisted state.

        A workflow persisted while ``SUBMITTING`` was interrupted mid-call; the
        invoicing service may or may not have closed the group, so it comes
        back presenting the same group with a warning instead of resubmitting.
        """

        workflow = cls(groups, gateway, today=today, on_complete=on_complete)
        if not 0 <= index < len(workflow.groups):
            raise ClosingWorkflowError(f"Group index {index} is out of range")

        workflow.index = index
        workflow.closed_client_ids = list(closed_client_ids)
        workflow.last_error = last_error
        if state is WorkflowState.SUBMITTING:
            LOGGER.warning(
                "Resuming interrupted submission for client %s",
                workflow.groups[index].client_id,
            )
            workflow.state = WorkflowState.PRESENTING
            workflow.last_error = INTERRUPTED_SUBMISSION_MESSAGE
        else:
            workflow.state = state
        return workflow

    @property
    def is_finished(self) -> bool:
        return self.state in {WorkflowState.DONE, WorkflowState.CANCELLED}

    @property
    def is_last(self) -> bool:
        return self.index == len(self.groups) - 1

    @property
    def current_group(self) -> Optional[ClosureGroup]:
        if self.is_finished:
            return None
        return self.groups[self.index]

    @property
    def progress(self) -> tuple[int, int]:
        return self.index + 1, len(self.groups)

    @property
    def closed_groups(self) -> list[ClosureGroup]:
        closed = set(self.closed_client_ids)
        return [group for group in self.groups if group.client_id in closed]

    def _transition(self, target: WorkflowState, *, index: Optional[int] = None) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise ClosingWorkflowError(
                f"Cannot move from {self.state.value} to {target.value}"
            )
        LOGGER.debug("Closing workflow %s -> %s", self.state.value, target.value)
        self.state = target
        if index is not None and index != self.index:
            self.index = index
            self.configuration = ClosingConfiguration()
            self.last_error = None

    def _require(self, *states: WorkflowState) -> None:
        if self.state not in states:
            raise ClosingWorkflowError(
                f"Operation not allowed while the workflow is {self.state.value}"
            )

    def start(self) -> ClosureGroup:
        self._transition(WorkflowState.PRESENTING, index=0)
        return self.groups[0]

    def configure(
        self, configuration: Optional[ClosingConfiguration] = None, **changes: Any
    ) -> ClosingConfiguration:
        """Set the configuration used to close the current group."""

        self._require(WorkflowState.PRESENTING)
        base = configuration or self.configuration
        if changes:
            base = ClosingConfiguration.model_validate({**base.model_dump(), **changes})
        self.configuration = base
        return self.configuration

    def closing_amount(self) -> Decimal:
        group = self.groups[self.index]
        if self.configuration.override_total_amount is not None:
            return normalize_amount(self.configuration.override_total_amount)
        return group.total_amount

    def preview_installments(self) -> list[Installment]:
        """Installments the current configuration would submit, if any."""

        if not self.configuration.with_installments:
            return []
        try:
            return schedule_installments(
                self.closing_amount(),
                self.configuration.installment_count,
                self.configuration.first_due_date,
            )
        except InvalidScheduleError:
            return []

    def build_request(self) -> CloseRequest:
        """Assemble the close request for the current group.

        Raises :class:`InvalidScheduleError` when the installment settings are
        invalid; nothing is sent in that case.
        """

        self._require(WorkflowState.PRESENTING, WorkflowState.SUBMITTING)
        group = self.groups[self.index]
        config = self.configuration
        issue_date = self._today()

        installments = None
        due_date = None
        if config.with_installments:
            installments = schedule_installments(
                self.closing_amount(), config.installment_count, config.first_due_date
            )
        else:
            due_date = config.override_due_date or derive_default_due_date(
                group.client, issue_date
            )

        total_amount = None
        if config.override_total_amount is not None:
            total_amount = normalize_amount(config.override_total_amount)

        return CloseRequest(
            client_id=group.client_id,
            issue_date=issue_date,
            missing_price_behavior=config.missing_price_behavior,
            total_amount=total_amount,
            due_date=due_date,
            installments=installments,
        )

    def _call_gateway(self, group: ClosureGroup, request: CloseRequest) -> GatewayResult:
        try:
            return self.gateway.close_invoices_for_client(request)
        except InvoiceGatewayError as exc:
            LOGGER.warning("Invoicing service unreachable for client %s: %s", group.client_id, exc)
            return GatewayResult(success=False, status_code=exc.status_code, error=str(exc))
        except Exception as exc:  # pragma: no cover - defensive logging
            LOGGER.exception("Unexpected error closing invoices for client %s", group.client_id)
            return GatewayResult(success=False, error=str(exc) or None)

    def submit(self, request: Optional[CloseRequest] = None) -> StepOutcome:
        """Close the current group and advance only when the service confirms it.

        ``request`` is sent as given when the caller already built it from the
        current configuration.
        """

        self._require(WorkflowState.PRESENTING)
        if self.gateway is None:
            raise ClosingWorkflowError("No invoice gateway configured for this workflow")
        if request is None:
            request = self.build_request()
        group = self.groups[self.index]
        index = self.index

        self._transition(WorkflowState.SUBMITTING)
        result = self._call_gateway(group, request)

        if not result.success:
            self.last_error = result.message
            LOGGER.warning(
                "Closing invoices for client %s failed (%s): %s",
                group.client_id,
                result.status_code,
                self.last_error,
            )
            self._transition(WorkflowState.PRESENTING)
            return StepOutcome(
                success=False,
                group_index=index,
                client_id=group.client_id,
                message=self.last_error,
                request=request,
                status_code=result.status_code,
            )

        self.closed_client_ids.append(group.client_id)
        self.last_error = None
        LOGGER.info("Closed invoices for client %s (%s/%s)", group.client_id, index + 1, len(self.groups))

        if index == len(self.groups) - 1:
            self._transition(WorkflowState.DONE)
            if self._on_complete is not None:
                self._on_complete(self)
        else:
            self._transition(WorkflowState.PRESENTING, index=index + 1)

        return StepOutcome(
            success=True,
            group_index=index,
            client_id=group.client_id,
            message=f"Faturas de {group.client.trade_name} fechadas com sucesso.",
            request=request,
            status_code=result.status_code,
        )

    def cancel(self) -> list[ClosureGroup]:
        """Stop the workflow and return the groups that were never submitted."""

        if self.state is WorkflowState.IDLE:
            discarded = list(self.groups)
        else:
            discarded = self.groups[self.index:]
        self._transition(WorkflowState.CANCELLED)
        LOGGER.info("Closing workflow cancelled; %s groups discarded", len(discarded))
        return discarded

    def dispatch(self, event: WorkflowEvent) -> Any:
        """Message-passing entry point mirroring the public methods."""

        if isinstance(event, Start):
            return self.start()
        if isinstance(event, Configure):
            return self.configure(event.configuration, **event.changes)
        if isinstance(event, Submit):
            return self.submit()
        if isinstance(event, Cancel):
            return self.cancel()
        raise ClosingWorkflowError(f"Unsupported event: {event!r}")
