"""Service layer persisting closing workflows between operator requests."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .. import models, schemas
from .closing_workflow import INTERRUPTED_SUBMISSION_MESSAGE, ClosingWorkflow, StepOutcome
from .closure_groups import ClosureValidationError, build_groups
from .formatting import format_currency, format_progress
from .installments import schedule_installments
from .invoice_gateway import InvoiceGateway

LOGGER = logging.getLogger(__name__)

FINISHED_STATUSES = {
    models.ClosingSessionStatus.DONE,
    models.ClosingSessionStatus.CANCELLED,
}


class ClosingSessionServiceError(RuntimeError):
    """Raised when a closing session operation cannot be completed."""


class ClosingSessionNotFoundError(LookupError):
    """Raised when a closing session does not exist."""


class ClosingSessionService:
    """Operations to open, step through and cancel closing sessions."""

    @staticmethod
    def list_sessions(
        db: Session,
        *,
        status: Optional[models.ClosingSessionStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[Iterable[models.ClosingSession], int]:
        query = db.query(models.ClosingSession)
        if status:
            query = query.filter(models.ClosingSession.status == status)

        total = query.count()
        items = (
            query.order_by(models.ClosingSession.created_at.desc())
            .offset(max(skip, 0))
            .limit(max(limit, 1))
            .all()
        )
        return items, total

    @staticmethod
    def get_session(
        db: Session, session_id: str, *, for_update: bool = False
    ) -> models.ClosingSession:
        try:
            normalized_id = str(uuid.UUID(str(session_id)))
        except ValueError as exc:
            raise ClosingSessionNotFoundError("Closing session not found") from exc

        query = (
            db.query(models.ClosingSession)
            .options(selectinload(models.ClosingSession.attempts))
            .filter(models.ClosingSession.id == normalized_id)
        )
        if for_update:
            query = query.with_for_update(of=models.ClosingSession)

        session = query.first()
        if session is None:
            raise ClosingSessionNotFoundError("Closing session not found")
        return session

    @staticmethod
    def start_session(
        db: Session, payload: schemas.ClosingSessionCreate
    ) -> models.ClosingSession:
        """Validate the selection, group it per client and present the first group."""

        closing_date = payload.closing_date or date.today()
        batch = build_groups(
            payload.entry_ids,
            payload.entries,
            payload.clients,
            payload.prices,
            closing_date=closing_date,
        )
        if not batch.groups:
            raise ClosureValidationError(
                "None of the selected entries can be closed",
                [reason.entry_id for reason in batch.rejected],
            )

        workflow = ClosingWorkflow(batch.groups)
        workflow.start()

        session = models.ClosingSession(
            status=workflow.state,
            current_index=workflow.index,
            total_groups=len(workflow.groups),
            closing_date=closing_date,
            groups=[group.model_dump(mode="json") for group in workflow.groups],
            rejected=[reason.model_dump(mode="json") for reason in batch.rejected],
            closed_client_ids=[],
            created_by=payload.created_by,
        )
        db.add(session)
        db.commit()
        db.refresh(session)
        LOGGER.info(
            "Opened closing session %s with %s client groups", session.id, session.total_groups
        )
        return session

    @staticmethod
    def _load_workflow(
        session: models.ClosingSession,
        gateway: Optional[InvoiceGateway] = None,
        *,
        today: Optional[Callable[[], date]] = None,
    ) -> ClosingWorkflow:
        groups = [schemas.ClosureGroup.model_validate(item) for item in session.groups]
        return ClosingWorkflow.resume(
            groups,
            gateway,
            state=models.ClosingSessionStatus(session.status),
            index=session.current_index,
            closed_client_ids=session.closed_client_ids or [],
            last_error=session.last_error,
            today=today,
        )

    @staticmethod
    def _store_workflow(session: models.ClosingSession, workflow: ClosingWorkflow) -> None:
        session.status = workflow.state
        session.current_index = workflow.index
        session.closed_client_ids = list(workflow.closed_client_ids)
        session.last_error = workflow.last_error
        if workflow.is_finished and session.finished_at is None:
            session.finished_at = datetime.now(timezone.utc)

    @staticmethod
    def _ensure_open(session: models.ClosingSession) -> None:
        if session.status in FINISHED_STATUSES:
            raise ClosingSessionServiceError("A sessão de fechamento já foi finalizada.")

    @staticmethod
    def _ensure_current_group(session: models.ClosingSession, group_index: int) -> None:
        if group_index != session.current_index:
            raise ClosingSessionServiceError(
                f"O grupo {group_index + 1} não é o grupo atual da sessão "
                f"({session.current_index + 1} de {session.total_groups})."
            )

    @classmethod
    def preview_installments(
        cls,
        db: Session,
        session_id: str,
        configuration: schemas.ClosingConfiguration,
        *,
        group_index: int,
    ) -> schemas.InstallmentPreview:
        session = cls.get_session(db, session_id)
        cls._ensure_open(session)
        cls._ensure_current_group(session, group_index)

        workflow = cls._load_workflow(session)
        workflow.configure(configuration)
        amount = workflow.closing_amount()
        installments = schedule_installments(
            amount, configuration.installment_count, configuration.first_due_date
        )
        return schemas.InstallmentPreview(
            client_id=workflow.groups[workflow.index].client_id,
            group_index=workflow.index,
            total_amount=amount,
            installments=installments,
        )

    @classmethod
    def submit_current_group(
        cls,
        db: Session,
        session_id: str,
        configuration: schemas.ClosingConfiguration,
        gateway: InvoiceGateway,
        *,
        group_index: int,
        today: Optional[Callable[[], date]] = None,
    ) -> tuple[StepOutcome, models.ClosingSession]:
        """Send the current group to the invoicing service and record the attempt.

        Schedule errors surface before anything is sent or stored. The attempt
        is committed as pending, with the session in ``submitting``, before the
        gateway is called. Gateway failures are recorded and leave the session
        on the same group.

        A session found in ``submitting`` was interrupted mid-send. It is moved
        back to ``presenting`` with a warning and nothing is sent; the operator
        has to confirm with the invoicing service and submit again.
        """

        session = cls.get_session(db, session_id, for_update=True)
        cls._ensure_open(session)
        cls._ensure_current_group(session, group_index)

        workflow = cls._load_workflow(session, gateway, today=today)
        if session.status == models.ClosingSessionStatus.SUBMITTING:
            LOGGER.warning(
                "Closing session %s was left submitting client group %s",
                session.id,
                session.current_index + 1,
            )
            cls._store_workflow(session, workflow)
            db.commit()
            raise ClosingSessionServiceError(INTERRUPTED_SUBMISSION_MESSAGE)

        workflow.configure(configuration)
        request = workflow.build_request()

        attempt = models.ClosureAttempt(
            session_id=session.id,
            attempt_number=len(session.attempts) + 1,
            group_index=workflow.index,
            client_id=request.client_id,
            outcome=models.ClosureAttemptOutcome.PENDING,
            payload=request.to_payload(),
        )
        session.attempts.append(attempt)
        session.status = models.ClosingSessionStatus.SUBMITTING
        db.add(session)
        db.commit()

        outcome = workflow.submit(request)

        attempt.outcome = (
            models.ClosureAttemptOutcome.SUCCEEDED
            if outcome.success
            else models.ClosureAttemptOutcome.FAILED
        )
        attempt.response_code = outcome.status_code
        attempt.error_message = None if outcome.success else outcome.message
        cls._store_workflow(session, workflow)
        try:
            db.commit()
        except SQLAlchemyError:
            LOGGER.exception(
                "Could not record the outcome for client %s in closing session %s (success=%s)",
                outcome.client_id,
                session_id,
                outcome.success,
            )
            raise
        db.refresh(session)
        return outcome, session

    @classmethod
    def cancel_session(cls, db: Session, session_id: str) -> models.ClosingSession:
        session = cls.get_session(db, session_id, for_update=True)
        cls._ensure_open(session)

        workflow = cls._load_workflow(session)
        discarded = workflow.cancel()
        cls._store_workflow(session, workflow)
        db.add(session)
        db.commit()
        db.refresh(session)
        LOGGER.info(
            "Closing session %s cancelled with %s groups left open", session.id, len(discarded)
        )
        return session

    @classmethod
    def list_attempts(cls, db: Session, session_id: str) -> list[models.ClosureAttempt]:
        return list(cls.get_session(db, session_id).attempts)

    @staticmethod
    def describe(session: models.ClosingSession) -> schemas.ClosingSessionRead:
        """Build the operator view of a session including display values."""

        groups = [schemas.ClosureGroup.model_validate(item) for item in session.groups]
        closed = set(session.closed_client_ids or [])

        summaries: list[schemas.ClosingGroupSummary] = []
        running_total = Decimal("0.00")
        for index, group in enumerate(groups):
            running_total += group.total_amount
            summaries.append(
                schemas.ClosingGroupSummary(
                    index=index,
                    client=group.client,
                    entry_count=len(group.entries),
                    total_amount=group.total_amount,
                    formatted_total=format_currency(group.total_amount),
                    running_total=running_total,
                    missing_price_entry_ids=[item.entry_id for item in group.missing_prices],
                    closed=group.client_id in closed,
                )
            )

        current_group = None
        if session.status not in FINISHED_STATUSES:
            current_group = summaries[session.current_index]

        return schemas.ClosingSessionRead(
            id=str(session.id),
            status=session.status,
            current_index=session.current_index,
            total_groups=session.total_groups,
            progress=format_progress(session.current_index + 1, session.total_groups),
            closing_date=session.closing_date,
            created_by=session.created_by,
            last_error=session.last_error,
            current_group=current_group,
            groups=summaries,
            rejected=[
                schemas.RejectionReason.model_validate(item) for item in session.rejected or []
            ],
            created_at=session.created_at,
            updated_at=session.updated_at,
            finished_at=session.finished_at,
        )
