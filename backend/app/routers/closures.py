"""Router exposing the billing closure workflow."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import get_db
from ..services import (
    ClosingSessionNotFoundError,
    ClosingSessionService,
    ClosingSessionServiceError,
    ClosingWorkflowError,
    ClosureValidationError,
    InvalidScheduleError,
    InvoiceGateway,
    build_invoice_gateway_from_env,
)

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def get_invoice_gateway() -> InvoiceGateway:
    """Gateway used to submit close requests; overridable in tests."""

    return build_invoice_gateway_from_env()


def _not_found(exc: ClosingSessionNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _conflict(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


def _invalid_schedule(exc: InvalidScheduleError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


@router.post(
    "",
    response_model=schemas.ClosingSessionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Agrupa os lançamentos selecionados e inicia o fechamento",
)
def start_closing_session(
    payload: schemas.ClosingSessionCreate, db: Session = Depends(get_db)
) -> schemas.ClosingSessionRead:
    try:
        session = ClosingSessionService.start_session(db, payload)
    except ClosureValidationError as exc:
        LOGGER.info("Rejected closing selection: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(exc), "entry_ids": exc.entry_ids},
        ) from exc
    return ClosingSessionService.describe(session)


@router.get("", response_model=schemas.ClosingSessionListResponse)
def list_closing_sessions(
    db: Session = Depends(get_db),
    status_filter: Optional[models.ClosingSessionStatus] = Query(
        None, alias="status", description="Filter by workflow state"
    ),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(50, ge=1, le=200, description="Maximum number of records to return"),
) -> schemas.ClosingSessionListResponse:
    items, total = ClosingSessionService.list_sessions(
        db, status=status_filter, skip=skip, limit=limit
    )
    return schemas.ClosingSessionListResponse(
        items=[ClosingSessionService.describe(item) for item in items],
        total=total,
        limit=limit,
        skip=skip,
    )


@router.get("/{session_id}", response_model=schemas.ClosingSessionRead)
def get_closing_session(
    session_id: str, db: Session = Depends(get_db)
) -> schemas.ClosingSessionRead:
    try:
        session = ClosingSessionService.get_session(db, session_id)
    except ClosingSessionNotFoundError as exc:
        raise _not_found(exc) from exc
    return ClosingSessionService.describe(session)


@router.post(
    "/{session_id}/installments/preview",
    response_model=schemas.InstallmentPreview,
    summary="Prévia das parcelas para o cliente atual",
)
def preview_installments(
    session_id: str,
    payload: schemas.ClosingStepRequest,
    db: Session = Depends(get_db),
) -> schemas.InstallmentPreview:
    try:
        return ClosingSessionService.preview_installments(
            db, session_id, payload.to_configuration(), group_index=payload.group_index
        )
    except ClosingSessionNotFoundError as exc:
        raise _not_found(exc) from exc
    except ClosingSessionServiceError as exc:
        raise _conflict(exc) from exc
    except InvalidScheduleError as exc:
        raise _invalid_schedule(exc) from exc


@router.post(
    "/{session_id}/submit",
    response_model=schemas.ClosingStepResult,
    summary="Fecha as faturas do cliente atual",
)
def submit_current_group(
    session_id: str,
    payload: schemas.ClosingStepRequest,
    db: Session = Depends(get_db),
    gateway: InvoiceGateway = Depends(get_invoice_gateway),
) -> schemas.ClosingStepResult:
    try:
        outcome, session = ClosingSessionService.submit_current_group(
            db, session_id, payload.to_configuration(), gateway, group_index=payload.group_index
        )
    except ClosingSessionNotFoundError as exc:
        raise _not_found(exc) from exc
    except (ClosingSessionServiceError, ClosingWorkflowError) as exc:
        raise _conflict(exc) from exc
    except InvalidScheduleError as exc:
        raise _invalid_schedule(exc) from exc

    return schemas.ClosingStepResult(
        success=outcome.success,
        client_id=outcome.client_id,
        message=outcome.message,
        session=ClosingSessionService.describe(session),
    )


@router.post("/{session_id}/cancel", response_model=schemas.ClosingSessionRead)
def cancel_closing_session(
    session_id: str, db: Session = Depends(get_db)
) -> schemas.ClosingSessionRead:
    try:
        session = ClosingSessionService.cancel_session(db, session_id)
    except ClosingSessionNotFoundError as exc:
        raise _not_found(exc) from exc
    except (ClosingSessionServiceError, ClosingWorkflowError) as exc:
        raise _conflict(exc) from exc
    return ClosingSessionService.describe(session)


@router.get("/{session_id}/attempts", response_model=list[schemas.ClosureAttemptRead])
def list_closure_attempts(
    session_id: str, db: Session = Depends(get_db)
) -> list[schemas.ClosureAttemptRead]:
    try:
        attempts = ClosingSessionService.list_attempts(db, session_id)
    except ClosingSessionNotFoundError as exc:
        raise _not_found(exc) from exc
    return [schemas.ClosureAttemptRead.model_validate(attempt) for attempt in attempts]
