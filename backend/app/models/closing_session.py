"""Models to persist closing sessions and the attempts sent to the invoicing service."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID


class ClosingSessionStatus(str, enum.Enum):
    """Workflow state of a closing session."""

    IDLE = "idle"
    PRESENTING = "presenting"
    SUBMITTING = "submitting"
    DONE = "done"
    CANCELLED = "cancelled"


CLOSING_SESSION_STATUS_ENUM = SAEnum(
    ClosingSessionStatus,
    name="closing_session_status_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class ClosureAttemptOutcome(str, enum.Enum):
    """Result reported for a single close request."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


CLOSURE_ATTEMPT_OUTCOME_ENUM = SAEnum(
    ClosureAttemptOutcome,
    name="closure_attempt_outcome_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class ClosingSession(Base):
    """A batch of closure groups being closed one client at a time."""

    __tablename__ = "closing_sessions"
    __table_args__ = (
        CheckConstraint("current_index >= 0", name="ck_closing_sessions_index_non_negative"),
        CheckConstraint("total_groups >= 1", name="ck_closing_sessions_has_groups"),
    )

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    status = Column(
        CLOSING_SESSION_STATUS_ENUM,
        nullable=False,
        default=ClosingSessionStatus.IDLE,
    )
    current_index = Column(Integer, nullable=False, default=0)
    total_groups = Column(Integer, nullable=False)
    closing_date = Column(Date, nullable=False)
    groups = Column(JSON, nullable=False)
    rejected = Column(JSON, nullable=True)
    closed_client_ids = Column(JSON, nullable=False, default=list)
    last_error = Column(Text, nullable=True)
    created_by = Column(String(120), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())
    finished_at = Column(DateTime(timezone=True), nullable=True)

    attempts = relationship(
        "ClosureAttempt",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ClosureAttempt.attempt_number",
    )


class ClosureAttempt(Base):
    """Audit log with the outcome of each close request."""

    __tablename__ = "closure_attempts"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    session_id = Column(
        GUID(), ForeignKey("closing_sessions.id", ondelete="CASCADE"), nullable=False
    )
    attempt_number = Column(Integer, nullable=False)
    group_index = Column(Integer, nullable=False)
    client_id = Column(String(64), nullable=False)
    outcome = Column(CLOSURE_ATTEMPT_OUTCOME_ENUM, nullable=False)
    response_code = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    session = relationship("ClosingSession", back_populates="attempts")


Index("closing_sessions_status_idx", ClosingSession.status)
Index("closure_attempts_session_idx", ClosureAttempt.session_id)
Index("closure_attempts_client_idx", ClosureAttempt.client_id)
