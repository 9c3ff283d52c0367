"""Create tables tracking closing sessions and their close attempts."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "20260101_0001"
down_revision = None
branch_labels = None
depends_on = None


SQLITE_UUID_DEFAULT = sa.text(
    "lower(hex(randomblob(4)) || '-' || hex(randomblob(2)) || '-4' || "
    "substr(hex(randomblob(2)), 2) || '-' || substr('89ab', abs(random()) % 4 + 1, 1) || "
    "substr(hex(randomblob(2)), 2) || '-' || hex(randomblob(6)))"
)


def _dialect_settings():
    bind = op.get_bind()
    dialect = bind.dialect.name if bind else "sqlite"

    uuid_type = sa.String(length=36)
    uuid_default = SQLITE_UUID_DEFAULT
    json_type = sa.JSON()

    if dialect == "postgresql":
        uuid_type = postgresql.UUID(as_uuid=True)
        uuid_default = sa.text("gen_random_uuid()")
        json_type = postgresql.JSONB()

    return uuid_type, uuid_default, json_type


def _session_status_enum() -> sa.Enum:
    return sa.Enum(
        "idle",
        "presenting",
        "submitting",
        "done",
        "cancelled",
        name="closing_session_status_enum",
        native_enum=False,
    )


def _attempt_outcome_enum() -> sa.Enum:
    return sa.Enum(
        "pending",
        "succeeded",
        "failed",
        name="closure_attempt_outcome_enum",
        native_enum=False,
    )


def upgrade() -> None:
    uuid_type, uuid_default, json_type = _dialect_settings()

    op.create_table(
        "closing_sessions",
        sa.Column("id", uuid_type, primary_key=True, server_default=uuid_default),
        sa.Column("status", _session_status_enum(), nullable=False),
        sa.Column("current_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_groups", sa.Integer(), nullable=False),
        sa.Column("closing_date", sa.Date(), nullable=False),
        sa.Column("groups", json_type, nullable=False),
        sa.Column("rejected", json_type, nullable=True),
        sa.Column("closed_client_ids", json_type, nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=120), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("current_index >= 0", name="ck_closing_sessions_index_non_negative"),
        sa.CheckConstraint("total_groups >= 1", name="ck_closing_sessions_has_groups"),
    )
    op.create_index(
        "closing_sessions_status_idx",
        "closing_sessions",
        ["status"],
        unique=False,
    )

    op.create_table(
        "closure_attempts",
        sa.Column("id", uuid_type, primary_key=True, server_default=uuid_default),
        sa.Column(
            "session_id",
            uuid_type,
            sa.ForeignKey("closing_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column("group_index", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("outcome", _attempt_outcome_enum(), nullable=False),
        sa.Column("response_code", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("payload", json_type, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "closure_attempts_session_idx",
        "closure_attempts",
        ["session_id"],
        unique=False,
    )
    op.create_index(
        "closure_attempts_client_idx",
        "closure_attempts",
        ["client_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("closure_attempts_client_idx", table_name="closure_attempts")
    op.drop_index("closure_attempts_session_idx", table_name="closure_attempts")
    op.drop_table("closure_attempts")
    op.drop_index("closing_sessions_status_idx", table_name="closing_sessions")
    op.drop_table("closing_sessions")
