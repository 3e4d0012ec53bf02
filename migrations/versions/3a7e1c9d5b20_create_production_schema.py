"""create production schema

Revision ID: 3a7e1c9d5b20
Revises:
Create Date: 2026-10-18 09:00:00

Purpose:
- production board: user_account, short, assignment, user_rate, short_file
- payment ledger with one derived payment per (short, role)
- review corpus (analyzed_short) and audit_event

Operational notes:
- uq_payment_short_role_derived is a partial unique index; manual and incentive
  payments are not constrained by it
- payment.assignment_id is restrict so a paid-for assignment cannot be dropped alone
- the CHECK value lists below are frozen at this revision; a change to the
  enums in production/status.py needs its own revision that rewrites them
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "3a7e1c9d5b20"
down_revision = None
branch_labels = None
depends_on = None

SHORT_STATUSES = (
    "'idea', 'script', 'clipping', 'clips', 'clip_changes', 'editing', "
    "'editing_changes', 'completed', 'ready_to_upload', 'uploaded'"
)
DRAFT_STAGES = "'first_draft', 'second_draft', 'final_draft'"
ROLES = "'script_writer', 'clipper', 'editor'"
FILE_TYPES = "'script', 'audio', 'clips_zip', 'final_video'"


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def upgrade() -> None:
    op.execute("create extension if not exists pgcrypto;")

    op.create_table(
        "user_account",
        _uuid_pk(),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("paypal_email", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_user_account_email"),
    )

    op.create_table(
        "short",
        _uuid_pk(),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("idea", sa.Text(), nullable=True),
        sa.Column("script_content", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'idea'")),
        sa.Column("script_writer_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("clips_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("editing_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("entered_clip_changes_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("entered_editing_changes_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("script_draft_stage", sa.Text(), nullable=True),
        sa.Column("script_first_draft", sa.Text(), nullable=True),
        sa.Column("script_second_draft", sa.Text(), nullable=True),
        sa.Column("script_final_draft", sa.Text(), nullable=True),
        sa.Column("script_pipeline_notes", sa.Text(), nullable=True),
        sa.Column("first_draft_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("second_draft_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("final_draft_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["script_writer_id"], ["user_account.id"], ondelete="SET NULL"),
        sa.CheckConstraint(f"status in ({SHORT_STATUSES})", name="ck_short_status"),
        sa.CheckConstraint(
            f"script_draft_stage is null or script_draft_stage in ({DRAFT_STAGES})",
            name="ck_short_script_draft_stage",
        ),
    )
    op.create_index("ix_short_status", "short", ["status"])

    op.create_table(
        "assignment",
        _uuid_pk(),
        sa.Column("short_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("default_time_range", sa.Integer(), nullable=False, server_default=sa.text("2")),
        sa.Column("rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("rate_description", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["short_id"], ["short.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["user_account.id"], ondelete="CASCADE"),
        sa.CheckConstraint(f"role in ({ROLES})", name="ck_assignment_role"),
        sa.CheckConstraint(
            "default_time_range > 0 and default_time_range <= 8760",
            name="ck_assignment_default_time_range",
        ),
        sa.UniqueConstraint("short_id", "role", name="uq_assignment_short_role"),
    )
    op.create_index("ix_assignment_user_id", "assignment", ["user_id"])

    op.create_table(
        "user_rate",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("rate", sa.Numeric(10, 2), nullable=False),
        sa.Column("rate_description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "role"),
        sa.ForeignKeyConstraint(["user_id"], ["user_account.id"], ondelete="CASCADE"),
        sa.CheckConstraint(f"role in ({ROLES})", name="ck_user_rate_role"),
        sa.CheckConstraint("rate >= 0", name="ck_user_rate_non_negative"),
    )

    op.create_table(
        "short_file",
        _uuid_pk(),
        sa.Column("short_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("file_type", sa.Text(), nullable=False),
        sa.Column("storage_path", sa.Text(), nullable=False),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=True),
        sa.Column("mime_type", sa.Text(), nullable=True),
        sa.Column("uploaded_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["short_id"], ["short.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["uploaded_by"], ["user_account.id"], ondelete="SET NULL"),
        sa.CheckConstraint(f"file_type in ({FILE_TYPES})", name="ck_short_file_file_type"),
    )
    op.create_index("ix_short_file_short_id", "short_file", ["short_id"])

    op.create_table(
        "payment",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("short_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("assignment_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("role", sa.Text(), nullable=True),
        sa.Column("source", sa.Text(), nullable=False, server_default=sa.text("'manual'")),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("rate_description", sa.Text(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transaction_reference", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["user_account.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["short_id"], ["short.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assignment_id"], ["assignment.id"], ondelete="RESTRICT"),
        sa.CheckConstraint("status in ('pending', 'paid')", name="ck_payment_status"),
        sa.CheckConstraint("source in ('derived', 'manual', 'incentive')", name="ck_payment_source"),
        sa.CheckConstraint(
            f"role is null or role in ({ROLES}, 'incentive')",
            name="ck_payment_role",
        ),
        sa.CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
    )
    op.create_index(
        "uq_payment_short_role_derived",
        "payment",
        ["short_id", "role"],
        unique=True,
        postgresql_where=sa.text("source = 'derived'"),
    )
    op.create_index("ix_payment_user_id", "payment", ["user_id"])
    op.create_index("ix_payment_status", "payment", ["status"])

    op.create_table(
        "analyzed_short",
        _uuid_pk(),
        sa.Column("youtube_video_id", sa.Text(), nullable=False),
        sa.Column("channel_name", sa.Text(), nullable=True),
        sa.Column("channel_id", sa.Text(), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("transcript", sa.Text(), nullable=True),
        sa.Column("transcript_source", sa.Text(), nullable=True),
        sa.Column("views", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("likes", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("comments", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("percentile", sa.Float(), nullable=True),
        sa.Column("user_guess_percentile", sa.Float(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["review_user_id"], ["user_account.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("youtube_video_id", name="uq_analyzed_short_youtube_video_id"),
        sa.CheckConstraint("views >= 0", name="ck_analyzed_short_views_non_negative"),
        sa.CheckConstraint(
            "user_guess_percentile is null or (user_guess_percentile >= 0 and user_guess_percentile <= 100)",
            name="ck_analyzed_short_guess_range",
        ),
    )
    op.create_index("ix_analyzed_short_review_user_id", "analyzed_short", ["review_user_id"])

    op.create_table(
        "audit_event",
        _uuid_pk(),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("actor_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["actor_user_id"], ["user_account.id"], ondelete="SET NULL"),
        sa.CheckConstraint("source in ('api', 'cli', 'system')", name="ck_audit_event_source"),
    )
    op.create_index("ix_audit_event_event_type", "audit_event", ["event_type"])


def downgrade() -> None:
    # destructive rollback: children before parents
    op.drop_index("ix_audit_event_event_type", table_name="audit_event")
    op.drop_table("audit_event")
    op.drop_index("ix_analyzed_short_review_user_id", table_name="analyzed_short")
    op.drop_table("analyzed_short")
    op.drop_index("ix_payment_status", table_name="payment")
    op.drop_index("ix_payment_user_id", table_name="payment")
    op.drop_index("uq_payment_short_role_derived", table_name="payment")
    op.drop_table("payment")
    op.drop_index("ix_short_file_short_id", table_name="short_file")
    op.drop_table("short_file")
    op.drop_table("user_rate")
    op.drop_index("ix_assignment_user_id", table_name="assignment")
    op.drop_table("assignment")
    op.drop_index("ix_short_status", table_name="short")
    op.drop_table("short")
    op.drop_table("user_account")
