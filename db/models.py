from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import text

from production.status import (
    PAYMENT_ROLES,
    ArtifactType,
    DraftStage,
    PaymentSource,
    PaymentStatus,
    Role,
    ShortStatus,
    sql_in,
)

from .base import Base

JSONPayload = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserAccount(Base):
    __tablename__ = "user_account"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(Text, unique=True)
    name: Mapped[str] = mapped_column(Text)
    paypal_email: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class Short(Base):
    __tablename__ = "short"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    idea: Mapped[str | None] = mapped_column(Text, nullable=True)
    script_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(Text, default=ShortStatus.IDEA.value)
    script_writer_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("user_account.id", ondelete="SET NULL"),
        nullable=True,
    )
    clips_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    editing_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    entered_clip_changes_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    entered_editing_changes_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    script_draft_stage: Mapped[str | None] = mapped_column(Text, nullable=True)
    script_first_draft: Mapped[str | None] = mapped_column(Text, nullable=True)
    script_second_draft: Mapped[str | None] = mapped_column(Text, nullable=True)
    script_final_draft: Mapped[str | None] = mapped_column(Text, nullable=True)
    script_pipeline_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    first_draft_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    second_draft_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    final_draft_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    assignments: Mapped[list["Assignment"]] = relationship(
        back_populates="short",
        cascade="all, delete-orphan",
    )
    files: Mapped[list["ShortFile"]] = relationship(
        back_populates="short",
        cascade="all, delete-orphan",
    )
    payments: Mapped[list["Payment"]] = relationship(
        back_populates="short",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(sql_in("status", ShortStatus), name="ck_short_status"),
        CheckConstraint(
            f"script_draft_stage is null or {sql_in('script_draft_stage', DraftStage)}",
            name="ck_short_script_draft_stage",
        ),
        Index("ix_short_status", "status"),
    )


class Assignment(Base):
    __tablename__ = "assignment"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    short_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("short.id", ondelete="CASCADE"),
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("user_account.id", ondelete="CASCADE"),
    )
    role: Mapped[str] = mapped_column(Text)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    default_time_range: Mapped[int] = mapped_column(Integer, default=2)
    rate: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    rate_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    short: Mapped["Short"] = relationship(back_populates="assignments")
    # payment.assignment_id is RESTRICT; never null it out from this side
    payments: Mapped[list["Payment"]] = relationship(back_populates="assignment", passive_deletes="all")

    __table_args__ = (
        CheckConstraint(sql_in("role", Role), name="ck_assignment_role"),
        CheckConstraint(
            "default_time_range > 0 and default_time_range <= 8760",
            name="ck_assignment_default_time_range",
        ),
        UniqueConstraint("short_id", "role", name="uq_assignment_short_role"),
        Index("ix_assignment_user_id", "user_id"),
    )


class UserRate(Base):
    __tablename__ = "user_rate"

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("user_account.id", ondelete="CASCADE"),
        primary_key=True,
    )
    role: Mapped[str] = mapped_column(Text, primary_key=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    rate_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(sql_in("role", Role), name="ck_user_rate_role"),
        CheckConstraint("rate >= 0", name="ck_user_rate_non_negative"),
    )


class ShortFile(Base):
    __tablename__ = "short_file"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    short_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("short.id", ondelete="CASCADE"),
    )
    file_type: Mapped[str] = mapped_column(Text)
    storage_path: Mapped[str] = mapped_column(Text)
    file_name: Mapped[str] = mapped_column(Text)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    mime_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    uploaded_by: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("user_account.id", ondelete="SET NULL"),
        nullable=True,
    )
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    short: Mapped["Short"] = relationship(back_populates="files")

    __table_args__ = (
        CheckConstraint(sql_in("file_type", ArtifactType), name="ck_short_file_file_type"),
        Index("ix_short_file_short_id", "short_id"),
    )


class Payment(Base):
    __tablename__ = "payment"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("user_account.id", ondelete="CASCADE"),
    )
    short_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("short.id", ondelete="CASCADE"),
        nullable=True,
    )
    assignment_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("assignment.id", ondelete="RESTRICT"),
        nullable=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    role: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(Text, default=PaymentSource.MANUAL.value)
    status: Mapped[str] = mapped_column(Text, default=PaymentStatus.PENDING.value)
    rate_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    transaction_reference: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    short: Mapped["Short | None"] = relationship(back_populates="payments")
    assignment: Mapped["Assignment | None"] = relationship(back_populates="payments")

    __table_args__ = (
        CheckConstraint(sql_in("status", PaymentStatus), name="ck_payment_status"),
        CheckConstraint(sql_in("source", PaymentSource), name="ck_payment_source"),
        CheckConstraint(f"role is null or {sql_in('role', PAYMENT_ROLES)}", name="ck_payment_role"),
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        Index(
            "uq_payment_short_role_derived",
            "short_id",
            "role",
            unique=True,
            postgresql_where=text("source = 'derived'"),
            sqlite_where=text("source = 'derived'"),
        ),
        Index("ix_payment_user_id", "user_id"),
        Index("ix_payment_status", "status"),
    )


class AnalyzedShort(Base):
    __tablename__ = "analyzed_short"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    youtube_video_id: Mapped[str] = mapped_column(Text, unique=True)
    channel_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    channel_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcript_source: Mapped[str | None] = mapped_column(Text, nullable=True)
    views: Mapped[int] = mapped_column(BigInteger, default=0)
    likes: Mapped[int] = mapped_column(BigInteger, default=0)
    comments: Mapped[int] = mapped_column(BigInteger, default=0)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    percentile: Mapped[float | None] = mapped_column(Float, nullable=True)
    user_guess_percentile: Mapped[float | None] = mapped_column(Float, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    review_user_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("user_account.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        CheckConstraint("views >= 0", name="ck_analyzed_short_views_non_negative"),
        CheckConstraint(
            "user_guess_percentile is null or (user_guess_percentile >= 0 and user_guess_percentile <= 100)",
            name="ck_analyzed_short_guess_range",
        ),
        Index("ix_analyzed_short_review_user_id", "review_user_id"),
    )


class AuditEvent(Base):
    __tablename__ = "audit_event"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    event_type: Mapped[str] = mapped_column(Text)
    source: Mapped[str] = mapped_column(Text, default="api")
    actor_user_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("user_account.id", ondelete="SET NULL"),
        nullable=True,
    )
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    payload: Mapped[dict | None] = mapped_column(JSONPayload, nullable=True)

    __table_args__ = (
        CheckConstraint("source in ('api', 'cli', 'system')", name="ck_audit_event_source"),
        Index("ix_audit_event_event_type", "event_type"),
    )
