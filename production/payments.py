from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import extract, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models import Assignment, Payment, Short, UserAccount

from .audit import record_event
from .catalog import parse_amount
from .context import CallerContext, require_admin
from .errors import Forbidden, NotFound, ValidationError
from .status import INCENTIVE_ROLE, PAYMENT_ROLES, PaymentSource, PaymentStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentQuery:
    user_id: UUID | None = None
    status: str | None = None
    month: int | None = None
    year: int | None = None


@dataclass(frozen=True)
class PaymentSummary:
    pending_amount: Decimal
    paid_amount: Decimal
    pending_count: int
    paid_count: int

    @property
    def total_amount(self) -> Decimal:
        return self.pending_amount + self.paid_amount


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _existing_payment(session: Session, short_id: UUID, role: str) -> Payment | None:
    stmt = select(Payment).where(
        Payment.short_id == short_id,
        Payment.role == role,
        Payment.source == PaymentSource.DERIVED.value,
    )
    return session.execute(stmt).scalar_one_or_none()


def derive_completion_payment(
    session: Session,
    short: Short,
    assignment: Assignment,
    rate: Decimal,
    *,
    actor_user_id: UUID | None = None,
) -> Payment:
    """Return the single derived payment for (short, role), creating it once."""
    existing = _existing_payment(session, short.id, assignment.role)
    if existing is not None:
        return existing

    now = _utc_now()
    payment = Payment(
        user_id=assignment.user_id,
        short_id=short.id,
        assignment_id=assignment.id,
        amount=rate,
        role=assignment.role,
        source=PaymentSource.DERIVED.value,
        status=PaymentStatus.PENDING.value,
        rate_description=assignment.rate_description,
        completed_at=now,
        created_at=now,
        updated_at=now,
    )
    try:
        with session.begin_nested():
            session.add(payment)
    except IntegrityError:
        logger.warning(
            "derived payment for short %s role %s already inserted concurrently",
            short.id,
            assignment.role,
        )
        existing = _existing_payment(session, short.id, assignment.role)
        if existing is None:
            raise
        return existing

    record_event(
        session,
        "payment_derived",
        actor_user_id=actor_user_id,
        source="system",
        occurred_at=now,
        payment_id=payment.id,
        short_id=short.id,
        user_id=assignment.user_id,
        role=assignment.role,
        amount=rate,
    )
    logger.info("derived payment %s for short %s role %s", payment.id, short.id, assignment.role)
    return payment


def _create_payment(
    session: Session,
    *,
    user_id: UUID,
    amount,
    role: str | None,
    source: PaymentSource,
    short_id: UUID | None = None,
    rate_description: str | None = None,
    admin_notes: str | None = None,
    completed_at: datetime | None = None,
) -> Payment:
    if session.get(UserAccount, user_id) is None:
        raise NotFound("user_not_found", user_id=str(user_id))
    if short_id is not None and session.get(Short, short_id) is None:
        raise NotFound("short_not_found", short_id=str(short_id))
    if role is not None and role not in PAYMENT_ROLES:
        raise ValidationError("invalid_role", role=role, allowed=list(PAYMENT_ROLES))
    now = _utc_now()
    payment = Payment(
        user_id=user_id,
        short_id=short_id,
        amount=parse_amount(amount),
        role=role,
        source=source.value,
        status=PaymentStatus.PENDING.value,
        rate_description=rate_description,
        admin_notes=admin_notes,
        completed_at=completed_at,
        created_at=now,
        updated_at=now,
    )
    session.add(payment)
    session.flush()
    return payment


def create_manual_payment(
    session: Session,
    ctx: CallerContext,
    *,
    user_id: UUID,
    amount,
    short_id: UUID | None = None,
    role: str | None = None,
    rate_description: str | None = None,
    admin_notes: str | None = None,
    completed_at: datetime | None = None,
) -> Payment:
    require_admin(ctx, "create payments")
    payment = _create_payment(
        session,
        user_id=user_id,
        amount=amount,
        role=role,
        source=PaymentSource.MANUAL,
        short_id=short_id,
        rate_description=rate_description,
        admin_notes=admin_notes,
        completed_at=completed_at,
    )
    record_event(
        session,
        "payment_created",
        actor_user_id=ctx.user_id,
        payment_id=payment.id,
        user_id=user_id,
        amount=payment.amount,
        payment_source=PaymentSource.MANUAL.value,
    )
    return payment


def create_incentive_payment(
    session: Session,
    ctx: CallerContext,
    *,
    user_id: UUID,
    amount,
    short_id: UUID | None = None,
    admin_notes: str | None = None,
    source: str = "api",
) -> Payment:
    require_admin(ctx, "create incentive payments")
    payment = _create_payment(
        session,
        user_id=user_id,
        amount=amount,
        role=INCENTIVE_ROLE,
        source=PaymentSource.INCENTIVE,
        short_id=short_id,
        rate_description="Incentive",
        admin_notes=admin_notes,
        completed_at=_utc_now(),
    )
    record_event(
        session,
        "payment_created",
        actor_user_id=ctx.user_id,
        source=source,
        payment_id=payment.id,
        user_id=user_id,
        amount=payment.amount,
        payment_source=PaymentSource.INCENTIVE.value,
    )
    logger.info("incentive payment %s for user %s", payment.id, user_id)
    return payment


def get_payment(session: Session, ctx: CallerContext, payment_id: UUID) -> Payment:
    payment = session.get(Payment, payment_id)
    if payment is None:
        raise NotFound("payment_not_found", payment_id=str(payment_id))
    if not ctx.is_admin and payment.user_id != ctx.user_id:
        raise Forbidden("payment_not_owned", payment_id=str(payment_id))
    return payment


def update_payment(
    session: Session,
    ctx: CallerContext,
    payment_id: UUID,
    *,
    amount=None,
    admin_notes: str | None = None,
) -> Payment:
    require_admin(ctx, "edit payments")
    if amount is None and admin_notes is None:
        raise ValidationError("no_fields_to_update")
    payment = session.get(Payment, payment_id)
    if payment is None:
        raise NotFound("payment_not_found", payment_id=str(payment_id))
    if payment.status == PaymentStatus.PAID.value:
        raise ValidationError("payment_already_paid", payment_id=str(payment.id))

    changes: dict = {}
    if amount is not None:
        payment.amount = parse_amount(amount)
        changes["amount"] = payment.amount
    if admin_notes is not None:
        payment.admin_notes = admin_notes.strip() or None
        changes["admin_notes"] = payment.admin_notes
    now = _utc_now()
    payment.updated_at = now
    session.add(payment)
    session.flush()
    record_event(
        session,
        "payment_updated",
        actor_user_id=ctx.user_id,
        occurred_at=now,
        payment_id=payment.id,
        **changes,
    )
    return payment


def mark_paid(
    session: Session,
    ctx: CallerContext,
    payment_id: UUID,
    transaction_reference: str | None,
    *,
    source: str = "api",
) -> Payment:
    require_admin(ctx, "mark payments paid")
    reference = (transaction_reference or "").strip()
    if not reference:
        raise ValidationError("transaction_reference_required")
    payment = session.get(Payment, payment_id)
    if payment is None:
        raise NotFound("payment_not_found", payment_id=str(payment_id))
    if payment.status == PaymentStatus.PAID.value:
        raise ValidationError(
            "payment_already_paid",
            payment_id=str(payment.id),
            transaction_reference=payment.transaction_reference,
        )
    now = _utc_now()
    payment.status = PaymentStatus.PAID.value
    payment.paid_at = now
    payment.transaction_reference = reference
    payment.updated_at = now
    session.add(payment)
    session.flush()
    record_event(
        session,
        "payment_paid",
        actor_user_id=ctx.user_id,
        source=source,
        occurred_at=now,
        payment_id=payment.id,
        user_id=payment.user_id,
        amount=payment.amount,
        transaction_reference=reference,
    )
    logger.info("payment %s marked paid ref=%s", payment.id, reference)
    return payment


def _filtered(stmt, ctx: CallerContext, query: PaymentQuery):
    user_id = query.user_id
    if not ctx.is_admin:
        if user_id is not None and user_id != ctx.user_id:
            raise Forbidden("payment_not_owned", user_id=str(user_id))
        user_id = ctx.user_id
    if user_id is not None:
        stmt = stmt.where(Payment.user_id == user_id)
    if query.status:
        try:
            status = PaymentStatus(query.status)
        except ValueError as exc:
            raise ValidationError("invalid_payment_status", status=query.status) from exc
        stmt = stmt.where(Payment.status == status.value)
    if query.month is not None:
        if not 1 <= query.month <= 12:
            raise ValidationError("invalid_month", month=query.month)
        stmt = stmt.where(extract("month", Payment.created_at) == query.month)
    if query.year is not None:
        stmt = stmt.where(extract("year", Payment.created_at) == query.year)
    return stmt


def list_payments(
    session: Session,
    ctx: CallerContext,
    query: PaymentQuery | None = None,
) -> list[Payment]:
    stmt = _filtered(select(Payment), ctx, query or PaymentQuery())
    stmt = stmt.order_by(Payment.created_at.desc())
    return list(session.execute(stmt).scalars().all())


def payment_summary(
    session: Session,
    ctx: CallerContext,
    query: PaymentQuery | None = None,
) -> PaymentSummary:
    stmt = select(Payment.status, func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
    stmt = _filtered(stmt, ctx, query or PaymentQuery()).group_by(Payment.status)
    totals = {status: (int(count), Decimal(str(amount))) for status, count, amount in session.execute(stmt)}
    pending_count, pending_amount = totals.get(PaymentStatus.PENDING.value, (0, Decimal("0")))
    paid_count, paid_amount = totals.get(PaymentStatus.PAID.value, (0, Decimal("0")))
    return PaymentSummary(
        pending_amount=pending_amount.quantize(Decimal("0.01")),
        paid_amount=paid_amount.quantize(Decimal("0.01")),
        pending_count=pending_count,
        paid_count=paid_count,
    )
