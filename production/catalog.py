from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models import Assignment, Payment, Short, UserAccount, UserRate

from .audit import record_event
from .context import CallerContext, require_admin
from .errors import Conflict, NotFound, ValidationError
from .status import Role, ShortStatus, parse_status

logger = logging.getLogger(__name__)

MAX_TIME_RANGE_HOURS = 8760


@dataclass(frozen=True)
class ShortFilter:
    status: str | None = None
    assigned_to: UUID | None = None
    include_pipeline: bool = False


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_role(value: str) -> Role:
    try:
        return Role(value)
    except ValueError as exc:
        raise ValidationError(
            "invalid_role",
            f"Unknown role: {value}",
            allowed=[role.value for role in Role],
        ) from exc


def parse_amount(value, *, allow_zero: bool = False) -> Decimal:
    try:
        amount = Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("invalid_amount", f"Not a valid amount: {value}") from exc
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError("invalid_amount", "Amount must be positive", amount=str(amount))
    return amount


def get_short(session: Session, short_id: UUID) -> Short:
    short = session.get(Short, short_id)
    if short is None:
        raise NotFound("short_not_found", short_id=str(short_id))
    return short


def _require_user(session: Session, user_id: UUID) -> UserAccount:
    user = session.get(UserAccount, user_id)
    if user is None:
        raise NotFound("user_not_found", user_id=str(user_id))
    return user


def list_shorts(session: Session, filters: ShortFilter | None = None) -> list[Short]:
    filters = filters or ShortFilter()
    stmt = select(Short)
    if not filters.include_pipeline:
        stmt = stmt.where(Short.script_draft_stage.is_(None))
    if filters.status:
        status = parse_status(filters.status)
        if status is None:
            raise ValidationError("invalid_status", status=filters.status)
        stmt = stmt.where(Short.status == status.value)
    if filters.assigned_to is not None:
        stmt = stmt.where(
            Short.id.in_(select(Assignment.short_id).where(Assignment.user_id == filters.assigned_to))
        )
    stmt = stmt.order_by(Short.created_at.desc())
    return list(session.execute(stmt).scalars().all())


def create_short(
    session: Session,
    ctx: CallerContext,
    *,
    title: str,
    description: str | None = None,
    idea: str | None = None,
    script_writer_id: UUID | None = None,
) -> Short:
    require_admin(ctx, "create shorts")
    title = _clean(title)
    if not title:
        raise ValidationError("title_required")
    if script_writer_id is not None:
        _require_user(session, script_writer_id)
    now = _utc_now()
    short = Short(
        title=title,
        description=_clean(description),
        idea=_clean(idea),
        script_writer_id=script_writer_id,
        status=ShortStatus.IDEA.value,
        created_at=now,
        updated_at=now,
    )
    session.add(short)
    session.flush()
    logger.info("created short %s", short.id)
    return short


def update_short(
    session: Session,
    ctx: CallerContext,
    short_id: UUID,
    *,
    title: str | None = None,
    description: str | None = None,
    idea: str | None = None,
    script_content: str | None = None,
) -> Short:
    """Edit descriptive fields. Status only moves through the workflow engine."""
    require_admin(ctx, "update shorts")
    short = get_short(session, short_id)
    if title is not None:
        title = _clean(title)
        if not title:
            raise ValidationError("title_required")
        short.title = title
    if description is not None:
        short.description = _clean(description)
    if idea is not None:
        short.idea = _clean(idea)
    if script_content is not None:
        short.script_content = script_content
    short.updated_at = _utc_now()
    session.add(short)
    return short


def delete_short(session: Session, ctx: CallerContext, short_id: UUID) -> None:
    require_admin(ctx, "delete shorts")
    short = get_short(session, short_id)
    record_event(
        session,
        "short_deleted",
        actor_user_id=ctx.user_id,
        short_id=short.id,
        title=short.title,
    )
    session.delete(short)
    session.flush()
    logger.info("deleted short %s", short_id)


def get_assignment(session: Session, assignment_id: UUID) -> Assignment:
    assignment = session.get(Assignment, assignment_id)
    if assignment is None:
        raise NotFound("assignment_not_found", assignment_id=str(assignment_id))
    return assignment


def find_assignment(session: Session, short_id: UUID, role: Role) -> Assignment | None:
    stmt = select(Assignment).where(Assignment.short_id == short_id, Assignment.role == role.value)
    return session.execute(stmt).scalar_one_or_none()


def list_assignments(
    session: Session,
    *,
    short_id: UUID | None = None,
    user_id: UUID | None = None,
    role: str | None = None,
) -> list[Assignment]:
    stmt = select(Assignment)
    if short_id is not None:
        stmt = stmt.where(Assignment.short_id == short_id)
    if user_id is not None:
        stmt = stmt.where(Assignment.user_id == user_id)
    if role:
        stmt = stmt.where(Assignment.role == parse_role(role).value)
    stmt = stmt.order_by(Assignment.created_at.desc())
    return list(session.execute(stmt).scalars().all())


def _check_time_range(hours: int) -> None:
    if hours <= 0 or hours > MAX_TIME_RANGE_HOURS:
        raise ValidationError(
            "invalid_time_range",
            f"default_time_range must be between 1 and {MAX_TIME_RANGE_HOURS} hours",
            default_time_range=hours,
        )


def create_assignment(
    session: Session,
    ctx: CallerContext,
    *,
    short_id: UUID,
    user_id: UUID,
    role: str,
    due_date: datetime | None = None,
    default_time_range: int = 2,
) -> Assignment:
    require_admin(ctx, "assign work")
    role_value = parse_role(role)
    _check_time_range(default_time_range)
    short = get_short(session, short_id)
    _require_user(session, user_id)
    if find_assignment(session, short.id, role_value) is not None:
        raise Conflict("assignment_exists", short_id=str(short.id), role=role_value.value)

    now = _utc_now()
    assignment = Assignment(
        short_id=short.id,
        user_id=user_id,
        role=role_value.value,
        due_date=due_date,
        default_time_range=default_time_range,
        created_at=now,
        updated_at=now,
    )
    try:
        with session.begin_nested():
            session.add(assignment)
    except IntegrityError as exc:
        # A concurrent request created the same (short, role) pair first.
        raise Conflict("assignment_exists", short_id=str(short.id), role=role_value.value) from exc
    if role_value is Role.SCRIPT_WRITER:
        short.script_writer_id = user_id
        session.add(short)
    record_event(
        session,
        "assignment_created",
        actor_user_id=ctx.user_id,
        short_id=short.id,
        user_id=user_id,
        role=role_value.value,
    )
    logger.info("assigned %s on short %s to %s", role_value, short.id, user_id)
    return assignment


def update_assignment(
    session: Session,
    ctx: CallerContext,
    assignment_id: UUID,
    *,
    user_id: UUID | None = None,
    due_date: datetime | None = None,
    default_time_range: int | None = None,
) -> Assignment:
    require_admin(ctx, "update assignments")
    assignment = get_assignment(session, assignment_id)
    if user_id is not None and user_id != assignment.user_id:
        if assignment.completed_at is not None:
            raise ValidationError(
                "assignment_completed",
                "Completed assignments cannot be reassigned",
                assignment_id=str(assignment.id),
            )
        _require_user(session, user_id)
        assignment.user_id = user_id
    if due_date is not None:
        assignment.due_date = due_date
    if default_time_range is not None:
        _check_time_range(default_time_range)
        assignment.default_time_range = default_time_range
    assignment.updated_at = _utc_now()
    session.add(assignment)
    return assignment


def delete_assignment(session: Session, ctx: CallerContext, assignment_id: UUID) -> None:
    require_admin(ctx, "delete assignments")
    assignment = get_assignment(session, assignment_id)
    linked = session.execute(
        select(Payment.id).where(Payment.assignment_id == assignment.id).limit(1)
    ).first()
    if linked is not None:
        raise Conflict(
            "assignment_has_payments",
            "Assignments with payments cannot be deleted",
            assignment_id=str(assignment.id),
        )
    session.delete(assignment)
    session.flush()


def get_rate(session: Session, user_id: UUID, role: Role) -> UserRate | None:
    return session.get(UserRate, (user_id, role.value))


def list_rates(session: Session, *, user_id: UUID | None = None) -> list[UserRate]:
    stmt = select(UserRate)
    if user_id is not None:
        stmt = stmt.where(UserRate.user_id == user_id)
    stmt = stmt.order_by(UserRate.user_id, UserRate.role)
    return list(session.execute(stmt).scalars().all())


def set_rate(
    session: Session,
    ctx: CallerContext,
    *,
    user_id: UUID,
    role: str,
    rate,
    rate_description: str | None = None,
    source: str = "api",
) -> UserRate:
    require_admin(ctx, "set rates")
    role_value = parse_role(role)
    amount = parse_amount(rate, allow_zero=True)
    _require_user(session, user_id)
    now = _utc_now()
    entry = get_rate(session, user_id, role_value)
    if entry is None:
        entry = UserRate(
            user_id=user_id,
            role=role_value.value,
            rate=amount,
            rate_description=_clean(rate_description),
            created_at=now,
            updated_at=now,
        )
    else:
        entry.rate = amount
        entry.rate_description = _clean(rate_description)
        entry.updated_at = now
    session.add(entry)
    session.flush()
    record_event(
        session,
        "rate_set",
        actor_user_id=ctx.user_id,
        source=source,
        user_id=user_id,
        role=role_value.value,
        rate=amount,
    )
    return entry
