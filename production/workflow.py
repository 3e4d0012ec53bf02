from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from db.models import Assignment, Payment, Short, UserRate

from .artifacts import ArtifactStore, DbArtifactStore
from .audit import record_event
from .catalog import find_assignment, get_rate, get_short, parse_role
from .context import CallerContext, require_admin
from .errors import Forbidden, ValidationError
from .payments import derive_completion_payment
from .status import (
    CHANGE_REQUEST_ENTRY_FIELDS,
    ROLE_STAGES,
    Role,
    ShortStatus,
    parse_status,
    requirement_for,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    short: Short
    assignment: Assignment
    payment: Payment
    completed_at: datetime


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _stamp_once(session: Session, model, row, values: dict, now: datetime) -> bool:
    """Write ``values`` only while the first of them is still null.

    The row is refreshed afterwards, so a caller that lost a race sees the
    winner's stamp.
    """
    first = next(iter(values))
    session.flush()
    written = session.execute(
        update(model)
        .where(model.id == row.id, getattr(model, first).is_(None))
        .values(updated_at=now, **values)
        .execution_options(synchronize_session=False)
    ).rowcount
    session.refresh(row, [*values, "updated_at"])
    return bool(written)


def complete_assignment(
    session: Session,
    short: Short,
    assignment: Assignment,
    rate_entry: UserRate,
    *,
    actor_user_id: UUID | None = None,
) -> Payment:
    """Stamp the assignment done with a rate snapshot, then derive its payment."""
    now = _utc_now()
    _stamp_once(
        session,
        Assignment,
        assignment,
        {
            "completed_at": now,
            "rate": rate_entry.rate,
            "rate_description": rate_entry.rate_description,
        },
        now,
    )
    return derive_completion_payment(
        session,
        short,
        assignment,
        assignment.rate if assignment.rate is not None else rate_entry.rate,
        actor_user_id=actor_user_id,
    )


def require_positive_rate(session: Session, assignment: Assignment, role: Role) -> UserRate:
    rate_entry = get_rate(session, assignment.user_id, role)
    if rate_entry is None or rate_entry.rate <= 0:
        raise ValidationError(
            "rate_not_set",
            f"No positive {role.value} rate configured for the assignee",
            user_id=str(assignment.user_id),
            role=role.value,
        )
    return rate_entry


def missing_requirements(
    short: Short,
    target: ShortStatus,
    store: ArtifactStore,
) -> tuple[list[str], list[str]]:
    requirement = requirement_for(target)
    missing_artifacts = [
        artifact.value for artifact in requirement.artifacts if not store.has_artifact(short.id, artifact)
    ]
    missing_completions = [field for field in requirement.completed if getattr(short, field) is None]
    return missing_artifacts, missing_completions


def request_transition(
    session: Session,
    ctx: CallerContext,
    short_id: UUID,
    target_status: str,
    *,
    store: ArtifactStore | None = None,
) -> Short:
    require_admin(ctx, "change short status")
    short = get_short(session, short_id)
    target = parse_status(target_status)
    if target is None:
        raise ValidationError(
            "invalid_status",
            f"Unknown status: {target_status}",
            status=target_status,
            allowed=[status.value for status in ShortStatus],
        )

    store = store or DbArtifactStore(session)
    missing_artifacts, missing_completions = missing_requirements(short, target, store)
    if missing_artifacts or missing_completions:
        raise ValidationError(
            "transition_requirements_unmet",
            f"Cannot move short to {target.value}",
            from_status=short.status,
            to_status=target.value,
            missing_artifacts=missing_artifacts,
            missing_completions=missing_completions,
        )

    previous = short.status
    now = _utc_now()
    short.status = target.value
    short.updated_at = now
    entry_field = CHANGE_REQUEST_ENTRY_FIELDS.get(target)
    if entry_field and previous != target.value:
        setattr(short, entry_field, now)
    session.add(short)
    session.flush()
    record_event(
        session,
        "status_transition",
        actor_user_id=ctx.user_id,
        occurred_at=now,
        short_id=short.id,
        from_status=previous,
        to_status=target.value,
    )
    logger.info("short %s moved %s -> %s", short.id, previous, target.value)
    return short


def mark_role_complete(
    session: Session,
    ctx: CallerContext,
    short_id: UUID,
    role: str,
    *,
    store: ArtifactStore | None = None,
) -> CompletionResult:
    role_value = parse_role(role)
    stage = ROLE_STAGES.get(role_value)
    if stage is None:
        raise ValidationError(
            "role_not_completable",
            f"{role_value.value} work is completed by advancing the final draft",
            role=role_value.value,
        )
    short = get_short(session, short_id)
    assignment = find_assignment(session, short.id, role_value)
    if not ctx.is_admin and (assignment is None or assignment.user_id != ctx.user_id):
        raise Forbidden(
            "not_assigned",
            f"Only an admin or the assigned {role_value.value} can mark this work complete",
            short_id=str(short.id),
            role=role_value.value,
        )

    # Gates run in a fixed order and all precede any write.
    if short.status not in stage.working_statuses:
        raise ValidationError(
            "invalid_status_for_completion",
            status=short.status,
            allowed=sorted(status.value for status in stage.working_statuses),
        )
    store = store or DbArtifactStore(session)
    if not store.has_artifact(short.id, stage.artifact):
        raise ValidationError("artifact_missing", artifact=stage.artifact.value)
    if assignment is None:
        raise ValidationError("assignment_missing", role=role_value.value)
    rate_entry = require_positive_rate(session, assignment, role_value)

    now = _utc_now()
    if _stamp_once(session, Short, short, {stage.completion_field: now}, now):
        record_event(
            session,
            "role_completed",
            actor_user_id=ctx.user_id,
            occurred_at=now,
            short_id=short.id,
            role=role_value.value,
            user_id=assignment.user_id,
        )
        logger.info("short %s %s work complete", short.id, role_value.value)

    payment = complete_assignment(session, short, assignment, rate_entry, actor_user_id=ctx.user_id)
    return CompletionResult(
        short=short,
        assignment=assignment,
        payment=payment,
        completed_at=getattr(short, stage.completion_field),
    )


def mark_clips_complete(
    session: Session,
    ctx: CallerContext,
    short_id: UUID,
    *,
    store: ArtifactStore | None = None,
) -> CompletionResult:
    return mark_role_complete(session, ctx, short_id, Role.CLIPPER.value, store=store)


def mark_editing_complete(
    session: Session,
    ctx: CallerContext,
    short_id: UUID,
    *,
    store: ArtifactStore | None = None,
) -> CompletionResult:
    return mark_role_complete(session, ctx, short_id, Role.EDITOR.value, store=store)
