from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models import Short

from .audit import record_event
from .catalog import find_assignment, get_short
from .context import CallerContext, require_any_role
from .errors import NotFound, ValidationError
from .status import NEXT_DRAFT_STAGE, DraftStage, Role, ShortStatus
from .workflow import complete_assignment, require_positive_rate

logger = logging.getLogger(__name__)

# Every stage is reviewed against the same checklist.
VALIDATION_RULES: tuple[str, ...] = (
    "Does the hook create genuine interest",
    'Does the first few seconds scream "this is high quality"',
    "Did I do enough research?",
    "Are all facts accurate?",
    "Does this have genuine viral potential?",
    "Will people feel inclined to subscribe?",
    "Is it 6th grade reading level or below?",
    "Is there a double hook (reason to keep watching)?",
    "Is the pacing good (is it all interesting)",
)

DRAFT_FIELDS: dict[DraftStage, str] = {
    DraftStage.FIRST_DRAFT: "script_first_draft",
    DraftStage.SECOND_DRAFT: "script_second_draft",
    DraftStage.FINAL_DRAFT: "script_final_draft",
}

STAGE_COMPLETION_FIELDS: dict[DraftStage, str] = {
    DraftStage.FIRST_DRAFT: "first_draft_completed_at",
    DraftStage.SECOND_DRAFT: "second_draft_completed_at",
    DraftStage.FINAL_DRAFT: "final_draft_completed_at",
}

_WRITER_ROLES = (Role.SCRIPT_WRITER.value,)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def rules_for_stage(stage: DraftStage) -> tuple[str, ...]:
    return VALIDATION_RULES


def _parse_stage(value: str | None) -> DraftStage:
    try:
        return DraftStage(value)
    except ValueError as exc:
        raise ValidationError(
            "invalid_stage",
            f"Unknown draft stage: {value}",
            allowed=[stage.value for stage in DraftStage],
        ) from exc


def _pipeline_short(session: Session, short_id: UUID) -> tuple[Short, DraftStage]:
    short = get_short(session, short_id)
    if short.script_draft_stage is None:
        raise ValidationError("not_in_script_pipeline", short_id=str(short.id))
    return short, DraftStage(short.script_draft_stage)


def create_draft_item(
    session: Session,
    ctx: CallerContext,
    *,
    title: str,
    description: str | None = None,
    idea: str | None = None,
) -> Short:
    require_any_role(ctx, _WRITER_ROLES, "create script drafts")
    title = (title or "").strip()
    if not title:
        raise ValidationError("title_required")
    now = _utc_now()
    short = Short(
        title=title,
        description=(description or "").strip() or None,
        idea=(idea or "").strip() or None,
        status=ShortStatus.IDEA.value,
        script_draft_stage=DraftStage.FIRST_DRAFT.value,
        created_at=now,
        updated_at=now,
    )
    session.add(short)
    session.flush()
    logger.info("short %s entered script pipeline", short.id)
    return short


def update_draft(
    session: Session,
    ctx: CallerContext,
    short_id: UUID,
    *,
    stage: str,
    text: str | None = None,
    notes: str | None = None,
) -> Short:
    require_any_role(ctx, _WRITER_ROLES, "edit script drafts")
    draft_stage = _parse_stage(stage)
    short, _current = _pipeline_short(session, short_id)
    if text is None and notes is None:
        raise ValidationError("no_fields_to_update")
    if text is not None:
        setattr(short, DRAFT_FIELDS[draft_stage], text)
    if notes is not None:
        short.script_pipeline_notes = notes
    short.updated_at = _utc_now()
    session.add(short)
    return short


def update_description(
    session: Session,
    ctx: CallerContext,
    short_id: UUID,
    description: str | None,
) -> Short:
    require_any_role(ctx, _WRITER_ROLES, "edit script drafts")
    short, _current = _pipeline_short(session, short_id)
    short.description = (description or "").strip() or None
    short.updated_at = _utc_now()
    session.add(short)
    return short


def advance_stage(
    session: Session,
    ctx: CallerContext,
    short_id: UUID,
    validated_rule_ids: Iterable | None,
) -> Short:
    """Move a draft forward one stage once the whole checklist is acknowledged.

    Each advance copies the current draft text into the next stage. Advancing
    out of the final draft publishes it as the script and drops the short onto
    the production board at ``script``.
    """
    require_any_role(ctx, _WRITER_ROLES, "advance script drafts")
    short, current = _pipeline_short(session, short_id)
    required = rules_for_stage(current)
    acknowledged = list(validated_rule_ids or [])
    if len(acknowledged) < len(required):
        raise ValidationError(
            "validation_rules_incomplete",
            "All validation rules must be checked before advancing",
            required_rules=list(required),
            validated_count=len(acknowledged),
        )

    next_stage = NEXT_DRAFT_STAGE[current]
    writer_assignment = writer_rate = None
    if next_stage is None:
        writer_assignment = find_assignment(session, short.id, Role.SCRIPT_WRITER)
        if writer_assignment is not None:
            writer_rate = require_positive_rate(session, writer_assignment, Role.SCRIPT_WRITER)

    now = _utc_now()
    current_text = getattr(short, DRAFT_FIELDS[current])
    if next_stage is not None:
        setattr(short, DRAFT_FIELDS[next_stage], current_text)
        short.script_draft_stage = next_stage.value
    else:
        short.script_content = current_text
        short.status = ShortStatus.SCRIPT.value
        short.script_draft_stage = None
    setattr(short, STAGE_COMPLETION_FIELDS[current], now)
    short.updated_at = now
    session.add(short)
    session.flush()
    record_event(
        session,
        "script_stage_advanced",
        actor_user_id=ctx.user_id,
        occurred_at=now,
        short_id=short.id,
        from_stage=current.value,
        to_stage=next_stage.value if next_stage else None,
    )
    if writer_assignment is not None:
        complete_assignment(session, short, writer_assignment, writer_rate, actor_user_id=ctx.user_id)
    logger.info(
        "short %s script %s -> %s",
        short.id,
        current.value,
        next_stage.value if next_stage else ShortStatus.SCRIPT.value,
    )
    return short


def list_pipeline(session: Session, stage: str | None = None) -> list[Short]:
    stmt = select(Short).where(Short.script_draft_stage.is_not(None))
    if stage:
        stmt = stmt.where(Short.script_draft_stage == _parse_stage(stage).value)
    stmt = stmt.order_by(Short.created_at.desc())
    return list(session.execute(stmt).scalars().all())


def get_draft(session: Session, short_id: UUID) -> tuple[Short, tuple[str, ...]]:
    short = session.get(Short, short_id)
    if short is None or short.script_draft_stage is None:
        raise NotFound("short_not_in_script_pipeline", short_id=str(short_id))
    return short, rules_for_stage(DraftStage(short.script_draft_stage))
