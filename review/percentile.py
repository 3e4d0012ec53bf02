from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from db.models import AnalyzedShort
from production.audit import record_event
from production.context import CallerContext
from production.errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_STATS_WINDOWS = (10, 30)


@dataclass(frozen=True)
class ReviewOutcome:
    actual_percentile: float
    guess_percentile: float
    error: float
    difference: float


@dataclass(frozen=True)
class WindowStats:
    count: int = 0
    avg_error: float = 0.0
    min_error: float = 0.0
    max_error: float = 0.0


@dataclass(frozen=True)
class ReviewSubmission:
    guess: float
    actual: float
    error: float
    reviewed_at: datetime | None


@dataclass(frozen=True)
class ReviewStats:
    windows: dict[str, WindowStats] = field(default_factory=dict)
    total: int = 0
    reviewed: int = 0

    def as_payload(self) -> dict:
        payload: dict = {name: vars(stats) for name, stats in self.windows.items()}
        payload["total"] = self.total
        payload["reviewed"] = self.reviewed
        return payload


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _stats_windows() -> tuple[int, ...]:
    # REVIEW_STATS_WINDOWS adds windows; last10 and last30 are always reported.
    raw = os.getenv("REVIEW_STATS_WINDOWS", "")
    sizes = set(DEFAULT_STATS_WINDOWS)
    for part in raw.split(","):
        part = part.strip()
        if part.isdigit() and int(part) > 0:
            sizes.add(int(part))
    return tuple(sorted(sizes))


def get_corpus_item(session: Session, item_id: UUID) -> AnalyzedShort:
    item = session.get(AnalyzedShort, item_id)
    if item is None:
        raise NotFound("corpus_item_not_found", item_id=str(item_id))
    return item


def compute_percentile(session: Session, views: int) -> float | None:
    qualifying = session.execute(
        select(func.count()).select_from(AnalyzedShort).where(AnalyzedShort.views > 0)
    ).scalar_one()
    if not qualifying:
        return None
    lower = session.execute(
        select(func.count())
        .select_from(AnalyzedShort)
        .where(AnalyzedShort.views > 0, AnalyzedShort.views < views)
    ).scalar_one()
    return lower * 100 / qualifying


def percentile_of(session: Session, item: AnalyzedShort) -> float | None:
    """Share of positive-view corpus items with strictly fewer views, cached once computed."""
    if item.percentile is not None:
        return item.percentile
    value = compute_percentile(session, item.views)
    if value is None:
        return None
    session.flush()
    # Only a still-null row takes the value; a concurrent writer's cache wins.
    written = session.execute(
        update(AnalyzedShort)
        .where(AnalyzedShort.id == item.id, AnalyzedShort.percentile.is_(None))
        .values(percentile=value)
        .execution_options(synchronize_session=False)
    ).rowcount
    session.refresh(item, ["percentile"])
    if written:
        logger.info("cached percentile %.2f for corpus item %s", value, item.id)
    return item.percentile


def pick_random_unrated(session: Session, user_id: UUID) -> AnalyzedShort:
    stmt = (
        select(AnalyzedShort)
        .where(
            AnalyzedShort.transcript.is_not(None),
            AnalyzedShort.transcript != "",
            or_(AnalyzedShort.review_user_id.is_(None), AnalyzedShort.review_user_id != user_id),
        )
        .order_by(func.random())
        .limit(1)
    )
    item = session.execute(stmt).scalar_one_or_none()
    if item is None:
        raise NotFound("no_unrated_items", "No unrated scripts available")
    return item


def submit_review(
    session: Session,
    ctx: CallerContext,
    item_id: UUID,
    guess,
    notes: str | None = None,
) -> ReviewOutcome:
    if isinstance(guess, bool) or not isinstance(guess, (int, float)) or not 0 <= guess <= 100:
        raise ValidationError(
            "invalid_guess_percentile",
            "guess_percentile must be a number between 0 and 100",
            guess_percentile=guess,
        )
    item = get_corpus_item(session, item_id)
    actual = percentile_of(session, item)
    if actual is None:
        raise ValidationError(
            "percentile_unavailable",
            "The corpus has no videos with views to rank against",
            item_id=str(item.id),
        )

    now = _utc_now()
    item.user_guess_percentile = float(guess)
    item.notes = notes or None
    item.reviewed_at = now
    item.review_user_id = ctx.user_id
    session.add(item)
    session.flush()
    difference = float(guess) - actual
    record_event(
        session,
        "review_submitted",
        actor_user_id=ctx.user_id,
        occurred_at=now,
        item_id=item.id,
        guess_percentile=float(guess),
        actual_percentile=actual,
    )
    return ReviewOutcome(
        actual_percentile=actual,
        guess_percentile=float(guess),
        error=abs(difference),
        difference=difference,
    )


def review_history(session: Session, user_id: UUID) -> list[ReviewSubmission]:
    stmt = (
        select(AnalyzedShort)
        .where(
            AnalyzedShort.review_user_id == user_id,
            AnalyzedShort.user_guess_percentile.is_not(None),
            AnalyzedShort.percentile.is_not(None),
        )
        .order_by(AnalyzedShort.reviewed_at.desc())
    )
    return [
        ReviewSubmission(
            guess=row.user_guess_percentile,
            actual=row.percentile,
            error=abs(row.user_guess_percentile - row.percentile),
            reviewed_at=row.reviewed_at,
        )
        for row in session.execute(stmt).scalars()
    ]


def _window(submissions: list[ReviewSubmission]) -> WindowStats:
    if not submissions:
        return WindowStats()
    errors = [submission.error for submission in submissions]
    return WindowStats(
        count=len(errors),
        avg_error=sum(errors) / len(errors),
        min_error=min(errors),
        max_error=max(errors),
    )


def stats_for(session: Session, user_id: UUID) -> ReviewStats:
    history = review_history(session, user_id)
    windows = {f"last{size}": _window(history[:size]) for size in _stats_windows()}
    windows["all_time"] = _window(history)
    total = session.execute(
        select(func.count())
        .select_from(AnalyzedShort)
        .where(AnalyzedShort.transcript.is_not(None), AnalyzedShort.transcript != "")
    ).scalar_one()
    reviewed = session.execute(
        select(func.count())
        .select_from(AnalyzedShort)
        .where(
            AnalyzedShort.review_user_id == user_id,
            AnalyzedShort.user_guess_percentile.is_not(None),
        )
    ).scalar_one()
    return ReviewStats(windows=windows, total=int(total), reviewed=int(reviewed))
