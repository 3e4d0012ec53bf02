from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from db.models import AuditEvent


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Decimal):
        return str(value)
    return value


def record_event(
    session: Session,
    event_type: str,
    *,
    actor_user_id: UUID | None = None,
    source: str = "api",
    occurred_at: datetime | None = None,
    **payload: Any,
) -> AuditEvent:
    event = AuditEvent(
        event_type=event_type,
        source=source,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at or _utc_now(),
        payload=_jsonable(payload),
    )
    session.add(event)
    return event
