from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from db.models import Assignment, Short, ShortFile

from .audit import record_event
from .context import CallerContext
from .errors import Forbidden, NotFound, ValidationError
from .status import ArtifactType

logger = logging.getLogger(__name__)


class ArtifactStore(Protocol):
    def has_artifact(self, item_id: UUID, artifact_type: ArtifactType) -> bool: ...

    def list_artifacts(self, item_id: UUID) -> list[ArtifactType]: ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def artifacts_base_dir() -> Path:
    base_dir = os.getenv("ARTIFACTS_BASE_DIR", "out/artifacts")
    return Path(base_dir).expanduser().resolve()


def parse_artifact_type(value: str) -> ArtifactType:
    try:
        return ArtifactType(value)
    except ValueError as exc:
        raise ValidationError(
            "invalid_file_type",
            f"Unknown artifact type: {value}",
            allowed=[item.value for item in ArtifactType],
        ) from exc


class DbArtifactStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def has_artifact(self, item_id: UUID, artifact_type: ArtifactType) -> bool:
        stmt = (
            select(ShortFile.id)
            .where(ShortFile.short_id == item_id, ShortFile.file_type == artifact_type.value)
            .limit(1)
        )
        return self.session.execute(stmt).first() is not None

    def list_artifacts(self, item_id: UUID) -> list[ArtifactType]:
        rows = self.session.execute(
            select(ShortFile.file_type).where(ShortFile.short_id == item_id).distinct()
        ).scalars()
        return sorted((ArtifactType(value) for value in rows), key=lambda item: item.value)

    def files_for(self, item_id: UUID) -> list[ShortFile]:
        stmt = (
            select(ShortFile)
            .where(ShortFile.short_id == item_id)
            .order_by(ShortFile.file_type, ShortFile.uploaded_at.desc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def register(
        self,
        *,
        item_id: UUID,
        artifact_type: ArtifactType,
        storage_path: str,
        file_name: str,
        file_size: int | None = None,
        mime_type: str | None = None,
        uploaded_by: UUID | None = None,
    ) -> ShortFile:
        # One file per (item, type): a new upload replaces the previous record.
        replaced = self.session.execute(
            delete(ShortFile)
            .where(ShortFile.short_id == item_id, ShortFile.file_type == artifact_type.value)
            .execution_options(synchronize_session="fetch")
        ).rowcount
        if replaced:
            logger.info("replaced %s %s file(s) for short %s", replaced, artifact_type, item_id)
        record = ShortFile(
            short_id=item_id,
            file_type=artifact_type.value,
            storage_path=storage_path,
            file_name=file_name,
            file_size=file_size,
            mime_type=mime_type,
            uploaded_by=uploaded_by,
            uploaded_at=_utc_now(),
        )
        self.session.add(record)
        self.session.flush()
        return record

    def get(self, file_id: UUID) -> ShortFile:
        record = self.session.get(ShortFile, file_id)
        if record is None:
            raise NotFound("file_not_found", file_id=str(file_id))
        return record

    def remove(self, file_id: UUID) -> ShortFile:
        record = self.get(file_id)
        self.session.delete(record)
        self.session.flush()
        return record

    def resolve_path(self, file_id: UUID) -> Path:
        record = self.get(file_id)
        base_dir = artifacts_base_dir()
        path = (base_dir / record.storage_path).resolve()
        if base_dir not in path.parents:
            raise ValidationError("file_outside_artifacts_dir", file_id=str(file_id))
        return path

    def download_reference(self, record: ShortFile) -> str:
        return f"/files/{record.id}/content"


def _may_manage_files(session: Session, ctx: CallerContext, short_id: UUID) -> bool:
    if ctx.is_admin:
        return True
    assigned = session.execute(
        select(Assignment.id)
        .where(Assignment.short_id == short_id, Assignment.user_id == ctx.user_id)
        .limit(1)
    ).first()
    if assigned is not None:
        return True
    short = session.get(Short, short_id)
    return short is not None and short.script_writer_id == ctx.user_id


def delete_file(session: Session, ctx: CallerContext, file_id: UUID) -> ShortFile:
    """Drop a file record; the stored copy goes too when it sits under the artifacts dir."""
    store = DbArtifactStore(session)
    record = store.get(file_id)
    if not _may_manage_files(session, ctx, record.short_id):
        raise Forbidden(
            "file_not_owned",
            "Only an admin or a user assigned to the short can delete its files",
            file_id=str(file_id),
        )
    try:
        path = store.resolve_path(file_id)
    except ValidationError:
        path = None
    store.remove(file_id)
    if path is not None and path.is_file():
        path.unlink()
    record_event(
        session,
        "file_deleted",
        actor_user_id=ctx.user_id,
        file_id=record.id,
        short_id=record.short_id,
        file_type=record.file_type,
    )
    logger.info("deleted %s file %s for short %s", record.file_type, record.id, record.short_id)
    return record
