from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models import AnalyzedShort
from production.errors import ValidationError

logger = logging.getLogger(__name__)

# Fields refreshed on re-import. Review state and the cached percentile are never touched.
_REFRESHABLE = (
    "channel_name",
    "channel_id",
    "title",
    "description",
    "transcript",
    "transcript_source",
    "views",
    "likes",
    "comments",
    "published_at",
)


class CorpusRow(BaseModel):
    youtube_video_id: str = Field(min_length=1)
    channel_name: Optional[str] = None
    channel_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    transcript: Optional[str] = None
    transcript_source: Optional[str] = None
    views: int = Field(default=0, ge=0)
    likes: int = Field(default=0, ge=0)
    comments: int = Field(default=0, ge=0)
    published_at: Optional[datetime] = None


@dataclass(frozen=True)
class ImportResult:
    created: int
    updated: int

    @property
    def total(self) -> int:
        return self.created + self.updated


def load_corpus_file(path: Path) -> list[dict[str, Any]]:
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(path.read_text())
    elif suffix == ".json":
        data = json.loads(path.read_text())
    else:
        raise ValidationError("unsupported_corpus_format", suffix=suffix)
    if isinstance(data, dict):
        data = data.get("items", [])
    if not isinstance(data, list):
        raise ValidationError("invalid_corpus_file", "Corpus file must hold a list of items")
    return data


def parse_rows(rows: Iterable[dict[str, Any]]) -> list[CorpusRow]:
    parsed: list[CorpusRow] = []
    for index, row in enumerate(rows):
        try:
            parsed.append(CorpusRow.model_validate(row))
        except PydanticValidationError as exc:
            raise ValidationError(
                "invalid_corpus_row",
                f"Row {index} is not a valid corpus item",
                row=index,
                errors=[err["msg"] for err in exc.errors()],
            ) from exc
    return parsed


def import_corpus(session: Session, rows: Iterable[dict[str, Any]]) -> ImportResult:
    created = 0
    updated = 0
    for row in parse_rows(rows):
        values = row.model_dump()
        existing = session.execute(
            select(AnalyzedShort).where(AnalyzedShort.youtube_video_id == row.youtube_video_id)
        ).scalar_one_or_none()
        if existing is None:
            session.add(AnalyzedShort(**values))
            session.flush()
            created += 1
            continue
        for name in _REFRESHABLE:
            setattr(existing, name, values[name])
        session.add(existing)
        updated += 1
    session.flush()
    logger.info("corpus import created=%s updated=%s", created, updated)
    return ImportResult(created=created, updated=updated)
