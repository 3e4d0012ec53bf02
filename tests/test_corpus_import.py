from __future__ import annotations

import json

import pytest
import yaml
from sqlalchemy import select

from db.models import AnalyzedShort
from production.errors import ValidationError
from review.corpus import import_corpus, load_corpus_file
from review.percentile import percentile_of


def _rows():
    return [
        {"youtube_video_id": "abc123", "title": "Mantis shrimp punch", "views": 1200, "transcript": "..."},
        {"youtube_video_id": "def456", "title": "Immortal jellyfish", "views": 300, "transcript": "..."},
    ]


def test_load_yaml_and_json(tmp_path) -> None:
    yaml_path = tmp_path / "corpus.yaml"
    yaml_path.write_text(yaml.safe_dump({"items": _rows()}))
    json_path = tmp_path / "corpus.json"
    json_path.write_text(json.dumps(_rows()))

    assert load_corpus_file(yaml_path) == _rows()
    assert load_corpus_file(json_path) == _rows()


def test_unsupported_suffix(tmp_path) -> None:
    path = tmp_path / "corpus.csv"
    path.write_text("youtube_video_id\nabc")
    with pytest.raises(ValidationError):
        load_corpus_file(path)


def test_import_upserts_by_video_id(session) -> None:
    first = import_corpus(session, _rows())
    assert (first.created, first.updated) == (2, 0)

    changed = [dict(_rows()[0], views=5000, title="Mantis shrimp punch (updated)")]
    second = import_corpus(session, changed)
    assert (second.created, second.updated) == (0, 1)

    item = session.execute(
        select(AnalyzedShort).where(AnalyzedShort.youtube_video_id == "abc123")
    ).scalar_one()
    assert item.views == 5000
    assert item.title == "Mantis shrimp punch (updated)"


def test_reimport_never_overwrites_cached_percentile(session) -> None:
    import_corpus(session, _rows())
    item = session.execute(
        select(AnalyzedShort).where(AnalyzedShort.youtube_video_id == "def456")
    ).scalar_one()
    assert percentile_of(session, item) == 0.0

    import_corpus(session, [dict(_rows()[1], views=999999)])
    assert item.percentile == 0.0
    assert percentile_of(session, item) == 0.0


def test_invalid_row_is_reported(session) -> None:
    with pytest.raises(ValidationError) as exc_info:
        import_corpus(session, [{"youtube_video_id": "x", "views": -4}])
    assert exc_info.value.code == "invalid_corpus_row"
    assert exc_info.value.details["row"] == 0
