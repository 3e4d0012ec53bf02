from __future__ import annotations

from uuid import UUID, uuid4

import pytest
import sqlalchemy as sa
from fastapi import HTTPException

import api.main as api_main
from db.models import AnalyzedShort, UserAccount
from production.context import CallerContext


@pytest.fixture
def api(session_factory, monkeypatch):
    monkeypatch.setattr(api_main, "SessionLocal", session_factory)
    return api_main


@pytest.fixture
def users(session_factory):
    with session_factory() as session:
        rows = {
            name: UserAccount(email=f"{name}@example.com", name=name)
            for name in ("admin", "clipper", "writer", "reviewer")
        }
        session.add_all(rows.values())
        session.commit()
        return {name: row.id for name, row in rows.items()}


@pytest.fixture
def admin_ctx(users) -> CallerContext:
    return CallerContext(user_id=users["admin"], roles=frozenset({"admin"}))


def _clipping_short(api, admin_ctx, users) -> UUID:
    short = api.create_short(api.ShortCreateRequest(title="Why cats purr"), ctx=admin_ctx)
    short_id = UUID(short["id"])
    for file_type in ("script", "audio", "clips_zip"):
        api.register_short_file(
            short_id,
            api.FileRegisterRequest(
                file_type=file_type,
                storage_path=f"{short_id}/{file_type}.bin",
                file_name=f"{file_type}.bin",
            ),
            ctx=admin_ctx,
        )
    api.create_assignment(
        api.AssignmentCreateRequest(short_id=short_id, user_id=users["clipper"], role="clipper"),
        ctx=admin_ctx,
    )
    api.transition_short(short_id, api.TransitionRequest(status="clipping"), ctx=admin_ctx)
    return short_id


def test_health(api) -> None:
    assert api.health() == {"status": "ok"}


def test_caller_context_from_headers() -> None:
    user_id = uuid4()
    ctx = api_main._caller_context(x_user_id=str(user_id), x_user_roles="admin, clipper")
    assert ctx.user_id == user_id
    assert ctx.roles == frozenset({"admin", "clipper"})


def test_caller_context_requires_identity() -> None:
    with pytest.raises(HTTPException) as exc_info:
        api_main._caller_context(x_user_id=None, x_user_roles=None)
    assert exc_info.value.status_code == 401


def test_transition_gate_maps_to_400(api, admin_ctx) -> None:
    short = api.create_short(api.ShortCreateRequest(title="Why cats purr"), ctx=admin_ctx)

    with pytest.raises(HTTPException) as exc_info:
        api.transition_short(UUID(short["id"]), api.TransitionRequest(status="clipping"), ctx=admin_ctx)
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail["code"] == "transition_requirements_unmet"
    assert exc_info.value.detail["missing_artifacts"] == ["script", "audio"]

    fetched = api.get_short(UUID(short["id"]), ctx=admin_ctx)
    assert fetched["status"] == "idea"


def test_non_admin_gets_403(api, users) -> None:
    ctx = CallerContext(user_id=users["clipper"], roles=frozenset({"clipper"}))
    with pytest.raises(HTTPException) as exc_info:
        api.create_short(api.ShortCreateRequest(title="x"), ctx=ctx)
    assert exc_info.value.status_code == 403
    assert exc_info.value.detail["code"] == "admin_required"


def test_missing_short_is_404(api, admin_ctx) -> None:
    with pytest.raises(HTTPException) as exc_info:
        api.get_short(uuid4(), ctx=admin_ctx)
    assert exc_info.value.status_code == 404


def test_duplicate_assignment_is_409(api, admin_ctx, users) -> None:
    short_id = _clipping_short(api, admin_ctx, users)
    with pytest.raises(HTTPException) as exc_info:
        api.create_assignment(
            api.AssignmentCreateRequest(short_id=short_id, user_id=users["writer"], role="clipper"),
            ctx=admin_ctx,
        )
    assert exc_info.value.status_code == 409


def test_clips_completion_creates_one_payment_and_pays_out(api, admin_ctx, users) -> None:
    short_id = _clipping_short(api, admin_ctx, users)
    clipper_ctx = CallerContext(user_id=users["clipper"], roles=frozenset({"clipper"}))

    with pytest.raises(HTTPException) as exc_info:
        api.mark_clips_complete(short_id, ctx=clipper_ctx)
    assert exc_info.value.detail["code"] == "rate_not_set"

    api.set_rate(
        api.RateRequest(user_id=users["clipper"], role="clipper", rate="25.00"),
        ctx=admin_ctx,
    )
    first = api.mark_clips_complete(short_id, ctx=clipper_ctx)
    second = api.mark_clips_complete(short_id, ctx=clipper_ctx)
    assert first["payment"]["id"] == second["payment"]["id"]
    assert first["payment"]["amount"] in ("25.00", 25.0)

    mine = api.list_payments(user_id=None, status=None, month=None, year=None, ctx=clipper_ctx)
    assert len(mine) == 1

    payment_id = UUID(first["payment"]["id"])
    with pytest.raises(HTTPException) as exc_info:
        api.mark_payment_paid(payment_id, api.MarkPaidRequest(transaction_reference=""), ctx=admin_ctx)
    assert exc_info.value.status_code == 400

    paid = api.mark_payment_paid(
        payment_id, api.MarkPaidRequest(transaction_reference="PP-1"), ctx=admin_ctx
    )
    assert paid["status"] == "paid"

    summary = api.payment_summary(user_id=users["clipper"], month=None, year=None, ctx=admin_ctx)
    assert summary["paid_count"] == 1
    assert summary["pending_count"] == 0


def test_script_pipeline_endpoints(api, users) -> None:
    ctx = CallerContext(user_id=users["writer"], roles=frozenset({"script_writer"}))
    created = api.create_script_draft(api.DraftCreateRequest(title="Octopus hearts"), ctx=ctx)
    short_id = UUID(created["id"])

    api.update_script_draft(
        short_id, api.DraftUpdateRequest(stage="first_draft", draft_text="Three hearts."), ctx=ctx
    )
    draft = api.get_script_draft(short_id, ctx=ctx)
    assert len(draft["validation_rules"]) == 9

    with pytest.raises(HTTPException) as exc_info:
        api.advance_script_draft(short_id, api.AdvanceRequest(validated_rules=[1, 2, 3]), ctx=ctx)
    assert exc_info.value.status_code == 400
    assert len(exc_info.value.detail["required_rules"]) == 9

    result = None
    for _ in range(3):
        result = api.advance_script_draft(
            short_id, api.AdvanceRequest(validated_rules=list(range(9))), ctx=ctx
        )
    assert result["status"] == "script"
    assert result["script_content"] == "Three hearts."
    assert "message" in result


def test_review_endpoints(api, users, session_factory) -> None:
    admin_ctx = CallerContext(user_id=users["admin"], roles=frozenset({"admin"}))
    ctx = CallerContext(user_id=users["reviewer"], roles=frozenset())
    items = [
        {"youtube_video_id": f"vid{index}", "views": views, "transcript": "t"}
        for index, views in enumerate((10, 10, 20, 30))
    ]
    assert api.import_corpus(api.CorpusImportRequest(items=items), ctx=admin_ctx) == {
        "created": 4,
        "updated": 0,
    }

    picked = api.random_unrated(ctx=ctx)
    assert picked["youtube_video_id"] in {item["youtube_video_id"] for item in items}

    with session_factory() as lookup:
        mid = lookup.execute(
            sa.select(AnalyzedShort).where(AnalyzedShort.youtube_video_id == "vid2")
        ).scalar_one()
    outcome = api.submit_review(mid.id, api.ReviewRequest(guess_percentile=40), ctx=ctx)
    assert outcome["actual_percentile"] == 50.0
    assert outcome["difference"] == -10.0
    assert outcome["error"] == 10.0

    stats = api.review_stats(ctx=ctx)
    assert stats["all_time"]["count"] == 1
    assert stats["reviewed"] == 1
    assert stats["total"] == 4

    with pytest.raises(HTTPException) as exc_info:
        api.submit_review(mid.id, api.ReviewRequest(guess_percentile=101), ctx=ctx)
    assert exc_info.value.status_code == 400


def test_file_content_outside_base_dir_is_403(api, admin_ctx, tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("ARTIFACTS_BASE_DIR", str(tmp_path))
    short = api.create_short(api.ShortCreateRequest(title="x"), ctx=admin_ctx)
    record = api.register_short_file(
        UUID(short["id"]),
        api.FileRegisterRequest(file_type="audio", storage_path="../../etc/passwd", file_name="passwd"),
        ctx=admin_ctx,
    )
    with pytest.raises(HTTPException) as exc_info:
        api.get_file_content(UUID(record["id"]), ctx=admin_ctx)
    assert exc_info.value.status_code == 403


def test_file_content_is_served(api, admin_ctx, tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("ARTIFACTS_BASE_DIR", str(tmp_path))
    (tmp_path / "clip.zip").write_bytes(b"zip")
    short = api.create_short(api.ShortCreateRequest(title="x"), ctx=admin_ctx)
    record = api.register_short_file(
        UUID(short["id"]),
        api.FileRegisterRequest(file_type="clips_zip", storage_path="clip.zip", file_name="clip.zip"),
        ctx=admin_ctx,
    )
    assert record["download_url"] == f"/files/{record['id']}/content"
    response = api.get_file_content(UUID(record["id"]), ctx=admin_ctx)
    assert response.path == str((tmp_path / "clip.zip").resolve())


def test_payment_edit_endpoint_stops_at_paid(api, admin_ctx, users) -> None:
    created = api.create_payment(
        api.PaymentCreateRequest(user_id=users["writer"], amount="15.00", role="script_writer"),
        ctx=admin_ctx,
    )
    payment_id = UUID(created["id"])

    edited = api.update_payment(
        payment_id, api.PaymentUpdateRequest(amount="18.50", admin_notes="rush fee"), ctx=admin_ctx
    )
    assert edited["amount"] in ("18.50", 18.5)
    assert edited["admin_notes"] == "rush fee"

    api.mark_payment_paid(payment_id, api.MarkPaidRequest(transaction_reference="PP-2"), ctx=admin_ctx)
    with pytest.raises(HTTPException) as exc_info:
        api.update_payment(payment_id, api.PaymentUpdateRequest(amount="20"), ctx=admin_ctx)
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail["code"] == "payment_already_paid"


def test_file_delete_endpoint(api, admin_ctx, users) -> None:
    short_id = _clipping_short(api, admin_ctx, users)
    files = api.list_short_files(short_id, ctx=admin_ctx)
    clips = next(item for item in files if item["file_type"] == "clips_zip")

    writer_ctx = CallerContext(user_id=users["writer"], roles=frozenset({"script_writer"}))
    with pytest.raises(HTTPException) as exc_info:
        api.delete_short_file(UUID(clips["id"]), ctx=writer_ctx)
    assert exc_info.value.status_code == 403

    clipper_ctx = CallerContext(user_id=users["clipper"], roles=frozenset({"clipper"}))
    assert api.delete_short_file(UUID(clips["id"]), ctx=clipper_ctx) == {"deleted": clips["id"]}
    remaining = {item["file_type"] for item in api.list_short_files(short_id, ctx=admin_ctx)}
    assert remaining == {"script", "audio"}
