from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from os import getenv
from typing import Iterator, List, Literal, Optional
from uuid import UUID

import sqlalchemy as sa
from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.session import SessionLocal
from production import catalog, payments, script_pipeline, workflow
from production.artifacts import DbArtifactStore, delete_file, parse_artifact_type
from production.context import CallerContext
from production.errors import ProductionError, ValidationError
from review import corpus as review_corpus
from review import percentile as review

logger = logging.getLogger(__name__)

app = FastAPI(title="ShortDesk API", version="0.1.0")


def _cors_origins() -> list[str]:
    raw = getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@contextmanager
def _unit_of_work() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except ProductionError as exc:
        session.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.as_detail()) from exc
    except IntegrityError as exc:
        session.rollback()
        logger.warning("integrity error: %s", exc.orig)
        raise HTTPException(status_code=409, detail={"code": "conflict"}) from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _caller_context(
    x_user_id: str | None = Header(default=None),
    x_user_roles: str | None = Header(default=None),
) -> CallerContext:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="caller_identity_required")
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="caller_identity_invalid")
    roles = frozenset(role.strip() for role in (x_user_roles or "").split(",") if role.strip())
    return CallerContext(user_id=user_id, roles=roles)


def _row(obj) -> dict:
    mapper = sa.inspect(obj).mapper
    return jsonable_encoder({attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs})


def _rows(objs) -> list[dict]:
    return [_row(obj) for obj in objs]


class ShortCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    idea: Optional[str] = None
    script_writer_id: Optional[UUID] = None


class ShortUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    idea: Optional[str] = None
    script_content: Optional[str] = None


class TransitionRequest(BaseModel):
    status: str


class FileRegisterRequest(BaseModel):
    file_type: str
    storage_path: str = Field(min_length=1)
    file_name: str = Field(min_length=1)
    file_size: Optional[int] = Field(default=None, ge=0)
    mime_type: Optional[str] = None


class AssignmentCreateRequest(BaseModel):
    short_id: UUID
    user_id: UUID
    role: Literal["script_writer", "clipper", "editor"]
    due_date: Optional[datetime] = None
    default_time_range: int = Field(default=2, ge=1, le=8760)


class AssignmentUpdateRequest(BaseModel):
    user_id: Optional[UUID] = None
    due_date: Optional[datetime] = None
    default_time_range: Optional[int] = Field(default=None, ge=1, le=8760)


class RateRequest(BaseModel):
    user_id: UUID
    role: Literal["script_writer", "clipper", "editor"]
    rate: Decimal = Field(ge=0)
    rate_description: Optional[str] = None


class PaymentCreateRequest(BaseModel):
    user_id: UUID
    amount: Decimal = Field(gt=0)
    short_id: Optional[UUID] = None
    role: Optional[str] = None
    rate_description: Optional[str] = None
    admin_notes: Optional[str] = None
    completed_at: Optional[datetime] = None


class IncentiveRequest(BaseModel):
    user_id: UUID
    amount: Decimal = Field(gt=0)
    short_id: Optional[UUID] = None
    admin_notes: Optional[str] = None


class PaymentUpdateRequest(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0)
    admin_notes: Optional[str] = None


class MarkPaidRequest(BaseModel):
    transaction_reference: str = ""


class DraftCreateRequest(BaseModel):
    title: str = ""
    description: Optional[str] = None
    idea: Optional[str] = None


class DraftUpdateRequest(BaseModel):
    stage: str
    draft_text: Optional[str] = None
    notes: Optional[str] = None


class DescriptionRequest(BaseModel):
    description: Optional[str] = None


class AdvanceRequest(BaseModel):
    validated_rules: List[int | str] = Field(default_factory=list)


class ReviewRequest(BaseModel):
    guess_percentile: float
    notes: Optional[str] = None


class CorpusImportRequest(BaseModel):
    items: List[dict]


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/shorts")
def list_shorts(
    status: str | None = Query(default=None),
    assigned_to: UUID | None = Query(default=None),
    ctx: CallerContext = Depends(_caller_context),
) -> list[dict]:
    with _unit_of_work() as session:
        rows = catalog.list_shorts(
            session, catalog.ShortFilter(status=status, assigned_to=assigned_to)
        )
        return _rows(rows)


@app.post("/shorts", status_code=201)
def create_short(request: ShortCreateRequest, ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        short = catalog.create_short(
            session,
            ctx,
            title=request.title,
            description=request.description,
            idea=request.idea,
            script_writer_id=request.script_writer_id,
        )
        return _row(short)


@app.get("/shorts/{short_id}")
def get_short(short_id: UUID, ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        short = catalog.get_short(session, short_id)
        store = DbArtifactStore(session)
        payload = _row(short)
        payload["assignments"] = _rows(catalog.list_assignments(session, short_id=short.id))
        payload["artifacts"] = [artifact.value for artifact in store.list_artifacts(short.id)]
        return payload


@app.patch("/shorts/{short_id}")
def update_short(
    short_id: UUID,
    request: ShortUpdateRequest,
    ctx: CallerContext = Depends(_caller_context),
) -> dict:
    with _unit_of_work() as session:
        short = catalog.update_short(
            session,
            ctx,
            short_id,
            title=request.title,
            description=request.description,
            idea=request.idea,
            script_content=request.script_content,
        )
        return _row(short)


@app.delete("/shorts/{short_id}")
def delete_short(short_id: UUID, ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        catalog.delete_short(session, ctx, short_id)
        return {"deleted": str(short_id)}


@app.post("/shorts/{short_id}/transition")
def transition_short(
    short_id: UUID,
    request: TransitionRequest,
    ctx: CallerContext = Depends(_caller_context),
) -> dict:
    with _unit_of_work() as session:
        short = workflow.request_transition(session, ctx, short_id, request.status)
        return _row(short)


def _completion_payload(result: workflow.CompletionResult) -> dict:
    return {
        "short": _row(result.short),
        "assignment": _row(result.assignment),
        "payment": _row(result.payment),
        "completed_at": jsonable_encoder(result.completed_at),
    }


@app.post("/shorts/{short_id}/mark-clips-complete")
def mark_clips_complete(short_id: UUID, ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        return _completion_payload(workflow.mark_clips_complete(session, ctx, short_id))


@app.post("/shorts/{short_id}/mark-editing-complete")
def mark_editing_complete(short_id: UUID, ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        return _completion_payload(workflow.mark_editing_complete(session, ctx, short_id))


@app.get("/shorts/{short_id}/files")
def list_short_files(short_id: UUID, ctx: CallerContext = Depends(_caller_context)) -> list[dict]:
    with _unit_of_work() as session:
        catalog.get_short(session, short_id)
        store = DbArtifactStore(session)
        rows = []
        for record in store.files_for(short_id):
            payload = _row(record)
            payload["download_url"] = store.download_reference(record)
            rows.append(payload)
        return rows


@app.post("/shorts/{short_id}/files", status_code=201)
def register_short_file(
    short_id: UUID,
    request: FileRegisterRequest,
    ctx: CallerContext = Depends(_caller_context),
) -> dict:
    with _unit_of_work() as session:
        catalog.get_short(session, short_id)
        store = DbArtifactStore(session)
        record = store.register(
            item_id=short_id,
            artifact_type=parse_artifact_type(request.file_type),
            storage_path=request.storage_path,
            file_name=request.file_name,
            file_size=request.file_size,
            mime_type=request.mime_type,
            uploaded_by=ctx.user_id,
        )
        payload = _row(record)
        payload["download_url"] = store.download_reference(record)
        return payload


@app.get("/files/{file_id}/content")
def get_file_content(file_id: UUID, ctx: CallerContext = Depends(_caller_context)):
    with _unit_of_work() as session:
        store = DbArtifactStore(session)
        try:
            path = store.resolve_path(file_id)
        except ValidationError:
            raise HTTPException(status_code=403, detail="file_outside_allowed_dir")
        if not path.exists():
            raise HTTPException(status_code=404, detail="file_missing")
        return FileResponse(path=str(path))


@app.delete("/files/{file_id}")
def delete_short_file(file_id: UUID, ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        record = delete_file(session, ctx, file_id)
        return {"deleted": str(record.id)}


@app.get("/assignments")
def list_assignments(
    short_id: UUID | None = Query(default=None),
    user_id: UUID | None = Query(default=None),
    role: str | None = Query(default=None),
    ctx: CallerContext = Depends(_caller_context),
) -> list[dict]:
    with _unit_of_work() as session:
        return _rows(catalog.list_assignments(session, short_id=short_id, user_id=user_id, role=role))


@app.post("/assignments", status_code=201)
def create_assignment(
    request: AssignmentCreateRequest,
    ctx: CallerContext = Depends(_caller_context),
) -> dict:
    with _unit_of_work() as session:
        assignment = catalog.create_assignment(
            session,
            ctx,
            short_id=request.short_id,
            user_id=request.user_id,
            role=request.role,
            due_date=request.due_date,
            default_time_range=request.default_time_range,
        )
        return _row(assignment)


@app.patch("/assignments/{assignment_id}")
def update_assignment(
    assignment_id: UUID,
    request: AssignmentUpdateRequest,
    ctx: CallerContext = Depends(_caller_context),
) -> dict:
    with _unit_of_work() as session:
        assignment = catalog.update_assignment(
            session,
            ctx,
            assignment_id,
            user_id=request.user_id,
            due_date=request.due_date,
            default_time_range=request.default_time_range,
        )
        return _row(assignment)


@app.delete("/assignments/{assignment_id}")
def delete_assignment(assignment_id: UUID, ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        catalog.delete_assignment(session, ctx, assignment_id)
        return {"deleted": str(assignment_id)}


@app.get("/rates")
def list_rates(
    user_id: UUID | None = Query(default=None),
    ctx: CallerContext = Depends(_caller_context),
) -> list[dict]:
    if not ctx.is_admin:
        user_id = ctx.user_id
    with _unit_of_work() as session:
        return _rows(catalog.list_rates(session, user_id=user_id))


@app.put("/rates")
def set_rate(request: RateRequest, ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        entry = catalog.set_rate(
            session,
            ctx,
            user_id=request.user_id,
            role=request.role,
            rate=request.rate,
            rate_description=request.rate_description,
        )
        return _row(entry)


@app.get("/payments")
def list_payments(
    user_id: UUID | None = Query(default=None),
    status: str | None = Query(default=None),
    month: int | None = Query(default=None),
    year: int | None = Query(default=None),
    ctx: CallerContext = Depends(_caller_context),
) -> list[dict]:
    query = payments.PaymentQuery(user_id=user_id, status=status, month=month, year=year)
    with _unit_of_work() as session:
        return _rows(payments.list_payments(session, ctx, query))


@app.get("/payments/summary")
def payment_summary(
    user_id: UUID | None = Query(default=None),
    month: int | None = Query(default=None),
    year: int | None = Query(default=None),
    ctx: CallerContext = Depends(_caller_context),
) -> dict:
    query = payments.PaymentQuery(user_id=user_id, month=month, year=year)
    with _unit_of_work() as session:
        summary = payments.payment_summary(session, ctx, query)
        return jsonable_encoder(
            {
                "pending_amount": summary.pending_amount,
                "paid_amount": summary.paid_amount,
                "total_amount": summary.total_amount,
                "pending_count": summary.pending_count,
                "paid_count": summary.paid_count,
            }
        )


@app.post("/payments", status_code=201)
def create_payment(request: PaymentCreateRequest, ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        payment = payments.create_manual_payment(
            session,
            ctx,
            user_id=request.user_id,
            amount=request.amount,
            short_id=request.short_id,
            role=request.role,
            rate_description=request.rate_description,
            admin_notes=request.admin_notes,
            completed_at=request.completed_at,
        )
        return _row(payment)


@app.post("/payments/incentive", status_code=201)
def create_incentive(request: IncentiveRequest, ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        payment = payments.create_incentive_payment(
            session,
            ctx,
            user_id=request.user_id,
            amount=request.amount,
            short_id=request.short_id,
            admin_notes=request.admin_notes,
        )
        return _row(payment)


@app.get("/payments/{payment_id}")
def get_payment(payment_id: UUID, ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        return _row(payments.get_payment(session, ctx, payment_id))


@app.patch("/payments/{payment_id}")
def update_payment(
    payment_id: UUID,
    request: PaymentUpdateRequest,
    ctx: CallerContext = Depends(_caller_context),
) -> dict:
    with _unit_of_work() as session:
        payment = payments.update_payment(
            session,
            ctx,
            payment_id,
            amount=request.amount,
            admin_notes=request.admin_notes,
        )
        return _row(payment)


@app.post("/payments/{payment_id}/mark-paid")
def mark_payment_paid(
    payment_id: UUID,
    request: MarkPaidRequest,
    ctx: CallerContext = Depends(_caller_context),
) -> dict:
    with _unit_of_work() as session:
        payment = payments.mark_paid(session, ctx, payment_id, request.transaction_reference)
        return _row(payment)


@app.get("/script-pipeline")
def list_script_pipeline(
    stage: str | None = Query(default=None),
    ctx: CallerContext = Depends(_caller_context),
) -> list[dict]:
    with _unit_of_work() as session:
        return _rows(script_pipeline.list_pipeline(session, stage))


@app.post("/script-pipeline", status_code=201)
def create_script_draft(request: DraftCreateRequest, ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        short = script_pipeline.create_draft_item(
            session,
            ctx,
            title=request.title,
            description=request.description,
            idea=request.idea,
        )
        return _row(short)


@app.get("/script-pipeline/{short_id}")
def get_script_draft(short_id: UUID, ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        short, rules = script_pipeline.get_draft(session, short_id)
        payload = _row(short)
        payload["validation_rules"] = list(rules)
        return payload


@app.put("/script-pipeline/{short_id}/draft")
def update_script_draft(
    short_id: UUID,
    request: DraftUpdateRequest,
    ctx: CallerContext = Depends(_caller_context),
) -> dict:
    with _unit_of_work() as session:
        short = script_pipeline.update_draft(
            session,
            ctx,
            short_id,
            stage=request.stage,
            text=request.draft_text,
            notes=request.notes,
        )
        return _row(short)


@app.put("/script-pipeline/{short_id}/description")
def update_script_description(
    short_id: UUID,
    request: DescriptionRequest,
    ctx: CallerContext = Depends(_caller_context),
) -> dict:
    with _unit_of_work() as session:
        short = script_pipeline.update_description(session, ctx, short_id, request.description)
        return _row(short)


@app.post("/script-pipeline/{short_id}/advance")
def advance_script_draft(
    short_id: UUID,
    request: AdvanceRequest,
    ctx: CallerContext = Depends(_caller_context),
) -> dict:
    with _unit_of_work() as session:
        short = script_pipeline.advance_stage(session, ctx, short_id, request.validated_rules)
        payload = _row(short)
        if short.script_draft_stage is None:
            payload["message"] = "Script pipeline completed; short added to the production board."
        return payload


@app.get("/analyzed-shorts/random-unrated")
def random_unrated(ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        item = review.pick_random_unrated(session, ctx.user_id)
        return jsonable_encoder(
            {
                "id": item.id,
                "youtube_video_id": item.youtube_video_id,
                "title": item.title,
                "transcript": item.transcript,
                "views": item.views,
                "likes": item.likes,
                "comments": item.comments,
                "published_at": item.published_at,
            }
        )


@app.get("/analyzed-shorts/stats")
def review_stats(ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        return jsonable_encoder(review.stats_for(session, ctx.user_id).as_payload())


@app.post("/analyzed-shorts/import")
def import_corpus(request: CorpusImportRequest, ctx: CallerContext = Depends(_caller_context)) -> dict:
    if not ctx.is_admin:
        raise HTTPException(status_code=403, detail={"code": "admin_required"})
    with _unit_of_work() as session:
        result = review_corpus.import_corpus(session, request.items)
        return {"created": result.created, "updated": result.updated}


@app.get("/analyzed-shorts/{item_id}")
def get_analyzed_short(item_id: UUID, ctx: CallerContext = Depends(_caller_context)) -> dict:
    with _unit_of_work() as session:
        return _row(review.get_corpus_item(session, item_id))


@app.post("/analyzed-shorts/{item_id}/review")
def submit_review(
    item_id: UUID,
    request: ReviewRequest,
    ctx: CallerContext = Depends(_caller_context),
) -> dict:
    with _unit_of_work() as session:
        outcome = review.submit_review(
            session, ctx, item_id, request.guess_percentile, request.notes
        )
        return jsonable_encoder(
            {
                "actual_percentile": outcome.actual_percentile,
                "guess_percentile": outcome.guess_percentile,
                "error": outcome.error,
                "difference": outcome.difference,
            }
        )
