from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.base import Base
from db.models import AnalyzedShort, Assignment, Short, ShortFile, UserAccount, UserRate
from production.context import CallerContext
from production.status import ArtifactType, Role, ShortStatus


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        # let SQLAlchemy drive BEGIN so SAVEPOINTs behave
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def _now() -> datetime:
    return datetime.now(timezone.utc)


@pytest.fixture
def make_user(session):
    def _make(name: str = "worker") -> UserAccount:
        user = UserAccount(email=f"{name}-{uuid4().hex[:8]}@example.com", name=name)
        session.add(user)
        session.flush()
        return user

    return _make


@pytest.fixture
def admin(make_user) -> CallerContext:
    user = make_user("admin")
    return CallerContext(user_id=user.id, roles=frozenset({"admin"}))


@pytest.fixture
def make_short(session):
    def _make(status: ShortStatus = ShortStatus.IDEA, **fields) -> Short:
        now = _now()
        short = Short(
            title=fields.pop("title", "Why octopuses have three hearts"),
            status=status.value,
            created_at=now,
            updated_at=now,
            **fields,
        )
        session.add(short)
        session.flush()
        return short

    return _make


@pytest.fixture
def attach(session):
    def _attach(short: Short, *artifact_types: ArtifactType) -> None:
        for artifact_type in artifact_types:
            session.add(
                ShortFile(
                    short_id=short.id,
                    file_type=artifact_type.value,
                    storage_path=f"{short.id}/{artifact_type.value}.bin",
                    file_name=f"{artifact_type.value}.bin",
                )
            )
        session.flush()

    return _attach


@pytest.fixture
def assign(session):
    def _assign(short: Short, user: UserAccount, role: Role) -> Assignment:
        assignment = Assignment(short_id=short.id, user_id=user.id, role=role.value)
        session.add(assignment)
        session.flush()
        return assignment

    return _assign


@pytest.fixture
def rate(session):
    def _rate(user: UserAccount, role: Role, amount: str) -> UserRate:
        entry = UserRate(user_id=user.id, role=role.value, rate=Decimal(amount))
        session.add(entry)
        session.flush()
        return entry

    return _rate


@pytest.fixture
def corpus(session):
    def _corpus(*views: int, transcript: str | None = "transcript") -> list[AnalyzedShort]:
        items = []
        for count in views:
            item = AnalyzedShort(
                youtube_video_id=f"yt-{uuid4().hex[:11]}",
                title=f"video with {count} views",
                transcript=transcript,
                views=count,
            )
            session.add(item)
            items.append(item)
        session.flush()
        return items

    return _corpus
