import uuid
from datetime import UTC, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Monkey-patch SQLAlchemy's UUID type for SQLite compatibility
# This must happen before any models are imported
from sqlalchemy.sql import sqltypes

_original_uuid_bind_processor = sqltypes.Uuid.bind_processor
_original_uuid_result_processor = sqltypes.Uuid.result_processor


def _sqlite_uuid_bind_processor(self, dialect):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return str(value)
                return str(uuid.UUID(value)) if value else None
            return None
        return process
    return _original_uuid_bind_processor(self, dialect)


def _sqlite_uuid_result_processor(self, dialect, coltype):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return value
                return uuid.UUID(value) if value else None
            return None
        return process
    return _original_uuid_result_processor(self, dialect, coltype)


setattr(sqltypes.Uuid, "bind_processor", _sqlite_uuid_bind_processor)
setattr(sqltypes.Uuid, "result_processor", _sqlite_uuid_result_processor)

from app.db import Base, get_db  # noqa: E402
from app.models.billing import (  # noqa: E402
    Invoice,
    InvoiceStatus,
    Plan,
    PlanInterval,
    Subscription,
    SubscriptionStatus,
)
from app.models.content import Video  # noqa: E402
from tests.mocks import MP4_HEADER, FakePaymentGateway  # noqa: E402

@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _connection_record):
        # pysqlite defers BEGIN on its own; let SQLAlchemy emit it so the
        # per-test transaction and its savepoints are real.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    # Service commits and rollbacks act on savepoints inside the test transaction.
    SessionLocal = sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture()
def plan(db_session):
    plan = Plan(
        name="Basic",
        amount=Decimal("31.00"),
        currency="USD",
        interval=PlanInterval.month,
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


@pytest.fixture()
def premium_plan(db_session):
    plan = Plan(
        name="Premium",
        amount=Decimal("62.00"),
        currency="USD",
        interval=PlanInterval.month,
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


@pytest.fixture()
def subscription(db_session, plan):
    subscription = Subscription(
        plan_id=plan.id,
        status=SubscriptionStatus.active,
        current_period_start=datetime(2024, 1, 1, tzinfo=UTC),
        current_period_end=datetime(2024, 2, 1, tzinfo=UTC),
    )
    db_session.add(subscription)
    db_session.commit()
    db_session.refresh(subscription)
    return subscription


@pytest.fixture()
def invoice(db_session, subscription):
    invoice = Invoice(
        subscription_id=subscription.id,
        status=InvoiceStatus.open,
        currency="USD",
        total=Decimal("31.00"),
        due_at=datetime(2021, 1, 1, tzinfo=UTC),
    )
    db_session.add(invoice)
    db_session.commit()
    db_session.refresh(invoice)
    return invoice


@pytest.fixture()
def storage_dir(tmp_path, monkeypatch):
    """Point video storage at a per-test directory."""
    from app.config import settings
    from app.services import media_player, video_storage

    test_settings = settings.model_copy(update={"video_storage_dir": str(tmp_path)})
    monkeypatch.setattr(media_player, "settings", test_settings)
    monkeypatch.setattr(video_storage, "settings", test_settings)
    return tmp_path


def write_video_file(directory, name: str, size: int) -> str:
    """Create a sparse mp4-looking file of exactly ``size`` bytes."""
    path = directory / name
    with open(path, "wb") as handle:
        handle.write(MP4_HEADER[:size])
        handle.truncate(size)
    return name


@pytest.fixture()
def make_video(db_session, storage_dir):
    def _make(size: int = 1024, name: str | None = None, is_active: bool = True) -> Video:
        filename = write_video_file(storage_dir, name or f"{uuid.uuid4().hex}.mp4", size)
        video = Video(
            title="Sample",
            url=filename,
            size_bytes=size,
            is_active=is_active,
        )
        db_session.add(video)
        db_session.commit()
        db_session.refresh(video)
        return video

    return _make


@pytest.fixture()
def gateway():
    return FakePaymentGateway()


@pytest.fixture()
def client(db_session, gateway):
    from fastapi.testclient import TestClient

    from app.api.deps import get_gateway
    from app.main import app

    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()
