"""
Test Configuration — Fixtures for async DB, seeded forklifts, and Celery capture.

Each test gets its own in-memory SQLite database built from Base.metadata, so
commits inside engine code never leak between tests.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from db.session import Base

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine():
    """Fresh in-memory database with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def sent_tasks(monkeypatch):
    """Capture Celery send_task calls instead of talking to a broker."""
    from workers.celery_app import celery_app

    calls: list[tuple[str, dict]] = []

    def _capture_send_task(task_name: str, kwargs: dict | None = None, **options):
        calls.append((task_name, kwargs or {}))
        return None

    monkeypatch.setattr(celery_app, "send_task", _capture_send_task)
    return calls


@pytest.fixture
def make_forklift(test_db):
    """Factory: insert a forklift with sensible defaults, overridable per test."""
    from db.models import Forklift

    async def _make(forklift_id: str = "FL-001", **fields):
        defaults = {
            "model": "Toyota 8FGU25",
            "manufacturer": "Toyota",
            "fuel_type": "electric",
            "status": "active",
            "location_name": "Warehouse A",
            "current_hours": 0.0,
            "last_hour_reading": 0.0,
            "purchase_price": 25000.0,
            "purchase_date": date.today() - timedelta(days=365 * 2),
        }
        defaults.update(fields)
        forklift = Forklift(forklift_id=forklift_id, **defaults)
        test_db.add(forklift)
        await test_db.commit()
        return forklift

    return _make


@pytest.fixture
async def forklift(make_forklift):
    return await make_forklift()


@pytest.fixture
def add_maintenance(test_db):
    from db.models import MaintenanceRecord

    async def _add(forklift_id: str = "FL-001", **fields):
        defaults = {
            "type": "preventive",
            "status": "completed",
            "service_date": date.today() - timedelta(days=30),
            "total_cost": 0.0,
        }
        defaults.update(fields)
        record = MaintenanceRecord(forklift_id=forklift_id, **defaults)
        test_db.add(record)
        await test_db.commit()
        return record

    return _add


@pytest.fixture
def add_downtime(test_db):
    from db.models import DowntimeEvent

    async def _add(forklift_id: str = "FL-001", hours: float = 8.0, days_ago: int = 30, **fields):
        start = datetime.utcnow() - timedelta(days=days_ago)
        event = DowntimeEvent(
            forklift_id=forklift_id,
            start_time=start,
            end_time=start + timedelta(hours=hours),
            duration_hours=hours,
            **fields,
        )
        test_db.add(event)
        await test_db.commit()
        return event

    return _add
