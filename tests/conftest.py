"""
tests/conftest.py
Shared fixtures: in-memory SQLite database, in-memory Redis stand-in,
HTTP client bound to the app, and a few ready-made profiles.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("GOOGLE_MAPS_API_KEY", "maps-test-key")
os.environ.setdefault("ADMIN_EMAIL", "admin@urbanauto.test")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "")
os.environ.setdefault("FIREBASE_SERVICE_ACCOUNT_JSON", "")
os.environ.setdefault("FIREBASE_CREDENTIALS_PATH", "")

import uuid
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config import database as db_module
from config.database import Base
from config.redis_client import get_redis
from main import app
from shared.models.models import (
    Booking,
    BookingStatus,
    OtpCode,
    PaymentMethod,
    PaymentStatus,
    Profile,
    ServicePrice,
    UserRole,
    utcnow,
)
from shared.utils.security import create_access_token, hash_password

TEST_PASSWORD = "password123"


class FakeRedis:
    """The handful of Redis commands the app uses, kept in a dict."""

    def __init__(self):
        self.store: dict[str, str] = {}

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.store[key] = value

    async def exists(self, key: str) -> int:
        return 1 if key in self.store else 0

    async def ping(self) -> bool:
        return True


# ── Database ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine(monkeypatch):
    """
    Fresh in-memory database per test. StaticPool keeps one connection so
    the app's sessions and the test's session see the same data.
    """
    test_engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)

    @event.listens_for(test_engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    monkeypatch.setattr(db_module, "engine", test_engine)
    monkeypatch.setattr(db_module, "AsyncSessionLocal", session_factory)

    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def db(engine) -> AsyncSession:
    async with db_module.AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest_asyncio.fixture
async def client(engine, fake_redis):
    app.dependency_overrides[get_redis] = lambda: fake_redis
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ── Profiles ──────────────────────────────────────────────────

async def make_profile(db: AsyncSession, **overrides) -> Profile:
    fields = {
        "email": f"user-{uuid.uuid4().hex[:8]}@example.com",
        "full_name": "Test User",
        "password_hash": hash_password(TEST_PASSWORD),
        "role": UserRole.USER,
        "address_line1": "12 Civil Lines",
        "city": "Raipur",
        "state": "Chhattisgarh",
        "pincode": "492001",
        "location_address": "12 Civil Lines, Raipur, Chhattisgarh, 492001",
    }
    fields.update(overrides)
    profile = Profile(**fields)
    db.add(profile)
    await db.commit()
    return profile


@pytest_asyncio.fixture
async def user(db) -> Profile:
    return await make_profile(db, email="ravi@example.com", phone="9876543210", full_name="Ravi Kumar")


@pytest_asyncio.fixture
async def other_user(db) -> Profile:
    return await make_profile(db, email="meera@example.com", phone="9123456780", full_name="Meera Sahu")


@pytest_asyncio.fixture
async def admin(db) -> Profile:
    return await make_profile(
        db,
        email="admin@urbanauto.test",
        phone="9000000001",
        full_name="Admin",
        role=UserRole.ADMIN,
    )


def auth_headers(profile: Profile) -> dict:
    token, _ = create_access_token(
        user_id=str(profile.id),
        role=profile.role.value,
        email=profile.email,
    )
    return {"Authorization": f"Bearer {token}"}


# ── Catalogue and bookings ────────────────────────────────────

@pytest_asyncio.fixture
async def services(db) -> list[ServicePrice]:
    rows = [
        ServicePrice(service_id="general-service", service_name="General Service", price=1000),
        ServicePrice(service_id="oil-change", service_name="Oil Change", price=499),
        ServicePrice(
            service_id="engine-overhaul", service_name="Engine Overhaul", price=8000, is_active=False
        ),
    ]
    db.add_all(rows)
    await db.commit()
    return rows


async def make_booking(db: AsyncSession, profile: Profile, **overrides) -> Booking:
    fields = {
        "user_id": profile.id,
        "service_ids": ["general-service"],
        "service_name": "General Service",
        "vehicle_type": "car",
        "preferred_date_time": "2026-11-02 10:00",
        "subtotal_amount": 1000,
        "discount_amount": 0,
        "total_amount": 1000,
        "status": BookingStatus.PENDING,
        "payment_status": PaymentStatus.UNPAID,
        "payment_method": PaymentMethod.PAY_LATER,
    }
    fields.update(overrides)
    booking = Booking(**fields)
    db.add(booking)
    await db.commit()
    return booking


async def make_verified_otp(db: AsyncSession, phone: str, minutes_left: int = 4) -> OtpCode:
    """An OTP row in the state verify-otp leaves behind."""
    otp = OtpCode(
        phone=phone,
        code="123456",
        expires_at=utcnow() + timedelta(minutes=minutes_left),
        used=True,
        verified_at=utcnow(),
    )
    db.add(otp)
    await db.commit()
    return otp
