"""
Test configuration and fixtures for PocketCredit backend tests.
"""
import pytest
from typing import AsyncGenerator
from decimal import Decimal
from datetime import date

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from app.core.database import Base, get_db, get_redis
from app.core.security import create_access_token
from app.modules.loans.policy import LendingPolicy
from main import app


# ============================================================
# Database Fixtures
# ============================================================

# Use SQLite for testing (in-memory)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine():
    """Create a fresh test database for every test"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for each test"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def tiers(db_session):
    """Seed the default rate card"""
    from app.modules.loans.services import LoanService

    await LoanService.init_default_tiers(db_session)


@pytest.fixture
def policy():
    return LendingPolicy()


# ============================================================
# Redis Fixture
# ============================================================

class InMemoryRedis:
    """Just enough of the redis.asyncio API for OTPs and revoked tokens"""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    async def setex(self, key, ttl, value):
        self.store[key] = str(value)
        self.ttls[key] = ttl
        return True

    async def get(self, key):
        return self.store.get(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def incr(self, key):
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    async def expire(self, key, ttl):
        self.ttls[key] = ttl
        return key in self.store


@pytest.fixture
def redis():
    return InMemoryRedis()


# ============================================================
# Client Fixtures
# ============================================================

@pytest.fixture
async def client(db_session, redis) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database and redis overrides"""

    async def override_get_db():
        yield db_session

    async def override_get_redis():
        return redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================
# User Fixtures
# ============================================================

def make_user(mobile_number: str, **overrides):
    from app.modules.users.models import User, KYCStatus, ProfileStep, EmploymentType

    fields = dict(
        mobile_number=mobile_number,
        full_name="Test Borrower",
        date_of_birth=date(1990, 1, 1),
        employment_type=EmploymentType.SALARIED,
        company_name="Acme Pvt Ltd",
        declared_monthly_income=Decimal("80000.00"),
        verified_monthly_income=Decimal("80000.00"),
        existing_emis=Decimal("0.00"),
        credit_score=760,
        member_tier="silver",
        kyc_status=KYCStatus.COMPLETED,
        profile_step=ProfileStep.COMPLETED.value,
        phone_verified=True,
        email_verified=True,
        identity_verified=True,
        bank_account_verified=True,
        is_active=True,
        is_admin=False,
        documents=[],
        bank_account=None,
    )
    fields.update(overrides)
    return User(**fields)


@pytest.fixture
async def test_user(db_session, tiers):
    """A borrower with completed KYC on the silver tier"""
    user = make_user("9876543210")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def new_user(db_session, tiers):
    """A borrower who has only verified their mobile number"""
    from app.modules.users.models import KYCStatus, ProfileStep

    user = make_user(
        "9123456780",
        full_name=None,
        date_of_birth=None,
        employment_type=None,
        company_name=None,
        declared_monthly_income=None,
        verified_monthly_income=None,
        credit_score=None,
        member_tier="bronze",
        kyc_status=KYCStatus.PENDING,
        profile_step=ProfileStep.MOBILE_VERIFIED.value,
        email_verified=False,
        identity_verified=False,
        bank_account_verified=False,
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def admin_user(db_session, tiers):
    user = make_user("9000000001", full_name="Back Office", is_admin=True)
    db_session.add(user)
    await db_session.commit()
    return user


def bearer(user) -> dict:
    token = create_access_token(user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(test_user):
    """Generate auth headers for test user"""
    return bearer(test_user)


@pytest.fixture
def new_user_headers(new_user):
    return bearer(new_user)


@pytest.fixture
def admin_headers(admin_user):
    return bearer(admin_user)
