"""
Pytest configuration and fixtures.
"""
import os

os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_fake_key_for_testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./origin-portal-test.db"
os.environ["REDIS_URL"] = ""
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["PASSWORD_HASH_ROUNDS"] = "4"
os.environ["APP_ENV"] = "test"

from typing import Any, AsyncGenerator, Callable  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402

from origin_portal.config import Settings, get_settings  # noqa: E402
from origin_portal.core.applications import ApplicationStore  # noqa: E402
from origin_portal.core.cache import DashboardCache  # noqa: E402
from origin_portal.core.lifecycle import ApplicationLifecycle  # noqa: E402
from origin_portal.core.payments import PaymentReconciliation  # noqa: E402
from origin_portal.core.records import ApplicantRegistration  # noqa: E402
from origin_portal.database.models import Application, Base  # noqa: E402
from origin_portal.integrations.paystack_client import (  # noqa: E402
    InitializedTransaction,
    PaystackClient,
    VerifiedTransaction,
)

get_settings.cache_clear()


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests without a database")
    config.addinivalue_line("markers", "integration: tests against a SQLite database")


@pytest.fixture
def test_settings() -> Settings:
    return get_settings()


@pytest_asyncio.fixture
async def engine(tmp_path: Any) -> AsyncGenerator[AsyncEngine, Any]:
    """File-backed SQLite engine so separate sessions see each other's commits."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}",
        poolclass=NullPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def cache() -> DashboardCache:
    """Dashboard cache with Redis disabled."""
    return DashboardCache()


@pytest.fixture
def gateway(test_settings: Settings) -> AsyncMock:
    """Paystack client double that accepts every checkout and reports success."""
    mock_gateway = AsyncMock(spec=PaystackClient)

    async def initialize_transaction(email: str, amount: int, reference: str, **kwargs: Any):
        return InitializedTransaction(
            authorization_url=f"https://checkout.paystack.com/{reference}",
            access_code=f"access_{reference}",
            reference=reference,
        )

    async def verify_transaction(reference: str) -> VerifiedTransaction:
        return VerifiedTransaction(
            status="success",
            reference=reference,
            amount_minor=test_settings.application_fee_minor,
            customer_email="ada@example.com",
        )

    mock_gateway.initialize_transaction.side_effect = initialize_transaction
    mock_gateway.verify_transaction.side_effect = verify_transaction
    return mock_gateway


@pytest.fixture
def store(cache: DashboardCache) -> ApplicationStore:
    return ApplicationStore(cache=cache)


@pytest.fixture
def lifecycle(cache: DashboardCache) -> ApplicationLifecycle:
    return ApplicationLifecycle(cache=cache)


@pytest.fixture
def payments(gateway: AsyncMock, cache: DashboardCache) -> PaymentReconciliation:
    return PaymentReconciliation(gateway=gateway, cache=cache)


@pytest.fixture
def make_registration() -> Callable[..., ApplicantRegistration]:
    """Factory for valid registration records."""

    def _make(**overrides: Any) -> ApplicantRegistration:
        data = {
            "first_name": "Ada",
            "last_name": "Okafor",
            "email": "ada@example.com",
            "password": "correct-horse-battery",
            "sex": "Female",
            "phone": "+2348012345678",
            "state_of_origin": "Anambra",
            "local_government": "Awka South",
            "address": "12 Zik Avenue, Awka",
            "nin": "12345678901",
        }
        data.update(overrides)
        return ApplicantRegistration(**data)

    return _make


@pytest_asyncio.fixture
async def application(
    test_db: AsyncSession,
    store: ApplicationStore,
    make_registration: Callable[..., ApplicantRegistration],
) -> Application:
    """A freshly registered applicant's PENDING/UNPAID application."""
    result = await store.register_applicant(test_db, make_registration())
    assert result.ok, result.error
    return result.value
