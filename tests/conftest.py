import os
import uuid
from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Use test DB
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "classifieds_ledger_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("STORAGE_LOCAL_PATH", "/tmp/classifieds-ledger-test-uploads")


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[None, None]:
    """Fresh database per test; skips the test when MongoDB is not reachable."""
    from motor.motor_asyncio import AsyncIOMotorClient
    from pymongo.errors import PyMongoError

    from app.core.config import get_settings
    from app.db.init import init_db

    settings = get_settings()
    client = AsyncIOMotorClient(settings.mongodb_uri, serverSelectionTimeoutMS=1500)
    try:
        await client.admin.command("ping")
        await client.drop_database(settings.mongodb_db_name)
    except PyMongoError as e:
        client.close()
        pytest.skip(f"MongoDB not available: {e}")
    await init_db()
    yield
    client.close()


@pytest.fixture
def now() -> datetime:
    return datetime.utcnow().replace(microsecond=0)


@pytest_asyncio.fixture
async def make_profile(db):
    from app.models.profile import Profile

    async def _make(user_id: str = "owner-1", featured: bool = False, name: str = "Ana") -> Profile:
        profile = Profile(user_id=user_id, name=name, featured=featured)
        await profile.insert()
        return profile

    return _make


@pytest_asyncio.fixture
async def make_service(db):
    from app.models.premium_service import PremiumService

    async def _make(credit_cost: int = 300, duration_days: int | None = 7, is_active: bool = True) -> PremiumService:
        service = PremiumService(
            name="Top listing",
            credit_cost=credit_cost,
            duration_days=duration_days,
            is_active=is_active,
        )
        await service.insert()
        return service

    return _make


@pytest_asyncio.fixture
async def make_boost(db):
    from app.models.boost import Boost

    async def _make(profile_id: str, end_date: datetime, status: str = "active", owner_id: str = "owner-1") -> Boost:
        boost = Boost(
            owner_id=owner_id,
            profile_id=profile_id,
            status=status,
            start_date=end_date - timedelta(hours=24),
            end_date=end_date,
        )
        await boost.insert()
        return boost

    return _make


@pytest_asyncio.fixture
async def funded(db):
    """Open an account with `amount` credits via a purchase."""
    from app.services import credits as credits_service

    async def _fund(owner_id: str = "owner-1", amount: int = 500) -> None:
        await credits_service.credit(owner_id, amount, "purchase", "seed", reference_id=f"seed-{uuid.uuid4()}")

    return _fund


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def auth_headers():
    from app.core.security import create_session_token

    def _headers(owner_id: str = "owner-1") -> dict[str, str]:
        return {"Authorization": f"Bearer {create_session_token({'user_id': owner_id})}"}

    return _headers
