import os
import uuid
from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Gateway credentials and frontends for tests; set before settings are first read
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("MONGODB_DB_NAME", "coinpay_test")
os.environ.setdefault("COIN_CONVERSION_RATE", "100")
os.environ.setdefault("VNPAY_TMN_CODE", "TESTTMN1")
os.environ.setdefault("VNPAY_HASH_SECRET", "vnpay-test-hash-secret")
os.environ.setdefault("ZALOPAY_APP_ID", "2553")
os.environ.setdefault("ZALOPAY_KEY1", "zalopay-test-key1")
os.environ.setdefault("ZALOPAY_KEY2", "zalopay-test-key2")
os.environ.setdefault("MOMO_PARTNER_CODE", "MOMOTEST")
os.environ.setdefault("MOMO_ACCESS_KEY", "momo-test-access")
os.environ.setdefault("MOMO_SECRET_KEY", "momo-test-secret")
os.environ.setdefault("CANDIDATE_FE_URL", "http://candidate.test")
os.environ.setdefault("RECRUITER_FE_URL", "http://recruiter.test")
os.environ.setdefault("DEFAULT_FE_URL", "http://app.test")


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory Mongo behind beanie for every test."""
    from mongomock_motor import AsyncMongoMockClient

    from coinpay.db.init import init_db
    database = AsyncMongoMockClient()[f"coinpay_test_{uuid.uuid4().hex[:8]}"]
    await init_db(database)
    yield database


@pytest_asyncio.fixture
async def make_user(db):
    from coinpay.models.user import User

    async def _make(role: str = "candidate", coin_balance: int = 0) -> User:
        user = User(email=f"{uuid.uuid4().hex[:10]}@example.com", role=role, coin_balance=coin_balance)
        await user.insert()
        return user

    return _make


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from coinpay.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
