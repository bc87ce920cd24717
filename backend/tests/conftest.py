"""
Shared fixtures.

Settings are read from the environment the first time stockledger is
imported, so the test database and keys are configured up here.
"""

import os
import tempfile

import httpx
import pytest
import pytest_asyncio

TEST_SECRET = "test-secret-key-for-testing-only"
TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4
WEBHOOK_SECRET = "whsec-test-0001"

_DB_DIR = tempfile.mkdtemp(prefix="stockledger-tests-")

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'stockledger.db')}"
os.environ["SECRET_KEY"] = TEST_SECRET
os.environ["ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY
os.environ["DEBUG"] = "false"
os.environ["APP_BASE_URL"] = "https://ledger.test"

from stockledger.config import get_settings  # noqa: E402

get_settings.cache_clear()

from stockledger.database import async_session_maker, engine  # noqa: E402
from stockledger.models import Base, Channel, Company, Product  # noqa: E402
from stockledger.services.credential_vault import encrypt_credentials  # noqa: E402


@pytest_asyncio.fixture
async def db_engine():
    """Fresh schema per test. Pooled connections are dropped afterwards so the next loop starts clean."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(db_engine):
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def user_id():
    return "user-1"


@pytest.fixture
def auth_headers(user_id):
    from stockledger.auth_middleware import create_access_token
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest_asyncio.fixture
async def client(db_engine):
    from stockledger.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def product(db):
    product = Product(name="Cotton Tee", sku="TEE-001", quantity_on_hand=10)
    db.add(product)
    await db.commit()
    return product


@pytest_asyncio.fixture
async def company(db):
    company = Company(name="Acme Supplies")
    db.add(company)
    await db.commit()
    return company


@pytest_asyncio.fixture
async def woo_channel(db, user_id):
    """A connected WooCommerce channel with webhooks registered."""
    channel = Channel(
        user_id=user_id,
        channel_type="woocommerce",
        name="Main Store",
        status="connected",
        store_url="https://shop.example.com",
        credentials=encrypt_credentials({
            "consumerKey": "ck_test",
            "consumerSecret": "cs_test",
            "webhookSecret": WEBHOOK_SECRET,
        }),
    )
    db.add(channel)
    await db.commit()
    return channel
