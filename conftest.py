"""
Pytest configuration and fixtures for the clarification service tests.

Each test gets its own file-backed SQLite database (aiosqlite), a seeded noodles catalog,
fixed settings, and an httpx client wired to the FastAPI app through dependency overrides.
"""

import os
import tempfile

os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "order-clarify-test-logs"))

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.config import Settings, get_settings
from app.db import Base, get_db, get_session
from database.models import Order, Product
from utils.message_dedup import BoundedSeenSet

ORG_ID = "org-1"
CUSTOMER_PHONE = "919000000001"


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        CLARIFY_SECRET="test-secret",
        PUBLIC_BASE_URL="https://shop.example/",
        CLARIFY_TTL_SECONDS=2 * 24 * 3600,
        CLARIFY_MAX_OPTIONS=5,
        ALIAS_PROMOTE_THRESHOLD=3,
        DATABASE_URL="sqlite+aiosqlite://",
    )


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'clarify.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def sessionmaker(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
async def session(sessionmaker):
    async with sessionmaker() as s:
        yield s


@pytest.fixture
async def catalog(sessionmaker):
    """Noodles in two brands and two flavours, plus an inactive product."""
    products = {
        "maggi_masala": Product(id="p-maggi-masala", org_id=ORG_ID, canonical="Noodles",
                                display_name="Maggi Masala Noodles", brand="Maggi", variant="Masala 70g", unit="pack"),
        "maggi_chicken": Product(id="p-maggi-chicken", org_id=ORG_ID, canonical="Noodles",
                                 display_name="Maggi Chicken Noodles", brand="Maggi", variant="Chicken 70g", unit="pack"),
        "indomie_masala": Product(id="p-indomie-masala", org_id=ORG_ID, canonical="Noodles",
                                  display_name="Indomie Masala Noodles", brand="Indomie", variant="Masala 70g", unit="pack"),
        "retired": Product(id="p-retired", org_id=ORG_ID, canonical="Noodles",
                           display_name="Old Noodles", brand="Yippee", variant="Classic", unit="pack", is_active=False),
        "paneer_biryani": Product(id="p-paneer-biryani", org_id=ORG_ID, canonical="Paneer Biryani",
                                  display_name="Paneer Biryani", brand="House", variant="Regular", unit="plate"),
    }
    async with sessionmaker() as s:
        s.add_all(products.values())
        await s.commit()
    return {k: p.id for k, p in products.items()}


@pytest.fixture
def make_order(sessionmaker):
    async def _make(items, *, org_id=ORG_ID, customer_phone=CUSTOMER_PHONE, raw_text=None):
        async with sessionmaker() as s:
            order = Order(org_id=org_id, items=items, customer_phone=customer_phone, raw_text=raw_text)
            s.add(order)
            await s.commit()
            return order.id
    return _make


@pytest.fixture
def load_order(sessionmaker):
    async def _load(order_id):
        async with sessionmaker() as s:
            return await s.get(Order, order_id)
    return _load


@pytest.fixture
async def client(sessionmaker, settings):
    from app.main import app
    from app.routers.ingest import get_message_dedup

    async def _get_db():
        async with sessionmaker() as s:
            yield s

    dedup = BoundedSeenSet(100)
    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session] = lambda: sessionmaker
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_message_dedup] = lambda: dedup

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
