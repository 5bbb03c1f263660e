"""
Fixtures for service and route tests.

Each test gets its own SQLite database file. NullPool hands every session a
fresh connection, so concurrent stock checks and deductions really run on
separate connections the way they do against the production database.
"""
import itertools

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from main import app
from core import config as core_config
from core.db import create_tables, enable_sqlite_foreign_keys, get_session_factory
from models.order import Order
from models.product import Product
from services import email as email_service
from services.notifications import RecordingNotificationSink, get_notification_sink

_slugs = itertools.count(1)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    monkeypatch.setattr(core_config.settings, "STORE_CALL_TIMEOUT_SECONDS", 5.0)
    monkeypatch.setattr(core_config.settings, "ORDER_STATUS_STRICT_TRANSITIONS", True)
    monkeypatch.setattr(core_config.settings, "ADVANCE_PAYMENT_CATEGORIES", ["seasonal-fruits"])
    monkeypatch.setattr(core_config.settings, "SHIPPING_COST", "0")
    monkeypatch.setattr(core_config.settings, "EMAIL_USE_CELERY", False)
    return core_config.settings


@pytest.fixture(autouse=True)
def mock_email_send(monkeypatch):
    sent = []

    def _fake_send(to_email: str, subject: str, body: str) -> None:
        sent.append({"to": to_email, "subject": subject, "body": body})

    monkeypatch.setattr(email_service, "send_email", _fake_send)
    return sent


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    enable_sqlite_foreign_keys(engine)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def notifier():
    return RecordingNotificationSink()


@pytest.fixture
async def client(session_factory, notifier):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notification_sink] = lambda: notifier
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_product(session_factory):
    """Insert a product and return it."""

    async def _make(name: str = "Dried Apricots", price: float = 850, stock: int = 10, **fields) -> Product:
        fields.setdefault("slug", f"{name.lower().replace(' ', '-')}-{next(_slugs)}")
        fields.setdefault("category", "dry-fruits")
        fields.setdefault("image", f"/images/products/{fields['slug']}.png")
        product = Product(name=name, price=price, stock=stock, **fields)
        async with session_factory() as db:
            db.add(product)
            await db.commit()
            await db.refresh(product)
        return product

    return _make


@pytest.fixture
def stock_of(session_factory):
    async def _stock(product_id: int) -> int:
        async with session_factory() as db:
            return (await db.execute(select(Product.stock).where(Product.id == product_id))).scalar_one()

    return _stock


@pytest.fixture
def count_orders(session_factory):
    async def _count() -> int:
        async with session_factory() as db:
            return (await db.execute(select(func.count(Order.id)))).scalar_one()

    return _count
