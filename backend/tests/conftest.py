"""
Pytest configuration and fixtures for the inventory backend tests.

Each test gets a fresh in-memory SQLite database built from the ORM
metadata; routes are exercised through httpx over ASGITransport with get_db
overridden to the same session the test inspects.
"""
import os
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-only"
os.environ["REDIS_URL"] = ""

from app.core.database import Base, get_db  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.models import (  # noqa: E402
    Atelier, Category, Product, ProductSize, ProductKind,
)
from app.services.notification_hub import NotificationHub  # noqa: E402


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine) -> AsyncGenerator[AsyncSession, None]:
    """Async session on the per-test database."""
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def catalog(db) -> dict:
    """
    Seed catalog:
    - TS001 t-shirt, cost 1000, sizes S=3 M=10 L=0
    - CAP01 accessory, cost 300, stock 0
    - LB-HOOD sized hoodie with a hyphen in its reference, size XL=2
    - Atelier Oran
    """
    clothing = Category(name="T-shirts", slug="t-shirts")
    accessories = Category(name="Accessoires", slug="accessoires")
    db.add_all([clothing, accessories])
    await db.flush()

    tshirt = Product(
        reference="TS001", name="T-shirt Loud", category_id=clothing.id,
        kind=ProductKind.SIZED.value, cost_price=Decimal("1000.00"), price=Decimal("2500.00"),
        stock=13, image_url="https://cdn.example.com/ts001.jpg",
        sizes=[
            ProductSize(size="S", stock=3),
            ProductSize(size="M", stock=10),
            ProductSize(size="L", stock=0),
        ],
    )
    cap = Product(
        reference="CAP01", name="Casquette Loud", category_id=accessories.id,
        kind=ProductKind.ACCESSORY.value, cost_price=Decimal("300.00"), price=Decimal("1200.00"),
        stock=0,
    )
    hoodie = Product(
        reference="LB-HOOD", name="Hoodie Loud", category_id=clothing.id,
        kind=ProductKind.SIZED.value, cost_price=Decimal("2200.00"), price=Decimal("4900.00"),
        stock=2,
        sizes=[ProductSize(size="XL", stock=2)],
    )
    atelier = Atelier(name="Atelier Oran")
    db.add_all([tshirt, cap, hoodie, atelier])
    await db.commit()

    return {"tshirt": tshirt, "cap": cap, "hoodie": hoodie, "atelier": atelier}


class StockReader:
    """Reads counters with column selects so stale identity-map rows never leak in."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def product(self, reference: str) -> int:
        return await self.db.scalar(select(Product.stock).where(Product.reference == reference))

    async def size(self, reference: str, size: str) -> int:
        return await self.db.scalar(
            select(ProductSize.stock)
            .join(Product, Product.id == ProductSize.product_id)
            .where(Product.reference == reference, ProductSize.size == size)
        )

    async def sizes_total(self, reference: str) -> int:
        stocks = (await self.db.execute(
            select(ProductSize.stock)
            .join(Product, Product.id == ProductSize.product_id)
            .where(Product.reference == reference)
        )).scalars().all()
        return sum(stocks)


@pytest.fixture
def stock(db) -> StockReader:
    return StockReader(db)


def make_auth_headers(role: str = "ADMIN", user_id: int = 1, token: Optional[str] = None) -> dict:
    token = token or create_access_token({"sub": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Callable building a bearer header for a role."""
    return make_auth_headers


@pytest.fixture
def hub() -> NotificationHub:
    return NotificationHub(max_per_user=2, queue_size=10)


@pytest.fixture
async def client(db, hub) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app, sharing the test session."""
    from app.main import app

    async def override_get_db():
        try:
            yield db
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.notification_hub = hub

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
