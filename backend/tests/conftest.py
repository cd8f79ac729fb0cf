"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cyclecount.core.rbac import UserRole
from cyclecount.core.security import create_access_token
from cyclecount.db.base import Base
from cyclecount.db.session import get_db
from cyclecount.main import app
# Import all models to ensure they're registered with Base.metadata
from cyclecount.models import *
from cyclecount.models.stock import StockBatch, StockItem, StockLevel
from cyclecount.models.warehouse import Warehouse

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiting during tests to avoid flaky failures
    from cyclecount.core.rate_limit import limiter
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    limiter.enabled = True
    app.dependency_overrides.clear()


def _token(role: UserRole, user_id: int) -> str:
    return create_access_token(
        data={"sub": str(user_id), "email": f"{role.value}@example.com", "role": role.value}
    )


@pytest.fixture
def auth_headers() -> dict:
    """Manager authentication headers."""
    return {"Authorization": f"Bearer {_token(UserRole.MANAGER, 1)}"}


@pytest.fixture
def staff_headers() -> dict:
    """Staff authentication headers."""
    return {"Authorization": f"Bearer {_token(UserRole.STAFF, 2)}"}


@pytest.fixture
def warehouse(db_session: Session) -> Warehouse:
    """Create an active warehouse."""
    warehouse = Warehouse(name="Main Warehouse", code="MAIN", active=True)
    db_session.add(warehouse)
    db_session.commit()
    db_session.refresh(warehouse)
    return warehouse


@pytest.fixture
def make_stock_item(db_session: Session):
    """Factory creating a stock item with a stock level (and optional batches)."""
    counter = {"n": 0}

    def _make(
        warehouse: Warehouse,
        quantity,
        cost,
        name: str = None,
        category: str = None,
        active: bool = True,
        batches=None,
    ) -> StockItem:
        counter["n"] += 1
        item = StockItem(
            name=name or f"Item {counter['n']}",
            sku=f"SKU-{counter['n']:03d}",
            category=category,
            unit="pcs",
            active=active,
        )
        db_session.add(item)
        db_session.flush()
        db_session.add(StockLevel(
            stock_item_id=item.id,
            warehouse_id=warehouse.id,
            quantity=Decimal(str(quantity)),
            average_cost=Decimal(str(cost)),
        ))
        for number, batch_qty, batch_cost in batches or []:
            db_session.add(StockBatch(
                stock_item_id=item.id,
                warehouse_id=warehouse.id,
                batch_number=number,
                quantity=Decimal(str(batch_qty)),
                unit_cost=Decimal(str(batch_cost)),
            ))
        db_session.commit()
        db_session.refresh(item)
        return item

    return _make


@pytest.fixture
def scenario_items(warehouse, make_stock_item):
    """Three items with book quantities 10, 5, 0 and unit costs 2, 3, 1."""
    return [
        make_stock_item(warehouse, 10, 2, name="Flour 25kg", category="Dry Goods"),
        make_stock_item(warehouse, 5, 3, name="Olive Oil 5L", category="Oils"),
        make_stock_item(warehouse, 0, 1, name="Sea Salt 1kg", category="Dry Goods"),
    ]
