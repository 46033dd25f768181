import os

# Settings are read at import time; keep the app engine off Postgres in tests
os.environ.setdefault("ORDERFLOW_DATABASE_URL", "sqlite://")

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from orderflow.app.db.base import Base
from orderflow.app.db.models.core_types import LineType, OrderStatus
from orderflow.app.db.models.models_v1 import Item, Location, Supplier
from orderflow.app.schemas.purchase_order import OrderCreate, OrderLineCreate
from orderflow.services.notifications import SendResult
from orderflow.services.projects import create_project
from orderflow.services.purchasing import create_tentative_order


@pytest.fixture(scope="function")
def engine():
    """
    In-memory SQLite, one connection shared by the whole test.

    Row locks (FOR UPDATE) are ignored by SQLite; the locking paths still run.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Session:
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


# ---------- master data ----------
@pytest.fixture
def project(db_session):
    p = create_project(db_session, name="Solar Farm North", code="SFN")
    db_session.commit()
    return p


@pytest.fixture
def supplier(db_session):
    s = Supplier(name="Cables & Co", email="sales@cables.example")
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture
def item(db_session):
    i = Item(sku="CBL-001", name="Cable 3x2.5mm", unit="m", unit_cost=Decimal("5.00"))
    db_session.add(i)
    db_session.commit()
    return i


@pytest.fixture
def other_item(db_session):
    i = Item(sku="PNL-450", name="Panel 450W", unit="ud", unit_cost=Decimal("120.00"))
    db_session.add(i)
    db_session.commit()
    return i


@pytest.fixture
def location_a(db_session):
    loc = Location(name="Warehouse A")
    db_session.add(loc)
    db_session.commit()
    return loc


@pytest.fixture
def location_b(db_session):
    loc = Location(name="Van 2")
    db_session.add(loc)
    db_session.commit()
    return loc


# ---------- orders ----------
@pytest.fixture
def make_order(db_session, project, supplier, item):
    """Factory: a committed order for ``item`` (default qty 10 x 5.00)."""

    def _make(
        status: OrderStatus = OrderStatus.sent_to_supplier,
        lines: list[OrderLineCreate] | None = None,
        project_id: str | None = None,
        order_date: date | None = None,
    ):
        payload = OrderCreate(
            supplier_id=supplier.id,
            project_id=project_id or project.id,
            status=status,
            order_date=order_date,
            lines=lines
            or [OrderLineCreate(item_id=item.id, quantity=10, unit_price=Decimal("5.00"), line_type=LineType.material)],
        )
        order = create_tentative_order(db_session, payload)
        db_session.commit()
        return order

    return _make


class FakeEmailSender:
    def __init__(self, fail: bool = False, raises: Exception | None = None):
        self.fail = fail
        self.raises = raises
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, html_body: str) -> SendResult:
        if self.raises:
            raise self.raises
        if self.fail:
            return SendResult(success=False, error="mailbox unavailable")
        self.sent.append((to, subject, html_body))
        return SendResult(success=True)


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def failing_email_sender():
    return FakeEmailSender(fail=True)


@pytest.fixture
def raising_email_sender():
    return FakeEmailSender(raises=ConnectionError("smtp down"))
