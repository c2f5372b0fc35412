import os

# Must be set before pos_core is imported: settings and the engine are module-level
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("SECRET_KEY", "test-secret")

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlmodel import Session, SQLModel

from pos_core import models
from pos_core.db import build_engine, get_session
from pos_core.deps import get_audit_sink, get_publisher
from pos_core.main import app
from pos_core.order_service import OrderLifecycleManager
from pos_core.payment_service import PaymentLedger
from pos_core.settings import settings
from pos_core.shift_service import ShiftLedger
from pos_core.store import OrderStore, PaymentStore, ShiftStore, SqlCatalogReader


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def publish(self, channel, event, payload):
        self.events.append((channel, event, payload))

    def events_named(self, event):
        return [e for e in self.events if e[1] == event]


class RecordingAuditSink:
    def __init__(self):
        self.records = []

    def record(self, action, entity_type, entity_id=None, actor_user_id=None, company_id=None, detail=None):
        self.records.append(SimpleNamespace(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_user_id=actor_user_id,
            company_id=company_id,
            detail=detail,
        ))


class ExplodingSink:
    """Publisher and audit sink that always fails."""

    def publish(self, channel, event, payload):
        raise ConnectionError("broker down")

    def record(self, *args, **kwargs):
        raise RuntimeError("audit store down")


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def audit():
    return RecordingAuditSink()


@pytest.fixture
def catalog(session):
    """Two tenants; company 1 has a full-service cafe and a cash-only kiosk."""
    cafe = models.Outlet(
        company_id=1,
        name="Cafe Central",
        address="Jl. Merdeka 1",
        phone="021-555",
        tax_rate=10,
        service_rate=5,
        rounding=models.RoundingMode.NEAREST_1000,
        transfer_instructions={"bank": "BCA", "account": "1234567890"},
    )
    kiosk = models.Outlet(
        company_id=1,
        name="Kiosk",
        tax_rate=0,
        service_rate=0,
        enabled_payment_methods=["CASH"],
    )
    closed = models.Outlet(company_id=1, name="Old Branch", is_active=False)
    foreign = models.Outlet(company_id=2, name="Other Company")
    session.add_all([cafe, kiosk, closed, foreign])
    session.commit()

    latte = models.MenuItem(
        company_id=1,
        outlet_id=cafe.id,
        name="Latte",
        base_price=20000,
        variants=[{"name": "Large", "price_delta": 5000}],
    )
    tea = models.MenuItem(company_id=1, outlet_id=kiosk.id, name="Tea", base_price=8000)
    retired = models.MenuItem(company_id=1, outlet_id=cafe.id, name="Retired", base_price=1000, is_active=False)
    foreign_item = models.MenuItem(company_id=2, outlet_id=foreign.id, name="Foreign", base_price=5000)
    shot = models.Addon(company_id=1, outlet_id=cafe.id, name="Extra shot", price=3000)
    oat = models.Addon(company_id=1, outlet_id=cafe.id, name="Oat milk", price=4000, is_active=False)
    syrup = models.Addon(company_id=1, outlet_id=cafe.id, name="Syrup", price=2000)
    session.add_all([latte, tea, retired, foreign_item, shot, oat, syrup])
    session.commit()

    return SimpleNamespace(
        cafe=cafe.id,
        kiosk=kiosk.id,
        closed=closed.id,
        foreign=foreign.id,
        latte=latte.id,
        tea=tea.id,
        retired=retired.id,
        foreign_item=foreign_item.id,
        shot=shot.id,
        oat=oat.id,
        syrup=syrup.id,
    )


@pytest.fixture
def ledger(session, publisher, audit):
    return PaymentLedger(
        payments=PaymentStore(session),
        orders=OrderStore(session),
        catalog=SqlCatalogReader(session),
        publisher=publisher,
        audit=audit,
    )


def make_manager(session, ledger, publisher, audit, **kwargs):
    return OrderLifecycleManager(
        orders=OrderStore(session),
        catalog=SqlCatalogReader(session),
        payments=ledger,
        publisher=publisher,
        audit=audit,
        **kwargs,
    )


@pytest.fixture
def manager(session, ledger, publisher, audit):
    return make_manager(session, ledger, publisher, audit, strict_transitions=False)


@pytest.fixture
def shifts(session, audit):
    return ShiftLedger(shifts=ShiftStore(session), audit=audit)


def order_request(outlet_id, menu_item_id, qty=1, **kwargs):
    fields = {
        "outlet_id": outlet_id,
        "items": [models.OrderItemCreate(menu_item_id=menu_item_id, qty=qty)],
    }
    fields.update(kwargs)
    return models.OrderCreate(**fields)


@pytest.fixture
def client(session, publisher, audit):
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_publisher] = lambda: publisher
    app.dependency_overrides[get_audit_sink] = lambda: audit
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_access_token(data, expires_delta=None):
    """Sign a token the way the auth service does."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))
    return jwt.encode({**data, "exp": expire}, settings.secret_key, algorithm=settings.algorithm)


def auth_headers(user_id=7, company_id=1, role="CASHIER"):
    token = create_access_token({"sub": str(user_id), "company_id": company_id, "role": role})
    return {"Authorization": f"Bearer {token}"}
