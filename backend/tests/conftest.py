import os
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backend.app.api.deps import get_db, get_publisher, get_today
from backend.app.db.base import Base
from backend.app.db.models.models_v1 import Product, Site, Supplier
from backend.app.db.models.core_types import SiteType, SupplyRisk
from backend.app.db.session import enable_sqlite_foreign_keys
from backend.app.main import app
from backend.services.events import EventPublisher

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite://")
TODAY = date(2026, 3, 15)


class RecordingEventPublisher(EventPublisher):
    def __init__(self):
        super().__init__("stock-test")
        self.events = []

    def publish(self, event):
        self.events.append(event)


@pytest.fixture(scope="function")
def engine():
    if TEST_DATABASE_URL.startswith("sqlite"):
        eng = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        enable_sqlite_foreign_keys(eng)
    else:
        eng = create_engine(TEST_DATABASE_URL)

    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Session:
    """
    Session DB isolée par test.

    Schéma créé puis supprimé autour de chaque test : les commit() des
    endpoints sont donc libres.
    """
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def publisher() -> RecordingEventPublisher:
    return RecordingEventPublisher()


@pytest.fixture
def client(db_session, publisher):
    def override_get_db():
        try:
            yield db_session
        finally:
            # comme close() en prod : ce qui n'est pas commité est perdu
            db_session.rollback()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_publisher] = lambda: publisher
    app.dependency_overrides[get_today] = lambda: TODAY
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# ---------- master data ----------
@pytest.fixture
def make_site(db_session):
    def _make(name="Entrepôt", type=SiteType.storage, **kw):
        site = Site(name=name, type=type, is_active=True, **kw)
        db_session.add(site)
        db_session.commit()
        return site

    return _make


@pytest.fixture
def make_product(db_session):
    def _make(reference="ECRAN-22", qty_per_unit=1, supply_risk=None, **kw):
        product = Product(reference=reference, qty_per_unit=qty_per_unit, supply_risk=supply_risk, **kw)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture
def make_supplier(db_session):
    def _make(name="Acme", **kw):
        supplier = Supplier(name=name, **kw)
        db_session.add(supplier)
        db_session.commit()
        return supplier

    return _make


@pytest.fixture
def warehouse(make_site):
    return make_site("Entrepôt")


@pytest.fixture
def workshop(make_site):
    return make_site("Atelier")


@pytest.fixture
def product(make_product):
    return make_product("ECRAN-22", supply_risk=SupplyRisk.high)


@pytest.fixture
def supplier(make_supplier):
    return make_supplier("Acme")
