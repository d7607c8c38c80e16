"""
Pytest fixtures for the POS engine tests.

Provides an in-memory database, a frozen clock, the wired engine and a small
catalog (two locations, one variant, the three tender types, one customer).
"""

from datetime import datetime, timedelta

import pytest

from posengine import create_app
from posengine.engine import build_engine
from posengine.extensions import db
from posengine.models import Customer, Location, PaymentMethod, ProductVariant
from posengine.services.stock_ledger import StockLineInput


class FixedClock:
    """Deterministic replacement for utcnow; advance() moves it forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def clock():
    return FixedClock(datetime(2024, 1, 15, 10, 30, 0))


@pytest.fixture(scope='function')
def engine(db_session, clock):
    """Engine wired to the test session and the frozen clock."""
    return build_engine(db_session, clock=clock)


@pytest.fixture(scope='function')
def location(db_session):
    location = Location(code="MAIN", name="Main Store", is_active=True)
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def second_location(db_session):
    location = Location(code="MALL", name="Mall Kiosk", is_active=True)
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def variant(db_session):
    variant = ProductVariant(
        sku="TEE-BLK-M",
        product_name="Basic Tee",
        variant_name="Black / M",
        price_cents=2500,
        product_active=True,
        is_active=True,
    )
    db_session.add(variant)
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def other_variant(db_session):
    variant = ProductVariant(
        sku="CAP-RED",
        product_name="Cap",
        variant_name=None,
        price_cents=1200,
        product_active=True,
        is_active=True,
    )
    db_session.add(variant)
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def payment_methods(db_session):
    """Cash, card and wallet tenders keyed by method type."""
    methods = {
        "CASH": PaymentMethod(name="Cash", method_type="CASH", is_active=True, sort_order=1),
        "CARD": PaymentMethod(name="Card", method_type="CARD", is_active=True, sort_order=2),
        "WALLET": PaymentMethod(name="Wallet", method_type="WALLET", is_active=True, sort_order=3),
    }
    db_session.add_all(methods.values())
    db_session.commit()
    return methods


@pytest.fixture(scope='function')
def cash(payment_methods):
    return payment_methods["CASH"]


@pytest.fixture(scope='function')
def card(payment_methods):
    return payment_methods["CARD"]


@pytest.fixture(scope='function')
def wallet(payment_methods):
    return payment_methods["WALLET"]


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(
        first_name="Ana",
        last_name="Perez",
        phone="+15550100",
        email="ana@example.com",
        sms_opt_in=True,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def stock(engine):
    """Helper that receives stock; returns the new on-hand quantity."""
    def _receive(variant, location, quantity):
        return engine.stock.receive(
            location.id,
            [StockLineInput(variant_id=variant.id, quantity=quantity)],
            actor_id=1,
        )[0]
    return _receive
