"""
Pytest fixtures for the Vitrina POS backend tests.

Provides the in-memory database, branch/location/operator/product
factories, a business clock and test client helpers.
"""

from datetime import datetime

import pytest

from vitrina import create_app
from vitrina.extensions import db
from vitrina.models import Branch, Location, Product, StockEntry, User
from vitrina.models.auth import ROLE_ADMIN, ROLE_CASHIER, ROLE_INVENTORY
from vitrina.models.branches import LOCATION_ROLE_FRONT, LOCATION_ROLE_RESERVE
from vitrina.services.auth_service import hash_password
from vitrina.services import cash_session_service, petty_cash_service, sales_service, stock_service
from vitrina.services.location_service import LocationPair
from vitrina.time_utils import BusinessClock


TEST_TIMEZONE = "America/Guatemala"
TEST_CUTOFF = "21:00"
CASHIER_PASSWORD = "Cajero1234"
ADMIN_PASSWORD = "Admin1234"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BUSINESS_TIMEZONE': TEST_TIMEZONE,
        'CASH_CUTOFF_TIME': TEST_CUTOFF,
        'BCRYPT_ROUNDS': 4,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        db.session.rollback()
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture
def clock():
    return BusinessClock.from_settings(TEST_TIMEZONE, TEST_CUTOFF)


def local(clock, year, month, day, hour=0, minute=0):
    """UTC-naive instant of a branch-local wall-clock time."""
    return clock.to_utc(datetime(year, month, day, hour, minute))


@pytest.fixture
def branch(db_session):
    branch = Branch(code="MAIN", name="Main Branch", timezone=TEST_TIMEZONE, cash_cutoff=TEST_CUTOFF)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture
def locations(db_session, branch):
    front = Location(branch_id=branch.id, name="Vitrina", role=LOCATION_ROLE_FRONT)
    reserve = Location(branch_id=branch.id, name="Bodega", role=LOCATION_ROLE_RESERVE)
    db_session.add_all([front, reserve])
    db_session.commit()
    return LocationPair(front=front, reserve=reserve)


def _make_user(db_session, username, password, role, branch_id):
    user = User(
        username=username,
        password_hash=hash_password(password),
        role=role,
        branch_id=branch_id,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def cashier(db_session, branch):
    return _make_user(db_session, "cajero", CASHIER_PASSWORD, ROLE_CASHIER, branch.id)


@pytest.fixture
def other_cashier(db_session, branch):
    return _make_user(db_session, "cajera2", CASHIER_PASSWORD, ROLE_CASHIER, branch.id)


@pytest.fixture
def admin(db_session, branch):
    return _make_user(db_session, "admin", ADMIN_PASSWORD, ROLE_ADMIN, None)


@pytest.fixture
def stocker(db_session, branch):
    return _make_user(db_session, "bodeguero", CASHIER_PASSWORD, ROLE_INVENTORY, branch.id)


@pytest.fixture
def make_product(db_session):
    counter = {"n": 0}

    def _make(name="Producto", price_cents=1000, wholesale_price_cents=None, **kwargs):
        counter["n"] += 1
        product = Product(
            sku=kwargs.pop("sku", f"SKU-{counter['n']:04d}"),
            name=name,
            price_cents=price_cents,
            wholesale_price_cents=wholesale_price_cents,
            **kwargs,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture
def set_stock(db_session):
    """Seed a StockEntry directly, without writing a Movement."""
    def _set(product, location, quantity):
        entry = db_session.query(StockEntry).filter_by(product_id=product.id, location_id=location.id).first()
        if entry is None:
            entry = StockEntry(product_id=product.id, location_id=location.id, quantity=quantity, is_tracked=True)
            db_session.add(entry)
        else:
            entry.quantity = quantity
        db_session.commit()
        return entry

    return _set


@pytest.fixture
def quantity_of(db_session):
    def _qty(product, location):
        db_session.expire_all()
        return stock_service.get_quantity(product.id, location.id)

    return _qty


@pytest.fixture
def frozen_now(monkeypatch, clock):
    """Pin 'now' of the time-dependent services to 10:00 local on 2026-03-10."""
    instant = local(clock, 2026, 3, 10, 10, 0)
    for module in (cash_session_service, sales_service, petty_cash_service, stock_service):
        monkeypatch.setattr(module, "utcnow", lambda: instant)
    return instant


def get_auth_token(client, username: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def local_time(clock):
    """local_time(2026, 3, 10, 8, 0) -> UTC-naive instant of that branch-local time."""
    def _at(year, month, day, hour=0, minute=0):
        return local(clock, year, month, day, hour, minute)

    return _at


@pytest.fixture
def cashier_headers(client, cashier):
    return auth_headers(get_auth_token(client, cashier.username, CASHIER_PASSWORD))


@pytest.fixture
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.username, ADMIN_PASSWORD))


@pytest.fixture
def stocker_headers(client, stocker):
    return auth_headers(get_auth_token(client, stocker.username, CASHIER_PASSWORD))
