"""
Pytest fixtures for branchpos backend tests.

Provides test database setup, branch/item/customer factories, engine
components wired to the test session, and a test client.
"""

import pytest

from branchpos import create_app
from branchpos.extensions import db
from branchpos.models import Branch, Customer, Item
from branchpos.services.audit_service import AuditLog
from branchpos.services.loyalty_service import LoyaltyLedger
from branchpos.services.sales_service import SaleTransaction
from branchpos.services.store import SqlAlchemyInventoryStore
from branchpos.services.transfer_service import StockTransferTransaction


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


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
def store(db_session):
    return SqlAlchemyInventoryStore(db_session)


@pytest.fixture(scope='function')
def audit_log(store):
    return AuditLog(store)


@pytest.fixture(scope='function')
def sale_tx(store, audit_log):
    return SaleTransaction(store, audit_log, ledger=LoyaltyLedger(), retry_attempts=1)


@pytest.fixture(scope='function')
def transfer_tx(store, audit_log):
    return StockTransferTransaction(store, audit_log, retry_attempts=1)


@pytest.fixture(scope='function')
def make_branch(db_session):
    """Factory: make_branch("Westlands") -> Branch."""
    def _make(name, **fields):
        branch = Branch(name=name, **fields)
        db_session.add(branch)
        db_session.commit()
        return branch
    return _make


@pytest.fixture(scope='function')
def make_item(db_session):
    """Factory: make_item(branch, sku="101005", name="Shuka", quantity=5) -> Item."""
    def _make(branch, *, sku, name, quantity=0, price_cents=10000, minimum_sell_price_cents=0,
              category="General", **fields):
        item = Item(
            branch_id=branch.id,
            sku=sku,
            name=name,
            quantity=quantity,
            price_cents=price_cents,
            minimum_sell_price_cents=minimum_sell_price_cents,
            category=category,
            **fields,
        )
        db_session.add(item)
        db_session.commit()
        return item
    return _make


@pytest.fixture(scope='function')
def make_customer(db_session):
    """Factory: make_customer("0711000000", name="Ann", points=500) -> Customer."""
    def _make(phone, *, name="Customer", points=0, referred_by=None):
        customer = Customer(
            phone=phone,
            name=name,
            loyalty_points_cents=points,
            referred_by_id=referred_by.id if referred_by is not None else None,
        )
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


@pytest.fixture(scope='function')
def branch_a(make_branch):
    return make_branch("Nairobi CBD", location="Moi Avenue")


@pytest.fixture(scope='function')
def branch_b(make_branch):
    return make_branch("Westlands", location="Waiyaki Way")
