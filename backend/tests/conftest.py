"""
Pytest fixtures for servicebook backend tests.

Provides test database setup, stock/contract factories, and test client.
"""

from datetime import date

import pytest
from servicebook import create_app
from servicebook.extensions import db
from servicebook.models import StockItem
from servicebook.services import contract_service, inventory_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_ATTEMPTS': 3,
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
def cli_runner(app):
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema (Core deletes bypass the ledger's ORM guards)
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_item(db_session):
    """Factory: stock item with an opening balance."""
    counter = {"n": 0}

    def _make(name: str | None = None, quantity: int = 10, reorder_threshold: int = 0, **kwargs) -> StockItem:
        counter["n"] += 1
        return inventory_service.create_stock_item(
            name=name or f"Item {counter['n']}",
            sku=kwargs.pop("sku", f"SKU-{counter['n']:03d}"),
            initial_quantity=quantity,
            reorder_threshold=reorder_threshold,
            unit_price_cents=kwargs.pop("unit_price_cents", 1000),
            **kwargs,
        )

    return _make


@pytest.fixture(scope='function')
def item_a(make_item):
    return make_item(name="Filter cartridge", quantity=10)


@pytest.fixture(scope='function')
def item_b(make_item):
    return make_item(name="Membrane", quantity=10)


@pytest.fixture(scope='function')
def make_contract(db_session):
    """Factory: active contract with its first occurrence scheduled."""
    def _make(start_date: date = date(2023, 10, 10), interval_months: int = 3, **kwargs):
        return contract_service.create_contract(
            customer_id=kwargs.pop("customer_id", 1),
            start_date=start_date,
            interval_months=interval_months,
            **kwargs,
        )

    return _make


@pytest.fixture(scope='function')
def qoh(db_session):
    """Fresh read of a counter, bypassing the identity map."""
    def _read(item_id: int) -> int:
        return db_session.query(StockItem.quantity_on_hand).filter_by(id=item_id).scalar()

    return _read
