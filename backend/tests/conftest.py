"""
Pytest fixtures for stockpos backend tests.

Provides the test app, a clean database per test and reference data
(user, supplier, products, customer).
"""

import pytest

from stockpos import create_app
from stockpos.config import TestConfig
from stockpos.extensions import db
from stockpos.models import Customer, Product, Supplier, User
from stockpos.services import inventory_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
def cashier(db_session):
    user = User(name="Casey Cashier", email="cashier@stockpos.local", role="cashier")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(supplier_name="Acme Wholesale", contact_person="Ann", email="orders@acme.test")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def widget(db_session):
    """Product with cost 600 / price 1000 cents, min level 5."""
    product = Product(
        product_name="Widget",
        sku="WID-001",
        cost_price_cents=600,
        selling_price_cents=1000,
        minimum_stock_level=5,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def gadget(db_session):
    """Product with cost 40000 / price 100000 cents."""
    product = Product(
        product_name="Gadget",
        sku="GAD-001",
        cost_price_cents=40000,
        selling_price_cents=100000,
        minimum_stock_level=1,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(first_name="Dana", last_name="Diaz", email="dana@example.test")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def stock(db_session):
    """stock(product, qty): manual stock-in through the ledger."""
    def _stock(product, quantity):
        return inventory_service.stock_in(db_session, product_id=product.id, quantity=quantity, notes="opening")
    return _stock


def sale_item(product, quantity, unit_price_cents=None):
    """Sale line payload for a stocked product."""
    price = product.selling_price_cents if unit_price_cents is None else unit_price_cents
    return {
        "product_id": product.id,
        "product_name": product.product_name,
        "quantity": quantity,
        "unit_price_cents": price,
        "total_cents": price * quantity,
    }
