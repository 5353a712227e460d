"""
Pytest fixtures for goldbill backend tests.

Provides the in-memory database, catalog factories, and test client.
"""

import pytest
from goldbill import create_app
from goldbill.config import TestConfig
from goldbill.extensions import db
from goldbill.services import customers_service, products_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
def make_product(db_session):
    """Factory for products; opening stock goes through the ledger."""
    def _make(name="Gold Ring 22K", stock=5, **fields):
        payload = {"name": name, "stock_quantity": stock, "purity": "22K", "material_type": "Gold"}
        payload.update(fields)
        return products_service.create_product(payload)
    return _make


@pytest.fixture(scope='function')
def ring(make_product):
    """Product P with 5 units in stock."""
    return make_product(name="Gold Ring 22K", stock=5, sku="RING-22K-001")


@pytest.fixture(scope='function')
def customer(db_session):
    return customers_service.create_customer(
        name="Asha Verma",
        phone="9876543210",
        address="12 MG Road, Pune",
    )


def bill_payload(variant="BILL", items=None, **extra):
    """Minimal valid createSaleDocument payload."""
    payload = {
        "variant": variant,
        "customer_name": "Walk-in Customer",
        "items": items if items is not None else [],
    }
    payload.update(extra)
    return payload


def line(product_id=None, weight="10", rate="5000", making_charge="300", wastage_charge="0", quantity=1, **extra):
    item = {
        "product_id": product_id,
        "weight": weight,
        "rate": rate,
        "making_charge": making_charge,
        "wastage_charge": wastage_charge,
        "quantity": quantity,
    }
    item.update(extra)
    return item
