"""
Pytest fixtures for stock ledger tests.

Provides test database setup, tenant-scoped product fixtures, and test client.
"""

import pytest
from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Product

TENANT = "ACME"
OTHER_TENANT = "BETA"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CONCURRENCY_RETRY_BACKOFF': 0,
        'BALANCE_RECOMPUTE_ON_APPEND': False,
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
def runner(app):
    """Create CLI runner."""
    return app.test_cli_runner()


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
    """Factory for products placed at a branch/counter (tenant ACME by default)."""
    counter = {"n": 0}

    def _make(
        branch_id=1,
        counter_id=1,
        box_id=None,
        category_id=10,
        mrp_cents=25000,
        tenant_code=TENANT,
        is_active=True,
        item_code=None,
    ):
        counter["n"] += 1
        product = Product(
            tenant_code=tenant_code,
            item_code=item_code or f"JW-{counter['n']:04d}",
            name=f"Gold ring {counter['n']}",
            category_id=category_id,
            branch_id=branch_id,
            counter_id=counter_id,
            box_id=box_id,
            mrp_cents=mrp_cents,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def ring(make_product):
    """Ring at branch 1 / counter 1."""
    return make_product(branch_id=1, counter_id=1)


@pytest.fixture(scope='function')
def necklace(make_product):
    """Necklace at branch 1 / counter 1, different category."""
    return make_product(branch_id=1, counter_id=1, category_id=20, mrp_cents=90000)


def tenant_headers(tenant_code: str = TENANT, actor: str | None = "tester") -> dict:
    """Helper to create tenant/actor headers."""
    headers = {'X-Tenant-Code': tenant_code}
    if actor:
        headers['X-Actor'] = actor
    return headers
