"""
Pytest fixtures for branch stock backend tests.

Provides an in-memory database, per-test table wipes, reference data
(branches, products, variants) and a test client.
"""

import pytest
from branchstock import create_app
from branchstock.extensions import db
from branchstock.models import Branch, Product, Variant
from branchstock.services import stock_service


ACTOR_ID = 1


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        # Rankings rebuild inline so tests never race a background thread
        'RANKING_REFRESH_ASYNC': False,
        'STOCK_LOCK_TIMEOUT_SECONDS': 5,
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
def branch(db_session):
    branch = Branch(name="Downtown", address="1 Main St", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session):
    branch = Branch(name="Harbour", address="9 Dock Rd", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def product(db_session):
    product = Product(sku="FRAME-AVIATOR", name="Aviator frame")
    db_session.add(product)
    db_session.commit()
    return product


def _make_variant(session, product, sku, *, purchase_price_cents=1000, list_price_cents=2500, color=None):
    variant = Variant(
        product_id=product.id,
        sku=sku,
        model=product.name,
        color=color,
        purchase_price_cents=purchase_price_cents,
        list_price_cents=list_price_cents,
    )
    session.add(variant)
    session.commit()
    return variant


@pytest.fixture(scope='function')
def variant(db_session, product):
    return _make_variant(db_session, product, "FRAME-AVIATOR-GOLD", color="gold")


@pytest.fixture(scope='function')
def other_variant(db_session, product):
    return _make_variant(db_session, product, "FRAME-AVIATOR-BLACK", color="black")


@pytest.fixture(scope='function')
def account(db_session, variant, branch):
    """Empty stock position for variant at branch."""
    stock_service.open_stock_account(variant_id=variant.id, branch_id=branch.id, actor_id=ACTOR_ID)
    return (variant.id, branch.id)


@pytest.fixture(scope='function')
def variant_factory(db_session, product):
    """Create extra variants: variant_factory("SKU", purchase_price_cents=...)."""
    def factory(sku, **kwargs):
        return _make_variant(db_session, product, sku, **kwargs)
    return factory
