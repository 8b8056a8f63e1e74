"""
Pytest fixtures for bakery backend tests.

Provides an in-memory database, a test client, and branch/product/stock fixtures.
"""

import pytest
from bakery import create_app
from bakery.config import StockPolicy
from bakery.extensions import db
from bakery.models import Branch, Product, ProductPackage
from bakery.services import stock_mutator


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ALLOW_NEGATIVE_STOCK_OVERRIDE': False,
        'INVENTORY_MODULE_ENABLED': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """App on a file-backed SQLite database, so each app context gets its own connection."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'ledger.db'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'INVENTORY_MODULE_ENABLED': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


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


@pytest.fixture
def override_policy():
    """Policy with supervisor overrides allowed."""
    return StockPolicy(allow_negative_stock_override=True, inventory_module_enabled=True)


@pytest.fixture
def allow_override(app, monkeypatch):
    """Enable the override policy in app config for code paths that read it."""
    monkeypatch.setitem(app.config, 'ALLOW_NEGATIVE_STOCK_OVERRIDE', True)


@pytest.fixture(scope='function')
def branch(db_session):
    b = Branch(name="Toko Pusat", code="B1")
    db_session.add(b)
    db_session.commit()
    return b


@pytest.fixture(scope='function')
def branch_b(db_session):
    b = Branch(name="Cabang Timur", code="B2")
    db_session.add(b)
    db_session.commit()
    return b


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product("SKU", price=..., reorder_point=..., shelf_life_days=...)."""
    def _make(sku, name=None, **kwargs):
        product = Product(sku=sku, name=name or sku.title(), **kwargs)
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product("ROTI-TAWAR", name="Roti Tawar", price=18000, reorder_point=5, shelf_life_days=3)


@pytest.fixture(scope='function')
def stock(db_session):
    """Factory: stock(product, branch, qty) seeds opening stock through the mutator."""
    def _stock(product, branch, quantity):
        stock_mutator.record_initial_stock(product.id, branch.id, quantity, performed_by="test")
        return quantity
    return _stock


@pytest.fixture(scope='function')
def package(db_session, make_product):
    """Breakfast package: 2 x bread + 1 x donut per unit."""
    bread = make_product("ROTI-COKLAT", name="Roti Coklat", price=8000)
    donut = make_product("DONAT", name="Donat", price=6000)
    pkg = make_product("PAKET", name="Paket Sarapan", price=20000, product_type="package")
    db_session.add(ProductPackage(parent_product_id=pkg.id, component_product_id=bread.id, quantity=2))
    db_session.add(ProductPackage(parent_product_id=pkg.id, component_product_id=donut.id, quantity=1))
    db_session.commit()
    return pkg, bread, donut
