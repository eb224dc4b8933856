"""
Pytest fixtures for lobbytrace backend tests.

Provides the app on an in-memory database, a per-test table wipe, factory
fixtures for inventory items, products and mappings, and a fake Square API.
"""

import json

import httpx
import pytest

from lobbytrace import create_app
from lobbytrace.actors import Actor
from lobbytrace.extensions import db
from lobbytrace.models import ProductMapping, SquareConfig
from lobbytrace.models.square import MAPPING_ACTIVE, SQUARE_CONFIG_KEY
from lobbytrace.services.ledger_service import create_inventory_item
from lobbytrace.services.products_service import create_product

API_TOKEN = "test-token"
STAFF_USER_ID = "staff-1"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'API_TOKENS': f'{API_TOKEN}:{STAFF_USER_ID}',
        'SQUARE_WEBHOOK_SIGNATURE_KEY': '',
        'SQUARE_WEBHOOK_REQUIRE_SIGNATURE': False,
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


@pytest.fixture
def auth_headers():
    return {'Authorization': f'Bearer {API_TOKEN}'}


@pytest.fixture
def staff():
    return Actor.user(STAFF_USER_ID)


@pytest.fixture
def make_item(db_session, staff):
    """Factory: make_item("Milk", stock=10, units_per_physical_item=128, ...)."""
    def _make(name="Whole Milk", stock=0.0, **fields):
        patch = {"name": name, **fields}
        return create_inventory_item(patch=patch, actor=staff, initial_stock=stock)
    return _make


@pytest.fixture
def make_product(db_session, staff):
    """Factory: make_product("Latte", ingredients=[(item, qty), ...], token=...)."""
    def _make(name="Latte", ingredients=(), **fields):
        rows = [{"inventory_item_id": item.id, "quantity": qty} for item, qty in ingredients]
        return create_product(patch={"name": name, **fields}, actor=staff, ingredients=rows)
    return _make


@pytest.fixture
def make_mapping(db_session):
    """Factory: make_mapping(product, "VAR-1", status=...). Bypasses save_mapping on purpose."""
    def _make(product, variation_id, status=MAPPING_ACTIVE):
        mapping = ProductMapping(
            product_id=product.id,
            square_variation_id=variation_id,
            square_catalog_object_id=f"ITEM-{variation_id}",
            product_name=product.full_name,
            square_item_name=product.full_name,
            status=status,
            created_by="user:staff-1",
        )
        db_session.add(mapping)
        db_session.commit()
        return mapping
    return _make


@pytest.fixture
def square_config(db_session):
    """Stored Square settings with an access token, so client_from_config works."""
    config = SquareConfig(
        key=SQUARE_CONFIG_KEY,
        application_id="sandbox-app",
        access_token="EAAA-test-token-1234",
        location_id="LOC-1",
        environment="sandbox",
        sync_frequency="realtime",
        auto_sync_enabled=False,
        signature_key_ever_set=False,
    )
    db_session.add(config)
    db_session.commit()
    return config


class FakeSquare:
    """Routes httpx requests to canned JSON responses keyed by (method, path)."""

    def __init__(self):
        self.responses = {}
        self.requests = []

    def add(self, method, path, body, status=200):
        self.responses.setdefault((method, path), []).append((status, body))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.responses.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"errors": [{"code": "NOT_FOUND", "detail": request.url.path}]})
        status, body = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(status, json=body)

    def json_bodies(self, path):
        return [json.loads(r.content) for r in self.requests if r.url.path == path]


@pytest.fixture
def fake_square(app, monkeypatch):
    fake = FakeSquare()
    monkeypatch.setitem(app.config, 'SQUARE_HTTP_TRANSPORT', httpx.MockTransport(fake.handler))
    return fake
