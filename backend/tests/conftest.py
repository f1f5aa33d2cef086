"""
Pytest fixtures for the ERP sync backend tests.

Provides an in-memory database, a fake remote gateway, the orchestrator
and a test client.
"""

import copy

import pytest

from erpsync import create_app
from erpsync.config import SyncSettings
from erpsync.extensions import db
from erpsync.models import CatalogItem, DiscountCode
from erpsync.services.gateway import RemoteGateway
from erpsync.services.sync_service import SyncOrchestrator

TEST_SECRET = "test-sync-secret"


class FakeGateway(RemoteGateway):
    """In-memory remote backend; tests assign rows and optional failures."""

    def __init__(self):
        self.cards = []
        self.catalog = []
        self.stock = []
        self.error = None
        self.calls = []

    def _serve(self, name, rows):
        self.calls.append(name)
        if self.error is not None:
            raise self.error
        return copy.deepcopy(rows)

    def fetch_discount_codes(self):
        return self._serve("codes", self.cards)

    def fetch_catalog(self):
        return self._serve("catalog", self.catalog)

    def fetch_stock(self, sku_filter=None):
        rows = self._serve("stock", self.stock)
        if sku_filter:
            rows = [r for r in rows if r.get("VendorCode") == sku_filter]
        return rows


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(
        {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'LOG_LEVEL': 'WARNING',
            'ERPSYNC_API_SECRET': TEST_SECRET,
            'ERPSYNC_BATCH_SIZE': 50,
            'ERPSYNC_EXCLUDED_WAREHOUSES': ['Defect', 'Reserve'],
            'ERPSYNC_BRANCH_SETTINGS': {
                'Main WH': {'alias': 'Tbilisi Mall', 'hidden': False},
                'Office': {'alias': '', 'hidden': True},
            },
        },
        gateway=FakeGateway(),
    )

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
def gateway(app):
    """Fresh fake gateway installed on the app."""
    fake = FakeGateway()
    app.extensions['erpsync_gateway'] = fake
    return fake


@pytest.fixture(scope='function')
def settings(app):
    return SyncSettings.from_config(app.config)


@pytest.fixture(scope='function')
def orchestrator(db_session, gateway, settings):
    return SyncOrchestrator(gateway, settings)


def make_item(db_session, sku, *, quantity=0, price_cents=None, session_id=None, managed=True, name=None):
    """Insert a catalog item directly."""
    item = CatalogItem(
        sku=sku,
        name=name or f"Item {sku}",
        attributes={},
        warehouse_breakdown=[{"location": "Main WH", "quantity": quantity}] if quantity else [],
        stock_quantity=quantity,
        stock_status="in_stock" if quantity > 0 else "out_of_stock",
        regular_price_cents=price_cents,
        managed=managed,
        last_sync_session_id=session_id,
    )
    db_session.add(item)
    db_session.commit()
    return item


def get_item(sku):
    return db.session.query(CatalogItem).filter_by(sku=sku).one()


def get_code(code):
    return db.session.query(DiscountCode).filter_by(code=code).one_or_none()


def catalog_row(sku, name=None, **fields):
    row = {"VendorCode": sku, "ProductName": name or f"Watch {sku}"}
    row.update(fields)
    return row


def stock_row(sku, warehouses, price="100", sale_price=None, quantity=None):
    return {
        "VendorCode": sku,
        "Price": price,
        "SalePrice": sale_price,
        "Quantity": quantity if quantity is not None else sum(q for _, q in warehouses),
        "Warehouses": [{"Location": loc, "Quantity": qty} for loc, qty in warehouses],
    }


def card_row(card_code, percent=10, *, name="Nino", mobile="+995 555 12 34 56", dob="1990-05-17", deleted=False):
    return {
        "CardCode": card_code,
        "Inn": "01001012345",
        "Name": name,
        "MobileNumber": mobile,
        "DateOfBirth": dob,
        "DiscountPercentage": percent,
        "IsDeleted": deleted,
    }


def secret_headers() -> dict:
    return {'X-ERPSync-Secret': TEST_SECRET}
