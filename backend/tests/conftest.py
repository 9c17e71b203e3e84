"""
Pytest fixtures for blind-box ledger tests.

Provides an in-memory database, the standard cast of accounts (owner,
admin, buyer, delivery man), a product factory, and a recording payout
gateway.
"""

import pytest

from blindbox import create_app
from blindbox.extensions import db
from blindbox.decorators import ACCOUNT_HEADER
from blindbox.services import account_service, catalog_service, delivery_service, order_service
from blindbox.services.payout_service import RecordingPayoutGateway, set_payout_gateway

OWNER_ADDRESS = "0xA11CE00000000000000000000000000000000001"
ADMIN_ADDRESS = "0xad00000000000000000000000000000000000002"
BUYER_ADDRESS = "0xb0b0000000000000000000000000000000000003"
OTHER_BUYER_ADDRESS = "0xb0b0000000000000000000000000000000000004"
COURIER_ADDRESS = "0xc0c0000000000000000000000000000000000005"
OTHER_COURIER_ADDRESS = "0xc0c0000000000000000000000000000000000006"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PAYOUT_GATEWAY': 'recording',
        'CART_SHIPPING_FEE_WEI': 5,
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
    """Clear all data but keep schema."""
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def recording_gateway(db_session):
    gateway = RecordingPayoutGateway()
    set_payout_gateway(gateway)
    return gateway


# =============================================================================
# ACCOUNTS
# =============================================================================

@pytest.fixture(scope='function')
def owner(db_session, recording_gateway):
    """Ledger owner (an admin)."""
    return account_service.init_ledger(OWNER_ADDRESS).owner


@pytest.fixture(scope='function')
def admin(owner):
    return account_service.add_admin(owner.address, ADMIN_ADDRESS)


@pytest.fixture(scope='function')
def buyer(owner):
    return account_service.register_account(BUYER_ADDRESS, name="Bob")


@pytest.fixture(scope='function')
def other_buyer(owner):
    return account_service.register_account(OTHER_BUYER_ADDRESS, name="Bea")


@pytest.fixture(scope='function')
def courier(admin):
    return account_service.add_delivery_man(admin.address, COURIER_ADDRESS)


@pytest.fixture(scope='function')
def other_courier(admin):
    return account_service.add_delivery_man(admin.address, OTHER_COURIER_ADDRESS)


# =============================================================================
# CATALOG AND ORDERS
# =============================================================================

DEFAULT_PRODUCT = {
    "name": "Moonlight Bunny Series",
    "description": "Six figures per set, one secret edition",
    "enable_individual": True,
    "individual_price_wei": 100,
    "individual_stock": 10,
    "enable_set": True,
    "set_price_wei": 500,
    "set_stock": 3,
    "set_boxes": 6,
    "price_wei": 0,
}


@pytest.fixture(scope='function')
def make_product(admin):
    """Factory: add a product as admin, overriding any default field."""
    def _make(**overrides):
        fields = dict(DEFAULT_PRODUCT, **overrides)
        return catalog_service.add_product(admin.address, **fields)
    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product()


@pytest.fixture(scope='function')
def paid_order(buyer, product):
    """Two individual boxes, paid."""
    return order_service.buy(buyer.address, product.id, False, 2, "DHL-1", 200)


@pytest.fixture(scope='function')
def completed_order(paid_order, admin, courier):
    """`paid_order` driven through delivery to COMPLETED."""
    delivery_service.mark_out_for_delivery(admin.address, paid_order.id)
    delivery_service.submit_proof(courier.address, paid_order.id, "ipfs://proof-1")
    delivery_service.confirm_delivery(admin.address, paid_order.id)
    return paid_order


def as_account(address: str) -> dict:
    """Request headers identifying the caller."""
    return {ACCOUNT_HEADER: address}
