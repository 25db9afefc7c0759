"""
Pytest fixtures for franchise ops backend tests.

Provides the test app and database, a franchise with one location, one user
per approval role, two stocked products, and the order workflow.
"""

import pytest

from franchise_ops import create_app
from franchise_ops.extensions import db
from franchise_ops.models import (
    ApprovalThreshold,
    Franchise,
    FranchiseLocation,
    InventoryRecord,
    Order,
    Product,
    User,
)
from franchise_ops.services.actors import Actor
from franchise_ops.services.inventory_service import InventoryLedger
from franchise_ops.services.notification_service import DatabaseNotifier
from franchise_ops.services.order_service import OrderWorkflow
from franchise_ops.time_utils import utcnow


WIDGET_PRICE_CENTS = 10000    # 100.00
GADGET_PRICE_CENTS = 50000    # 500.00


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'NOTIFICATION_WEBHOOK_URL': '',
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
def franchise(db_session):
    franchise = Franchise(name="Jollibean Foods", code="JBF", is_active=True)
    db_session.add(franchise)
    db_session.commit()
    return franchise


@pytest.fixture(scope='function')
def location(db_session, franchise):
    location = FranchiseLocation(
        franchise_id=franchise.id,
        name="Makati Branch",
        location_code="MKT01",
        currency="PHP",
    )
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def other_location(db_session, franchise):
    location = FranchiseLocation(
        franchise_id=franchise.id,
        name="Quezon City Branch",
        location_code="QC01",
        currency="PHP",
    )
    db_session.add(location)
    db_session.commit()
    return location


def _make_user(db_session, franchise, location, username, role):
    user = User(
        franchise_id=franchise.id,
        location_id=location.id if location is not None else None,
        username=username,
        full_name=username.replace("_", " ").title(),
        role=role,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def franchisee(db_session, franchise, location):
    return _make_user(db_session, franchise, location, "owner", "franchisee")


@pytest.fixture(scope='function')
def manager(db_session, franchise, location):
    return _make_user(db_session, franchise, location, "store_manager", "location_manager")


@pytest.fixture(scope='function')
def coordinator(db_session, franchise):
    return _make_user(db_session, franchise, None, "regional_lead", "regional_coordinator")


@pytest.fixture(scope='function')
def franchisor_admin(db_session, franchise):
    return _make_user(db_session, franchise, None, "hq_admin", "franchisor_admin")


@pytest.fixture(scope='function')
def products(db_session):
    widget = Product(sku="WID-1", name="Widget", base_price_cents=WIDGET_PRICE_CENTS, cost_price_cents=6000)
    gadget = Product(sku="GAD-1", name="Gadget", base_price_cents=GADGET_PRICE_CENTS, cost_price_cents=30000)
    db_session.add_all([widget, gadget])
    db_session.commit()
    return {"widget": widget, "gadget": gadget}


def set_stock(db_session, product, location, current, reserved=0, reorder_level=10):
    record = (
        db_session.query(InventoryRecord)
        .filter_by(product_id=product.id, location_id=location.id)
        .first()
    )
    if record is None:
        record = InventoryRecord(product_id=product.id, location_id=location.id)
        db_session.add(record)
    record.current_stock = current
    record.reserved_stock = reserved
    record.reorder_level = reorder_level
    db_session.commit()
    return record


def stock_of(db_session, product, location):
    return (
        db_session.query(InventoryRecord)
        .filter_by(product_id=product.id, location_id=location.id)
        .populate_existing()
        .one()
    )


@pytest.fixture(scope='function')
def stocked(db_session, location, products):
    """100 widgets and 200 gadgets on hand at the location."""
    set_stock(db_session, products["widget"], location, 100)
    set_stock(db_session, products["gadget"], location, 200)
    return products


@pytest.fixture(scope='function')
def thresholds(db_session, location):
    """Location thresholds where 60,000.00 falls in tier 2."""
    row = ApprovalThreshold(
        location_id=location.id,
        auto_approve_limit_cents=100000,
        level1_threshold_cents=500000,
        level2_threshold_cents=10000000,
        level3_threshold_cents=20000000,
    )
    db_session.add(row)
    db_session.commit()
    return row


def make_order(db_session, location, user, status="pending_approval"):
    """Bare order row for exercising the ledger without the workflow."""
    now = utcnow()
    order = Order(
        order_number=f"TEST-{now.timestamp()}-{db_session.query(Order).count() + 1}",
        location_id=location.id,
        created_by_user_id=user.id,
        status=status,
        required_tiers=[],
        created_at=now,
        updated_at=now,
    )
    db_session.add(order)
    db_session.commit()
    return order


@pytest.fixture(scope='function')
def ledger(db_session):
    return InventoryLedger(notifier=DatabaseNotifier())


@pytest.fixture(scope='function')
def workflow(db_session):
    return OrderWorkflow(notifier=DatabaseNotifier())


@pytest.fixture(scope='function')
def caller(franchisee):
    return Actor.api_caller(franchisee.id)
