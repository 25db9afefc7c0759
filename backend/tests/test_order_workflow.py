import logging
from datetime import timedelta

import pytest

from conftest import set_stock, stock_of
from franchise_ops.errors import (
    AuthorizationError,
    DownstreamError,
    InsufficientStockError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from franchise_ops.models import (
    ApprovalRecord,
    FulfillmentOrder,
    InventoryReservation,
    Invoice,
    Notification,
    Order,
    Shipment,
)
from franchise_ops.services.actors import Actor
from franchise_ops.services.order_service import OrderWorkflow
from franchise_ops.time_utils import day_stamp, utcnow


class FailingNotifier:
    def __init__(self, exc):
        self.exc = exc
        self.calls = 0

    def notify(self, *args, **kwargs):
        self.calls += 1
        raise self.exc


def _order_data(location, product, quantity, **extra):
    data = {"location_id": location.id, "items": [{"product_id": product.id, "quantity": quantity}]}
    data.update(extra)
    return data


def _transitions(workflow, order):
    return [(e.from_status, e.to_status) for e in workflow.list_events(order.id)]


def test_auto_approved_order_goes_straight_to_processing(workflow, db_session, location, stocked, caller):
    widget = stocked["widget"]

    order = workflow.create_order(_order_data(location, widget, 5), caller)

    assert order.grand_total_cents == 76000
    assert order.approval_level == 0
    assert order.required_tiers == []
    assert order.status == "processing"
    assert _transitions(workflow, order) == [("draft", "approved"), ("approved", "processing")]
    assert db_session.query(ApprovalRecord).count() == 0

    reservation = db_session.query(InventoryReservation).filter_by(order_id=order.id).one()
    assert reservation.status == "active"
    record = stock_of(db_session, widget, location)
    assert (record.current_stock, record.reserved_stock) == (100, 5)

    invoice = db_session.query(Invoice).filter_by(order_id=order.id).one()
    assert invoice.status == "ISSUED"
    assert invoice.total_cents == 76000
    assert order.invoice_id == invoice.id
    assert db_session.query(FulfillmentOrder).filter_by(order_id=order.id).one().status == "pending"


def test_order_numbers_are_sequential_per_location_and_day(workflow, location, stocked, caller):
    first = workflow.create_order(_order_data(location, stocked["widget"], 1), caller)
    second = workflow.create_order(_order_data(location, stocked["widget"], 1), caller)

    stamp = day_stamp(utcnow())
    assert first.order_number == f"MKT01-{stamp}-0001"
    assert second.order_number == f"MKT01-{stamp}-0002"


def test_tier_one_rejection_releases_stock(workflow, db_session, location, stocked, caller, manager):
    widget = stocked["widget"]

    order = workflow.create_order(_order_data(location, widget, 20), caller)

    assert order.grand_total_cents == 244000
    assert order.status == "pending_approval"
    assert order.required_tiers == [1]
    assert stock_of(db_session, widget, location).reserved_stock == 20
    approver_note = db_session.query(Notification).filter_by(target_role="location_manager").one()
    assert approver_note.category == "approvals"

    rejected = workflow.process_approval(order.id, manager.id, "rejected", "Over budget")

    assert rejected.status == "rejected"
    assert stock_of(db_session, widget, location).reserved_stock == 0
    record = db_session.query(ApprovalRecord).filter_by(order_id=order.id).one()
    assert (record.approval_level, record.action, record.approver_role) == (1, "rejected", "location_manager")
    assert db_session.query(InventoryReservation).filter_by(order_id=order.id).one().status == "cancelled"
    assert db_session.query(Invoice).count() == 0


def test_tier_two_order_full_lifecycle(workflow, db_session, location, stocked, thresholds, caller, manager, coordinator):
    gadget = stocked["gadget"]

    order = workflow.create_order(_order_data(location, gadget, 100, priority="high"), caller)

    assert order.grand_total_cents == 5600000
    assert order.required_tiers == [1, 2]
    assert order.status == "pending_approval"

    order = workflow.process_approval(order.id, manager.id, "approve")
    assert order.status == "level1_approved"
    assert order.next_approval_tier == 2
    assert db_session.query(Notification).filter_by(target_role="regional_coordinator").count() == 1

    order = workflow.process_approval(order.id, coordinator.id, "approved", "Looks good")
    assert order.status == "processing"
    assert [r.approval_level for r in order.approval_history] == [1, 2]

    order = workflow.create_shipment(order.id, {"carrier": "LBC", "tracking_number": "LBC123"}, caller)
    assert order.status == "shipped"
    assert order.shipping_info["carrier"] == "LBC"
    assert db_session.query(Shipment).filter_by(order_id=order.id).one().status == "in_transit"

    # Stock only leaves the shelf at delivery
    assert stock_of(db_session, gadget, location).current_stock == 200

    order = workflow.confirm_delivery(order.id, "signed by receiver", caller)

    assert order.status == "delivered"
    record = stock_of(db_session, gadget, location)
    assert (record.current_stock, record.reserved_stock) == (100, 0)
    assert db_session.query(InventoryReservation).filter_by(order_id=order.id).one().status == "fulfilled"
    invoice = db_session.query(Invoice).filter_by(order_id=order.id).populate_existing().one()
    assert invoice.status == "FINAL"
    assert db_session.query(Shipment).filter_by(order_id=order.id).populate_existing().one().delivery_proof == (
        "signed by receiver"
    )
    assert _transitions(workflow, order) == [
        ("draft", "pending_approval"),
        ("pending_approval", "level1_approved"),
        ("level1_approved", "approved"),
        ("approved", "processing"),
        ("processing", "shipped"),
        ("shipped", "delivered"),
    ]


def test_tier_three_requires_every_tier_in_order(
    workflow, db_session, location, stocked, caller, coordinator, franchisor_admin
):
    order = workflow.create_order(_order_data(location, stocked["gadget"], 100), caller)
    assert order.required_tiers == [1, 2, 3]

    # The top tier cannot be skipped to directly; admin acts on the current tier first
    order = workflow.process_approval(order.id, franchisor_admin.id, "approved")
    assert order.status == "level1_approved"

    order = workflow.process_approval(order.id, coordinator.id, "approved")
    assert order.status == "level2_approved"

    with pytest.raises(AuthorizationError) as exc_info:
        workflow.process_approval(order.id, coordinator.id, "approved")
    assert exc_info.value.required_role == "franchisor_admin"

    order = workflow.process_approval(order.id, franchisor_admin.id, "approved")
    assert order.status == "processing"
    assert db_session.query(ApprovalRecord).filter_by(order_id=order.id).count() == 3


def test_wrong_role_leaves_order_untouched(workflow, db_session, location, stocked, thresholds, caller, manager, franchisee):
    order = workflow.create_order(_order_data(location, stocked["gadget"], 100), caller)
    workflow.process_approval(order.id, manager.id, "approved")

    with pytest.raises(AuthorizationError):
        workflow.process_approval(order.id, manager.id, "approved")
    with pytest.raises(AuthorizationError):
        workflow.process_approval(order.id, franchisee.id, "rejected")

    order = workflow.get_order(order.id)
    assert order.status == "level1_approved"
    assert db_session.query(ApprovalRecord).filter_by(order_id=order.id).count() == 1
    assert stock_of(db_session, stocked["gadget"], location).reserved_stock == 100


def test_inactive_or_unknown_approver(workflow, db_session, location, stocked, caller, manager):
    order = workflow.create_order(_order_data(location, stocked["widget"], 20), caller)

    with pytest.raises(NotFoundError):
        workflow.process_approval(order.id, 999999, "approved")

    manager.is_active = False
    db_session.commit()
    with pytest.raises(AuthorizationError):
        workflow.process_approval(order.id, manager.id, "approved")


@pytest.mark.parametrize("action", ["maybe", "escalated"])
def test_invalid_action_is_rejected(workflow, db_session, location, stocked, caller, manager, action):
    order = workflow.create_order(_order_data(location, stocked["widget"], 20), caller)

    with pytest.raises(ValidationError):
        workflow.process_approval(order.id, manager.id, action)

    assert db_session.query(ApprovalRecord).filter_by(order_id=order.id).count() == 0


def test_insufficient_stock_creates_nothing(workflow, db_session, location, stocked, caller):
    with pytest.raises(InsufficientStockError) as exc_info:
        workflow.create_order(_order_data(location, stocked["widget"], 150), caller)

    assert exc_info.value.shortages[0]["available"] == 100
    assert db_session.query(Order).count() == 0
    assert db_session.query(InventoryReservation).count() == 0
    assert stock_of(db_session, stocked["widget"], location).reserved_stock == 0


@pytest.mark.parametrize("data, error", [
    ({"items": [{"product_id": 1, "quantity": 1}]}, ValidationError),
    ({"location_id": "abc", "items": [{"product_id": 1, "quantity": 1}]}, ValidationError),
    ({"location_id": 999999, "items": [{"product_id": 1, "quantity": 1}]}, NotFoundError),
    ({"location_id": 1, "created_by_user_id": "abc", "items": [{"product_id": 1, "quantity": 1}]}, ValidationError),
])
def test_create_order_input_errors(workflow, stocked, caller, data, error):
    with pytest.raises(error):
        workflow.create_order(data, caller)


def test_create_order_rejects_bad_priority_and_inactive_location(workflow, db_session, location, stocked, caller):
    with pytest.raises(ValidationError):
        workflow.create_order(_order_data(location, stocked["widget"], 1, priority="asap"), caller)

    location.is_active = False
    db_session.commit()
    with pytest.raises(ValidationError):
        workflow.create_order(_order_data(location, stocked["widget"], 1), caller)


def test_cancel_releases_reservations_once(workflow, db_session, location, stocked, caller):
    widget = stocked["widget"]
    order = workflow.create_order(_order_data(location, widget, 20, notes="weekly restock"), caller)

    cancelled = workflow.cancel_order(order.id, "No longer needed", caller)

    assert cancelled.status == "cancelled"
    assert stock_of(db_session, widget, location).reserved_stock == 0
    with pytest.raises(StateConflictError):
        workflow.cancel_order(order.id, "again", caller)
    assert stock_of(db_session, widget, location).reserved_stock == 0


def test_cancel_processing_order_cancels_fulfillment(workflow, db_session, location, stocked, caller):
    order = workflow.create_order(_order_data(location, stocked["widget"], 5), caller)

    workflow.cancel_order(order.id, None, caller)

    fulfillment = db_session.query(FulfillmentOrder).filter_by(order_id=order.id).populate_existing().one()
    assert fulfillment.status == "cancelled"


def test_delivery_after_expiry_cannot_take_other_orders_stock(workflow, ledger, db_session, location, stocked, caller):
    widget = stocked["widget"]
    order = workflow.create_order(_order_data(location, widget, 5), caller)
    workflow.create_shipment(order.id, {"carrier": "LBC"}, caller)
    ledger.sweep_expired_reservations(now=utcnow() + timedelta(hours=25))
    # Every remaining unit is now held for other orders
    set_stock(db_session, widget, location, 100, reserved=100)

    with pytest.raises(InsufficientStockError):
        workflow.confirm_delivery(order.id, None, caller)

    assert workflow.get_order(order.id).status == "shipped"
    record = stock_of(db_session, widget, location)
    assert (record.current_stock, record.reserved_stock) == (100, 100)


def test_delivered_order_cannot_be_cancelled(workflow, location, stocked, caller):
    order = workflow.create_order(_order_data(location, stocked["widget"], 5), caller)
    workflow.create_shipment(order.id, {"carrier": "JRS"}, caller)
    workflow.confirm_delivery(order.id, None, caller)

    with pytest.raises(StateConflictError) as exc_info:
        workflow.cancel_order(order.id, "too late", caller)

    assert exc_info.value.current_status == "delivered"


def test_decisions_on_closed_orders_conflict(workflow, location, stocked, caller, manager):
    order = workflow.create_order(_order_data(location, stocked["widget"], 20), caller)
    workflow.process_approval(order.id, manager.id, "rejected")

    with pytest.raises(StateConflictError):
        workflow.process_approval(order.id, manager.id, "approved")


def test_shipment_requires_processing_and_carrier(workflow, location, stocked, caller):
    pending = workflow.create_order(_order_data(location, stocked["widget"], 20), caller)
    with pytest.raises(StateConflictError):
        workflow.create_shipment(pending.id, {"carrier": "LBC"}, caller)

    processing = workflow.create_order(_order_data(location, stocked["widget"], 1), caller)
    with pytest.raises(ValidationError):
        workflow.create_shipment(processing.id, {"tracking_number": "X"}, caller)


def test_stale_status_is_detected_by_compare_and_swap(workflow, db_session, location, stocked, caller):
    order = workflow.create_order(_order_data(location, stocked["widget"], 20), caller)
    stale = workflow.get_order(order.id)

    # Another writer moves the order underneath us
    db_session.query(Order).filter_by(id=order.id).update({"status": "cancelled"}, synchronize_session=False)
    db_session.commit()

    with pytest.raises(StateConflictError) as exc_info:
        workflow._transition(stale, "pending_approval", "rejected", caller, event_type="rejected")
    db_session.rollback()

    assert exc_info.value.current_status == "cancelled"
    assert db_session.query(Order.status).filter_by(id=order.id).scalar() == "cancelled"
    assert "rejected" not in [e.to_status for e in workflow.list_events(order.id)]


def test_delivery_triggers_low_stock_alert(workflow, db_session, location, stocked, caller):
    set_stock(db_session, stocked["widget"], location, 100, reorder_level=100)
    order = workflow.create_order(_order_data(location, stocked["widget"], 5), caller)
    workflow.create_shipment(order.id, {"carrier": "LBC"}, caller)
    workflow.confirm_delivery(order.id, None, caller)

    alert = db_session.query(Notification).filter_by(target_type="LOCATION", target_id=location.id).one()
    assert alert.title == "Low Stock Alert"
    assert alert.data["low_stock_items"][0]["current_stock"] == 95


@pytest.mark.parametrize("exc", [
    DownstreamError("notification", "webhook unreachable"),
    RuntimeError("smtp exploded"),
])
def test_notification_failure_never_undoes_a_transition(db_session, location, stocked, caller, manager, exc, caplog):
    notifier = FailingNotifier(exc)
    workflow = OrderWorkflow(notifier=notifier)

    with caplog.at_level(logging.WARNING, logger="franchise_ops.services.order_service"):
        order = workflow.create_order(_order_data(location, stocked["widget"], 20), caller)
        order = workflow.process_approval(order.id, manager.id, "approved")

    assert order.status == "processing"
    assert notifier.calls >= 2
    assert "notify" in caplog.text
    assert db_session.query(Invoice).filter_by(order_id=order.id).count() == 1


def test_list_orders_filters_by_location_and_status(workflow, location, stocked, caller):
    auto = workflow.create_order(_order_data(location, stocked["widget"], 1), caller)
    pending = workflow.create_order(_order_data(location, stocked["widget"], 20), caller)

    assert {o.id for o in workflow.list_orders(location_id=location.id)} == {auto.id, pending.id}
    assert [o.id for o in workflow.list_orders(status="pending_approval")] == [pending.id]
    assert workflow.list_orders(location_id=location.id, limit=1, offset=5) == []


def test_events_record_actor(workflow, location, stocked, caller, manager):
    order = workflow.create_order(_order_data(location, stocked["widget"], 20), caller)
    workflow.process_approval(order.id, manager.id, "approved")

    events = workflow.list_events(order.id)
    assert events[0].actor_type == "api_caller"
    assert (events[1].actor_type, events[1].actor_id) == ("approver", str(manager.id))
    assert Actor.approver(manager.id).audit_fields()["actor_id"] == events[1].actor_id
