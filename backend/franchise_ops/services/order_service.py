# Overview: Order workflow state machine; creation, tiered approval, shipment, delivery, cancellation.

"""
Franchise Ops Order Workflow

================================================================================
STATE MACHINE
================================================================================

    draft -> pending_approval -> level1_approved -> level2_approved -> approved
          -> processing -> shipped -> delivered

    rejected and cancelled are terminal and reachable from any state before
    delivered (rejected only while an approval is outstanding).

    An order needing tier 0 is created directly in approved; tier N orders
    start in pending_approval and clear tiers 1..N in order. The tiers are
    stored on the order (required_tiers) when it is created.

RULES:
1. Every status change is a compare-and-swap: UPDATE ... WHERE status = <observed>.
   A miss raises StateConflictError naming the status actually found.
2. Exactly one ApprovalRecord per (order, tier), enforced by a unique constraint.
3. Stock is reserved in the same DB transaction that inserts the order; a failed
   reservation leaves no order behind.
4. reject / cancel release reservations in the same transaction as the status change.
   confirm_delivery converts them into a stock reduction.
5. Notifications, invoices and low-stock alerts run AFTER the commit. Their
   failures are logged and never undo the transition.
6. Every transition appends an OrderEvent (with its actor) in the same transaction.
================================================================================
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    AuthorizationError,
    DownstreamError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from ..models import (
    ApprovalRecord,
    FranchiseLocation,
    FulfillmentOrder,
    Order,
    OrderEvent,
    OrderItem,
    Shipment,
    User,
)
from .actors import Actor
from .approval_service import ApprovalPolicy
from .concurrency import execute_conditional, lock_for_update, run_in_transaction
from .document_service import next_order_number
from .inventory_service import InventoryLedger
from .invoice_service import InvoiceService
from .notification_service import DatabaseNotifier, Recipients
from .pricing_service import PricingEngine, normalize_items
from franchise_ops.time_utils import day_stamp, parse_iso_datetime, utcnow

logger = logging.getLogger(__name__)


STATUS_DRAFT = "draft"
STATUS_PENDING_APPROVAL = "pending_approval"
STATUS_LEVEL1_APPROVED = "level1_approved"
STATUS_LEVEL2_APPROVED = "level2_approved"
STATUS_APPROVED = "approved"
STATUS_PROCESSING = "processing"
STATUS_SHIPPED = "shipped"
STATUS_DELIVERED = "delivered"
STATUS_REJECTED = "rejected"
STATUS_CANCELLED = "cancelled"

AWAITING_APPROVAL = {STATUS_PENDING_APPROVAL, STATUS_LEVEL1_APPROVED, STATUS_LEVEL2_APPROVED}
TERMINAL_STATUSES = {STATUS_DELIVERED, STATUS_REJECTED, STATUS_CANCELLED}

# Intermediate status after clearing a tier that is not the order's last one
CLEARED_TIER_STATUS = {1: STATUS_LEVEL1_APPROVED, 2: STATUS_LEVEL2_APPROVED}

ACTION_APPROVED = "approved"
ACTION_REJECTED = "rejected"
ACTION_ALIASES = {"approve": ACTION_APPROVED, "reject": ACTION_REJECTED}

VALID_PRIORITIES = {"low", "medium", "high", "urgent"}

FULFILLMENT_ROLE = "fulfillment"


def _parse_date(value) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"requested_delivery_date must be YYYY-MM-DD, got {value!r}")


class OrderWorkflow:
    def __init__(
        self,
        *,
        pricing: PricingEngine | None = None,
        inventory: InventoryLedger | None = None,
        approvals: ApprovalPolicy | None = None,
        notifier=None,
        invoices: InvoiceService | None = None,
        clock=utcnow,
    ):
        self.clock = clock
        self.notifier = notifier if notifier is not None else DatabaseNotifier()
        self.pricing = pricing or PricingEngine(clock=clock)
        self.inventory = inventory or InventoryLedger(notifier=self.notifier, clock=clock)
        self.approvals = approvals or ApprovalPolicy()
        self.invoices = invoices or InvoiceService(clock=clock)

    # ------------------------------------------------------------------
    # Core helpers
    # ------------------------------------------------------------------

    def _load(self, order_id: int, *, for_update: bool = False) -> Order:
        q = db.session.query(Order).filter_by(id=order_id)
        if for_update:
            q = lock_for_update(q)
        order = q.populate_existing().first()
        if order is None:
            raise NotFoundError("Order", order_id)
        if for_update:
            db.session.expire(order, ["items", "approval_history"])
        return order

    def _append_event(
        self,
        order: Order,
        event_type: str,
        from_status: str | None,
        to_status: str | None,
        actor: Actor,
        note: str | None = None,
    ) -> OrderEvent:
        event = OrderEvent(
            order_id=order.id,
            event_type=event_type,
            from_status=from_status,
            to_status=to_status,
            note=(note or None) and note[:255],
            occurred_at=self.clock(),
            **actor.audit_fields(),
        )
        db.session.add(event)
        return event

    def _transition(
        self,
        order: Order,
        expected: str,
        new_status: str,
        actor: Actor,
        *,
        event_type: str,
        note: str | None = None,
        **values,
    ) -> str:
        """
        Compare-and-swap order.status from expected to new_status.

        expected is the status the caller validated, not order.status, which
        reloads from the row once the instance is expired. Raises
        StateConflictError if the row is no longer in expected.
        """
        applied = execute_conditional(
            update(Order)
            .where(Order.id == order.id, Order.status == expected)
            .values(status=new_status, updated_at=self.clock(), **values)
        )
        if not applied:
            current = db.session.query(Order.status).filter_by(id=order.id).scalar()
            raise StateConflictError("Order", order.id, current, f"move to {new_status}")

        db.session.expire(order)
        self._append_event(order, event_type, expected, new_status, actor, note)
        logger.info("Order %s: %s -> %s (%s)", order.id, expected, new_status, event_type)
        return expected

    def _require_status(self, order: Order, allowed: set[str], attempted: str) -> str:
        """Return the observed status if it is one of allowed."""
        observed = order.status
        if observed not in allowed:
            raise StateConflictError("Order", order.id, observed, attempted)
        return observed

    def _side_effect(self, label: str, order_id: int, func, *args, **kwargs):
        """Run a post-commit collaborator call; failures are logged, never raised."""
        try:
            return func(*args, **kwargs)
        except DownstreamError as exc:
            db.session.rollback()
            logger.warning("Order %s: %s failed: %s", order_id, label, exc)
        except Exception:
            db.session.rollback()
            logger.warning("Order %s: %s failed", order_id, label, exc_info=True)
        return None

    def _notify(self, order: Order, recipients: Recipients, title: str, message: str, *, category: str = "orders"):
        self._side_effect(
            f"notify {recipients.target_role or recipients.target_type}",
            order.id,
            self.notifier.notify,
            recipients,
            title,
            message,
            {"order_id": order.id, "order_number": order.order_number, "status": order.status},
            category=category,
        )

    def _franchise_id(self, order: Order) -> int | None:
        location = db.session.get(FranchiseLocation, order.location_id)
        return location.franchise_id if location else None

    def _notify_approvers(self, order: Order, tier: int) -> None:
        role = self.approvals.role_for_tier(tier)
        self._notify(
            order,
            Recipients.role(role, franchise_id=self._franchise_id(order)),
            "Order Approval Required",
            f"Order {order.order_number} requires tier {tier} approval",
            category="approvals",
        )

    def _notify_creator(self, order: Order, title: str, message: str, *, category: str = "orders") -> None:
        self._notify(order, Recipients.user(order.created_by_user_id), title, message, category=category)

    def _finalize(self, order_id: int, actor: Actor) -> None:
        """approved -> processing, hand off to fulfillment, then issue the invoice."""
        def _op():
            order = self._load(order_id, for_update=True)
            observed = self._require_status(order, {STATUS_APPROVED}, "start processing")
            self._transition(order, observed, STATUS_PROCESSING, actor, event_type="processing_started")
            db.session.add(FulfillmentOrder(
                order_id=order.id,
                location_id=order.location_id,
                status="pending",
                priority=order.priority,
                created_at=self.clock(),
            ))
            return order

        try:
            order = run_in_transaction(_op)
        except StateConflictError as exc:
            logger.warning("Order %s not finalized: %s", order_id, exc)
            return

        self._side_effect("generate invoice", order.id, self.invoices.generate_invoice, order)
        self._notify(
            order,
            Recipients.role(FULFILLMENT_ROLE, franchise_id=self._franchise_id(order)),
            "New Order for Fulfillment",
            f"Order {order.order_number} is approved and ready for processing",
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_order(self, data: dict, actor: Actor) -> Order:
        """
        Price, reserve and persist a new order.

        Raises ValidationError / NotFoundError / InsufficientStockError before
        anything is written. Order row, lines, reservations and the creation
        event commit together or not at all.
        """
        data = data or {}
        location_id = data.get("location_id")
        if location_id in (None, ""):
            raise ValidationError("location_id is required")
        try:
            location_id = int(location_id)
        except (TypeError, ValueError):
            raise ValidationError("location_id must be an integer")

        items = normalize_items(data.get("items"))

        created_by = data.get("created_by_user_id") or actor.id
        if created_by in (None, ""):
            raise ValidationError("created_by_user_id is required")
        try:
            created_by = int(created_by)
        except (TypeError, ValueError):
            raise ValidationError("created_by_user_id must be an integer")
        if db.session.get(User, created_by) is None:
            raise NotFoundError("User", created_by)

        priority = (data.get("priority") or "medium").lower()
        if priority not in VALID_PRIORITIES:
            raise ValidationError(f"priority must be one of: {', '.join(sorted(VALID_PRIORITIES))}")
        requested_delivery_date = _parse_date(data.get("requested_delivery_date"))

        location = db.session.get(FranchiseLocation, location_id)
        if location is None:
            raise NotFoundError("Location", location_id)
        if not location.is_active:
            raise ValidationError(f"Location {location_id} is not active")

        pricing = self.pricing.compute_pricing(items, location_id)

        # Fail fast: no order, no reservation
        self.inventory.validate_availability(items, location_id)
        tier = self.approvals.required_tier(pricing.grand_total_cents, location_id)
        initial_status = STATUS_APPROVED if tier == 0 else STATUS_PENDING_APPROVAL

        def _op():
            now = self.clock()
            order = Order(
                order_number=next_order_number(
                    location_id=location.id,
                    location_code=location.location_code,
                    stamp=day_stamp(now),
                ),
                location_id=location.id,
                created_by_user_id=created_by,
                status=initial_status,
                approval_level=tier,
                required_tiers=self.approvals.required_tiers(tier),
                subtotal_cents=pricing.subtotal_cents,
                tax_cents=pricing.tax_cents,
                shipping_cents=pricing.shipping_cents,
                discount_cents=pricing.discount_cents,
                grand_total_cents=pricing.grand_total_cents,
                currency=pricing.currency,
                priority=priority,
                requested_delivery_date=requested_delivery_date,
                notes=data.get("notes"),
                created_at=now,
                updated_at=now,
            )
            db.session.add(order)
            db.session.flush()

            for line_number, line in enumerate(pricing.breakdown, start=1):
                db.session.add(OrderItem(
                    order_id=order.id,
                    line_number=line_number,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    base_price_cents=line.base_price_cents,
                    unit_price_cents=line.unit_price_cents,
                    discount_bps=line.discount_applied_bps,
                    line_total_cents=line.line_total_cents,
                ))

            self.inventory.reserve(items, location.id, order.id, actor=actor, commit=False)
            self._append_event(
                order,
                "created",
                STATUS_DRAFT,
                initial_status,
                actor,
                f"tier {tier}" if tier else "auto-approved",
            )
            return order

        order = run_in_transaction(_op)
        logger.info(
            "Created order %s (%s) total=%s tier=%s",
            order.order_number,
            order.id,
            order.grand_total_cents,
            tier,
        )

        if tier == 0:
            self._finalize(order.id, actor)
        else:
            self._notify_approvers(order, 1)
        return self._load(order.id)

    def process_approval(
        self,
        order_id: int,
        approver_id: int,
        action: str,
        comments: str | None = None,
    ) -> Order:
        """
        Record one approver's decision on the order's current tier.

        approved on the last required tier -> approved (then processing);
        approved on an earlier tier -> levelN_approved and the next tier is notified;
        rejected -> rejected, reservations released.
        """
        action = ACTION_ALIASES.get((action or "").strip().lower(), (action or "").strip().lower())
        if action not in {ACTION_APPROVED, ACTION_REJECTED}:
            raise ValidationError("action must be 'approved' or 'rejected'")

        approver = db.session.get(User, approver_id)
        if approver is None:
            raise NotFoundError("User", approver_id)
        if not approver.is_active:
            raise AuthorizationError(f"User {approver_id} is not active")
        actor = Actor.approver(approver.id)

        def _op():
            order = self._load(order_id, for_update=True)
            observed = self._require_status(order, AWAITING_APPROVAL, f"record {action} decision")

            tier = order.next_approval_tier
            if tier is None:
                raise StateConflictError("Order", order.id, observed, f"record {action} decision")
            self.approvals.authorize(approver.role, tier)

            db.session.add(ApprovalRecord(
                order_id=order.id,
                approver_id=approver.id,
                approver_name=approver.full_name or approver.username,
                approver_role=approver.role,
                approval_level=tier,
                action=action,
                comments=comments,
                approved_at=self.clock(),
            ))
            try:
                db.session.flush()
            except IntegrityError as exc:
                # Another approver recorded this tier first
                raise StateConflictError("Order", order.id, f"tier {tier} decided", f"record {action} decision") from exc

            if action == ACTION_REJECTED:
                self._transition(order, observed, STATUS_REJECTED, actor, event_type="rejected", note=comments)
                self.inventory.release(order.id, actor=actor, commit=False)
                return order, tier, STATUS_REJECTED

            if tier >= order.approval_level:
                new_status = STATUS_APPROVED
            else:
                new_status = CLEARED_TIER_STATUS[tier]
            self._transition(order, observed, new_status, actor, event_type=f"tier{tier}_approved", note=comments)
            return order, tier, new_status

        order, tier, new_status = run_in_transaction(_op)

        if new_status == STATUS_REJECTED:
            self._notify_creator(
                order,
                "Order Rejected",
                f"Order {order.order_number} was rejected at tier {tier}"
                + (f": {comments}" if comments else ""),
                category="approvals",
            )
        elif new_status == STATUS_APPROVED:
            self._notify_creator(
                order, "Order Approved", f"Order {order.order_number} has been approved", category="approvals"
            )
            self._finalize(order.id, actor)
        else:
            self._notify_approvers(order, tier + 1)

        return self._load(order.id)

    def create_shipment(self, order_id: int, shipping_info: dict, actor: Actor) -> Order:
        shipping_info = dict(shipping_info or {})
        carrier = (shipping_info.get("carrier") or "").strip()
        if not carrier:
            raise ValidationError("carrier is required")
        estimated = shipping_info.get("estimated_delivery")
        try:
            estimated_at = parse_iso_datetime(estimated) if estimated else None
        except ValueError:
            raise ValidationError("estimated_delivery must be an ISO-8601 datetime")

        def _op():
            order = self._load(order_id, for_update=True)
            observed = self._require_status(order, {STATUS_PROCESSING}, "ship")
            self._transition(
                order,
                observed,
                STATUS_SHIPPED,
                actor,
                event_type="shipped",
                note=f"{carrier} {shipping_info.get('tracking_number') or ''}".strip(),
                shipping_info=shipping_info,
            )
            db.session.add(Shipment(
                order_id=order.id,
                carrier=carrier,
                tracking_number=shipping_info.get("tracking_number"),
                shipping_address=shipping_info.get("shipping_address"),
                status="in_transit",
                estimated_delivery=estimated_at,
                created_at=self.clock(),
            ))
            return order

        order = run_in_transaction(_op)
        self._notify_creator(
            order,
            "Order Shipped",
            f"Order {order.order_number} has been shipped via {carrier}",
            category="shipping",
        )
        return self._load(order.id)

    def confirm_delivery(self, order_id: int, proof: str | None, actor: Actor) -> Order:
        """shipped -> delivered; the only point where reserved stock leaves the shelf."""
        def _op():
            order = self._load(order_id, for_update=True)
            observed = self._require_status(order, {STATUS_SHIPPED}, "confirm delivery")
            self._transition(order, observed, STATUS_DELIVERED, actor, event_type="delivered", note=proof)
            self.inventory.commit_order(order.id, actor=actor, commit=False)

            shipment = db.session.query(Shipment).filter_by(order_id=order.id).first()
            if shipment is not None:
                shipment.status = "delivered"
                shipment.actual_delivery = self.clock()
                shipment.delivery_proof = proof
            return order

        order = run_in_transaction(_op)

        self._side_effect("finalize invoice", order.id, self.invoices.finalize_invoice, order.id)
        self._notify_creator(
            order, "Order Delivered", f"Order {order.order_number} has been delivered", category="shipping"
        )
        self._side_effect("low stock check", order.id, self.inventory.check_low_stock, order.location_id)
        return self._load(order.id)

    def cancel_order(self, order_id: int, reason: str | None, actor: Actor) -> Order:
        def _op():
            order = self._load(order_id, for_update=True)
            observed = order.status
            if observed in TERMINAL_STATUSES:
                raise StateConflictError("Order", order.id, observed, "cancel")
            self._transition(order, observed, STATUS_CANCELLED, actor, event_type="cancelled", note=reason)
            self.inventory.release(order.id, actor=actor, commit=False)
            db.session.query(FulfillmentOrder).filter_by(order_id=order.id).update(
                {"status": "cancelled"}, synchronize_session=False
            )
            return order

        order = run_in_transaction(_op)
        self._notify_creator(
            order,
            "Order Cancelled",
            f"Order {order.order_number} was cancelled" + (f": {reason}" if reason else ""),
        )
        return self._load(order.id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_order(self, order_id: int) -> Order:
        return self._load(order_id)

    def list_orders(
        self,
        *,
        location_id: int | None = None,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Order]:
        q = db.session.query(Order)
        if location_id is not None:
            q = q.filter(Order.location_id == location_id)
        if status:
            q = q.filter(Order.status == status)
        return q.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit).all()

    def list_events(self, order_id: int) -> list[OrderEvent]:
        self._load(order_id)
        return (
            db.session.query(OrderEvent)
            .filter_by(order_id=order_id)
            .order_by(OrderEvent.id.asc())
            .all()
        )
