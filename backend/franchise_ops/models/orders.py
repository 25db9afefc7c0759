from __future__ import annotations

from ..extensions import db
from franchise_ops.time_utils import to_utc_z


class Order(db.Model):
    """
    Purchase request from a franchise location.

    INVARIANT: grand_total = subtotal + tax + shipping - discount, always written
    from a PricingResult, never edited by hand.

    required_tiers is the explicit ordered list of approval tiers this order must
    clear (e.g. [1, 2] for approval_level=2). The current tier is the first entry
    without an approved ApprovalRecord; it is never derived from the status string.

    status is only changed through compare-and-swap updates in order_service.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_location_status", "location_id", "status"),
        db.Index("ix_orders_location_created", "location_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("franchise_locations.id"), nullable=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(32), nullable=False, default="draft", index=True)

    approval_level = db.Column(db.Integer, nullable=False, default=0)
    required_tiers = db.Column(db.JSON, nullable=False, default=list)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    grand_total_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="PHP")

    priority = db.Column(db.String(16), nullable=False, default="medium")
    requested_delivery_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    shipping_info = db.Column(db.JSON, nullable=True)
    invoice_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)

    location = db.relationship("FranchiseLocation")
    created_by = db.relationship("User")
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.line_number",
    )
    approval_history = db.relationship(
        "ApprovalRecord",
        backref="order",
        lazy=True,
        order_by="ApprovalRecord.id",
    )

    @property
    def next_approval_tier(self) -> int | None:
        cleared = {r.approval_level for r in self.approval_history if r.action == "approved"}
        for tier in self.required_tiers or []:
            if tier not in cleared:
                return tier
        return None

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status!r}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "location_id": self.location_id,
            "created_by_user_id": self.created_by_user_id,
            "status": self.status,
            "approval_level": self.approval_level,
            "required_tiers": list(self.required_tiers or []),
            "next_approval_tier": self.next_approval_tier,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "shipping_cents": self.shipping_cents,
            "discount_cents": self.discount_cents,
            "grand_total_cents": self.grand_total_cents,
            "currency": self.currency,
            "priority": self.priority,
            "requested_delivery_date": (
                self.requested_delivery_date.isoformat() if self.requested_delivery_date else None
            ),
            "notes": self.notes,
            "shipping_info": self.shipping_info,
            "invoice_id": self.invoice_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["approval_history"] = [r.to_dict() for r in self.approval_history]
        return data


class OrderItem(db.Model):
    """Order line. unit_price_cents is a snapshot of the computed franchise price."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.UniqueConstraint("order_id", "line_number", name="uq_order_items_order_line"),
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    base_price_cents = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_bps = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "base_price_cents": self.base_price_cents,
            "unit_price_cents": self.unit_price_cents,
            "discount_bps": self.discount_bps,
            "line_total_cents": self.line_total_cents,
        }


class ApprovalRecord(db.Model):
    """
    One decision by one approver at one tier.

    Append-only. UniqueConstraint(order_id, approval_level) guarantees two
    approvers racing for the same tier produce exactly one record.
    """
    __tablename__ = "order_approvals"
    __table_args__ = (
        db.UniqueConstraint("order_id", "approval_level", name="uq_order_approvals_order_level"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approver_name = db.Column(db.String(255), nullable=True)
    approver_role = db.Column(db.String(32), nullable=False)
    approval_level = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(16), nullable=False)  # approved, rejected
    comments = db.Column(db.Text, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "approver_id": self.approver_id,
            "approver_name": self.approver_name,
            "approver_role": self.approver_role,
            "approval_level": self.approval_level,
            "action": self.action,
            "comments": self.comments,
            "approved_at": to_utc_z(self.approved_at),
        }


class ApprovalThreshold(db.Model):
    """
    Per-location approval limits in cents.

    Must be strictly increasing: auto_approve_limit < level1 < level2 < level3.
    Locations without a row use the defaults in approval_service.
    """
    __tablename__ = "approval_thresholds"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("franchise_locations.id"), nullable=False, unique=True)
    auto_approve_limit_cents = db.Column(db.Integer, nullable=False)
    level1_threshold_cents = db.Column(db.Integer, nullable=False)
    level2_threshold_cents = db.Column(db.Integer, nullable=False)
    level3_threshold_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "location_id": self.location_id,
            "auto_approve_limit_cents": self.auto_approve_limit_cents,
            "level1_threshold_cents": self.level1_threshold_cents,
            "level2_threshold_cents": self.level2_threshold_cents,
            "level3_threshold_cents": self.level3_threshold_cents,
        }


class Shipment(db.Model):
    __tablename__ = "shipments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    carrier = db.Column(db.String(64), nullable=False)
    tracking_number = db.Column(db.String(128), nullable=True)
    shipping_address = db.Column(db.JSON, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="in_transit")
    estimated_delivery = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_delivery = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_proof = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "carrier": self.carrier,
            "tracking_number": self.tracking_number,
            "shipping_address": self.shipping_address,
            "status": self.status,
            "estimated_delivery": to_utc_z(self.estimated_delivery),
            "actual_delivery": to_utc_z(self.actual_delivery),
            "delivery_proof": self.delivery_proof,
            "created_at": to_utc_z(self.created_at),
        }


class FulfillmentOrder(db.Model):
    """Hand-off record for the warehouse once an order reaches processing."""
    __tablename__ = "fulfillment_orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    location_id = db.Column(db.Integer, db.ForeignKey("franchise_locations.id"), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending")
    priority = db.Column(db.String(16), nullable=False, default="medium")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "location_id": self.location_id,
            "status": self.status,
            "priority": self.priority,
            "created_at": to_utc_z(self.created_at),
        }


class OrderEvent(db.Model):
    """
    Append-only history of order transitions.

    Written in the same DB transaction as the transition it records.
    """
    __tablename__ = "order_events"
    __table_args__ = (
        db.Index("ix_order_events_order", "order_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    event_type = db.Column(db.String(64), nullable=False)
    from_status = db.Column(db.String(32), nullable=True)
    to_status = db.Column(db.String(32), nullable=True)
    actor_type = db.Column(db.String(16), nullable=False)
    actor_id = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "event_type": self.event_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_type": self.actor_type,
            "actor_id": self.actor_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-location document sequences.

    period scopes the counter (e.g. "20260115" for daily order numbers,
    "" for never-resetting sequences such as transfers).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("location_id", "document_type", "period", name="uq_doc_sequences_location_type_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("franchise_locations.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False)
    period = db.Column(db.String(16), nullable=False, default="")
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
