from __future__ import annotations

from ..extensions import db
from franchise_ops.time_utils import to_utc_z


class InventoryRecord(db.Model):
    """
    Stock position for one (product, location).

    INVARIANT: 0 <= reserved_stock <= current_stock.
    available_stock is derived (current - reserved) and never stored.

    Mutated ONLY by services.inventory_service through conditional UPDATE
    statements, so check-and-increment is a single atomic statement.
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", name="uq_inventory_product_location"),
        db.CheckConstraint("reserved_stock >= 0", name="ck_inventory_reserved_nonneg"),
        db.CheckConstraint("current_stock >= 0", name="ck_inventory_current_nonneg"),
        db.Index("ix_inventory_location", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("franchise_locations.id"), nullable=False)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    reserved_stock = db.Column(db.Integer, nullable=False, default=0)

    reorder_level = db.Column(db.Integer, nullable=False, default=10)
    max_stock = db.Column(db.Integer, nullable=False, default=1000)

    last_updated = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")

    @property
    def available_stock(self) -> int:
        return self.current_stock - self.reserved_stock

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord product_id={self.product_id} location_id={self.location_id} "
            f"current={self.current_stock} reserved={self.reserved_stock}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "current_stock": self.current_stock,
            "reserved_stock": self.reserved_stock,
            "available_stock": self.available_stock,
            "reorder_level": self.reorder_level,
            "max_stock": self.max_stock,
            "last_updated": to_utc_z(self.last_updated),
        }


class InventoryReservation(db.Model):
    """
    Hold on stock for one order line.

    LIFECYCLE: active -> fulfilled | cancelled | expired (one-way).
    """
    __tablename__ = "inventory_reservations"
    __table_args__ = (
        db.Index("ix_reservations_order_status", "order_id", "status"),
        db.Index("ix_reservations_status_expires", "status", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("franchise_locations.id"), nullable=False)

    quantity_reserved = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="active")

    reserved_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity_reserved": self.quantity_reserved,
            "status": self.status,
            "reserved_at": to_utc_z(self.reserved_at),
            "expires_at": to_utc_z(self.expires_at),
            "closed_at": to_utc_z(self.closed_at),
        }


class InventoryTransaction(db.Model):
    """
    Append-only audit entry for every stock-affecting event.

    transaction_type: purchase | sale | adjustment | transfer | reservation | release
    quantity_change sign: negative encumbers/removes stock, positive frees/adds it.
    Rows are never updated after insert.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_invtx_location_product_created", "location_id", "product_id", "created_at"),
        db.Index("ix_invtx_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("franchise_locations.id"), nullable=False)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(16), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)

    unit_cost_cents = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    # Who caused it: approver | scheduled_job | api_caller
    actor_type = db.Column(db.String(16), nullable=False)
    actor_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "transaction_type": self.transaction_type,
            "quantity_change": self.quantity_change,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "unit_cost_cents": self.unit_cost_cents,
            "notes": self.notes,
            "actor_type": self.actor_type,
            "actor_id": self.actor_id,
            "created_at": to_utc_z(self.created_at),
        }
