from __future__ import annotations

from ..extensions import db
from franchise_ops.time_utils import to_utc_z


class Invoice(db.Model):
    """
    Invoice issued for an order.

    LIFECYCLE: ISSUED (order reached processing) -> FINAL (order delivered).
    Amounts are a snapshot of the order totals at issue time.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    invoice_number = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="ISSUED")

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    shipping_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    issued_at = db.Column(db.DateTime(timezone=True), nullable=False)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "shipping_cents": self.shipping_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "issued_at": to_utc_z(self.issued_at),
            "finalized_at": to_utc_z(self.finalized_at),
        }
