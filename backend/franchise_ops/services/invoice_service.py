# Overview: Invoice collaborator; issues an invoice when an order is approved and finalizes it on delivery.

from __future__ import annotations

import logging

from sqlalchemy import update

from ..extensions import db
from ..errors import NotFoundError
from ..models import Invoice, Order
from .concurrency import execute_conditional
from .document_service import next_invoice_number
from franchise_ops.time_utils import utcnow

logger = logging.getLogger(__name__)


STATUS_ISSUED = "ISSUED"
STATUS_FINAL = "FINAL"


class InvoiceService:
    def __init__(self, *, clock=utcnow):
        self.clock = clock

    def generate_invoice(self, order: Order) -> int:
        """Issue an invoice snapshotting the order totals. Idempotent per order."""
        existing = db.session.query(Invoice).filter_by(order_id=order.id).first()
        if existing is not None:
            return existing.id

        invoice = Invoice(
            order_id=order.id,
            invoice_number=next_invoice_number(location_id=order.location_id),
            status=STATUS_ISSUED,
            subtotal_cents=order.subtotal_cents,
            tax_cents=order.tax_cents,
            shipping_cents=order.shipping_cents,
            discount_cents=order.discount_cents,
            total_cents=order.grand_total_cents,
            currency=order.currency,
            issued_at=self.clock(),
        )
        db.session.add(invoice)
        db.session.flush()

        order.invoice_id = invoice.id
        db.session.commit()
        logger.info("Issued invoice %s for order %s", invoice.invoice_number, order.order_number)
        return invoice.id

    def finalize_invoice(self, order_id: int) -> None:
        invoice = db.session.query(Invoice).filter_by(order_id=order_id).first()
        if invoice is None:
            order = db.session.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            self.generate_invoice(order)

        finalized = execute_conditional(
            update(Invoice)
            .where(Invoice.order_id == order_id, Invoice.status == STATUS_ISSUED)
            .values(status=STATUS_FINAL, finalized_at=self.clock())
        )
        db.session.commit()
        if finalized:
            logger.info("Finalized invoice for order %s", order_id)
