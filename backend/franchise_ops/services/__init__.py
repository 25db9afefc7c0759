from __future__ import annotations

from datetime import timedelta

from flask import Flask, current_app


def build_order_workflow(app: Flask):
    """Assemble the workflow and its collaborators from app config."""
    from .approval_service import ApprovalPolicy
    from .inventory_service import InventoryLedger
    from .invoice_service import InvoiceService
    from .notification_service import build_notifier
    from .order_service import OrderWorkflow
    from .pricing_service import PricingEngine

    notifier = build_notifier(app.config)
    return OrderWorkflow(
        pricing=PricingEngine(default_currency=app.config.get("DEFAULT_CURRENCY", "PHP")),
        inventory=InventoryLedger(
            notifier=notifier,
            reservation_ttl=timedelta(hours=int(app.config.get("RESERVATION_TTL_HOURS", 24))),
        ),
        approvals=ApprovalPolicy(),
        notifier=notifier,
        invoices=InvoiceService(),
    )


def init_services(app: Flask) -> None:
    app.extensions["order_workflow"] = build_order_workflow(app)


def get_order_workflow():
    return current_app.extensions["order_workflow"]
