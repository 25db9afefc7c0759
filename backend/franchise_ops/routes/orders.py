# backend/franchise_ops/routes/orders.py
"""
Order lifecycle API routes.

Every error is a FranchiseOpsError carrying its own HTTP status:
400 validation, 403 authorization, 404 not found, 409 stock or state conflict.
"""
from flask import Blueprint, request, jsonify, g

from franchise_ops.decorators import require_actor
from franchise_ops.errors import FranchiseOpsError
from franchise_ops.routes import error_response, unexpected_response
from franchise_ops.services import get_order_workflow


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.route("", methods=["POST"])
@require_actor
def create_order():
    """
    Create an order: price it, reserve stock, route it for approval.

    Request body:
    {
        "location_id": int,
        "items": [{"product_id": int, "quantity": int}, ...],
        "priority": "low" | "medium" | "high" | "urgent" (optional),
        "requested_delivery_date": "YYYY-MM-DD" (optional),
        "notes": str (optional)
    }

    Returns:
        201: Order created (status approved/processing or pending_approval)
        400: Invalid request
        404: Location or product not found
        409: Insufficient stock (shortages listed)
    """
    data = request.get_json(silent=True) or {}
    data["created_by_user_id"] = g.current_user.id

    try:
        order = get_order_workflow().create_order(data, g.actor)
        return jsonify(order.to_dict()), 201
    except FranchiseOpsError as e:
        return error_response(e)
    except Exception:
        return unexpected_response("create order")


@orders_bp.route("", methods=["GET"])
@require_actor
def list_orders():
    """
    List orders.

    Query params:
        location_id: int (optional)
        status: str (optional)
        limit: int (default 100, max 500)
        offset: int (default 0)
    """
    location_id = request.args.get("location_id", type=int)
    status = request.args.get("status")
    limit = min(request.args.get("limit", 100, type=int), 500)
    offset = request.args.get("offset", 0, type=int)

    orders = get_order_workflow().list_orders(
        location_id=location_id, status=status, limit=limit, offset=offset
    )
    return jsonify({"orders": [o.to_dict(include_items=False) for o in orders], "count": len(orders)}), 200


@orders_bp.route("/<int:order_id>", methods=["GET"])
@require_actor
def get_order(order_id: int):
    try:
        workflow = get_order_workflow()
        order = workflow.get_order(order_id)
        data = order.to_dict()
        data["events"] = [e.to_dict() for e in workflow.list_events(order_id)]
        return jsonify(data), 200
    except FranchiseOpsError as e:
        return error_response(e)


@orders_bp.route("/<int:order_id>/approvals", methods=["POST"])
@require_actor
def process_approval(order_id: int):
    """
    Approve or reject the order's current tier as the calling user.

    Request body:
    {
        "action": "approved" | "rejected",
        "comments": str (optional)
    }

    Returns:
        200: Decision recorded
        400: Invalid action
        403: Caller's role cannot act on the current tier
        404: Order not found
        409: Order is not awaiting approval, or the tier was already decided
    """
    data = request.get_json(silent=True) or {}

    try:
        order = get_order_workflow().process_approval(
            order_id,
            g.current_user.id,
            data.get("action"),
            data.get("comments"),
        )
        return jsonify(order.to_dict()), 200
    except FranchiseOpsError as e:
        return error_response(e)
    except Exception:
        return unexpected_response("process approval")


@orders_bp.route("/<int:order_id>/ship", methods=["POST"])
@require_actor
def create_shipment(order_id: int):
    """
    Mark a processing order as shipped.

    Request body:
    {
        "carrier": str,
        "tracking_number": str (optional),
        "shipping_address": object (optional),
        "estimated_delivery": ISO-8601 datetime (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        order = get_order_workflow().create_shipment(order_id, data, g.actor)
        return jsonify(order.to_dict()), 200
    except FranchiseOpsError as e:
        return error_response(e)
    except Exception:
        return unexpected_response("ship order")


@orders_bp.route("/<int:order_id>/deliver", methods=["POST"])
@require_actor
def confirm_delivery(order_id: int):
    """
    Confirm delivery; reserved stock becomes a physical stock reduction.

    Request body:
    {
        "proof": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        order = get_order_workflow().confirm_delivery(order_id, data.get("proof"), g.actor)
        return jsonify(order.to_dict()), 200
    except FranchiseOpsError as e:
        return error_response(e)
    except Exception:
        return unexpected_response("confirm delivery")


@orders_bp.route("/<int:order_id>/cancel", methods=["POST"])
@require_actor
def cancel_order(order_id: int):
    """
    Cancel a non-terminal order and release its reservations.

    Request body:
    {
        "reason": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        order = get_order_workflow().cancel_order(order_id, data.get("reason"), g.actor)
        return jsonify(order.to_dict()), 200
    except FranchiseOpsError as e:
        return error_response(e)
    except Exception:
        return unexpected_response("cancel order")
