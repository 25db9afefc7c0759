# backend/franchise_ops/routes/inventory.py
"""
Inventory API routes: stock levels, history, transfers, adjustments, receipts.
"""
from flask import Blueprint, request, jsonify, g

from franchise_ops.decorators import require_actor
from franchise_ops.errors import FranchiseOpsError, ValidationError
from franchise_ops.routes import error_response, unexpected_response
from franchise_ops.services import get_order_workflow


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _ledger():
    return get_order_workflow().inventory


def _int_list(raw: str | None) -> list[int] | None:
    if not raw:
        return None
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise ValidationError("product_ids must be a comma-separated list of integers")


@inventory_bp.route("/<int:location_id>", methods=["GET"])
@require_actor
def stock_levels(location_id: int):
    """
    Stock levels for a location.

    Query params:
        product_ids: comma-separated ints (optional)
        low_stock: "true" to return only records at/below reorder level
    """
    try:
        if request.args.get("low_stock", "").lower() == "true":
            records = _ledger().find_low_stock(location_id)
        else:
            records = _ledger().get_stock_levels(location_id, _int_list(request.args.get("product_ids")))
        return jsonify({"location_id": location_id, "items": [r.to_dict() for r in records]}), 200
    except FranchiseOpsError as e:
        return error_response(e)


@inventory_bp.route("/<int:location_id>/transactions", methods=["GET"])
@require_actor
def transaction_history(location_id: int):
    """
    Query params:
        product_id: int (optional)
        limit: int (default 100, max 500)
    """
    product_id = request.args.get("product_id", type=int)
    limit = min(request.args.get("limit", 100, type=int), 500)
    transactions = _ledger().get_transaction_history(location_id, product_id, limit)
    return jsonify({"location_id": location_id, "transactions": [t.to_dict() for t in transactions]}), 200


@inventory_bp.route("/transfers", methods=["POST"])
@require_actor
def transfer():
    """
    Move unreserved stock between locations.

    Request body:
    {
        "from_location_id": int,
        "to_location_id": int,
        "items": [{"product_id": int, "quantity": int}, ...],
        "notes": str (optional)
    }

    Returns:
        201: {"reference": "TRF-..."}
        400: Invalid request
        404: Location not found
        409: Insufficient available stock at the source
    """
    data = request.get_json(silent=True) or {}

    try:
        reference = _ledger().transfer(
            int(data["from_location_id"]),
            int(data["to_location_id"]),
            data.get("items"),
            notes=data.get("notes"),
            actor=g.actor,
        )
        return jsonify({"reference": reference}), 201
    except (KeyError, TypeError, ValueError) as e:
        return error_response(ValidationError(f"Invalid transfer request: {e}"))
    except FranchiseOpsError as e:
        return error_response(e)
    except Exception:
        return unexpected_response("transfer stock")


@inventory_bp.route("/adjust", methods=["POST"])
@require_actor
def adjust():
    """
    Request body:
    {
        "product_id": int,
        "location_id": int,
        "quantity_delta": int (non-zero),
        "notes": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        tx = _ledger().adjust(
            int(data["product_id"]),
            int(data["location_id"]),
            int(data["quantity_delta"]),
            notes=data.get("notes"),
            actor=g.actor,
        )
        return jsonify(tx.to_dict()), 201
    except (KeyError, TypeError, ValueError) as e:
        return error_response(ValidationError(f"Invalid adjustment request: {e}"))
    except FranchiseOpsError as e:
        return error_response(e)
    except Exception:
        return unexpected_response("adjust stock")


@inventory_bp.route("/receive", methods=["POST"])
@require_actor
def receive():
    """
    Request body:
    {
        "product_id": int,
        "location_id": int,
        "quantity": int (> 0),
        "unit_cost_cents": int (optional),
        "notes": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        tx = _ledger().receive(
            int(data["product_id"]),
            int(data["location_id"]),
            int(data["quantity"]),
            unit_cost_cents=data.get("unit_cost_cents"),
            notes=data.get("notes"),
            actor=g.actor,
        )
        return jsonify(tx.to_dict()), 201
    except (KeyError, TypeError, ValueError) as e:
        return error_response(ValidationError(f"Invalid receive request: {e}"))
    except FranchiseOpsError as e:
        return error_response(e)
    except Exception:
        return unexpected_response("receive stock")
