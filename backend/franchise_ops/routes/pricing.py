# backend/franchise_ops/routes/pricing.py
"""
Pricing API routes: previews, margins and franchise price lists.
"""
from flask import Blueprint, request, jsonify

from franchise_ops.decorators import require_actor
from franchise_ops.errors import FranchiseOpsError, ValidationError
from franchise_ops.routes import error_response, unexpected_response
from franchise_ops.services import get_order_workflow
from franchise_ops.services.concurrency import commit_with_retry
from franchise_ops.services.pricing_service import get_pricing_history, upsert_franchise_pricing
from franchise_ops.time_utils import parse_iso_datetime


pricing_bp = Blueprint("pricing", __name__, url_prefix="/api/pricing")


def _location_and_items(data: dict):
    if data.get("location_id") is None:
        raise ValidationError("location_id is required")
    try:
        return int(data["location_id"]), data.get("items")
    except (TypeError, ValueError):
        raise ValidationError("location_id must be an integer")


@pricing_bp.route("/preview", methods=["POST"])
@require_actor
def preview():
    """
    Price a prospective order without writing anything.

    Request body:
    {
        "location_id": int,
        "items": [{"product_id": int, "quantity": int}, ...]
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        location_id, items = _location_and_items(data)
        result = get_order_workflow().pricing.preview(items, location_id)
        return jsonify(result.to_dict()), 200
    except FranchiseOpsError as e:
        return error_response(e)


@pricing_bp.route("/margins", methods=["POST"])
@require_actor
def margins():
    data = request.get_json(silent=True) or {}
    try:
        location_id, items = _location_and_items(data)
        return jsonify(get_order_workflow().pricing.calculate_profit_margins(items, location_id)), 200
    except FranchiseOpsError as e:
        return error_response(e)


@pricing_bp.route("/franchise-pricing", methods=["POST"])
@require_actor
def set_franchise_pricing():
    """
    Create or replace a price-list entry.

    Request body:
    {
        "franchise_id": int,
        "product_id": int,
        "effective_from": ISO-8601 datetime,
        "effective_until": ISO-8601 datetime (optional),
        "base_price_cents": int (optional, null keeps the catalog price),
        "franchise_discount_bps": int (optional),
        "volume_tiers": [{"min_quantity": int, "discount_bps": int}, ...] (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        effective_from = parse_iso_datetime(data.get("effective_from"))
        if effective_from is None:
            raise ValidationError("effective_from is required")
        entry = upsert_franchise_pricing(
            franchise_id=int(data["franchise_id"]),
            product_id=int(data["product_id"]),
            effective_from=effective_from,
            effective_until=parse_iso_datetime(data.get("effective_until")),
            base_price_cents=data.get("base_price_cents"),
            franchise_discount_bps=int(data.get("franchise_discount_bps") or 0),
            volume_tiers=data.get("volume_tiers"),
        )
        commit_with_retry()
        return jsonify(entry.to_dict()), 201
    except KeyError as e:
        return error_response(ValidationError(f"Missing required field: {e}"))
    except (TypeError, ValueError) as e:
        return error_response(ValidationError(str(e)))
    except FranchiseOpsError as e:
        return error_response(e)
    except Exception:
        return unexpected_response("update franchise pricing")


@pricing_bp.route("/history", methods=["GET"])
@require_actor
def history():
    """
    Query params:
        franchise_id: int (required)
        product_id: int (optional)
    """
    franchise_id = request.args.get("franchise_id", type=int)
    if franchise_id is None:
        return error_response(ValidationError("franchise_id is required"))
    product_id = request.args.get("product_id", type=int)

    entries = get_pricing_history(franchise_id, product_id)
    return jsonify({"entries": [e.to_dict() for e in entries]}), 200
