# backend/franchise_ops/routes/notifications.py
"""
Notification inbox for the calling user.
"""
from flask import Blueprint, request, jsonify, g

from franchise_ops.decorators import require_actor
from franchise_ops.errors import FranchiseOpsError
from franchise_ops.routes import error_response
from franchise_ops.services import notification_service


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.route("", methods=["GET"])
@require_actor
def list_notifications():
    """
    Query params:
        unread: "true" to return unread notifications only
        limit: int (default 50, max 200)
    """
    unread_only = request.args.get("unread", "").lower() == "true"
    limit = min(request.args.get("limit", 50, type=int), 200)
    items = notification_service.list_for_user(g.current_user, unread_only=unread_only, limit=limit)
    return jsonify({"notifications": [n.to_dict() for n in items]}), 200


@notifications_bp.route("/<int:notification_id>/read", methods=["POST"])
@require_actor
def mark_read(notification_id: int):
    try:
        notification = notification_service.mark_read(notification_id, g.current_user)
        return jsonify(notification.to_dict()), 200
    except FranchiseOpsError as e:
        return error_response(e)
