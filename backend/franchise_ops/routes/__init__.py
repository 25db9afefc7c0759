from flask import current_app, jsonify

from franchise_ops.extensions import db
from franchise_ops.errors import FranchiseOpsError


def error_response(e: FranchiseOpsError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


def unexpected_response(action: str):
    db.session.rollback()
    current_app.logger.exception("Unexpected error while trying to %s", action)
    return jsonify({"error": "internal_error", "message": f"Unexpected error while trying to {action}"}), 500
