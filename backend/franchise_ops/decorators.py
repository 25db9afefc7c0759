# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User
from .services.actors import Actor


def require_actor(f):
    """
    Resolve the caller from the X-User-Id header.

    Sets the following Flask g attributes:
    - g.current_user: the active User row
    - g.actor: Actor.api_caller(user.id), recorded on audit rows

    Returns 401 if the header is missing or not an integer, 403 if the user
    does not exist or is inactive. Authentication proper happens upstream.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-User-Id", "").strip()
        if not raw:
            return jsonify({"error": "X-User-Id header required"}), 401
        try:
            user_id = int(raw)
        except ValueError:
            return jsonify({"error": "X-User-Id must be an integer"}), 401

        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return jsonify({"error": "Unknown or inactive user"}), 403

        g.current_user = user
        g.actor = Actor.api_caller(user.id)
        return f(*args, **kwargs)

    return decorated_function
