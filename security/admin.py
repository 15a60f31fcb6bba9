import hmac
from functools import wraps

from flask import current_app, jsonify, request

ADMIN_TOKEN_HEADER = "X-Admin-Token"


def require_admin_token(fn):
    """
    Usage: @require_admin_token
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        expected = current_app.config.get("SECURITY_ADMIN_TOKEN")
        if not expected:
            return jsonify(error="Admin endpoints are disabled"), 403

        supplied = request.headers.get(ADMIN_TOKEN_HEADER)
        if not supplied:
            return jsonify(error="Authentication required"), 401
        if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
            return jsonify(error="Forbidden"), 403

        return fn(*args, **kwargs)
    return wrapper
