# Overview: Request decorators for the sync API.

import hmac
from functools import wraps

from flask import current_app, jsonify, request

from .errors import SyncError

SECRET_HEADER = "X-ERPSync-Secret"


def require_sync_secret(f):
    """
    Require the shared secret on sync-triggering routes.

    The secret is read from the X-ERPSync-Secret header (or `secret` query
    parameter for webhook callers that cannot set headers). An empty
    ERPSYNC_API_SECRET disables the check for local setups.

    Returns 401 when the secret is missing or wrong.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get("ERPSYNC_API_SECRET") or ""
        if expected:
            supplied = request.headers.get(SECRET_HEADER) or request.args.get("secret") or ""
            if not hmac.compare_digest(supplied.encode(), expected.encode()):
                current_app.logger.warning("Rejected sync request from %s: bad secret", request.remote_addr)
                return jsonify({"error": "Invalid or missing sync secret"}), 401
        return f(*args, **kwargs)

    return decorated_function


def sync_errors_as_json(f):
    """Map SyncError subclasses to JSON bodies carrying the `retryable` flag."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except SyncError as e:
            current_app.logger.warning("%s on %s: %s", type(e).__name__, request.path, e)
            return jsonify(e.to_dict()), e.status_code

    return decorated_function
