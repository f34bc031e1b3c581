# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


ACTOR_HEADER = "X-Staff-Id"


def with_actor(f):
    """
    Resolve the acting staff member for this request.

    Authentication happens upstream; the gateway forwards the staff id in
    the X-Staff-Id header. Sets g.actor_id (None when absent). Routes pass
    g.actor_id to services explicitly as created_by / completed_by.

    Returns 400 if the header is present but not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(ACTOR_HEADER)
        if raw is None or not raw.strip():
            g.actor_id = None
            return f(*args, **kwargs)

        raw = raw.strip()
        if not raw.isdigit() or int(raw) <= 0:
            return jsonify({"error": f"{ACTOR_HEADER} must be a positive integer"}), 400

        g.actor_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function
