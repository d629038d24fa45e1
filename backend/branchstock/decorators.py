# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

ACTOR_HEADER = "X-Actor-Id"


def require_actor(f):
    """
    Require a verified actor id and expose it as g.actor_id.

    Authentication happens upstream (gateway / auth service), which sets the
    X-Actor-Id header. The id is opaque here; it only has to be a positive
    integer so every ledger entry stays attributable.

    Returns 401 when the header is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not raw.isdigit() or int(raw) <= 0:
            return jsonify({"error": "Authenticated actor required"}), 401
        g.actor_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function
