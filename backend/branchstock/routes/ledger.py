# Overview: Flask API routes for ledger reads; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..errors import StockError
from ..services import ledger_store
from ..time_utils import parse_iso_datetime
from .errors import error_response, internal_error

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start/end filtering is inclusive: start <= recorded_at <= end.
- Results are ordered oldest first (recorded_at, then transaction id).
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("")
def list_ledger_entries_route():
    variant_id = request.args.get("variant_id", type=int)
    branch_id = request.args.get("branch_id", type=int)
    reason = request.args.get("reason") or None

    limit = request.args.get("limit", default=200, type=int)
    limit = max(1, min(limit, 1000))

    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return jsonify({"error": "start and end must be ISO-8601 datetimes"}), 400

    try:
        if start is None and end is None and variant_id is not None:
            entries = ledger_store.query_by_variant(
                variant_id, branch_id=branch_id, reason=reason, limit=limit
            )
        elif start is None and end is None and branch_id is not None:
            entries = ledger_store.query_by_branch(branch_id, reason=reason, limit=limit)
        else:
            entries = ledger_store.query_by_date_range(
                start,
                end,
                branch_id=branch_id,
                variant_id=variant_id,
                reason=reason,
                limit=limit,
            )
        return jsonify({"items": [e.to_dict() for e in entries], "limit": limit}), 200
    except StockError as e:
        return error_response(e)
    except Exception:
        return internal_error("list ledger entries")
