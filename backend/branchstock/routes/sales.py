# Overview: Flask API routes for sales; parses input and returns JSON responses.

# backend/branchstock/routes/sales.py
"""Sales API routes. A sale is all or nothing: no partial fulfilment."""

from flask import Blueprint, g, jsonify, request

from ..errors import StockError
from ..services import sales_service
from ..time_utils import parse_iso_datetime
from ..validation import PayloadPolicy, validate_payload
from ..decorators import require_actor
from .errors import error_response, internal_error


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

SALE_POLICY = PayloadPolicy(
    integer_fields=frozenset({"variant_id", "branch_id", "quantity", "unit_price_cents"}),
    string_fields=frozenset({"note"}),
    required=frozenset({"variant_id", "branch_id", "quantity", "unit_price_cents"}),
    max_lengths={"note": 255},
)


@sales_bp.post("")
@require_actor
def record_sale_route():
    """
    Record a sale.

    409 with current/requested quantities when the branch cannot cover it.
    """
    try:
        data = validate_payload(payload=request.get_json(silent=True), policy=SALE_POLICY)
        result = sales_service.record_sale(
            variant_id=data["variant_id"],
            branch_id=data["branch_id"],
            quantity=data["quantity"],
            unit_price_cents=data["unit_price_cents"],
            actor_id=g.actor_id,
            note=data.get("note"),
        )
        return jsonify({"result": result.to_dict()}), 201
    except StockError as e:
        return error_response(e)
    except Exception:
        return internal_error("record sale")


@sales_bp.get("/history")
def sales_history_route():
    branch_id = request.args.get("branch_id", type=int)
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))

    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return jsonify({"error": "start and end must be ISO-8601 datetimes"}), 400

    try:
        entries = sales_service.sales_history(branch_id=branch_id, start=start, end=end, limit=limit)
        payload = {"items": [e.to_dict() for e in entries]}
        if start is not None and end is not None:
            payload["totals"] = sales_service.sales_totals(start, end, branch_id=branch_id)
        return jsonify(payload), 200
    except StockError as e:
        return error_response(e)
    except Exception:
        return internal_error("load sales history")


@sales_bp.get("/periods")
def sales_periods_route():
    """Sales totals per day, week or month. start and end are required."""
    branch_id = request.args.get("branch_id", type=int)
    group_by = request.args.get("group_by", default="day")

    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return jsonify({"error": "start and end must be ISO-8601 datetimes"}), 400
    if start is None or end is None:
        return jsonify({"error": "start and end are required"}), 400

    try:
        items = sales_service.sales_totals_by_period(start, end, branch_id=branch_id, group_by=group_by)
        return jsonify({"group_by": group_by, "items": items}), 200
    except StockError as e:
        return error_response(e)
    except Exception:
        return internal_error("load sales by period")
