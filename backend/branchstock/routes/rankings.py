# Overview: Flask API routes for ranking aggregates (read only).

from flask import Blueprint, request, jsonify

from ..services import ranking_service
from ..time_utils import to_utc_z
from .errors import internal_error


rankings_bp = Blueprint("rankings", __name__, url_prefix="/api/rankings")


def _limit() -> int:
    limit = request.args.get("limit", default=10, type=int)
    return max(1, min(limit, 100))


@rankings_bp.get("/most-sold")
def most_sold_route():
    try:
        items = ranking_service.most_sold(_limit(), branch_id=request.args.get("branch_id", type=int))
        return jsonify({"items": items, "refreshed_at": to_utc_z(ranking_service.last_refreshed_at())}), 200
    except Exception:
        return internal_error("load most sold ranking")


@rankings_bp.get("/least-sold")
def least_sold_route():
    in_stock_only = request.args.get("in_stock_only", "true").lower() != "false"
    try:
        items = ranking_service.least_sold(
            _limit(),
            branch_id=request.args.get("branch_id", type=int),
            in_stock_only=in_stock_only,
        )
        return jsonify({"items": items, "refreshed_at": to_utc_z(ranking_service.last_refreshed_at())}), 200
    except Exception:
        return internal_error("load least sold ranking")


@rankings_bp.get("/branches")
def branch_summaries_route():
    try:
        return jsonify({
            "items": ranking_service.branch_summaries(),
            "refreshed_at": to_utc_z(ranking_service.last_refreshed_at()),
        }), 200
    except Exception:
        return internal_error("load branch summaries")
