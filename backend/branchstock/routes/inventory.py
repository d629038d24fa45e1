# backend/branchstock/routes/inventory.py
"""
Stock position routes.

Every mutating route requires a verified actor (X-Actor-Id) so the ledger
entry it writes is attributable.

- Adjustments are signed: positive -> STOCK_IN, negative -> STOCK_OUT.
- Setting an absolute level is a convenience on top of the signed adjustment.
- Write-offs always decrease stock.
Failures: 404 unknown position, 409 insufficient stock / conflict,
503 transient (safe to retry).
"""
from flask import Blueprint, g, jsonify, request

from ..errors import StockError
from ..models import ReasonCode
from ..services import stock_service
from ..validation import PayloadPolicy, validate_payload
from ..decorators import require_actor
from .errors import error_response, internal_error


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

OPEN_ACCOUNT_POLICY = PayloadPolicy(
    integer_fields=frozenset({"variant_id", "branch_id", "initial_quantity"}),
    string_fields=frozenset({"note"}),
    required=frozenset({"variant_id", "branch_id"}),
    max_lengths={"note": 255},
)

ADJUST_POLICY = PayloadPolicy(
    integer_fields=frozenset({"variant_id", "branch_id", "signed_delta"}),
    string_fields=frozenset({"note"}),
    required=frozenset({"variant_id", "branch_id", "signed_delta"}),
    max_lengths={"note": 255},
)

SET_LEVEL_POLICY = PayloadPolicy(
    integer_fields=frozenset({"variant_id", "branch_id", "target_quantity"}),
    string_fields=frozenset({"note"}),
    required=frozenset({"variant_id", "branch_id", "target_quantity"}),
    max_lengths={"note": 255},
)

WRITE_OFF_POLICY = PayloadPolicy(
    integer_fields=frozenset({"variant_id", "branch_id", "quantity"}),
    string_fields=frozenset({"note"}),
    required=frozenset({"variant_id", "branch_id", "quantity"}),
    max_lengths={"note": 255},
)


@inventory_bp.post("/accounts")
@require_actor
def open_account_route():
    """Start stocking a variant at a branch (optionally with an opening balance)."""
    try:
        data = validate_payload(payload=request.get_json(silent=True), policy=OPEN_ACCOUNT_POLICY)
        result = stock_service.open_stock_account(
            variant_id=data["variant_id"],
            branch_id=data["branch_id"],
            initial_quantity=data.get("initial_quantity") or 0,
            actor_id=g.actor_id,
            note=data.get("note"),
        )
        return jsonify({"result": result.to_dict()}), 201
    except StockError as e:
        return error_response(e)
    except Exception:
        return internal_error("open stock account")


@inventory_bp.get("/accounts/<int:variant_id>/<int:branch_id>")
def get_account_route(variant_id: int, branch_id: int):
    try:
        account = stock_service.get_stock_level(variant_id, branch_id)
        return jsonify({"account": account.to_dict()}), 200
    except StockError as e:
        return error_response(e)
    except Exception:
        return internal_error("load stock account")


@inventory_bp.get("/branches/<int:branch_id>")
def list_branch_accounts_route(branch_id: int):
    """Stock at a branch, valued at list price."""
    try:
        return jsonify(stock_service.branch_inventory(branch_id)), 200
    except Exception:
        return internal_error("list branch stock")


@inventory_bp.post("/adjustments")
@require_actor
def adjust_route():
    try:
        data = validate_payload(payload=request.get_json(silent=True), policy=ADJUST_POLICY)
        result = stock_service.adjust_stock(
            variant_id=data["variant_id"],
            branch_id=data["branch_id"],
            signed_delta=data["signed_delta"],
            actor_id=g.actor_id,
            note=data.get("note"),
        )
        return jsonify({"result": result.to_dict()}), 200
    except StockError as e:
        return error_response(e)
    except Exception:
        return internal_error("adjust stock")


@inventory_bp.post("/levels")
@require_actor
def set_level_route():
    try:
        data = validate_payload(payload=request.get_json(silent=True), policy=SET_LEVEL_POLICY)
        result = stock_service.set_stock_level(
            variant_id=data["variant_id"],
            branch_id=data["branch_id"],
            target_quantity=data["target_quantity"],
            actor_id=g.actor_id,
            note=data.get("note"),
        )
        return jsonify({"result": result.to_dict()}), 200
    except StockError as e:
        return error_response(e)
    except Exception:
        return internal_error("set stock level")


@inventory_bp.post("/write-offs")
@require_actor
def write_off_route():
    try:
        data = validate_payload(payload=request.get_json(silent=True), policy=WRITE_OFF_POLICY)
        result = stock_service.record_write_off(
            variant_id=data["variant_id"],
            branch_id=data["branch_id"],
            quantity=data["quantity"],
            actor_id=g.actor_id,
            note=data.get("note"),
        )
        return jsonify({"result": result.to_dict()}), 201
    except StockError as e:
        return error_response(e)
    except Exception:
        return internal_error("record write-off")


@inventory_bp.get("/reasons")
def list_reasons_route():
    items = [
        {"code": reason.value, "label": reason.label, "direction": reason.direction}
        for reason in ReasonCode
    ]
    return jsonify({"items": items}), 200
