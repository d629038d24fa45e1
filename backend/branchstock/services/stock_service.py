# Overview: Stock transaction coordinator; the single path through which stock positions change.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import DBAPIError, IntegrityError

from ..errors import ConflictError, InsufficientStockError, NotFoundError, StockError, TransientError, ValidationError
from ..extensions import db, ranking_refresher
from ..models import ReasonCode, StockAccount, Variant
from ..validation import coerce_int, require_non_negative_int, require_positive_int, require_price_cents, require_quantity
from . import ledger_store, stock_account_store


"""
Stock coordinator invariants (authoritative)

Atomic unit, all steps or none:
  1. lock the (variant, branch) position (get_for_update)
  2. new_quantity = current + signed_delta
  3. reject new_quantity < 0 with InsufficientStockError (nothing written)
  4. write the new quantity
  5. append exactly one ledger entry (magnitude + reason code)
  6. commit

- Every failure path rolls the session back before the error propagates,
  which also releases the position lock.
- NotFound / InsufficientStock / Conflict / Validation are terminal.
- Database-level failures (lock timeout, deadlock, connection loss,
  serialization abort) surface as TransientError. Nothing is retried here:
  the caller decides whether to retry.
- Ranking refresh runs after commit and never fails the change.
"""


@dataclass(frozen=True)
class StockChangeResult:
    variant_id: int
    branch_id: int
    reason: ReasonCode | None
    previous_quantity: int
    new_quantity: int
    transaction_id: int | None

    def to_dict(self) -> dict:
        return {
            "variant_id": self.variant_id,
            "branch_id": self.branch_id,
            "reason_code": self.reason.value if self.reason else None,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "transaction_id": self.transaction_id,
        }


def _validate_key(variant_id, branch_id) -> tuple[int, int]:
    return require_positive_int("variant_id", variant_id), require_positive_int("branch_id", branch_id)


def _check_direction(reason: ReasonCode, signed_delta: int) -> None:
    if signed_delta == 0:
        raise ValidationError("signed_delta cannot be zero")
    if (signed_delta > 0) != (reason.direction > 0):
        direction = "positive" if reason.direction > 0 else "negative"
        raise ValidationError(f"{reason.label} requires a {direction} signed_delta")


def _apply_locked(
    account: StockAccount,
    *,
    reason: ReasonCode,
    signed_delta: int,
    actor_id: int,
    unit_price_cents: int | None,
    note: str | None,
) -> StockChangeResult:
    """Steps 2-5 against an account the current transaction already owns."""
    current = account.quantity
    new_quantity = current + signed_delta
    if new_quantity < 0:
        raise InsufficientStockError(current, abs(signed_delta))

    stock_account_store.set_quantity(account, new_quantity)
    entry = ledger_store.append(
        variant_id=account.variant_id,
        branch_id=account.branch_id,
        reason=reason,
        actor_id=actor_id,
        quantity=abs(signed_delta),
        unit_price_cents=unit_price_cents,
        note=note,
    )
    return StockChangeResult(
        variant_id=account.variant_id,
        branch_id=account.branch_id,
        reason=reason,
        previous_quantity=current,
        new_quantity=new_quantity,
        transaction_id=entry.id,
    )


def _run_atomic(op) -> StockChangeResult:
    """
    Execute op inside one transaction: commit on success, roll back on any
    failure (including interruption) and translate database errors.
    """
    try:
        result = op()
        db.session.commit()
    except InsufficientStockError as exc:
        db.session.rollback()
        current_app.logger.warning("stock.rejected %s", exc.message)
        raise
    except StockError as exc:
        db.session.rollback()
        if exc.retryable:
            current_app.logger.warning("stock.transient_failure %s", exc.message)
        raise
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("Stock change violates a database constraint") from exc
    except DBAPIError as exc:
        db.session.rollback()
        current_app.logger.warning("stock.transient_failure %s", exc.__class__.__name__)
        raise TransientError("Stock change aborted by the database; safe to retry") from exc
    except BaseException:
        db.session.rollback()
        raise

    if result.transaction_id is not None:
        current_app.logger.info(
            "stock.change reason=%s variant=%s branch=%s delta=%+d quantity=%s->%s transaction=%s",
            result.reason.value,
            result.variant_id,
            result.branch_id,
            result.new_quantity - result.previous_quantity,
            result.previous_quantity,
            result.new_quantity,
            result.transaction_id,
        )
        _notify_rankings()
    return result


def _notify_rankings() -> None:
    # Best effort: the change is already committed
    try:
        ranking_refresher.trigger()
    except Exception:
        current_app.logger.exception("Failed to schedule ranking refresh")


def apply_stock_change(
    *,
    variant_id: int,
    branch_id: int,
    reason,
    signed_delta: int,
    actor_id: int,
    unit_price_cents: int | None = None,
    note: str | None = None,
) -> StockChangeResult:
    """
    Apply one stock-affecting event atomically and return the new balance
    together with the ledger transaction id.

    signed_delta is negative for sales, write-offs and stock-out adjustments,
    positive for stock-in adjustments. unit_price_cents is kept for sales only.
    """
    variant_id, branch_id = _validate_key(variant_id, branch_id)
    reason = ReasonCode.parse(reason)
    signed_delta = coerce_int("signed_delta", signed_delta)
    _check_direction(reason, signed_delta)
    require_quantity("quantity", abs(signed_delta))
    actor_id = require_positive_int("actor_id", actor_id)
    if reason is ReasonCode.SALE:
        unit_price_cents = require_price_cents("unit_price_cents", unit_price_cents)
    else:
        unit_price_cents = None

    def _op():
        account = stock_account_store.get_for_update(variant_id, branch_id)
        return _apply_locked(
            account,
            reason=reason,
            signed_delta=signed_delta,
            actor_id=actor_id,
            unit_price_cents=unit_price_cents,
            note=note,
        )

    return _run_atomic(_op)


def record_write_off(
    *, variant_id: int, branch_id: int, quantity: int, actor_id: int, note: str | None = None
) -> StockChangeResult:
    """Remove damaged, lost or expired units from a branch."""
    quantity = require_quantity("quantity", quantity)
    return apply_stock_change(
        variant_id=variant_id,
        branch_id=branch_id,
        reason=ReasonCode.WRITE_OFF,
        signed_delta=-quantity,
        actor_id=actor_id,
        note=note,
    )


def adjust_stock(
    *, variant_id: int, branch_id: int, signed_delta: int, actor_id: int, note: str | None = None
) -> StockChangeResult:
    """Manual correction by a signed amount: positive is STOCK_IN, negative is STOCK_OUT."""
    signed_delta = coerce_int("signed_delta", signed_delta)
    if signed_delta == 0:
        raise ValidationError("signed_delta cannot be zero")
    return apply_stock_change(
        variant_id=variant_id,
        branch_id=branch_id,
        reason=ReasonCode.STOCK_IN if signed_delta > 0 else ReasonCode.STOCK_OUT,
        signed_delta=signed_delta,
        actor_id=actor_id,
        note=note,
    )


def set_stock_level(
    *, variant_id: int, branch_id: int, target_quantity: int, actor_id: int, note: str | None = None
) -> StockChangeResult:
    """
    Bring a position to an absolute quantity (e.g. after a physical count).

    Derived from the signed-delta primitive: the delta is computed under the
    position lock and recorded as STOCK_IN / STOCK_OUT. A target equal to the
    current quantity writes nothing and returns transaction_id=None.
    """
    variant_id, branch_id = _validate_key(variant_id, branch_id)
    target_quantity = require_non_negative_int("target_quantity", target_quantity)
    actor_id = require_positive_int("actor_id", actor_id)

    def _op():
        account = stock_account_store.get_for_update(variant_id, branch_id)
        delta = target_quantity - account.quantity
        if delta == 0:
            return StockChangeResult(
                variant_id=variant_id,
                branch_id=branch_id,
                reason=None,
                previous_quantity=account.quantity,
                new_quantity=account.quantity,
                transaction_id=None,
            )
        require_quantity("quantity", abs(delta))
        return _apply_locked(
            account,
            reason=ReasonCode.STOCK_IN if delta > 0 else ReasonCode.STOCK_OUT,
            signed_delta=delta,
            actor_id=actor_id,
            unit_price_cents=None,
            note=note,
        )

    return _run_atomic(_op)


def open_stock_account(
    *, variant_id: int, branch_id: int, initial_quantity: int = 0, actor_id: int, note: str | None = None
) -> StockChangeResult:
    """
    Start stocking a variant at a branch.

    A non-zero opening balance is recorded as a STOCK_IN entry in the same
    transaction, so the ledger always reproduces the balance.
    """
    variant_id, branch_id = _validate_key(variant_id, branch_id)
    initial_quantity = require_non_negative_int("initial_quantity", initial_quantity)
    actor_id = require_positive_int("actor_id", actor_id)
    if initial_quantity:
        require_quantity("initial_quantity", initial_quantity)

    def _op():
        stock_account_store.create(variant_id, branch_id, 0)
        account = stock_account_store.get_for_update(variant_id, branch_id)
        if not initial_quantity:
            return StockChangeResult(
                variant_id=variant_id,
                branch_id=branch_id,
                reason=None,
                previous_quantity=0,
                new_quantity=0,
                transaction_id=None,
            )
        return _apply_locked(
            account,
            reason=ReasonCode.STOCK_IN,
            signed_delta=initial_quantity,
            actor_id=actor_id,
            unit_price_cents=None,
            note=note or "Opening balance",
        )

    return _run_atomic(_op)


def close_stock_account(*, variant_id: int, branch_id: int) -> None:
    """Delete an empty position that never had ledger activity."""
    variant_id, branch_id = _validate_key(variant_id, branch_id)

    def _op():
        stock_account_store.delete(variant_id, branch_id)
        return StockChangeResult(
            variant_id=variant_id,
            branch_id=branch_id,
            reason=None,
            previous_quantity=0,
            new_quantity=0,
            transaction_id=None,
        )

    _run_atomic(_op)


def get_stock_level(variant_id: int, branch_id: int) -> StockAccount:
    account = stock_account_store.get(variant_id, branch_id)
    if account is None:
        raise NotFoundError(
            "No inventory position for this variant at this branch",
            details={"variant_id": variant_id, "branch_id": branch_id},
        )
    return account


def check_stock_available(variant_id: int, branch_id: int, quantity: int) -> bool:
    """
    Advisory, unlocked check. Admission is only decided inside
    apply_stock_change; a True here can be stale by the time a sale commits.
    """
    account = stock_account_store.get(variant_id, branch_id)
    return account is not None and account.quantity >= quantity


def branch_inventory(branch_id: int) -> dict:
    """
    Stock held at a branch with its value at list price.

    Each item carries the variant's sku, model and color plus
    value_cents = quantity * list_price_cents. Zero-quantity positions are
    listed with value 0.
    """
    rows = (
        db.session.query(StockAccount, Variant)
        .join(Variant, Variant.id == StockAccount.variant_id)
        .filter(StockAccount.branch_id == branch_id)
        .order_by(Variant.sku.asc())
        .all()
    )

    items = []
    for account, variant in rows:
        item = account.to_dict()
        item.update({
            "sku": variant.sku,
            "model": variant.model,
            "color": variant.color,
            "list_price_cents": variant.list_price_cents,
            "value_cents": account.quantity * variant.list_price_cents,
        })
        items.append(item)

    return {
        "branch_id": branch_id,
        "items": items,
        "total_quantity": sum(i["quantity"] for i in items),
        "total_value_cents": sum(i["value_cents"] for i in items),
    }


def verify_ledger_consistency(
    *, variant_id: int | None = None, branch_id: int | None = None
) -> list[dict]:
    """
    Compare every stock position with the signed sum of its ledger entries.

    Returns one row per mismatching key (empty list when consistent). Ledger
    entries without a matching position are reported with quantity None.
    """
    totals = ledger_store.signed_totals_by_key()

    query = db.session.query(StockAccount)
    if variant_id is not None:
        query = query.filter(StockAccount.variant_id == variant_id)
    if branch_id is not None:
        query = query.filter(StockAccount.branch_id == branch_id)

    mismatches = []
    seen = set()
    for account in query.all():
        seen.add(account.key)
        ledger_total = totals.get(account.key, 0)
        if ledger_total != account.quantity:
            mismatches.append({
                "variant_id": account.variant_id,
                "branch_id": account.branch_id,
                "quantity": account.quantity,
                "ledger_total": ledger_total,
            })

    for (v_id, b_id), ledger_total in totals.items():
        if (v_id, b_id) in seen:
            continue
        if variant_id is not None and v_id != variant_id:
            continue
        if branch_id is not None and b_id != branch_id:
            continue
        mismatches.append({
            "variant_id": v_id,
            "branch_id": b_id,
            "quantity": None,
            "ledger_total": ledger_total,
        })
    return mismatches
