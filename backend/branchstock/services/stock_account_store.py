# Overview: Keyed storage of current stock per (variant, branch); locked reads and writes for the coordinator.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Branch, LedgerEntry, StockAccount, Variant
from ..time_utils import utcnow
from .locking import (
    acquire_stock_lock,
    claim_sqlite_write_lock,
    holds_stock_lock,
    lock_for_update,
    release_stock_lock,
)


def _lock_timeout() -> float:
    return float(current_app.config.get("STOCK_LOCK_TIMEOUT_SECONDS", 10))


def get_for_update(variant_id: int, branch_id: int) -> StockAccount:
    """
    Return the stock account for the key, exclusively owned by the current
    transaction until it commits or rolls back.

    Blocks while another transaction owns the key, in this process or (via
    row locks, or the write lock on SQLite) in another one. The row is re-read
    after the lock is taken so the caller always sees the latest committed
    quantity.
    """
    key = (variant_id, branch_id)
    session = db.session()
    acquire_stock_lock(session, key, timeout=_lock_timeout())
    claim_sqlite_write_lock(
        session,
        update(StockAccount)
        .where(StockAccount.variant_id == variant_id, StockAccount.branch_id == branch_id)
        .values(quantity=StockAccount.quantity),
    )

    query = db.session.query(StockAccount).filter_by(variant_id=variant_id, branch_id=branch_id)
    account = lock_for_update(query).populate_existing().first()
    if account is None:
        release_stock_lock(session, key)
        raise NotFoundError(
            "No inventory position for this variant at this branch",
            details={"variant_id": variant_id, "branch_id": branch_id},
        )
    return account


def set_quantity(account: StockAccount, new_quantity: int) -> StockAccount:
    """Write a new balance. Only legal while the current transaction owns the key."""
    if not holds_stock_lock(db.session(), account.key):
        raise ConflictError(
            "set_quantity called without holding the stock lock",
            details={"variant_id": account.variant_id, "branch_id": account.branch_id},
        )
    if new_quantity < 0:
        raise ValidationError("quantity cannot be negative")

    account.quantity = new_quantity
    account.updated_at = utcnow()
    db.session.flush()
    return account


def get(variant_id: int, branch_id: int) -> StockAccount | None:
    """Unlocked read of the committed position."""
    return db.session.query(StockAccount).filter_by(variant_id=variant_id, branch_id=branch_id).first()


def list_for_branch(branch_id: int) -> list[StockAccount]:
    return (
        db.session.query(StockAccount)
        .filter_by(branch_id=branch_id)
        .order_by(StockAccount.variant_id.asc())
        .all()
    )


def create(variant_id: int, branch_id: int, initial_quantity: int = 0) -> StockAccount:
    """
    Create the stock position for a key. Does not commit.

    Raises ConflictError when the key already exists and NotFoundError when
    the variant or branch is unknown.
    """
    if initial_quantity < 0:
        raise ValidationError("initial_quantity must be >= 0")

    if db.session.get(Variant, variant_id) is None:
        raise NotFoundError(f"Variant {variant_id} not found", details={"variant_id": variant_id})
    if db.session.get(Branch, branch_id) is None:
        raise NotFoundError(f"Branch {branch_id} not found", details={"branch_id": branch_id})

    if get(variant_id, branch_id) is not None:
        raise ConflictError(
            "Inventory already exists for this variant at this branch",
            details={"variant_id": variant_id, "branch_id": branch_id},
        )

    now = utcnow()
    account = StockAccount(
        variant_id=variant_id,
        branch_id=branch_id,
        quantity=initial_quantity,
        created_at=now,
        updated_at=now,
    )
    db.session.add(account)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # Lost a race with a concurrent create of the same key
        db.session.rollback()
        raise ConflictError(
            "Inventory already exists for this variant at this branch",
            details={"variant_id": variant_id, "branch_id": branch_id},
        ) from exc
    return account


def delete(variant_id: int, branch_id: int) -> None:
    """
    Remove an empty, never-used stock position. Does not commit.

    Positions with stock or with ledger history are kept for the audit trail.
    """
    account = get_for_update(variant_id, branch_id)
    if account.quantity != 0:
        raise ConflictError(
            "Cannot delete a stock position that still holds stock",
            details={"variant_id": variant_id, "branch_id": branch_id, "quantity": account.quantity},
        )
    has_history = (
        db.session.query(LedgerEntry.id)
        .filter_by(variant_id=variant_id, branch_id=branch_id)
        .first()
        is not None
    )
    if has_history:
        raise ConflictError(
            "Cannot delete a stock position referenced by ledger history",
            details={"variant_id": variant_id, "branch_id": branch_id},
        )
    db.session.delete(account)
    db.session.flush()
