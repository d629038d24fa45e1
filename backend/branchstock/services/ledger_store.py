# Overview: Append-only storage of stock ledger entries plus read-only queries for reporting.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError
from ..extensions import db
from ..models import LedgerEntry, ReasonCode
from ..time_utils import normalize_datetime, utcnow


"""
Ledger store invariants

- append() only inserts and flushes; the caller owns the transaction.
- Nothing in this module updates or deletes an entry (the model refuses it too).
- Reads are ordered by recorded_at, then id (transaction id), ascending.
- Date range bounds are inclusive: start <= recorded_at <= end.
"""


def append(
    *,
    variant_id: int,
    branch_id: int,
    reason: ReasonCode,
    actor_id: int,
    quantity: int,
    unit_price_cents: int | None = None,
    note: str | None = None,
    recorded_at: datetime | None = None,
) -> LedgerEntry:
    entry = LedgerEntry(
        variant_id=variant_id,
        branch_id=branch_id,
        reason_code=reason.value,
        actor_id=actor_id,
        quantity=quantity,
        unit_price_cents=unit_price_cents if reason is ReasonCode.SALE else None,
        note=note,
        recorded_at=recorded_at or utcnow(),
    )
    db.session.add(entry)
    try:
        db.session.flush()  # assigns the transaction id without committing
    except IntegrityError as exc:
        raise ConflictError("Ledger entry conflicts with an existing entry") from exc
    return entry


def _ordered(query):
    return query.order_by(LedgerEntry.recorded_at.asc(), LedgerEntry.id.asc())


def _filter_reason(query, reason):
    if reason is not None:
        query = query.filter(LedgerEntry.reason_code == ReasonCode.parse(reason).value)
    return query


def _fetch(query, reason, limit):
    query = _ordered(_filter_reason(query, reason))
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def query_by_variant(
    variant_id: int, *, branch_id: int | None = None, reason=None, limit: int | None = None
) -> list[LedgerEntry]:
    query = db.session.query(LedgerEntry).filter(LedgerEntry.variant_id == variant_id)
    if branch_id is not None:
        query = query.filter(LedgerEntry.branch_id == branch_id)
    return _fetch(query, reason, limit)


def query_by_branch(branch_id: int, *, reason=None, limit: int | None = None) -> list[LedgerEntry]:
    query = db.session.query(LedgerEntry).filter(LedgerEntry.branch_id == branch_id)
    return _fetch(query, reason, limit)


def query_by_date_range(
    start: datetime | None,
    end: datetime | None,
    *,
    branch_id: int | None = None,
    variant_id: int | None = None,
    reason=None,
    limit: int | None = None,
) -> list[LedgerEntry]:
    query = db.session.query(LedgerEntry)
    if start is not None:
        query = query.filter(LedgerEntry.recorded_at >= normalize_datetime(start))
    if end is not None:
        query = query.filter(LedgerEntry.recorded_at <= normalize_datetime(end))
    if branch_id is not None:
        query = query.filter(LedgerEntry.branch_id == branch_id)
    if variant_id is not None:
        query = query.filter(LedgerEntry.variant_id == variant_id)
    return _fetch(query, reason, limit)


def signed_quantity_expr():
    """SQL expression for the signed delta of an entry (+ for stock-in, - otherwise)."""
    return case(
        (LedgerEntry.reason_code == ReasonCode.STOCK_IN.value, LedgerEntry.quantity),
        else_=-LedgerEntry.quantity,
    )


def signed_total(variant_id: int, branch_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(signed_quantity_expr()), 0))
        .filter(LedgerEntry.variant_id == variant_id, LedgerEntry.branch_id == branch_id)
        .scalar()
    )
    return int(total or 0)


def signed_totals_by_key() -> dict[tuple[int, int], int]:
    rows = (
        db.session.query(
            LedgerEntry.variant_id,
            LedgerEntry.branch_id,
            func.sum(signed_quantity_expr()).label("total"),
        )
        .group_by(LedgerEntry.variant_id, LedgerEntry.branch_id)
        .all()
    )
    return {(row.variant_id, row.branch_id): int(row.total or 0) for row in rows}
