# Overview: Sale admission on top of the stock coordinator; sale history and totals from the ledger.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..errors import InsufficientStockError, SaleRejectedError, ValidationError
from ..extensions import db
from ..models import LedgerEntry, ReasonCode, Variant
from ..time_utils import normalize_datetime
from ..validation import require_price_cents, require_quantity
from .stock_service import StockChangeResult, apply_stock_change


def record_sale(
    *,
    variant_id: int,
    branch_id: int,
    quantity: int,
    unit_price_cents: int,
    actor_id: int,
    note: str | None = None,
) -> StockChangeResult:
    """
    Sell `quantity` units of a variant at a branch.

    All or nothing: if the branch holds fewer units than requested the sale is
    rejected (SaleRejectedError, carrying available and requested quantities)
    and nothing is written. The unit price is recorded on the ledger entry for
    revenue and margin reporting.
    """
    quantity = require_quantity("quantity", quantity)
    unit_price_cents = require_price_cents("unit_price_cents", unit_price_cents)

    try:
        return apply_stock_change(
            variant_id=variant_id,
            branch_id=branch_id,
            reason=ReasonCode.SALE,
            signed_delta=-quantity,
            actor_id=actor_id,
            unit_price_cents=unit_price_cents,
            note=note,
        )
    except InsufficientStockError as exc:
        raise SaleRejectedError(exc.current, exc.requested) from exc


def sales_history(
    *,
    branch_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = None,
) -> list[LedgerEntry]:
    """Sale entries, most recent first."""
    if (start is None) != (end is None):
        raise ValidationError("start and end must be provided together")

    query = db.session.query(LedgerEntry).filter(LedgerEntry.reason_code == ReasonCode.SALE.value)
    if branch_id is not None:
        query = query.filter(LedgerEntry.branch_id == branch_id)
    if start is not None:
        query = query.filter(
            LedgerEntry.recorded_at >= normalize_datetime(start),
            LedgerEntry.recorded_at <= normalize_datetime(end),
        )
    query = query.order_by(LedgerEntry.recorded_at.desc(), LedgerEntry.id.desc())
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def sales_totals(start: datetime, end: datetime, *, branch_id: int | None = None) -> dict:
    """
    Count, revenue and margin of sales recorded in [start, end].

    Margin uses each variant's current purchase price as cost.
    """
    revenue = LedgerEntry.quantity * LedgerEntry.unit_price_cents
    cost = LedgerEntry.quantity * Variant.purchase_price_cents

    query = (
        db.session.query(
            func.count(LedgerEntry.id).label("sales_count"),
            func.coalesce(func.sum(LedgerEntry.quantity), 0).label("units_sold"),
            func.coalesce(func.sum(revenue), 0).label("revenue_cents"),
            func.coalesce(func.sum(cost), 0).label("cost_cents"),
        )
        .join(Variant, Variant.id == LedgerEntry.variant_id)
        .filter(
            LedgerEntry.reason_code == ReasonCode.SALE.value,
            LedgerEntry.recorded_at >= normalize_datetime(start),
            LedgerEntry.recorded_at <= normalize_datetime(end),
        )
    )
    if branch_id is not None:
        query = query.filter(LedgerEntry.branch_id == branch_id)

    row = query.one()
    revenue_cents = int(row.revenue_cents or 0)
    cost_cents = int(row.cost_cents or 0)
    return {
        "sales_count": int(row.sales_count or 0),
        "units_sold": int(row.units_sold or 0),
        "revenue_cents": revenue_cents,
        "cost_cents": cost_cents,
        "margin_cents": revenue_cents - cost_cents,
    }



PERIOD_FORMATS = {
    "day": "%Y-%m-%d",
    "week": "%Y-W%W",
    "month": "%Y-%m",
}


def sales_totals_by_period(
    start: datetime,
    end: datetime,
    *,
    branch_id: int | None = None,
    group_by: str = "day",
) -> list[dict]:
    """
    Sales totals in [start, end] bucketed by day, week or month, oldest
    period first. Periods without sales are omitted.
    """
    if group_by not in PERIOD_FORMATS:
        raise ValidationError(f"group_by must be one of: {', '.join(PERIOD_FORMATS)}")

    period = func.strftime(PERIOD_FORMATS[group_by], LedgerEntry.recorded_at).label("period")
    revenue = LedgerEntry.quantity * LedgerEntry.unit_price_cents
    cost = LedgerEntry.quantity * Variant.purchase_price_cents

    query = (
        db.session.query(
            period,
            func.count(LedgerEntry.id).label("sales_count"),
            func.sum(LedgerEntry.quantity).label("units_sold"),
            func.sum(revenue).label("revenue_cents"),
            func.sum(cost).label("cost_cents"),
        )
        .join(Variant, Variant.id == LedgerEntry.variant_id)
        .filter(
            LedgerEntry.reason_code == ReasonCode.SALE.value,
            LedgerEntry.recorded_at >= normalize_datetime(start),
            LedgerEntry.recorded_at <= normalize_datetime(end),
        )
    )
    if branch_id is not None:
        query = query.filter(LedgerEntry.branch_id == branch_id)

    rows = query.group_by("period").order_by("period").all()
    return [
        {
            "period": row.period,
            "sales_count": int(row.sales_count or 0),
            "units_sold": int(row.units_sold or 0),
            "revenue_cents": int(row.revenue_cents or 0),
            "cost_cents": int(row.cost_cents or 0),
            "margin_cents": int(row.revenue_cents or 0) - int(row.cost_cents or 0),
        }
        for row in rows
    ]
