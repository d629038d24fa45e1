# Overview: Ranking aggregates (most/least sold, branch KPIs) rebuilt from the sale ledger.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import (
    Branch,
    BranchSalesSummary,
    BranchVariantSalesRanking,
    LedgerEntry,
    ReasonCode,
    StockAccount,
    Variant,
    VariantSalesRanking,
)
from ..time_utils import utcnow


"""
Ranking invariants

- Source of truth is the ledger (SALE entries only); the aggregate tables are
  a disposable projection and can be rebuilt at any time.
- A rebuild reads the sales totals in one grouped statement, so it sees one
  committed snapshot of the ledger. It never touches stock locks.
- Rebuilding twice with no ledger change produces the same rows (only
  refreshed_at moves).
- Most sold: units desc, variant sku asc. Least sold: units asc, variant sku asc.
- Global rankings cover every variant (unsold variants rank with zero units).
  Branch rankings cover every position with an account or with sales.
  Branch summaries cover every active branch.
"""


@dataclass
class _Totals:
    transactions: int = 0
    units_sold: int = 0
    revenue_cents: int = 0
    cost_cents: int = 0

    def add(self, other: "_Totals") -> None:
        self.transactions += other.transactions
        self.units_sold += other.units_sold
        self.revenue_cents += other.revenue_cents
        self.cost_cents += other.cost_cents

    def columns(self) -> dict:
        return {
            "transactions": self.transactions,
            "units_sold": self.units_sold,
            "revenue_cents": self.revenue_cents,
            "cost_cents": self.cost_cents,
            "margin_cents": self.revenue_cents - self.cost_cents,
        }


def _sales_by_position() -> dict[tuple[int, int], _Totals]:
    rows = (
        db.session.query(
            LedgerEntry.variant_id,
            LedgerEntry.branch_id,
            func.count(LedgerEntry.id).label("transactions"),
            func.sum(LedgerEntry.quantity).label("units"),
            func.sum(LedgerEntry.quantity * func.coalesce(LedgerEntry.unit_price_cents, 0)).label("revenue"),
            func.sum(LedgerEntry.quantity * Variant.purchase_price_cents).label("cost"),
        )
        .join(Variant, Variant.id == LedgerEntry.variant_id)
        .filter(LedgerEntry.reason_code == ReasonCode.SALE.value)
        .group_by(LedgerEntry.variant_id, LedgerEntry.branch_id)
        .all()
    )
    return {
        (row.variant_id, row.branch_id): _Totals(
            transactions=int(row.transactions or 0),
            units_sold=int(row.units or 0),
            revenue_cents=int(row.revenue or 0),
            cost_cents=int(row.cost or 0),
        )
        for row in rows
    }


def _ranks(totals: dict, sku_of) -> tuple[dict, dict]:
    keys = list(totals)
    most = sorted(keys, key=lambda k: (-totals[k].units_sold, sku_of(k)))
    least = sorted(keys, key=lambda k: (totals[k].units_sold, sku_of(k)))
    return (
        {k: i for i, k in enumerate(most, start=1)},
        {k: i for i, k in enumerate(least, start=1)},
    )


def rebuild_rankings() -> datetime:
    """
    Recompute every ranking aggregate from the ledger and replace the stored
    rows in one transaction. Returns the refresh timestamp.
    """
    refreshed_at = utcnow()
    try:
        by_position = _sales_by_position()
        skus = dict(db.session.query(Variant.id, Variant.sku).all())
        positions = db.session.query(StockAccount.variant_id, StockAccount.branch_id).all()
        active_branches = [row.id for row in db.session.query(Branch.id).filter(Branch.is_active.is_(True)).all()]

        by_variant = {variant_id: _Totals() for variant_id in skus}
        for (variant_id, _branch_id), totals in by_position.items():
            by_variant.setdefault(variant_id, _Totals()).add(totals)

        branch_positions = {(v_id, b_id): _Totals() for v_id, b_id in positions}
        for key, totals in by_position.items():
            branch_positions[key] = totals

        by_branch = {branch_id: _Totals() for branch_id in active_branches}
        for (_variant_id, branch_id), totals in by_position.items():
            if branch_id in by_branch:
                by_branch[branch_id].add(totals)

        db.session.query(VariantSalesRanking).delete()
        db.session.query(BranchVariantSalesRanking).delete()
        db.session.query(BranchSalesSummary).delete()

        most, least = _ranks(by_variant, lambda v_id: skus.get(v_id, ""))
        db.session.add_all(
            VariantSalesRanking(
                variant_id=variant_id,
                rank_most_sold=most[variant_id],
                rank_least_sold=least[variant_id],
                refreshed_at=refreshed_at,
                **totals.columns(),
            )
            for variant_id, totals in by_variant.items()
        )

        per_branch: dict[int, dict] = {}
        for (variant_id, branch_id), totals in branch_positions.items():
            per_branch.setdefault(branch_id, {})[variant_id] = totals
        for branch_id, variants in per_branch.items():
            most, least = _ranks(variants, lambda v_id: skus.get(v_id, ""))
            db.session.add_all(
                BranchVariantSalesRanking(
                    branch_id=branch_id,
                    variant_id=variant_id,
                    rank_most_sold=most[variant_id],
                    rank_least_sold=least[variant_id],
                    refreshed_at=refreshed_at,
                    **totals.columns(),
                )
                for variant_id, totals in variants.items()
            )

        db.session.add_all(
            BranchSalesSummary(branch_id=branch_id, refreshed_at=refreshed_at, **totals.columns())
            for branch_id, totals in by_branch.items()
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return refreshed_at


def _with_variant(ranking) -> dict:
    data = ranking.to_dict()
    variant = ranking.variant
    data.update({
        "sku": variant.sku if variant else None,
        "model": variant.model if variant else None,
        "color": variant.color if variant else None,
    })
    return data


def most_sold(limit: int = 10, *, branch_id: int | None = None) -> list[dict]:
    if branch_id is None:
        query = db.session.query(VariantSalesRanking).order_by(VariantSalesRanking.rank_most_sold.asc())
    else:
        query = (
            db.session.query(BranchVariantSalesRanking)
            .filter(BranchVariantSalesRanking.branch_id == branch_id)
            .order_by(BranchVariantSalesRanking.rank_most_sold.asc())
        )
    return [_with_variant(r) for r in query.limit(limit).all()]


def least_sold(limit: int = 10, *, branch_id: int | None = None, in_stock_only: bool = True) -> list[dict]:
    """
    Slowest movers. By default restricted to variants that currently have
    stock (at the branch, or anywhere for the global list): stock is read live,
    the sales figures come from the last rebuild.
    """
    if branch_id is None:
        model = VariantSalesRanking
        query = db.session.query(model)
        in_stock = StockAccount.variant_id == model.variant_id
    else:
        model = BranchVariantSalesRanking
        query = db.session.query(model).filter(model.branch_id == branch_id)
        in_stock = (StockAccount.variant_id == model.variant_id) & (StockAccount.branch_id == model.branch_id)

    if in_stock_only:
        query = query.filter(
            db.session.query(StockAccount.id).filter(in_stock, StockAccount.quantity > 0).exists()
        )
    query = query.order_by(model.rank_least_sold.asc())
    return [_with_variant(r) for r in query.limit(limit).all()]


def branch_summaries() -> list[dict]:
    rows = (
        db.session.query(BranchSalesSummary)
        .join(Branch, Branch.id == BranchSalesSummary.branch_id)
        .order_by(Branch.name.asc(), Branch.id.asc())
        .all()
    )
    return [row.to_dict() for row in rows]


def last_refreshed_at() -> datetime | None:
    return db.session.query(func.max(VariantSalesRanking.refreshed_at)).scalar()
