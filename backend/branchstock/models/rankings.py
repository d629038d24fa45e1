from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


"""
Ranking aggregates (derived, not authoritative)

- Owned by the ranking refresher (services/ranking_service.py); nothing else writes them.
- Rebuilt wholesale from SALE ledger entries, so losing them is not data loss.
- May lag the ledger briefly; refreshed_at tells readers how old they are.
"""


class _SalesTotalsMixin:
    transactions = db.Column(db.Integer, nullable=False, default=0)
    units_sold = db.Column(db.Integer, nullable=False, default=0)
    revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)
    margin_cents = db.Column(db.Integer, nullable=False, default=0)
    refreshed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def _totals_dict(self) -> dict:
        return {
            "transactions": self.transactions,
            "units_sold": self.units_sold,
            "revenue_cents": self.revenue_cents,
            "cost_cents": self.cost_cents,
            "margin_cents": self.margin_cents,
            "refreshed_at": to_utc_z(self.refreshed_at),
        }


class VariantSalesRanking(_SalesTotalsMixin, db.Model):
    """Cumulative sales of one variant across every branch."""
    __tablename__ = "variant_sales_rankings"

    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), primary_key=True)
    rank_most_sold = db.Column(db.Integer, nullable=False, index=True)
    rank_least_sold = db.Column(db.Integer, nullable=False, index=True)

    variant = db.relationship("Variant")

    def to_dict(self) -> dict:
        return {
            "variant_id": self.variant_id,
            "rank_most_sold": self.rank_most_sold,
            "rank_least_sold": self.rank_least_sold,
            **self._totals_dict(),
        }


class BranchVariantSalesRanking(_SalesTotalsMixin, db.Model):
    """Cumulative sales of one variant at one branch."""
    __tablename__ = "branch_variant_sales_rankings"
    __table_args__ = (
        db.Index("ix_branch_rankings_most", "branch_id", "rank_most_sold"),
        db.Index("ix_branch_rankings_least", "branch_id", "rank_least_sold"),
    )

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), primary_key=True)
    rank_most_sold = db.Column(db.Integer, nullable=False)
    rank_least_sold = db.Column(db.Integer, nullable=False)

    variant = db.relationship("Variant")

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "variant_id": self.variant_id,
            "rank_most_sold": self.rank_most_sold,
            "rank_least_sold": self.rank_least_sold,
            **self._totals_dict(),
        }


class BranchSalesSummary(_SalesTotalsMixin, db.Model):
    """Per-branch sales KPIs for active branches."""
    __tablename__ = "branch_sales_summaries"

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), primary_key=True)

    branch = db.relationship("Branch")

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "branch_name": self.branch.name if self.branch else None,
            **self._totals_dict(),
        }
