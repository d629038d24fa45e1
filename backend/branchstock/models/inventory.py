from __future__ import annotations

from enum import Enum

from sqlalchemy import event

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..time_utils import to_utc_z


"""
Branch Stock Invariants (authoritative)

- A StockAccount holds the current quantity of one variant at one branch.
  (variant_id, branch_id) is unique. quantity >= 0 at every committed state.
- StockAccount.quantity is mutated only by the stock coordinator
  (services/stock_service.py), under the key's lock.
- Every committed quantity change has exactly one LedgerEntry written in the
  same DB transaction, and every LedgerEntry belongs to one committed change.
- LedgerEntry.quantity is a positive magnitude; the direction comes from the
  reason code. SUM(direction * quantity) over a key's entries equals the
  account quantity.
- Ledger entries are append-only (no updates/deletes).
"""


class ReasonCode(str, Enum):
    """Closed set of reasons a stock position may change."""

    SALE = "SALE"
    WRITE_OFF = "WRITE_OFF"
    STOCK_IN = "STOCK_IN"
    STOCK_OUT = "STOCK_OUT"

    @property
    def direction(self) -> int:
        return 1 if self is ReasonCode.STOCK_IN else -1

    @property
    def label(self) -> str:
        return _REASON_LABELS[self]

    def signed(self, quantity: int) -> int:
        return self.direction * quantity

    @classmethod
    def parse(cls, value) -> "ReasonCode":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = _normalize_reason(value)
            try:
                return cls(key)
            except ValueError:
                pass
            # Labels as emitted by LedgerEntry.to_dict()["reason"]
            for reason, label in _REASON_LABELS.items():
                if _normalize_reason(label) == key:
                    return reason
        allowed = ", ".join(r.value for r in cls)
        raise ValidationError(f"reason must be one of: {allowed}")


def _normalize_reason(value: str) -> str:
    return value.strip().upper().replace("-", "_").replace(" ", "_")


_REASON_LABELS = {
    ReasonCode.SALE: "sale",
    ReasonCode.WRITE_OFF: "write-off",
    ReasonCode.STOCK_IN: "stock-in adjustment",
    ReasonCode.STOCK_OUT: "stock-out adjustment",
}


class StockAccount(db.Model):
    """
    Current stock of one variant at one branch.

    Never deleted while referenced by ledger history; deletion is only
    allowed for an empty position with no entries.
    """
    __tablename__ = "stock_accounts"
    __table_args__ = (
        db.UniqueConstraint("variant_id", "branch_id", name="uq_stock_accounts_variant_branch"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_accounts_quantity_non_negative"),
        db.Index("ix_stock_accounts_branch", "branch_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    variant = db.relationship("Variant")
    branch = db.relationship("Branch")

    @property
    def key(self) -> tuple[int, int]:
        return (self.variant_id, self.branch_id)

    def __repr__(self) -> str:
        return f"<StockAccount variant_id={self.variant_id} branch_id={self.branch_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "branch_id": self.branch_id,
            "quantity": self.quantity,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LedgerEntry(db.Model):
    """
    Immutable audit record of one stock-affecting event.

    id doubles as the transaction id: autoincrement (never reused) so ids
    grow with insertion order.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_ledger_entries_quantity_positive"),
        db.Index("ix_ledger_variant_branch_recorded", "variant_id", "branch_id", "recorded_at"),
        db.Index("ix_ledger_branch_recorded", "branch_id", "recorded_at"),
        db.Index("ix_ledger_reason_recorded", "reason_code", "recorded_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)

    reason_code = db.Column(db.String(32), nullable=False)
    actor_id = db.Column(db.Integer, nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)

    # Only sales carry a price; null for every other reason
    unit_price_cents = db.Column(db.Integer, nullable=True)

    note = db.Column(db.String(255), nullable=True)

    recorded_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    @property
    def reason(self) -> ReasonCode:
        return ReasonCode(self.reason_code)

    @property
    def signed_delta(self) -> int:
        return self.reason.signed(self.quantity)

    @property
    def transaction_id(self) -> int:
        return self.id

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} reason={self.reason_code} variant_id={self.variant_id} "
            f"branch_id={self.branch_id} quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.id,
            "variant_id": self.variant_id,
            "branch_id": self.branch_id,
            "reason_code": self.reason_code,
            "reason": self.reason.label,
            "actor_id": self.actor_id,
            "quantity": self.quantity,
            "signed_delta": self.signed_delta,
            "unit_price_cents": self.unit_price_cents,
            "note": self.note,
            "recorded_at": to_utc_z(self.recorded_at),
        }


@event.listens_for(LedgerEntry, "before_update")
def _refuse_ledger_update(mapper, connection, target):
    raise ConflictError(f"ledger entry {target.id} is immutable")


@event.listens_for(LedgerEntry, "before_delete")
def _refuse_ledger_delete(mapper, connection, target):
    raise ConflictError(f"ledger entry {target.id} cannot be deleted")
