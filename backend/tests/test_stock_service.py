"""
Tests for the stock transaction coordinator.

Covers the atomic "lock, check, write balance, append ledger entry, commit"
sequence, direction rules per reason code, derived operations (write-off,
adjustment, absolute level, opening balance) and failure translation.
"""

import logging

import pytest
from sqlalchemy.exc import OperationalError

from branchstock.errors import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from branchstock.models import LedgerEntry, ReasonCode
from branchstock.services import ledger_store, stock_account_store, stock_service


def _quantity(key):
    return stock_service.get_stock_level(*key).quantity


def _entries(key):
    return ledger_store.query_by_variant(key[0], branch_id=key[1])


class TestApplyStockChange:
    def test_stock_in_on_fresh_position(self, db_session, account):
        result = stock_service.apply_stock_change(
            variant_id=account[0],
            branch_id=account[1],
            reason=ReasonCode.STOCK_IN,
            signed_delta=10,
            actor_id=7,
        )

        assert result.previous_quantity == 0
        assert result.new_quantity == 10
        assert _quantity(account) == 10

        entries = _entries(account)
        assert len(entries) == 1
        assert entries[0].id == result.transaction_id
        assert entries[0].reason is ReasonCode.STOCK_IN
        assert entries[0].quantity == 10
        assert entries[0].actor_id == 7

    def test_reason_accepts_string_codes(self, db_session, account):
        result = stock_service.apply_stock_change(
            variant_id=account[0],
            branch_id=account[1],
            reason="stock_in",
            signed_delta=2,
            actor_id=1,
        )
        assert result.reason is ReasonCode.STOCK_IN

    @pytest.mark.parametrize(
        "label, delta, expected",
        [
            ("stock-in adjustment", 3, ReasonCode.STOCK_IN),
            ("stock-out adjustment", -1, ReasonCode.STOCK_OUT),
            ("write-off", -1, ReasonCode.WRITE_OFF),
            ("Sale", -1, ReasonCode.SALE),
        ],
    )
    def test_reason_accepts_display_labels(self, db_session, account, label, delta, expected):
        stock_service.adjust_stock(variant_id=account[0], branch_id=account[1], signed_delta=5, actor_id=1)
        result = stock_service.apply_stock_change(
            variant_id=account[0],
            branch_id=account[1],
            reason=label,
            signed_delta=delta,
            actor_id=1,
            unit_price_cents=2500,
        )
        assert result.reason is expected
        assert _entries(account)[-1].to_dict()["reason"] == expected.label

    def test_decrease_to_exactly_zero_is_allowed(self, db_session, account):
        stock_service.adjust_stock(variant_id=account[0], branch_id=account[1], signed_delta=4, actor_id=1)
        result = stock_service.record_write_off(variant_id=account[0], branch_id=account[1], quantity=4, actor_id=1)

        assert result.new_quantity == 0
        assert _quantity(account) == 0

    def test_write_off_beyond_stock_is_rejected_without_writes(self, db_session, account):
        stock_service.adjust_stock(variant_id=account[0], branch_id=account[1], signed_delta=4, actor_id=1)
        stock_service.record_write_off(variant_id=account[0], branch_id=account[1], quantity=4, actor_id=1)

        with pytest.raises(InsufficientStockError) as exc:
            stock_service.record_write_off(variant_id=account[0], branch_id=account[1], quantity=1, actor_id=1)

        assert exc.value.current == 0
        assert exc.value.requested == 1
        assert exc.value.details == {"current_quantity": 0, "requested_quantity": 1}
        assert _quantity(account) == 0
        assert len(_entries(account)) == 2

    def test_unknown_position_is_not_found(self, db_session, variant, branch):
        with pytest.raises(NotFoundError):
            stock_service.adjust_stock(variant_id=variant.id, branch_id=branch.id, signed_delta=1, actor_id=1)
        assert db_session.query(LedgerEntry).count() == 0

    @pytest.mark.parametrize("reason,delta", [
        (ReasonCode.SALE, 2),
        (ReasonCode.WRITE_OFF, 1),
        (ReasonCode.STOCK_OUT, 3),
        (ReasonCode.STOCK_IN, -1),
    ])
    def test_direction_must_match_reason(self, db_session, account, reason, delta):
        with pytest.raises(ValidationError):
            stock_service.apply_stock_change(
                variant_id=account[0],
                branch_id=account[1],
                reason=reason,
                signed_delta=delta,
                actor_id=1,
                unit_price_cents=100,
            )

    def test_zero_delta_is_rejected(self, db_session, account):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(variant_id=account[0], branch_id=account[1], signed_delta=0, actor_id=1)

    def test_actor_is_required(self, db_session, account):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(variant_id=account[0], branch_id=account[1], signed_delta=1, actor_id=0)

    def test_unknown_reason_is_rejected(self, db_session, account):
        with pytest.raises(ValidationError):
            stock_service.apply_stock_change(
                variant_id=account[0],
                branch_id=account[1],
                reason="TRANSFER",
                signed_delta=1,
                actor_id=1,
            )

    def test_non_sale_price_is_dropped(self, db_session, account):
        result = stock_service.apply_stock_change(
            variant_id=account[0],
            branch_id=account[1],
            reason=ReasonCode.STOCK_IN,
            signed_delta=1,
            actor_id=1,
            unit_price_cents=999,
        )
        assert db_session.get(LedgerEntry, result.transaction_id).unit_price_cents is None

    def test_success_is_logged(self, db_session, account, caplog):
        with caplog.at_level(logging.INFO):
            result = stock_service.adjust_stock(
                variant_id=account[0], branch_id=account[1], signed_delta=3, actor_id=1
            )
        assert f"transaction={result.transaction_id}" in caplog.text
        assert "quantity=0->3" in caplog.text


class TestAtomicity:
    def test_ledger_failure_rolls_back_balance(self, db_session, account, monkeypatch):
        stock_service.adjust_stock(variant_id=account[0], branch_id=account[1], signed_delta=5, actor_id=1)

        def boom(**kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(ledger_store, "append", boom)
        with pytest.raises(RuntimeError):
            stock_service.record_write_off(variant_id=account[0], branch_id=account[1], quantity=2, actor_id=1)
        monkeypatch.undo()

        assert _quantity(account) == 5
        assert len(_entries(account)) == 1

        # Lock was released by the rollback
        result = stock_service.record_write_off(variant_id=account[0], branch_id=account[1], quantity=2, actor_id=1)
        assert result.new_quantity == 3

    def test_database_abort_becomes_transient(self, db_session, account, monkeypatch, caplog):
        def locked(**kwargs):
            raise OperationalError("INSERT INTO ledger_entries", {}, Exception("database is locked"))

        monkeypatch.setattr(ledger_store, "append", locked)
        with caplog.at_level(logging.WARNING):
            with pytest.raises(TransientError) as exc:
                stock_service.adjust_stock(variant_id=account[0], branch_id=account[1], signed_delta=5, actor_id=1)
        monkeypatch.undo()

        assert exc.value.retryable is True
        assert "stock.transient_failure" in caplog.text
        assert _quantity(account) == 0
        assert _entries(account) == []

    def test_ledger_reproduces_balance(self, db_session, account):
        key = account
        stock_service.adjust_stock(variant_id=key[0], branch_id=key[1], signed_delta=12, actor_id=1)
        stock_service.record_write_off(variant_id=key[0], branch_id=key[1], quantity=2, actor_id=1)
        stock_service.apply_stock_change(
            variant_id=key[0], branch_id=key[1], reason=ReasonCode.SALE, signed_delta=-3, actor_id=1,
            unit_price_cents=2500,
        )
        stock_service.adjust_stock(variant_id=key[0], branch_id=key[1], signed_delta=-1, actor_id=1)

        assert _quantity(key) == 6
        assert sum(e.signed_delta for e in _entries(key)) == 6
        assert stock_service.verify_ledger_consistency() == []


class TestDerivedOperations:
    def test_adjust_picks_reason_from_sign(self, db_session, account):
        up = stock_service.adjust_stock(variant_id=account[0], branch_id=account[1], signed_delta=3, actor_id=1)
        down = stock_service.adjust_stock(variant_id=account[0], branch_id=account[1], signed_delta=-2, actor_id=1)

        assert up.reason is ReasonCode.STOCK_IN
        assert down.reason is ReasonCode.STOCK_OUT
        assert down.new_quantity == 1

    def test_set_stock_level_records_the_difference(self, db_session, account):
        stock_service.adjust_stock(variant_id=account[0], branch_id=account[1], signed_delta=8, actor_id=1)

        result = stock_service.set_stock_level(
            variant_id=account[0], branch_id=account[1], target_quantity=5, actor_id=1, note="Cycle count"
        )

        assert result.reason is ReasonCode.STOCK_OUT
        assert (result.previous_quantity, result.new_quantity) == (8, 5)
        entry = db_session.get(LedgerEntry, result.transaction_id)
        assert entry.quantity == 3
        assert entry.note == "Cycle count"

    def test_set_stock_level_to_current_writes_nothing(self, db_session, account):
        stock_service.adjust_stock(variant_id=account[0], branch_id=account[1], signed_delta=2, actor_id=1)

        result = stock_service.set_stock_level(
            variant_id=account[0], branch_id=account[1], target_quantity=2, actor_id=1
        )

        assert result.transaction_id is None
        assert result.reason is None
        assert len(_entries(account)) == 1

    def test_set_stock_level_rejects_negative_target(self, db_session, account):
        with pytest.raises(ValidationError):
            stock_service.set_stock_level(variant_id=account[0], branch_id=account[1], target_quantity=-1, actor_id=1)

    def test_open_with_opening_balance(self, db_session, variant, branch):
        result = stock_service.open_stock_account(
            variant_id=variant.id, branch_id=branch.id, initial_quantity=6, actor_id=3
        )

        assert result.reason is ReasonCode.STOCK_IN
        assert result.new_quantity == 6
        entries = _entries((variant.id, branch.id))
        assert [(e.reason, e.quantity, e.note) for e in entries] == [(ReasonCode.STOCK_IN, 6, "Opening balance")]

    def test_open_twice_is_a_conflict(self, db_session, account):
        with pytest.raises(ConflictError):
            stock_service.open_stock_account(variant_id=account[0], branch_id=account[1], actor_id=1)

    def test_check_stock_available_is_advisory(self, db_session, account, variant, other_branch):
        stock_service.adjust_stock(variant_id=account[0], branch_id=account[1], signed_delta=2, actor_id=1)

        assert stock_service.check_stock_available(account[0], account[1], 2)
        assert not stock_service.check_stock_available(account[0], account[1], 3)
        assert not stock_service.check_stock_available(variant.id, other_branch.id, 1)


class TestVerifyLedgerConsistency:
    def test_reports_drift(self, db_session, account):
        stock_service.adjust_stock(variant_id=account[0], branch_id=account[1], signed_delta=4, actor_id=1)

        # Simulate an out-of-band write that bypassed the coordinator
        row = stock_account_store.get_for_update(*account)
        stock_account_store.set_quantity(row, 9)
        db_session.commit()

        mismatches = stock_service.verify_ledger_consistency(variant_id=account[0])
        assert mismatches == [{
            "variant_id": account[0],
            "branch_id": account[1],
            "quantity": 9,
            "ledger_total": 4,
        }]
        assert stock_service.verify_ledger_consistency(branch_id=account[1] + 1000) == []


class TestBranchInventory:
    def test_items_are_valued_at_list_price(self, db_session, account, variant_factory, branch, other_branch):
        stock_service.adjust_stock(variant_id=account[0], branch_id=account[1], signed_delta=3, actor_id=1)
        lens = variant_factory("LENS-CLEAR", list_price_cents=800, color=None)
        stock_service.open_stock_account(variant_id=lens.id, branch_id=branch.id, initial_quantity=4, actor_id=1)
        stock_service.open_stock_account(variant_id=lens.id, branch_id=other_branch.id, initial_quantity=9, actor_id=1)

        inventory = stock_service.branch_inventory(branch.id)

        assert [(i["sku"], i["quantity"], i["value_cents"]) for i in inventory["items"]] == [
            ("FRAME-AVIATOR-GOLD", 3, 7500),
            ("LENS-CLEAR", 4, 3200),
        ]
        gold = inventory["items"][0]
        assert gold["model"] == "Aviator frame"
        assert gold["color"] == "gold"
        assert gold["list_price_cents"] == 2500
        assert inventory["total_quantity"] == 7
        assert inventory["total_value_cents"] == 10700

    def test_empty_positions_are_worth_nothing(self, db_session, account, branch):
        inventory = stock_service.branch_inventory(branch.id)
        assert [i["value_cents"] for i in inventory["items"]] == [0]
        assert inventory["total_value_cents"] == 0

    def test_unknown_branch_is_empty(self, db_session):
        assert stock_service.branch_inventory(999_999)["items"] == []
