"""
Concurrency tests for stock positions.

Runs against a file-backed SQLite database so every worker thread gets its
own connection, the way a multi-threaded server would. Worker processes get
their own app and engine on the same file, the way a pre-forking server would.
"""

import multiprocessing
import os
import tempfile
import threading

import pytest

from branchstock import create_app
from branchstock.errors import SaleRejectedError, TransientError
from branchstock.extensions import db
from branchstock.models import Branch, LedgerEntry, Product, ReasonCode, Variant
from branchstock.services import sales_service, stock_account_store, stock_service
from branchstock.services.locking import run_with_retry


@pytest.fixture(scope="module")
def file_app():
    tmpdir = tempfile.TemporaryDirectory()
    db_path = os.path.join(tmpdir.name, "concurrency.db")
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "RANKING_REFRESH_ASYNC": False,
        "STOCK_LOCK_TIMEOUT_SECONDS": 10,
    })

    with app.app_context():
        db.drop_all()
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()
    tmpdir.cleanup()


@pytest.fixture
def position(file_app):
    """A fresh (variant, branch) key holding no stock."""
    with file_app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        branch = Branch(name="Concurrency Branch")
        product = Product(sku="CONCUR", name="Concurrent product")
        db.session.add_all([branch, product])
        db.session.commit()
        variant = Variant(product_id=product.id, sku="CONCUR-1", purchase_price_cents=400)
        db.session.add(variant)
        db.session.commit()

        stock_service.open_stock_account(variant_id=variant.id, branch_id=branch.id, actor_id=1)
        key = (variant.id, branch.id)
        db.session.remove()
    return key


def _seed(app, key, quantity):
    with app.app_context():
        stock_service.adjust_stock(variant_id=key[0], branch_id=key[1], signed_delta=quantity, actor_id=1)
        db.session.remove()


def _run_concurrently(app, jobs):
    """Run each job on its own thread inside its own app context; return (results, errors)."""
    results = []
    errors = []
    lock = threading.Lock()
    barrier = threading.Barrier(len(jobs))

    def worker(job):
        with app.app_context():
            try:
                barrier.wait()
                outcome = run_with_retry(job, attempts=5, backoff_base=0.05)
                with lock:
                    results.append(outcome)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(job,)) for job in jobs]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


def _sell_in_process(db_uri, key, barrier, outcomes):
    """Process entry point: one sale of one unit through a fresh app on the shared file."""
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": db_uri,
        "RANKING_REFRESH_ASYNC": False,
    })
    with app.app_context():
        try:
            barrier.wait(60)
            result = run_with_retry(
                lambda: sales_service.record_sale(
                    variant_id=key[0], branch_id=key[1], quantity=1, unit_price_cents=500, actor_id=3
                ),
                attempts=5,
                backoff_base=0.05,
            )
            outcomes.put(("admitted", result.previous_quantity))
        except SaleRejectedError:
            outcomes.put(("rejected", None))
        except Exception as exc:
            outcomes.put(("error", repr(exc)))
        finally:
            db.session.remove()
            db.engine.dispose()


def _state(app, key):
    with app.app_context():
        quantity = stock_account_store.get(*key).quantity
        entries = (
            db.session.query(LedgerEntry)
            .filter_by(variant_id=key[0], branch_id=key[1], reason_code=ReasonCode.SALE.value)
            .all()
        )
        mismatches = stock_service.verify_ledger_consistency()
        db.session.remove()
    return quantity, sorted(e.quantity for e in entries), mismatches


class TestConcurrentSales:
    def test_competing_sales_admit_only_what_fits(self, file_app, position):
        _seed(file_app, position, 5)

        def sale(quantity):
            return lambda: sales_service.record_sale(
                variant_id=position[0],
                branch_id=position[1],
                quantity=quantity,
                unit_price_cents=1000,
                actor_id=2,
            )

        results, errors = _run_concurrently(file_app, [sale(3), sale(2), sale(2)])

        assert errors and all(isinstance(e, SaleRejectedError) for e in errors)
        admitted = sorted(r.previous_quantity - r.new_quantity for r in results)
        assert admitted in ([2, 2], [2, 3])

        quantity, sold, mismatches = _state(file_app, position)
        assert sold == admitted
        assert quantity == 5 - sum(admitted)
        assert mismatches == []

    def test_no_oversell_under_many_single_unit_sales(self, file_app, position):
        _seed(file_app, position, 10)

        job = lambda: sales_service.record_sale(  # noqa: E731
            variant_id=position[0], branch_id=position[1], quantity=1, unit_price_cents=500, actor_id=2
        )
        results, errors = _run_concurrently(file_app, [job] * 16)

        assert len(results) == 10
        assert len(errors) == 6
        assert all(isinstance(e, SaleRejectedError) for e in errors)

        quantity, sold, mismatches = _state(file_app, position)
        assert quantity == 0
        assert len(sold) == 10
        assert mismatches == []

    def test_concurrent_stock_in_loses_no_updates(self, file_app, position):
        job = lambda: stock_service.adjust_stock(  # noqa: E731
            variant_id=position[0], branch_id=position[1], signed_delta=3, actor_id=1
        )
        results, errors = _run_concurrently(file_app, [job] * 8)

        assert errors == []
        assert len({r.transaction_id for r in results}) == 8

        with file_app.app_context():
            assert stock_account_store.get(*position).quantity == 24
            db.session.remove()


class TestLockTimeout:
    def test_waiting_past_timeout_is_transient(self, file_app, position, monkeypatch):
        monkeypatch.setitem(file_app.config, "STOCK_LOCK_TIMEOUT_SECONDS", 0.05)
        _seed(file_app, position, 2)

        with file_app.app_context():
            # Outer transaction owns the key and never commits during the attempt
            stock_account_store.get_for_update(*position)
            try:
                with file_app.app_context():
                    with pytest.raises(TransientError) as exc:
                        stock_service.record_write_off(
                            variant_id=position[0], branch_id=position[1], quantity=1, actor_id=1
                        )
                    assert exc.value.retryable
            finally:
                db.session.rollback()
                db.session.remove()

        with file_app.app_context():
            assert stock_account_store.get(*position).quantity == 2
            result = stock_service.record_write_off(
                variant_id=position[0], branch_id=position[1], quantity=1, actor_id=1
            )
            assert result.new_quantity == 1
            db.session.remove()


class TestWorkerProcesses:
    def test_sales_from_separate_processes_never_oversell(self, file_app, position):
        _seed(file_app, position, 3)

        workers = 6
        ctx = multiprocessing.get_context("spawn")
        barrier = ctx.Barrier(workers)
        outcomes = ctx.Queue()
        processes = [
            ctx.Process(
                target=_sell_in_process,
                args=(file_app.config["SQLALCHEMY_DATABASE_URI"], position, barrier, outcomes),
            )
            for _ in range(workers)
        ]
        for p in processes:
            p.start()
        results = [outcomes.get(timeout=120) for _ in processes]
        for p in processes:
            p.join(60)

        assert [r for r in results if r[0] == "error"] == []
        admitted = sorted(r[1] for r in results if r[0] == "admitted")
        assert admitted == [1, 2, 3]
        assert sum(1 for r in results if r[0] == "rejected") == workers - 3

        quantity, sold, mismatches = _state(file_app, position)
        assert quantity == 0
        assert sold == [1, 1, 1]
        assert mismatches == []
