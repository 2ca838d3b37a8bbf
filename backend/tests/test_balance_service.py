# Overview: Pytest coverage for daily balance aggregation.

"""
Balance Aggregator Tests

Verifies:
- Scenarios A-C (first day, sale, carry-forward)
- Reconciliation and chaining invariants
- Idempotence: recompute overwrites, never accumulates
- Gap filling before a late recompute, bounded by BALANCE_MAX_GAP_DAYS
- Range recompute order, chunking and cancellation
- Value derivation (unit value, total value, running average)
- Read paths never recompute; rollups and per-location activity
"""

import threading
from datetime import date

import pytest

from conftest import TENANT
from stockledger.errors import BalanceIntegrityError, UnknownProduct, ValidationError
from stockledger.models import DailyBalance
from stockledger.services import balance_service, ledger_service
from stockledger.services.balance_service import _div_round_half_up, fold_movements
from stockledger.services.ledger_service import MovementDraft
from stockledger.validation import Location

D16 = date(2024, 1, 16)
D17 = date(2024, 1, 17)
D18 = date(2024, 1, 18)


def _append(product, kind, quantity=1, when="2024-01-16T10:00:00", **kwargs):
    return ledger_service.append_movement(TENANT, MovementDraft(
        product_id=product.id, kind=kind, quantity=quantity, occurred_at=when, **kwargs
    ))


def _assert_reconciles(row):
    assert row.closing_qty == (
        row.opening_qty + row.added_qty + row.returned_qty + row.transfer_in_qty
        - row.sold_qty - row.transfer_out_qty
    )
    assert row.closing_value_cents == (
        row.opening_value_cents + row.added_value_cents + row.returned_value_cents
        + row.transfer_in_value_cents - row.sold_value_cents - row.transfer_out_value_cents
    )


class TestScenarios:
    """The reference walk-through: addition, sale, carry-forward."""

    def test_scenario_a_first_day(self, db_session, ring):
        _append(ring, "ADDITION", 20, unit_value_cents=15000)

        row = balance_service.recompute(TENANT, ring.id, D16)

        assert row.opening_qty == 0
        assert row.added_qty == 20
        assert row.sold_qty == 0
        assert row.closing_qty == 20
        assert row.closing_value_cents == 300000

    def test_scenario_b_sale_next_day(self, db_session, ring):
        _append(ring, "ADDITION", 20, unit_value_cents=15000)
        _append(ring, "SALE", 10, when="2024-01-17T15:30:00", unit_value_cents=15000)
        balance_service.recompute(TENANT, ring.id, D16)

        row = balance_service.recompute(TENANT, ring.id, D17)

        assert row.opening_qty == 20
        assert row.sold_qty == 10
        assert row.closing_qty == 10
        assert row.sold_value_cents == 150000
        assert row.closing_value_cents == 150000

    def test_scenario_c_carry_forward(self, db_session, ring):
        _append(ring, "ADDITION", 20, unit_value_cents=15000)
        _append(ring, "SALE", 10, when="2024-01-17T15:30:00", unit_value_cents=15000)
        balance_service.recompute(TENANT, ring.id, D16)
        balance_service.recompute(TENANT, ring.id, D17)

        row = balance_service.recompute(TENANT, ring.id, D18)

        assert row.opening_qty == 10
        assert row.closing_qty == 10
        assert row.added_qty == row.sold_qty == row.returned_qty == 0
        assert row.transfer_in_qty == row.transfer_out_qty == 0
        assert row.event_count == 0
        assert row.opening_value_cents == row.closing_value_cents == 150000


class TestInvariants:
    """Reconciliation, chaining and idempotence."""

    def test_every_row_reconciles_and_chains(self, db_session, ring):
        _append(ring, "ADDITION", 5, unit_value_cents=1000)
        _append(ring, "SALE", 2, when="2024-01-17T11:00:00")
        _append(ring, "RETURN", 1, when="2024-01-17T12:00:00")
        _append(ring, "TRANSFER_OUT", 1, when="2024-01-18T09:00:00")
        _append(ring, "TRANSFER_IN", 1, when="2024-01-18T17:00:00", location=Location(2, 4))

        result = balance_service.recompute_range(TENANT, ring.id, D16, D18)

        rows = result.rows
        assert [r.balance_date for r in rows] == [D16, D17, D18]
        for row in rows:
            _assert_reconciles(row)
        for previous, current in zip(rows, rows[1:]):
            assert current.opening_qty == previous.closing_qty
            assert current.opening_value_cents == previous.closing_value_cents
        assert balance_service.verify_chain(TENANT, ring.id) == []

    def test_recompute_twice_is_identical(self, db_session, ring):
        _append(ring, "ADDITION", 4, unit_value_cents=2500)
        _append(ring, "SALE", 1, when="2024-01-16T18:00:00")

        first = balance_service.recompute(TENANT, ring.id, D16).to_dict()
        second = balance_service.recompute(TENANT, ring.id, D16).to_dict()

        first.pop("computed_at")
        second.pop("computed_at")
        assert first == second
        assert db_session.query(DailyBalance).filter_by(product_id=ring.id).count() == 1

    def test_recompute_picks_up_late_event(self, db_session, ring):
        _append(ring, "ADDITION", 4, unit_value_cents=2500)
        assert balance_service.recompute(TENANT, ring.id, D16).closing_qty == 4

        _append(ring, "ADDITION", 1, when="2024-01-16T20:00:00", unit_value_cents=2500)
        row = balance_service.recompute(TENANT, ring.id, D16)

        assert row.added_qty == 5
        assert row.closing_qty == 5

    def test_recompute_earlier_day_rechains_later_rows(self, db_session, ring):
        _append(ring, "ADDITION", 5, unit_value_cents=100)
        balance_service.recompute(TENANT, ring.id, D18)

        _append(ring, "ADDITION", 3, when="2024-01-16T20:00:00", unit_value_cents=100)
        row = balance_service.recompute(TENANT, ring.id, D16)

        assert row.closing_qty == 8
        assert balance_service.get_balance(TENANT, ring.id, D18)["closing_qty"] == 8
        assert balance_service.verify_chain(TENANT, ring.id) == []

    def test_late_event_under_stored_row_is_refolded(self, db_session, ring):
        _append(ring, "ADDITION", 5, unit_value_cents=100)
        balance_service.recompute(TENANT, ring.id, D18)

        _append(ring, "ADDITION", 3, when="2024-01-16T20:00:00", unit_value_cents=100)
        row = balance_service.recompute(TENANT, ring.id, date(2024, 1, 19))

        assert row.opening_qty == 8
        assert row.closing_qty == 8
        assert balance_service.verify_chain(TENANT, ring.id) == []

    def test_range_rechains_rows_after_its_end(self, db_session, ring):
        _append(ring, "ADDITION", 5, unit_value_cents=100)
        balance_service.recompute(TENANT, ring.id, D18)

        _append(ring, "ADDITION", 3, when="2024-01-16T20:00:00", unit_value_cents=100)
        balance_service.recompute_range(TENANT, ring.id, D16, D16)

        assert balance_service.get_balance(TENANT, ring.id, D18)["closing_qty"] == 8
        assert balance_service.verify_chain(TENANT, ring.id) == []

    def test_adjustment_counts_but_moves_no_bucket(self, db_session, ring):
        _append(ring, "ADDITION", 2, unit_value_cents=100)
        _append(ring, "ADJUSTMENT", 1, when="2024-01-16T12:00:00", remarks="tag relabel")

        row = balance_service.recompute(TENANT, ring.id, D16)

        assert row.event_count == 2
        assert row.closing_qty == 2

    def test_negative_closing_is_kept(self, db_session, ring):
        _append(ring, "SALE", 1, unit_value_cents=500)
        row = balance_service.recompute(TENANT, ring.id, D16)
        assert row.closing_qty == -1

    def test_unknown_product(self, db_session):
        with pytest.raises(UnknownProduct):
            balance_service.recompute(TENANT, 55555, D16)


class TestGapFilling:
    """Day N is never computed on top of an uncomputed history."""

    def test_recompute_without_prior_rows_walks_history(self, db_session, ring):
        _append(ring, "ADDITION", 20, unit_value_cents=15000)
        _append(ring, "SALE", 10, when="2024-01-17T15:30:00", unit_value_cents=15000)

        row = balance_service.recompute(TENANT, ring.id, D18)

        assert row.opening_qty == 10
        assert row.closing_qty == 10
        dates = [r.balance_date for r in balance_service.list_balances(TENANT, product_id=ring.id)]
        assert dates == [D16, D17, D18]

    def test_gap_between_rows_is_filled(self, db_session, ring):
        _append(ring, "ADDITION", 3, unit_value_cents=100)
        balance_service.recompute(TENANT, ring.id, D16)

        row = balance_service.recompute(TENANT, ring.id, date(2024, 1, 20))

        assert row.opening_qty == 3
        assert len(balance_service.list_balances(TENANT, product_id=ring.id)) == 5
        assert balance_service.verify_chain(TENANT, ring.id) == []

    def test_first_ever_day_has_zero_opening(self, db_session, ring):
        row = balance_service.recompute(TENANT, ring.id, D16)
        assert row.opening_qty == 0
        assert row.closing_qty == 0
        assert db_session.query(DailyBalance).count() == 1

    def test_gap_beyond_limit_raises_integrity_error(self, app, db_session, ring):
        _append(ring, "ADDITION", 1, when="2023-01-01T10:00:00")
        old_limit = app.config["BALANCE_MAX_GAP_DAYS"]
        app.config["BALANCE_MAX_GAP_DAYS"] = 30
        try:
            with pytest.raises(BalanceIntegrityError):
                balance_service.recompute(TENANT, ring.id, D16)
        finally:
            app.config["BALANCE_MAX_GAP_DAYS"] = old_limit


class TestRangeRecompute:
    """Ascending, chunked and cancellable range recompute."""

    def test_range_requires_ordered_dates(self, db_session, ring):
        with pytest.raises(ValidationError):
            balance_service.recompute_range(TENANT, ring.id, D18, D16)

    def test_range_chunks_and_commits(self, app, db_session, ring):
        _append(ring, "ADDITION", 2, unit_value_cents=100, when="2024-01-01T09:00:00")
        old_chunk = app.config["BALANCE_RECOMPUTE_CHUNK_DAYS"]
        app.config["BALANCE_RECOMPUTE_CHUNK_DAYS"] = 7
        try:
            result = balance_service.recompute_range(
                TENANT, ring.id, date(2024, 1, 1), date(2024, 1, 31), commit=True
            )
        finally:
            app.config["BALANCE_RECOMPUTE_CHUNK_DAYS"] = old_chunk

        assert result.days_processed == 31
        assert result.completed_through == date(2024, 1, 31)
        assert not result.cancelled
        assert result.rows[-1].closing_qty == 2

    def test_cancelled_range_stops_between_days(self, db_session, ring):
        _append(ring, "ADDITION", 1, unit_value_cents=100)
        cancel = threading.Event()
        cancel.set()

        result = balance_service.recompute_range(TENANT, ring.id, D16, D18, cancel_event=cancel)

        assert result.cancelled
        assert result.days_processed == 0
        assert result.completed_through is None
        assert db_session.query(DailyBalance).count() == 0

    def test_refresh_recomputes_existing_later_rows(self, db_session, ring):
        _append(ring, "ADDITION", 1, unit_value_cents=100)
        balance_service.recompute_range(TENANT, ring.id, D16, D18)

        _append(ring, "ADDITION", 4, when="2024-01-17T10:00:00", unit_value_cents=100)
        rows = balance_service.refresh_product_balances(TENANT, ring.id, D17)

        assert [r.balance_date for r in rows] == [D17, D18]
        assert rows[-1].closing_qty == 5

    def test_recompute_all_covers_active_products(self, db_session, ring, necklace, make_product):
        retired = make_product(is_active=False)
        _append(ring, "ADDITION", 2, unit_value_cents=100)
        _append(necklace, "ADDITION", 1, unit_value_cents=900)

        result = balance_service.recompute_all(TENANT, D16)

        assert sorted(result.succeeded) == sorted([ring.id, necklace.id])
        assert retired.id not in result.succeeded
        assert result.failed == {}


class TestValueDerivation:
    """unit value, then total value, then running average."""

    def test_half_up_rounding(self):
        assert _div_round_half_up(5, 2) == 3
        assert _div_round_half_up(4, 3) == 1
        assert _div_round_half_up(-5, 2) == -3

    def test_total_value_used_when_no_unit_value(self, db_session, ring):
        _append(ring, "ADDITION", 3, total_value_cents=1000)
        row = balance_service.recompute(TENANT, ring.id, D16)
        assert row.added_value_cents == 1000

    def test_sale_without_value_uses_running_average(self, db_session, ring):
        _append(ring, "ADDITION", 3, total_value_cents=1000)
        _append(ring, "SALE", 1, when="2024-01-16T12:00:00")

        row = balance_service.recompute(TENANT, ring.id, D16)

        # 1000 / 3 rounds to 333
        assert row.sold_value_cents == 333
        assert row.closing_value_cents == 667

    def test_transfer_legs_cancel_at_product_level(self, db_session, ring):
        _append(ring, "ADDITION", 1, unit_value_cents=50000)
        _append(ring, "TRANSFER_OUT", 1, when="2024-01-16T12:00:00")
        _append(ring, "TRANSFER_IN", 1, when="2024-01-16T12:00:00", location=Location(2, 2))

        row = balance_service.recompute(TENANT, ring.id, D16)

        assert row.transfer_out_value_cents == row.transfer_in_value_cents == 50000
        assert row.closing_qty == 1
        assert row.closing_value_cents == 50000
        assert (row.branch_id, row.counter_id) == (2, 2)

    def test_fold_is_pure(self):
        assert fold_movements([], opening_qty=4, opening_value_cents=400).closing_qty == 4


class TestReadPaths:
    """get/current/rollup/location reads."""

    def test_get_balance_synthesizes_zero_row(self, db_session, ring):
        data = balance_service.get_balance(TENANT, ring.id, D16)
        assert data["synthesized"] is True
        assert data["closing_qty"] == 0
        assert db_session.query(DailyBalance).count() == 0

    def test_get_balance_returns_stored_row(self, db_session, ring):
        _append(ring, "ADDITION", 2, unit_value_cents=100)
        balance_service.recompute(TENANT, ring.id, D16)
        data = balance_service.get_balance(TENANT, ring.id, D16)
        assert data["synthesized"] is False
        assert data["closing_qty"] == 2

    def test_current_stock_uses_latest_row(self, db_session, ring):
        assert balance_service.current_stock(TENANT, ring.id)["as_of_date"] is None
        _append(ring, "ADDITION", 2, unit_value_cents=100)
        balance_service.recompute_range(TENANT, ring.id, D16, D17)
        stock = balance_service.current_stock(TENANT, ring.id)
        assert stock["as_of_date"] == "2024-01-17"
        assert stock["closing_qty"] == 2

    def test_rollup_by_branch_and_category(self, db_session, ring, necklace, make_product):
        far = make_product(branch_id=2, counter_id=1)
        for product, qty in ((ring, 2), (necklace, 1), (far, 5)):
            _append(product, "ADDITION", qty, unit_value_cents=100)
            balance_service.recompute(TENANT, product.id, D16)

        by_branch = {r["branch_id"]: r for r in balance_service.rollup_balances(TENANT, D16, "branch")}
        assert by_branch[1]["closing_qty"] == 3
        assert by_branch[1]["product_count"] == 2
        assert by_branch[2]["closing_qty"] == 5

        by_category = {r["category_id"]: r for r in balance_service.rollup_balances(TENANT, D16, "category")}
        assert by_category[20]["closing_qty"] == 1

        with pytest.raises(ValidationError):
            balance_service.rollup_balances(TENANT, D16, "region")

    def test_location_activity_splits_transfer_legs(self, db_session, ring):
        _append(ring, "TRANSFER_OUT", 1, location=Location(1, 1))
        _append(ring, "TRANSFER_IN", 1, location=Location(2, 3))

        source = balance_service.location_activity(TENANT, D16, 1, counter_id=1)
        destination = balance_service.location_activity(TENANT, D16, 2, counter_id=3)

        assert source["transfer_out_qty"] == 1 and source["transfer_in_qty"] == 0
        assert destination["transfer_in_qty"] == 1 and destination["transfer_out_qty"] == 0


class TestVerifyChain:
    """verify_chain() reports tampered rows."""

    def test_detects_broken_reconciliation(self, db_session, ring):
        _append(ring, "ADDITION", 2, unit_value_cents=100)
        row = balance_service.recompute(TENANT, ring.id, D16)
        row.closing_qty = 7
        db_session.flush()

        violations = balance_service.verify_chain(TENANT, ring.id)

        assert [v["rule"] for v in violations] == ["reconciliation_qty"]
