# Overview: Pytest coverage for shift clock-in/clock-out, cash variance and reconciliation.

"""
Shift Ledger Tests

Expected drawer cash is opening cash plus cash tendered minus change given,
over the shift's completed sales. Figures are frozen at clock-out.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from posengine.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from posengine.models import Shift
from posengine.services.sales_service import PaymentInput, SaleItemInput
from posengine.services.shift_service import classify_variance


def _sell(engine, location, variant, method, *, price, tendered):
    return engine.sales.create_sale(
        location.id,
        1,
        [SaleItemInput(variant.id, 1, unit_price_cents=price)],
        [PaymentInput(method.id, tendered)],
    )


class TestClockIn:
    def test_clock_in_opens_shift(self, db_session, engine, clock, location):
        shift = engine.shifts.clock_in(1, location.id, 5000, terminal="TILL-1")

        assert shift.status == "OPEN"
        assert shift.opening_cash_cents == 5000
        assert shift.terminal == "TILL-1"
        assert shift.opened_at == clock.now
        assert engine.shifts.open_shift_for(1).id == shift.id

    def test_second_clock_in_rejected(self, db_session, engine, location):
        engine.shifts.clock_in(1, location.id, 5000)

        with pytest.raises(ValidationError, match="shift already open"):
            engine.shifts.clock_in(1, location.id, 1000)
        assert db_session.query(Shift).count() == 1

    def test_other_actors_are_independent(self, db_session, engine, location):
        engine.shifts.clock_in(1, location.id, 0)
        engine.shifts.clock_in(2, location.id, 0)
        assert db_session.query(Shift).filter_by(status="OPEN").count() == 2

    def test_clock_in_after_close(self, db_session, engine, location):
        engine.shifts.clock_in(1, location.id, 0)
        engine.shifts.clock_out(1, 0)
        engine.shifts.clock_in(1, location.id, 0)
        assert db_session.query(Shift).count() == 2

    def test_unknown_location(self, db_session, engine):
        with pytest.raises(NotFoundError):
            engine.shifts.clock_in(1, 9999, 0)

    def test_negative_opening_cash(self, db_session, engine, location):
        with pytest.raises(ValidationError):
            engine.shifts.clock_in(1, location.id, -1)

    def test_partial_unique_index(self, db_session, location):
        db_session.add(Shift(actor_id=5, location_id=location.id, status="CLOSED", opening_cash_cents=0))
        db_session.add(Shift(actor_id=5, location_id=location.id, status="OPEN", opening_cash_cents=0))
        db_session.commit()

        db_session.add(Shift(actor_id=5, location_id=location.id, status="OPEN", opening_cash_cents=0))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()


class TestClockOut:
    def test_variance_within_threshold(self, db_session, engine, location, variant, cash):
        engine.shifts.clock_in(1, location.id, 5000)
        _sell(engine, location, variant, cash, price=11500, tendered=12000)

        summary = engine.shifts.clock_out(1, 16600)

        assert summary.cash_in_cents == 12000
        assert summary.cash_out_cents == 500
        assert summary.expected_cash_cents == 16500
        assert summary.variance_cents == 100
        assert summary.variance_status == "OK"

        shift = engine.shifts.get_shift(summary.shift_id)
        assert shift.status == "CLOSED"
        assert shift.expected_cash_cents == 16500
        assert shift.cash_variance_cents == 100
        assert shift.closed_at is not None
        assert engine.shifts.open_shift_for(1) is None

    def test_variance_beyond_threshold_flagged(self, db_session, engine, location, variant, cash):
        engine.shifts.clock_in(1, location.id, 5000)
        _sell(engine, location, variant, cash, price=11500, tendered=12000)

        summary = engine.shifts.clock_out(1, 15000, notes="short")

        assert summary.variance_cents == -1500
        assert summary.variance_status == "FLAGGED"
        assert engine.shifts.get_shift(summary.shift_id).notes == "short"

    def test_card_payments_are_not_drawer_cash(self, db_session, engine, location, variant, cash, card):
        engine.shifts.clock_in(1, location.id, 2000)
        _sell(engine, location, variant, card, price=3000, tendered=3000)
        _sell(engine, location, variant, cash, price=1000, tendered=1000)

        summary = engine.shifts.clock_out(1, 3000)
        assert summary.expected_cash_cents == 3000
        assert summary.variance_cents == 0

    def test_voided_sales_are_excluded(self, db_session, engine, location, variant, cash):
        engine.shifts.clock_in(1, location.id, 1000)
        receipt = _sell(engine, location, variant, cash, price=2000, tendered=2000)
        engine.sales.void_sale(receipt.sale_id, 99, "mistake")

        summary = engine.shifts.clock_out(1, 1000)
        assert summary.expected_cash_cents == 1000

    def test_figures_frozen_after_close(self, db_session, engine, location, variant, cash):
        engine.shifts.clock_in(1, location.id, 1000)
        receipt = _sell(engine, location, variant, cash, price=2000, tendered=2000)
        summary = engine.shifts.clock_out(1, 3000)

        engine.sales.void_sale(receipt.sale_id, 99, "after close")

        shift = engine.shifts.get_shift(summary.shift_id)
        db_session.refresh(shift)
        assert shift.expected_cash_cents == 3000
        assert shift.cash_variance_cents == 0

    def test_no_open_shift(self, db_session, engine):
        with pytest.raises(NotFoundError):
            engine.shifts.clock_out(1, 0)

    def test_threshold_boundary(self):
        assert classify_variance(500, 500) == "OK"
        assert classify_variance(-500, 500) == "OK"
        assert classify_variance(501, 500) == "FLAGGED"


class TestReconcile:
    def test_reconcile_closed_shift(self, db_session, engine, clock, location):
        engine.shifts.clock_in(1, location.id, 0)
        summary = engine.shifts.clock_out(1, 0)

        shift = engine.shifts.reconcile(summary.shift_id, 99, notes="counted twice")

        assert shift.status == "RECONCILED"
        assert shift.reconciled_by == 99
        assert shift.reconciled_at == clock.now
        assert shift.reconciliation_notes == "counted twice"

    def test_reconcile_requires_approver(self, db_session, engine, location):
        engine.shifts.clock_in(1, location.id, 0)
        summary = engine.shifts.clock_out(1, 0)
        with pytest.raises(ForbiddenError):
            engine.shifts.reconcile(summary.shift_id, None)

    def test_open_shift_cannot_be_reconciled(self, db_session, engine, location):
        shift = engine.shifts.clock_in(1, location.id, 0)
        with pytest.raises(ConflictError):
            engine.shifts.reconcile(shift.id, 99)

    def test_reconcile_twice(self, db_session, engine, location):
        engine.shifts.clock_in(1, location.id, 0)
        summary = engine.shifts.clock_out(1, 0)
        engine.shifts.reconcile(summary.shift_id, 99)
        with pytest.raises(ConflictError):
            engine.shifts.reconcile(summary.shift_id, 99)

    def test_reconcile_missing_shift(self, db_session, engine):
        with pytest.raises(NotFoundError):
            engine.shifts.reconcile(9999, 99)


class TestQueries:
    def test_current_shift_summary(self, db_session, engine, location, variant, cash, card):
        assert engine.shifts.current_shift(1) is None

        engine.shifts.clock_in(1, location.id, 500)
        _sell(engine, location, variant, cash, price=1000, tendered=1500)
        _sell(engine, location, variant, card, price=2000, tendered=2000)

        current = engine.shifts.current_shift(1)
        assert current["status"] == "OPEN"
        assert current["summary"] == {
            "transaction_count": 2,
            "total_sales_cents": 3000,
            "cash_total_cents": 1000,
            "card_total_cents": 2000,
        }

    def test_shift_detail(self, db_session, engine, location, variant, cash):
        shift = engine.shifts.clock_in(1, location.id, 0)
        _sell(engine, location, variant, cash, price=1000, tendered=1000)
        receipt = _sell(engine, location, variant, cash, price=700, tendered=700)
        engine.sales.void_sale(receipt.sale_id, 99, "wrong item")

        detail = engine.shifts.shift_detail(shift.id)
        assert detail["shift"]["id"] == shift.id
        assert detail["sales_summary"]["transaction_count"] == 1
        assert detail["sales_summary"]["void_count"] == 1
        assert detail["payment_breakdown"] == [
            {"method_name": "Cash", "method_type": "CASH", "total_cents": 1000}
        ]

    def test_history_newest_first(self, db_session, engine, clock, location, second_location):
        first = engine.shifts.clock_in(1, location.id, 0)
        engine.shifts.clock_out(1, 0)
        clock.advance(hours=8)
        second = engine.shifts.clock_in(2, second_location.id, 0)

        assert [s.id for s in engine.shifts.history()] == [second.id, first.id]
        assert [s.id for s in engine.shifts.history(actor_id=1)] == [first.id]
        assert [s.id for s in engine.shifts.history(location_id=second_location.id)] == [second.id]
        assert [s.id for s in engine.shifts.history(start=clock.now)] == [second.id]
