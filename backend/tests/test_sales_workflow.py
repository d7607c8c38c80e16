# Overview: Pytest coverage for the sale workflow (checkout, payments, void, parked sales).

"""
Sale Workflow Tests

A sale commits its row, lines, stock deductions, payments and customer
counters together or not at all. A void reverses every stock deduction.
"""

import pytest

from posengine.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from posengine.models import Customer, OutboxMessage, Sale, SaleItem, SalePayment, StockMovement
from posengine.services.sales_service import PaymentInput, SaleItemInput


def _cash_sale(engine, location, variant, cash, *, quantity=1, amount=None, **kwargs):
    amount = variant.price_cents * quantity if amount is None else amount
    return engine.sales.create_sale(
        location.id,
        1,
        [SaleItemInput(variant.id, quantity)],
        [PaymentInput(cash.id, amount)],
        **kwargs,
    )


class TestCreateSale:
    def test_totals_fixed_at_creation(self, db_session, engine, location, variant, card, stock):
        stock(variant, location, 10)

        receipt = engine.sales.create_sale(
            location.id,
            1,
            [SaleItemInput(variant.id, 2, discount_cents=500, tax_cents=300)],
            [PaymentInput(card.id, 4600, reference_number="AUTH-1")],
            discount_cents=200,
            discount_reason="loyalty",
        )

        sale = engine.sales.get_sale(receipt.sale_id)
        assert sale.status == "COMPLETED"
        assert sale.subtotal_cents == 5000
        assert sale.discount_cents == 700
        assert sale.tax_cents == 300
        assert sale.total_cents == 4600
        assert receipt.total_cents == 4600
        assert sale.completed_at is not None

        item = sale.items[0]
        assert item.unit_price_cents == 2500
        assert item.original_price_cents == 2500
        assert item.line_total_cents == 4500

        payment = sale.payments[0]
        assert payment.amount_cents == 4600
        assert payment.change_cents == 0
        assert payment.reference_number == "AUTH-1"

    def test_price_override_keeps_original_price(self, db_session, engine, location, variant, cash, stock):
        stock(variant, location, 10)
        receipt = engine.sales.create_sale(
            location.id,
            1,
            [SaleItemInput(variant.id, 1, unit_price_cents=2000)],
            [PaymentInput(cash.id, 2000)],
        )
        item = engine.sales.get_sale(receipt.sale_id).items[0]
        assert item.unit_price_cents == 2000
        assert item.original_price_cents == 2000

        receipt = engine.sales.create_sale(
            location.id,
            1,
            [SaleItemInput(variant.id, 1, unit_price_cents=2000, original_price_cents=2500)],
            [PaymentInput(cash.id, 2000)],
        )
        item = engine.sales.get_sale(receipt.sale_id).items[0]
        assert item.original_price_cents == 2500

    def test_stock_deducted_with_sale_movements(self, db_session, engine, location, variant, cash, stock):
        stock(variant, location, 10)

        receipt = _cash_sale(engine, location, variant, cash, quantity=3)

        assert engine.stock.get_level(variant.id, location.id).quantity_on_hand == 7
        movement = db_session.query(StockMovement).filter_by(transaction_type="SALE").one()
        assert movement.quantity_change == -3
        assert movement.reference_type == "SALE"
        assert movement.reference_id == str(receipt.sale_id)

    def test_sale_may_oversell(self, db_session, engine, location, variant, cash, stock):
        stock(variant, location, 1)

        _cash_sale(engine, location, variant, cash)
        _cash_sale(engine, location, variant, cash)

        assert engine.stock.get_level(variant.id, location.id).quantity_on_hand == -1
        assert engine.stock.movement_total(variant.id, location.id) == -1

    def test_sale_numbers_are_sequential_per_location_and_day(
        self, db_session, engine, clock, location, second_location, variant, cash
    ):
        first = _cash_sale(engine, location, variant, cash)
        second = _cash_sale(engine, location, variant, cash)
        elsewhere = _cash_sale(engine, second_location, variant, cash)
        clock.advance(days=1)
        next_day = _cash_sale(engine, location, variant, cash)

        assert first.sale_number == "MAIN-20240115-0001"
        assert second.sale_number == "MAIN-20240115-0002"
        assert elsewhere.sale_number == "MALL-20240115-0001"
        assert next_day.sale_number == "MAIN-20240116-0001"

    def test_insufficient_payment_leaves_nothing(self, db_session, engine, location, variant, cash, stock):
        stock(variant, location, 10)

        with pytest.raises(ValidationError, match="insufficient payment"):
            _cash_sale(engine, location, variant, cash, amount=2499)

        assert db_session.query(Sale).count() == 0
        assert db_session.query(SalePayment).count() == 0
        assert db_session.query(StockMovement).filter_by(transaction_type="SALE").count() == 0
        assert engine.stock.get_level(variant.id, location.id).quantity_on_hand == 10

    def test_requires_items_and_payments(self, db_session, engine, location, variant, cash):
        with pytest.raises(ValidationError):
            engine.sales.create_sale(location.id, 1, [], [PaymentInput(cash.id, 100)])
        with pytest.raises(ValidationError):
            engine.sales.create_sale(location.id, 1, [SaleItemInput(variant.id, 1)], [])

    def test_quantity_below_one_rejected(self, db_session, engine, location, variant, cash):
        with pytest.raises(ValidationError, match="quantity"):
            engine.sales.create_sale(location.id, 1, [SaleItemInput(variant.id, 0)], [PaymentInput(cash.id, 0)])

    def test_unknown_variant_and_location(self, db_session, engine, location, variant, cash):
        with pytest.raises(NotFoundError):
            engine.sales.create_sale(location.id, 1, [SaleItemInput(9999, 1)], [PaymentInput(cash.id, 100)])
        with pytest.raises(NotFoundError):
            engine.sales.create_sale(9999, 1, [SaleItemInput(variant.id, 1)], [PaymentInput(cash.id, 2500)])
        assert db_session.query(Sale).count() == 0

    def test_unknown_payment_method_rejected(self, db_session, engine, location, variant, cash):
        with pytest.raises(ValidationError, match="payment method"):
            engine.sales.create_sale(location.id, 1, [SaleItemInput(variant.id, 1)], [PaymentInput(9999, 2500)])

    def test_negative_amount_rejected(self, db_session, engine, location, variant, cash):
        with pytest.raises(ValidationError):
            engine.sales.create_sale(
                location.id, 1, [SaleItemInput(variant.id, 1)], [PaymentInput(cash.id, -100)]
            )

    def test_unknown_customer_rejected(self, db_session, engine, location, variant, cash):
        with pytest.raises(NotFoundError):
            _cash_sale(engine, location, variant, cash, customer_id=9999)
        assert db_session.query(Sale).count() == 0

    def test_failure_mid_unit_rolls_everything_back(
        self, db_session, engine, location, variant, other_variant, cash, stock, monkeypatch
    ):
        stock(variant, location, 10)
        stock(other_variant, location, 10)
        original = engine.stock.apply_delta
        calls = []

        def failing_apply_delta(*args, **kwargs):
            calls.append(args)
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return original(*args, **kwargs)

        monkeypatch.setattr(engine.stock, "apply_delta", failing_apply_delta)

        with pytest.raises(RuntimeError):
            engine.sales.create_sale(
                location.id,
                1,
                [SaleItemInput(variant.id, 2), SaleItemInput(other_variant.id, 1)],
                [PaymentInput(cash.id, 6200)],
            )

        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleItem).count() == 0
        assert engine.stock.get_level(variant.id, location.id).quantity_on_hand == 10
        assert db_session.query(StockMovement).filter_by(transaction_type="SALE").count() == 0

    def test_events_after_commit(self, db_session, engine, location, variant, cash):
        receipt = _cash_sale(engine, location, variant, cash)

        topics = [m.topic for m in db_session.query(OutboxMessage).order_by(OutboxMessage.id)]
        assert topics == ["sale-completed", "inventory-updated"]
        completed = db_session.query(OutboxMessage).filter_by(topic="sale-completed").one()
        assert completed.room == f"location-{location.id}"
        assert completed.payload["sale_number"] == receipt.sale_number


class TestPayments:
    def test_cash_over_tender_records_change(self, db_session, engine, location, variant, cash):
        receipt = _cash_sale(engine, location, variant, cash, amount=3000)

        sale = engine.sales.get_sale(receipt.sale_id)
        assert receipt.change_cents == 500
        assert sale.payments[0].amount_cents == 3000
        assert sale.payments[0].change_cents == 500
        assert sale.paid_cents == 3000
        assert sale.change_cents == 500

    def test_card_over_tender_rejected(self, db_session, engine, location, variant, card):
        with pytest.raises(ValidationError, match="Non-cash"):
            engine.sales.create_sale(location.id, 1, [SaleItemInput(variant.id, 1)], [PaymentInput(card.id, 2600)])
        assert db_session.query(Sale).count() == 0

    def test_split_tender(self, db_session, engine, location, variant, cash, card):
        receipt = engine.sales.create_sale(
            location.id,
            1,
            [SaleItemInput(variant.id, 2)],
            [PaymentInput(card.id, 3000), PaymentInput(cash.id, 2500)],
        )

        sale = engine.sales.get_sale(receipt.sale_id)
        assert [p.amount_cents for p in sale.payments] == [3000, 2500]
        assert [p.change_cents for p in sale.payments] == [0, 500]

    def test_payment_after_settled_rejected(self, db_session, engine, location, variant, cash, card):
        with pytest.raises(ValidationError, match="already fully paid"):
            engine.sales.create_sale(
                location.id,
                1,
                [SaleItemInput(variant.id, 1)],
                [PaymentInput(cash.id, 2500), PaymentInput(card.id, 100)],
            )


class TestShiftAttribution:
    def test_open_shift_is_stamped(self, db_session, engine, location, variant, cash):
        shift = engine.shifts.clock_in(1, location.id, 5000)
        receipt = _cash_sale(engine, location, variant, cash)
        assert engine.sales.get_sale(receipt.sale_id).shift_id == shift.id

    def test_without_shift(self, db_session, engine, location, variant, cash):
        receipt = _cash_sale(engine, location, variant, cash)
        assert engine.sales.get_sale(receipt.sale_id).shift_id is None

    def test_explicit_missing_shift(self, db_session, engine, location, variant, cash):
        with pytest.raises(NotFoundError):
            _cash_sale(engine, location, variant, cash, shift_id=9999)

    def test_explicit_closed_shift(self, db_session, engine, location, variant, cash):
        shift = engine.shifts.clock_in(1, location.id, 0)
        engine.shifts.clock_out(1, 0)
        with pytest.raises(ConflictError):
            _cash_sale(engine, location, variant, cash, shift_id=shift.id)

    def test_shift_at_other_location(self, db_session, engine, location, second_location, variant, cash):
        engine.shifts.clock_in(1, second_location.id, 0)
        with pytest.raises(ValidationError, match="different location"):
            _cash_sale(engine, location, variant, cash)


class TestCustomer:
    def test_counters_and_sms_receipt(self, db_session, engine, location, variant, cash, customer):
        receipt = _cash_sale(engine, location, variant, cash, quantity=2, customer_id=customer.id)
        _cash_sale(engine, location, variant, cash, customer_id=customer.id)

        refreshed = db_session.get(Customer, customer.id)
        db_session.refresh(refreshed)
        assert refreshed.total_spent_cents == 7500
        assert refreshed.visit_count == 2
        assert refreshed.last_visit_at is not None

        sms = db_session.query(OutboxMessage).filter_by(topic="sms-receipt").order_by(OutboxMessage.id).all()
        assert len(sms) == 2
        assert sms[0].channel == "notification"
        assert sms[0].payload["phone"] == "+15550100"
        assert sms[0].payload["sale_number"] == receipt.sale_number

    def test_no_sms_without_opt_in(self, db_session, engine, location, variant, cash, customer):
        customer.sms_opt_in = False
        db_session.commit()

        _cash_sale(engine, location, variant, cash, customer_id=customer.id)
        assert db_session.query(OutboxMessage).filter_by(topic="sms-receipt").count() == 0


class TestVoid:
    def test_void_restores_stock(self, db_session, engine, location, variant, cash, stock):
        stock(variant, location, 10)
        receipt = _cash_sale(engine, location, variant, cash, quantity=3)
        assert engine.stock.get_level(variant.id, location.id).quantity_on_hand == 7

        sale = engine.sales.void_sale(receipt.sale_id, 99, "customer changed mind")

        assert sale.status == "VOIDED"
        assert sale.voided_by == 99
        assert sale.void_reason == "customer changed mind"
        assert engine.stock.get_level(variant.id, location.id).quantity_on_hand == 10

        changes = [
            (m.transaction_type, m.quantity_change)
            for m in db_session.query(StockMovement)
            .filter_by(reference_type="SALE", reference_id=str(receipt.sale_id))
            .order_by(StockMovement.id)
        ]
        assert changes == [("SALE", -3), ("VOID-RESTORE", 3)]
        assert db_session.query(OutboxMessage).filter_by(topic="sale-voided").count() == 1

    def test_void_requires_approver_and_reason(self, db_session, engine, location, variant, cash):
        receipt = _cash_sale(engine, location, variant, cash)
        with pytest.raises(ForbiddenError):
            engine.sales.void_sale(receipt.sale_id, None, "oops")
        with pytest.raises(ValidationError):
            engine.sales.void_sale(receipt.sale_id, 99, "  ")
        assert engine.sales.get_sale(receipt.sale_id).status == "COMPLETED"

    def test_double_void_is_a_conflict(self, db_session, engine, location, variant, cash, stock):
        stock(variant, location, 5)
        receipt = _cash_sale(engine, location, variant, cash)
        engine.sales.void_sale(receipt.sale_id, 99, "first")

        with pytest.raises(ConflictError) as excinfo:
            engine.sales.void_sale(receipt.sale_id, 99, "second")

        assert isinstance(excinfo.value, ValidationError)
        assert engine.stock.get_level(variant.id, location.id).quantity_on_hand == 5
        assert db_session.query(StockMovement).filter_by(transaction_type="VOID-RESTORE").count() == 1

    def test_void_missing_sale(self, db_session, engine):
        with pytest.raises(NotFoundError):
            engine.sales.void_sale(9999, 99, "gone")


class TestParkedSales:
    def test_park_touches_no_stock(self, db_session, engine, location, variant, stock):
        stock(variant, location, 10)

        parked = engine.sales.park_sale(location.id, 1, [SaleItemInput(variant.id, 2)], notes="back soon")

        assert parked.status == "PARKED"
        assert parked.is_parked is True
        assert parked.sale_number == "MAIN-20240115-P0001"
        assert parked.total_cents == 5000
        assert engine.stock.get_level(variant.id, location.id).quantity_on_hand == 10
        assert db_session.query(SalePayment).count() == 0

    def test_retrieve_list_and_delete(self, db_session, engine, location, variant):
        parked = engine.sales.park_sale(location.id, 1, [SaleItemInput(variant.id, 1)])

        assert engine.sales.retrieve_parked(parked.id).id == parked.id
        assert [s.id for s in engine.sales.list_parked(location.id)] == [parked.id]

        engine.sales.delete_parked(parked.id)
        assert engine.sales.list_parked(location.id) == []
        assert db_session.query(SaleItem).count() == 0
        with pytest.raises(NotFoundError):
            engine.sales.retrieve_parked(parked.id)

    def test_convert_parked_sale(self, db_session, engine, location, variant, other_variant, cash, stock):
        stock(variant, location, 10)
        parked = engine.sales.park_sale(location.id, 1, [SaleItemInput(variant.id, 1)])

        receipt = engine.sales.create_sale(
            location.id,
            1,
            [SaleItemInput(variant.id, 2), SaleItemInput(other_variant.id, 1)],
            [PaymentInput(cash.id, 6200)],
            parked_sale_id=parked.id,
        )

        assert receipt.sale_id == parked.id
        assert receipt.sale_number == "MAIN-20240115-0001"
        sale = engine.sales.get_sale(parked.id)
        assert sale.status == "COMPLETED"
        assert sale.is_parked is False
        assert len(sale.items) == 2
        assert engine.stock.get_level(variant.id, location.id).quantity_on_hand == 8
        assert engine.sales.list_parked(location.id) == []

        with pytest.raises(ConflictError):
            engine.sales.retrieve_parked(parked.id)
        with pytest.raises(ConflictError):
            engine.sales.delete_parked(parked.id)

    def test_convert_twice_is_a_conflict(self, db_session, engine, location, variant, cash):
        parked = engine.sales.park_sale(location.id, 1, [SaleItemInput(variant.id, 1)])
        _cash_sale(engine, location, variant, cash, parked_sale_id=parked.id)

        with pytest.raises(ConflictError):
            _cash_sale(engine, location, variant, cash, parked_sale_id=parked.id)
        assert db_session.query(Sale).count() == 1


class TestQueries:
    def test_list_sales_filters(self, db_session, engine, clock, location, variant, cash):
        first = _cash_sale(engine, location, variant, cash)
        clock.advance(hours=1)
        second = _cash_sale(engine, location, variant, cash)
        engine.sales.void_sale(first.sale_id, 99, "test")

        assert [s.id for s in engine.sales.list_sales(location_id=location.id)] == [second.sale_id, first.sale_id]
        assert [s.id for s in engine.sales.list_sales(status="VOIDED")] == [first.sale_id]
        with pytest.raises(ValidationError):
            engine.sales.list_sales(status="LOST")

    def test_sale_to_dict_with_lines(self, db_session, engine, location, variant, cash):
        receipt = _cash_sale(engine, location, variant, cash)
        data = engine.sales.get_sale(receipt.sale_id).to_dict(include_lines=True)
        assert data["sale_number"] == receipt.sale_number
        assert len(data["items"]) == 1
        assert len(data["payments"]) == 1

    def test_discount_requires_approval(self, db_session, engine):
        assert engine.sales.discount_requires_approval(10000, discount_cents=1000) == {
            "requires_approval": False,
            "max_without_approval": 10,
        }
        assert engine.sales.discount_requires_approval(10000, discount_cents=1001)["requires_approval"] is True
        assert engine.sales.discount_requires_approval(10000, discount_pct=15)["requires_approval"] is True
        with pytest.raises(ValidationError):
            engine.sales.discount_requires_approval(10000)
