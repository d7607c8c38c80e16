# Overview: Sale workflow; checkout, void and parked-sale handling over the stock ledger.

"""
Sale Workflow

WHY: A sale moves money and stock together. The sale row, its lines, the
stock deductions, the payments and the customer counters commit as one unit
or not at all.

LIFECYCLE:
- PARKED: saved cart, no stock movement, no payments
- COMPLETED: committed with SALE movements and payments
- VOIDED: manager reversal; each line is restored with a VOID-RESTORE movement
- REFUNDED: set by the returns process, never by this workflow

TOTALS (fixed at creation, never recomputed):
- subtotal = SUM(unit_price * quantity)
- discount = sale-level discount + SUM(line discounts)
- tax      = SUM(line tax)
- total    = subtotal - discount + tax

PAYMENTS:
- amount is what the customer handed over with that method
- a non-cash tender may not exceed the remaining balance
- a cash over-tender records change = amount - remaining
- SUM(amount) >= total or the sale is rejected ("insufficient payment")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select, update

from ..errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..models import Customer, Location, PaymentMethod, ProductVariant, Sale, SaleItem, SalePayment, Shift
from ..states import MovementType, PaymentMethodType, SaleStatus, ShiftStatus, coerce_status, require_transition
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_atomic
from .sequence_service import next_sequence_value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaleItemInput:
    variant_id: int
    quantity: int
    unit_price_cents: int | None = None
    original_price_cents: int | None = None
    discount_cents: int = 0
    tax_cents: int = 0


@dataclass(frozen=True)
class PaymentInput:
    payment_method_id: int
    amount_cents: int
    reference_number: str | None = None


@dataclass(frozen=True)
class SaleReceipt:
    sale_id: int
    sale_number: str
    total_cents: int
    change_cents: int = 0

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "sale_number": self.sale_number,
            "total_cents": self.total_cents,
            "change_cents": self.change_cents,
        }


@dataclass
class _Totals:
    subtotal_cents: int = 0
    discount_cents: int = 0
    tax_cents: int = 0
    lines: list[dict] = field(default_factory=list)

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents - self.discount_cents + self.tax_cents


def _non_negative_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer", details={name: value})
    return value


class SaleWorkflow:
    def __init__(self, session, stock, shifts, outbox, *, clock=utcnow, max_discount_pct: int = 10):
        self.session = session
        self.stock = stock
        self.shifts = shifts
        self.outbox = outbox
        self.clock = clock
        self.max_discount_pct = max_discount_pct

    # =========================================================================
    # VALIDATION / PRICING
    # =========================================================================

    def _price_items(self, items: list[SaleItemInput], discount_cents: int) -> _Totals:
        if not items:
            raise ValidationError("At least one item is required")
        _non_negative_int(discount_cents, "discount_cents")

        totals = _Totals(discount_cents=discount_cents)
        for item in items:
            if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity < 1:
                raise ValidationError(
                    "Item quantity must be at least 1",
                    details={"variant_id": item.variant_id, "quantity": item.quantity},
                )

            variant = self.session.get(ProductVariant, item.variant_id)
            if variant is None:
                raise NotFoundError("Variant", details={"variant_id": item.variant_id})

            unit_price = variant.price_cents if item.unit_price_cents is None else item.unit_price_cents
            _non_negative_int(unit_price, "unit_price_cents")
            original_price = unit_price if item.original_price_cents is None else item.original_price_cents
            _non_negative_int(original_price, "original_price_cents")
            line_discount = _non_negative_int(item.discount_cents, "discount_cents")
            line_tax = _non_negative_int(item.tax_cents, "tax_cents")

            gross = unit_price * item.quantity
            if line_discount > gross:
                raise ValidationError(
                    "Line discount exceeds line amount",
                    details={"variant_id": item.variant_id, "discount_cents": line_discount, "line_cents": gross},
                )

            totals.subtotal_cents += gross
            totals.discount_cents += line_discount
            totals.tax_cents += line_tax
            totals.lines.append({
                "variant_id": item.variant_id,
                "quantity": item.quantity,
                "unit_price_cents": unit_price,
                "original_price_cents": original_price,
                "discount_cents": line_discount,
                "tax_cents": line_tax,
                "line_total_cents": gross - line_discount,
            })

        if totals.discount_cents > totals.subtotal_cents:
            raise ValidationError(
                "Discount exceeds subtotal",
                details={"discount_cents": totals.discount_cents, "subtotal_cents": totals.subtotal_cents},
            )
        return totals

    def _allocate_payments(self, total_cents: int, payments: list[PaymentInput]) -> list[dict]:
        """
        Split tenders against the total, in order.

        Stricter than plain coverage: only cash may exceed the remaining
        balance (the overage is change) and no tender may follow once the
        balance is settled.
        """
        if not payments:
            raise ValidationError("At least one payment is required")

        remaining = total_cents
        rows = []
        for index, payment in enumerate(payments):
            amount = _non_negative_int(payment.amount_cents, "amount_cents")

            method = self.session.get(PaymentMethod, payment.payment_method_id)
            if method is None or not method.is_active:
                raise ValidationError(
                    "Invalid payment method",
                    details={"payment_method_id": payment.payment_method_id},
                )

            if index > 0 and remaining <= 0:
                raise ValidationError(
                    "Sale is already fully paid",
                    details={"payment_method_id": payment.payment_method_id, "amount_cents": amount},
                )

            change = 0
            if amount > remaining:
                if method.method_type != PaymentMethodType.CASH.value:
                    raise ValidationError(
                        "Non-cash payment cannot exceed the remaining balance",
                        details={"remaining_cents": remaining, "amount_cents": amount},
                    )
                change = amount - max(remaining, 0)

            remaining -= amount
            rows.append({
                "payment_method_id": method.id,
                "amount_cents": amount,
                "tendered_cents": amount,
                "change_cents": change,
                "reference_number": payment.reference_number,
            })

        if remaining > 0:
            raise ValidationError(
                "insufficient payment",
                details={"total_cents": total_cents, "paid_cents": total_cents - remaining},
            )
        return rows

    def _resolve_shift(self, actor_id: int, location_id: int, shift_id: int | None) -> int | None:
        if shift_id is None:
            shift = self.shifts.open_shift_for(actor_id)
            if shift is None:
                return None
        else:
            shift = self.session.get(Shift, shift_id)
            if shift is None:
                raise NotFoundError("Shift", details={"shift_id": shift_id})
            if shift.status != ShiftStatus.OPEN.value:
                raise ConflictError(
                    "Shift is not open",
                    details={"shift_id": shift_id, "status": shift.status},
                )

        if shift.location_id != location_id:
            raise ValidationError(
                "Shift belongs to a different location",
                details={"shift_id": shift.id, "shift_location_id": shift.location_id, "location_id": location_id},
            )
        return shift.id

    def _location(self, location_id: int) -> Location:
        location = self.session.get(Location, location_id)
        if location is None:
            raise NotFoundError("Location", details={"location_id": location_id})
        return location

    def _sale_number(self, location: Location, now: datetime, *, parked: bool = False) -> str:
        day = f"{now:%Y%m%d}"
        key = f"{'PARKED' if parked else 'SALE'}-{day}"
        seq = next_sequence_value(self.session, location_id=location.id, sequence_key=key)
        if parked:
            return f"{location.code}-{day}-P{seq:04d}"
        return f"{location.code}-{day}-{seq:04d}"

    # =========================================================================
    # CHECKOUT
    # =========================================================================

    def create_sale(
        self,
        location_id: int,
        actor_id: int,
        items: list[SaleItemInput],
        payments: list[PaymentInput],
        *,
        shift_id: int | None = None,
        customer_id: int | None = None,
        discount_cents: int = 0,
        discount_reason: str | None = None,
        notes: str | None = None,
        parked_sale_id: int | None = None,
    ) -> SaleReceipt:
        """
        Complete a sale.

        Atomic unit, in order: sale row (COMPLETED), each line with its SALE
        stock delta, payments, customer counters. Stock may go negative.
        When parked_sale_id is given, that parked row becomes the completed
        sale inside the same unit.

        Raises:
            ValidationError: bad items, bad payments, "insufficient payment"
            NotFoundError: location, variant, shift, customer or parked sale missing
            ConflictError: shift not open, parked sale already converted
        """
        totals = self._price_items(items, discount_cents)
        total_cents = totals.total_cents

        def _op() -> SaleReceipt:
            location = self._location(location_id)
            payment_rows = self._allocate_payments(total_cents, payments)
            resolved_shift_id = self._resolve_shift(actor_id, location_id, shift_id)

            customer = None
            if customer_id is not None:
                customer = self.session.get(Customer, customer_id)
                if customer is None:
                    raise NotFoundError("Customer", details={"customer_id": customer_id})

            now = self.clock()
            sale_number = self._sale_number(location, now)

            if parked_sale_id is not None:
                sale = lock_for_update(self.session.query(Sale).filter_by(id=parked_sale_id)).first()
                if sale is None:
                    raise NotFoundError("Parked sale", details={"sale_id": parked_sale_id})
                require_transition(sale.status, SaleStatus.COMPLETED, entity="sale")
                if sale.location_id != location_id:
                    raise ValidationError(
                        "Parked sale belongs to a different location",
                        details={"sale_id": parked_sale_id, "location_id": sale.location_id},
                    )
                sale.items.clear()
                self.session.flush()
            else:
                sale = Sale(location_id=location_id)
                self.session.add(sale)

            sale.sale_number = sale_number
            sale.shift_id = resolved_shift_id
            sale.customer_id = customer_id
            sale.actor_id = actor_id
            sale.subtotal_cents = totals.subtotal_cents
            sale.discount_cents = totals.discount_cents
            sale.discount_reason = discount_reason
            sale.tax_cents = totals.tax_cents
            sale.total_cents = total_cents
            sale.status = SaleStatus.COMPLETED.value
            sale.is_parked = False
            sale.notes = notes
            sale.created_at = now
            sale.completed_at = now
            self.session.flush()

            for line in totals.lines:
                sale.items.append(SaleItem(**line))
                self.stock.apply_delta(
                    line["variant_id"],
                    location_id,
                    -line["quantity"],
                    MovementType.SALE,
                    reference_type="SALE",
                    reference_id=sale.id,
                    actor_id=actor_id,
                )

            for row in payment_rows:
                sale.payments.append(SalePayment(created_at=now, **row))

            if customer is not None:
                self.session.execute(
                    update(Customer)
                    .where(Customer.id == customer.id)
                    .values(
                        total_spent_cents=Customer.total_spent_cents + total_cents,
                        visit_count=Customer.visit_count + 1,
                        last_visit_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )

            self.session.flush()
            return SaleReceipt(
                sale_id=sale.id,
                sale_number=sale.sale_number,
                total_cents=total_cents,
                change_cents=sum(row["change_cents"] for row in payment_rows),
            )

        receipt = run_atomic(self.session, _op)
        logger.info("Sale %s completed at location %s (total %s)", receipt.sale_number, location_id, receipt.total_cents)

        self.outbox.publish_event(
            "sale-completed",
            {"sale_id": receipt.sale_id, "sale_number": receipt.sale_number, "total_cents": receipt.total_cents},
            location_id=location_id,
        )
        self.outbox.publish_event(
            "inventory-updated",
            {"source": "sale", "sale_id": receipt.sale_id},
            location_id=location_id,
        )
        if customer_id is not None:
            self._queue_receipt_sms(customer_id, receipt)
        return receipt

    def _queue_receipt_sms(self, customer_id: int, receipt: SaleReceipt) -> None:
        customer = self.session.get(Customer, customer_id)
        if customer is None or not customer.sms_opt_in or not customer.phone:
            return
        self.outbox.queue_notification(
            "sms-receipt",
            {
                "customer_id": customer.id,
                "phone": customer.phone,
                "sale_id": receipt.sale_id,
                "sale_number": receipt.sale_number,
                "total_cents": receipt.total_cents,
            },
        )

    # =========================================================================
    # VOID
    # =========================================================================

    def void_sale(self, sale_id: int, approver_actor_id: int | None, reason: str) -> Sale:
        """
        Void a COMPLETED sale and put its stock back.

        The approver has already been verified by the caller (manager PIN);
        only its presence is checked here.
        """
        if not approver_actor_id:
            raise ForbiddenError("Manager approval is required to void a sale")
        if not reason or not reason.strip():
            raise ValidationError("Void reason is required")

        def _op() -> Sale:
            sale = lock_for_update(self.session.query(Sale).filter_by(id=sale_id)).first()
            if sale is None:
                raise NotFoundError("Sale", details={"sale_id": sale_id})
            require_transition(sale.status, SaleStatus.VOIDED, entity="sale")

            now = self.clock()
            sale.status = SaleStatus.VOIDED.value
            sale.voided_by = approver_actor_id
            sale.voided_at = now
            sale.void_reason = reason.strip()[:255]
            self.session.flush()

            for item in sale.items:
                self.stock.apply_delta(
                    item.variant_id,
                    sale.location_id,
                    item.quantity,
                    MovementType.VOID_RESTORE,
                    reference_type="SALE",
                    reference_id=sale.id,
                    actor_id=approver_actor_id,
                    notes=sale.void_reason,
                )
            return sale

        sale = run_atomic(self.session, _op)
        logger.info("Sale %s voided by %s", sale.sale_number, approver_actor_id)

        self.outbox.publish_event(
            "sale-voided",
            {"sale_id": sale.id, "sale_number": sale.sale_number},
            location_id=sale.location_id,
        )
        self.outbox.publish_event(
            "inventory-updated",
            {"source": "void", "sale_id": sale.id},
            location_id=sale.location_id,
        )
        return sale

    # =========================================================================
    # PARKED SALES
    # =========================================================================

    def park_sale(
        self,
        location_id: int,
        actor_id: int,
        items: list[SaleItemInput],
        *,
        customer_id: int | None = None,
        discount_cents: int = 0,
        discount_reason: str | None = None,
        notes: str | None = None,
    ) -> Sale:
        """Save a cart as PARKED. Nothing touches stock or payments."""
        totals = self._price_items(items, discount_cents)

        def _op() -> Sale:
            location = self._location(location_id)
            if customer_id is not None and self.session.get(Customer, customer_id) is None:
                raise NotFoundError("Customer", details={"customer_id": customer_id})

            now = self.clock()
            sale = Sale(
                sale_number=self._sale_number(location, now, parked=True),
                location_id=location_id,
                customer_id=customer_id,
                actor_id=actor_id,
                subtotal_cents=totals.subtotal_cents,
                discount_cents=totals.discount_cents,
                discount_reason=discount_reason,
                tax_cents=totals.tax_cents,
                total_cents=totals.total_cents,
                status=SaleStatus.PARKED.value,
                is_parked=True,
                notes=notes,
                created_at=now,
            )
            sale.items = [SaleItem(**line) for line in totals.lines]
            self.session.add(sale)
            self.session.flush()
            return sale

        sale = run_atomic(self.session, _op)
        logger.info("Sale %s parked at location %s", sale.sale_number, location_id)
        return sale

    def _get_parked(self, sale_id: int) -> Sale:
        sale = self.session.get(Sale, sale_id)
        if sale is None:
            raise NotFoundError("Parked sale", details={"sale_id": sale_id})
        if sale.status != SaleStatus.PARKED.value:
            raise ConflictError("Sale is not parked", details={"sale_id": sale_id, "status": sale.status})
        return sale

    def retrieve_parked(self, sale_id: int) -> Sale:
        """Read a parked cart for editing. Never mutates; re-submit through create_sale."""
        return self._get_parked(sale_id)

    def delete_parked(self, sale_id: int) -> None:
        def _op() -> None:
            sale = self._get_parked(sale_id)
            self.session.delete(sale)
            self.session.flush()

        run_atomic(self.session, _op)
        logger.info("Parked sale %s deleted", sale_id)

    def list_parked(self, location_id: int) -> list[Sale]:
        return list(
            self.session.execute(
                select(Sale)
                .where(Sale.location_id == location_id, Sale.status == SaleStatus.PARKED.value)
                .order_by(Sale.created_at.desc(), Sale.id.desc())
            ).scalars()
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_sale(self, sale_id: int) -> Sale:
        sale = self.session.get(Sale, sale_id)
        if sale is None:
            raise NotFoundError("Sale", details={"sale_id": sale_id})
        return sale

    def list_sales(
        self,
        *,
        location_id: int | None = None,
        status=None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
    ) -> list[Sale]:
        stmt = select(Sale)
        if location_id is not None:
            stmt = stmt.where(Sale.location_id == location_id)
        if status is not None:
            stmt = stmt.where(Sale.status == coerce_status(SaleStatus, status).value)
        if start is not None:
            stmt = stmt.where(Sale.created_at >= start)
        if end is not None:
            stmt = stmt.where(Sale.created_at < end)
        stmt = stmt.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars())

    def discount_requires_approval(
        self,
        subtotal_cents: int,
        *,
        discount_cents: int | None = None,
        discount_pct: float | None = None,
    ) -> dict:
        """Whether a discount is above the no-approval limit (percent of subtotal)."""
        if discount_pct is None:
            if discount_cents is None:
                raise ValidationError("discount_cents or discount_pct is required")
            if subtotal_cents <= 0:
                discount_pct = 0.0 if discount_cents <= 0 else 100.0
            else:
                discount_pct = discount_cents / subtotal_cents * 100
        return {
            "requires_approval": discount_pct > self.max_discount_pct,
            "max_without_approval": self.max_discount_pct,
        }
