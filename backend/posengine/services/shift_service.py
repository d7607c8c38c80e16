# Overview: Shift ledger; cashier clock-in/clock-out and cash reconciliation.

"""
Shift Ledger

WHY: Each shift is a period of cash accountability for one cashier. Sales
are attributed to the open shift so the drawer can be reconciled at close.

DESIGN PRINCIPLES:
- One OPEN shift per actor, enforced by a partial unique index
- Financial fields are frozen at clock-out and never recomputed
- Variance tracking (expected vs counted cash)
- Reconciliation is a manager sign-off on a CLOSED shift
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError

from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..models import Location, PaymentMethod, Sale, SalePayment, Shift
from ..states import PaymentMethodType, SaleStatus, ShiftStatus, require_transition
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_atomic

logger = logging.getLogger(__name__)

VARIANCE_OK = "OK"
VARIANCE_FLAGGED = "FLAGGED"


def classify_variance(variance_cents: int, threshold_cents: int) -> str:
    return VARIANCE_OK if abs(variance_cents) <= threshold_cents else VARIANCE_FLAGGED


@dataclass(frozen=True)
class ShiftCloseSummary:
    shift_id: int
    opening_cash_cents: int
    cash_in_cents: int
    cash_out_cents: int
    expected_cash_cents: int
    closing_cash_cents: int
    variance_cents: int
    variance_status: str

    def to_dict(self) -> dict:
        return {
            "shift_id": self.shift_id,
            "opening_cash_cents": self.opening_cash_cents,
            "cash_in_cents": self.cash_in_cents,
            "cash_out_cents": self.cash_out_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "closing_cash_cents": self.closing_cash_cents,
            "variance_cents": self.variance_cents,
            "variance_status": self.variance_status,
        }


def _require_cash(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{field} must be a non-negative integer (cents)", details={field: value})
    return value


class ShiftLedger:
    def __init__(self, session, outbox, *, clock=utcnow, variance_threshold_cents: int = 500):
        self.session = session
        self.outbox = outbox
        self.clock = clock
        self.variance_threshold_cents = variance_threshold_cents

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def clock_in(
        self,
        actor_id: int,
        location_id: int,
        opening_cash_cents: int,
        *,
        terminal: str | None = None,
    ) -> Shift:
        """
        Open a shift for an actor.

        The pre-check gives a friendly error in the common case; the partial
        unique index on (actor_id) WHERE status = 'OPEN' decides the race when
        two clock-ins for the same actor arrive together.

        Raises:
            ValidationError: actor already has an open shift, or bad amount
            NotFoundError: location does not exist
        """
        _require_cash(opening_cash_cents, "opening_cash_cents")

        def _op() -> Shift:
            if self.session.get(Location, location_id) is None:
                raise NotFoundError("Location", details={"location_id": location_id})

            if self.open_shift_for(actor_id) is not None:
                raise ValidationError("shift already open", details={"actor_id": actor_id})

            shift = Shift(
                actor_id=actor_id,
                location_id=location_id,
                terminal=terminal,
                status=ShiftStatus.OPEN.value,
                opening_cash_cents=opening_cash_cents,
                opened_at=self.clock(),
            )
            self.session.add(shift)
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise ValidationError("shift already open", details={"actor_id": actor_id}) from exc
            return shift

        shift = run_atomic(self.session, _op)
        logger.info("Actor %s clocked in at location %s (shift %s)", actor_id, location_id, shift.id)
        return shift

    def clock_out(self, actor_id: int, closing_cash_cents: int, *, notes: str | None = None) -> ShiftCloseSummary:
        """
        Close the actor's open shift and freeze its cash figures.

        expected = opening + cash tendered - change given (COMPLETED sales only)
        variance = counted - expected
        """
        _require_cash(closing_cash_cents, "closing_cash_cents")

        def _op() -> ShiftCloseSummary:
            shift = lock_for_update(
                self.session.query(Shift).filter_by(actor_id=actor_id, status=ShiftStatus.OPEN.value)
            ).first()
            if shift is None:
                raise NotFoundError("Open shift", details={"actor_id": actor_id})
            require_transition(shift.status, ShiftStatus.CLOSED, entity="shift")

            cash_in, cash_out = self._cash_flow(shift.id)
            expected = shift.opening_cash_cents + cash_in - cash_out
            variance = closing_cash_cents - expected
            status = classify_variance(variance, self.variance_threshold_cents)

            shift.closing_cash_cents = closing_cash_cents
            shift.expected_cash_cents = expected
            shift.cash_variance_cents = variance
            shift.variance_status = status
            shift.status = ShiftStatus.CLOSED.value
            shift.closed_at = self.clock()
            shift.notes = notes
            self.session.flush()

            return ShiftCloseSummary(
                shift_id=shift.id,
                opening_cash_cents=shift.opening_cash_cents,
                cash_in_cents=cash_in,
                cash_out_cents=cash_out,
                expected_cash_cents=expected,
                closing_cash_cents=closing_cash_cents,
                variance_cents=variance,
                variance_status=status,
            )

        summary = run_atomic(self.session, _op)
        if summary.variance_status == VARIANCE_FLAGGED:
            logger.warning(
                "Shift %s closed with variance %s (threshold %s)",
                summary.shift_id, summary.variance_cents, self.variance_threshold_cents,
            )
        else:
            logger.info("Shift %s closed, variance %s", summary.shift_id, summary.variance_cents)
        return summary

    def reconcile(self, shift_id: int, approver_actor_id: int | None, notes: str | None = None) -> Shift:
        """Manager sign-off; only a CLOSED shift may be reconciled."""
        if not approver_actor_id:
            raise ForbiddenError("Manager approval is required to reconcile a shift")

        def _op() -> Shift:
            shift = lock_for_update(self.session.query(Shift).filter_by(id=shift_id)).first()
            if shift is None:
                raise NotFoundError("Shift", details={"shift_id": shift_id})
            require_transition(shift.status, ShiftStatus.RECONCILED, entity="shift")

            shift.status = ShiftStatus.RECONCILED.value
            shift.reconciled_by = approver_actor_id
            shift.reconciled_at = self.clock()
            shift.reconciliation_notes = notes
            self.session.flush()
            return shift

        shift = run_atomic(self.session, _op)
        logger.info("Shift %s reconciled by %s", shift_id, approver_actor_id)
        return shift

    # =========================================================================
    # QUERIES
    # =========================================================================

    def open_shift_for(self, actor_id: int) -> Shift | None:
        return self.session.execute(
            select(Shift).where(Shift.actor_id == actor_id, Shift.status == ShiftStatus.OPEN.value)
        ).scalar_one_or_none()

    def get_shift(self, shift_id: int) -> Shift:
        shift = self.session.get(Shift, shift_id)
        if shift is None:
            raise NotFoundError("Shift", details={"shift_id": shift_id})
        return shift

    def _cash_flow(self, shift_id: int) -> tuple[int, int]:
        """(cash tendered, change given) over the shift's COMPLETED sales."""
        row = self.session.execute(
            select(
                func.coalesce(func.sum(SalePayment.amount_cents), 0),
                func.coalesce(
                    func.sum(case((SalePayment.change_cents > 0, SalePayment.change_cents), else_=0)),
                    0,
                ),
            )
            .join(Sale, Sale.id == SalePayment.sale_id)
            .join(PaymentMethod, PaymentMethod.id == SalePayment.payment_method_id)
            .where(
                Sale.shift_id == shift_id,
                Sale.status == SaleStatus.COMPLETED.value,
                PaymentMethod.method_type == PaymentMethodType.CASH.value,
            )
        ).one()
        return int(row[0]), int(row[1])

    def _sales_summary(self, shift_id: int) -> dict:
        count, total, discounts = self.session.execute(
            select(
                func.count(Sale.id),
                func.coalesce(func.sum(Sale.total_cents), 0),
                func.coalesce(func.sum(Sale.discount_cents), 0),
            ).where(Sale.shift_id == shift_id, Sale.status == SaleStatus.COMPLETED.value)
        ).one()
        void_count = self.session.execute(
            select(func.count(Sale.id)).where(Sale.shift_id == shift_id, Sale.status == SaleStatus.VOIDED.value)
        ).scalar_one()
        return {
            "transaction_count": int(count),
            "total_sales_cents": int(total),
            "total_discounts_cents": int(discounts),
            "void_count": int(void_count),
        }

    def _payment_breakdown(self, shift_id: int) -> list[dict]:
        rows = self.session.execute(
            select(
                PaymentMethod.name,
                PaymentMethod.method_type,
                func.coalesce(func.sum(SalePayment.amount_cents - SalePayment.change_cents), 0),
            )
            .join(SalePayment, SalePayment.payment_method_id == PaymentMethod.id)
            .join(Sale, Sale.id == SalePayment.sale_id)
            .where(Sale.shift_id == shift_id, Sale.status == SaleStatus.COMPLETED.value)
            .group_by(PaymentMethod.name, PaymentMethod.method_type)
            .order_by(PaymentMethod.name)
        ).all()
        return [
            {"method_name": name, "method_type": method_type, "total_cents": int(total)}
            for name, method_type, total in rows
        ]

    def current_shift(self, actor_id: int) -> dict | None:
        """Open shift with a live summary, or None when the actor is clocked out."""
        shift = self.open_shift_for(actor_id)
        if shift is None:
            return None

        summary = self._sales_summary(shift.id)
        totals = {row["method_type"]: row["total_cents"] for row in self._payment_breakdown(shift.id)}
        data = shift.to_dict()
        data["summary"] = {
            "transaction_count": summary["transaction_count"],
            "total_sales_cents": summary["total_sales_cents"],
            "cash_total_cents": totals.get(PaymentMethodType.CASH.value, 0),
            "card_total_cents": totals.get(PaymentMethodType.CARD.value, 0),
        }
        return data

    def shift_detail(self, shift_id: int) -> dict:
        shift = self.get_shift(shift_id)
        return {
            "shift": shift.to_dict(),
            "sales_summary": self._sales_summary(shift.id),
            "payment_breakdown": self._payment_breakdown(shift.id),
        }

    def history(
        self,
        *,
        actor_id: int | None = None,
        location_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 20,
    ) -> list[Shift]:
        """Shifts newest first; start/end filter on opened_at (half-open)."""
        stmt = select(Shift)
        if actor_id is not None:
            stmt = stmt.where(Shift.actor_id == actor_id)
        if location_id is not None:
            stmt = stmt.where(Shift.location_id == location_id)
        if start is not None:
            stmt = stmt.where(Shift.opened_at >= start)
        if end is not None:
            stmt = stmt.where(Shift.opened_at < end)
        stmt = stmt.order_by(Shift.opened_at.desc(), Shift.id.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars())
