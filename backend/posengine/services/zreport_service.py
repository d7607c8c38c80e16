# Overview: End-of-day Z-report aggregation per location.

from __future__ import annotations

import logging

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError

from ..errors import NotFoundError, ValidationError
from ..models import Location, PaymentMethod, Sale, SalePayment, Shift, ZReport
from ..states import PaymentMethodType, SaleStatus, ShiftStatus
from ..time_utils import day_bounds, parse_business_date, utcnow
from .concurrency import run_atomic

logger = logging.getLogger(__name__)


class ZReportAggregator:
    """
    Immutable daily snapshots built from sales, payments and closed shifts.

    Aggregation is read-only over source rows. One report per location and
    date: the existence check gives the friendly error, the unique constraint
    on (location_id, report_date) settles concurrent generation.
    """

    def __init__(self, session, *, clock=utcnow):
        self.session = session
        self.clock = clock

    def _sales_totals(self, location_id: int, start, end) -> dict:
        gross, discounts, tax, count = self.session.execute(
            select(
                func.coalesce(func.sum(Sale.total_cents), 0),
                func.coalesce(func.sum(Sale.discount_cents), 0),
                func.coalesce(func.sum(Sale.tax_cents), 0),
                func.count(Sale.id),
            ).where(
                Sale.location_id == location_id,
                Sale.status == SaleStatus.COMPLETED.value,
                Sale.created_at >= start,
                Sale.created_at < end,
            )
        ).one()

        def _count_and_total(status: SaleStatus):
            return self.session.execute(
                select(func.count(Sale.id), func.coalesce(func.sum(Sale.total_cents), 0)).where(
                    Sale.location_id == location_id,
                    Sale.status == status.value,
                    Sale.created_at >= start,
                    Sale.created_at < end,
                )
            ).one()

        void_count, _ = _count_and_total(SaleStatus.VOIDED)
        return_count, returns = _count_and_total(SaleStatus.REFUNDED)

        return {
            "gross_sales_cents": int(gross),
            "discounts_cents": int(discounts),
            "tax_collected_cents": int(tax),
            "sale_count": int(count),
            "void_count": int(void_count),
            "return_count": int(return_count),
            "returns_cents": int(returns),
        }

    def _payment_totals(self, location_id: int, start, end) -> dict:
        # Cash is counted net of change so it matches what stays in the drawer.
        def _method_total(method_type: PaymentMethodType):
            return func.coalesce(
                func.sum(
                    case(
                        (PaymentMethod.method_type == method_type.value,
                         SalePayment.amount_cents - SalePayment.change_cents),
                        else_=0,
                    )
                ),
                0,
            )

        cash, card, wallet = self.session.execute(
            select(
                _method_total(PaymentMethodType.CASH),
                _method_total(PaymentMethodType.CARD),
                _method_total(PaymentMethodType.WALLET),
            )
            .select_from(SalePayment)
            .join(Sale, Sale.id == SalePayment.sale_id)
            .join(PaymentMethod, PaymentMethod.id == SalePayment.payment_method_id)
            .where(
                Sale.location_id == location_id,
                Sale.status == SaleStatus.COMPLETED.value,
                Sale.created_at >= start,
                Sale.created_at < end,
            )
        ).one()
        return {
            "cash_total_cents": int(cash),
            "card_total_cents": int(card),
            "wallet_total_cents": int(wallet),
        }

    def _shift_cash(self, location_id: int, start, end) -> dict:
        opening, actual = self.session.execute(
            select(
                func.coalesce(func.sum(Shift.opening_cash_cents), 0),
                func.coalesce(func.sum(Shift.closing_cash_cents), 0),
            ).where(
                Shift.location_id == location_id,
                Shift.status.in_([ShiftStatus.CLOSED.value, ShiftStatus.RECONCILED.value]),
                Shift.opened_at >= start,
                Shift.opened_at < end,
            )
        ).one()
        return {"opening_cash_cents": int(opening), "actual_cash_cents": int(actual)}

    def generate(self, location_id: int, report_date=None, *, actor_id: int | None = None) -> ZReport:
        """
        Build and store the Z-report for one location and calendar date.

        net      = gross - discounts - returns
        expected = opening cash (closed shifts) + cash payments
        variance = actual (counted at clock-out) - expected

        Raises:
            ValidationError: a report already exists for this location/date
            NotFoundError: location does not exist
        """
        day = parse_business_date(report_date if report_date is not None else self.clock())
        start, end = day_bounds(day)

        def _op() -> ZReport:
            location = self.session.get(Location, location_id)
            if location is None:
                raise NotFoundError("Location", details={"location_id": location_id})

            existing = self.session.execute(
                select(ZReport.id).where(ZReport.location_id == location_id, ZReport.report_date == day)
            ).first()
            if existing is not None:
                raise ValidationError(
                    "Z-Report already generated for this date",
                    details={"location_id": location_id, "report_date": day.isoformat()},
                )

            figures = {}
            figures.update(self._sales_totals(location_id, start, end))
            figures.update(self._payment_totals(location_id, start, end))
            figures.update(self._shift_cash(location_id, start, end))

            net = figures["gross_sales_cents"] - figures["discounts_cents"] - figures["returns_cents"]
            expected = figures["opening_cash_cents"] + figures["cash_total_cents"]

            report = ZReport(
                report_number=f"Z-{location.code}-{day:%Y%m%d}",
                location_id=location_id,
                report_date=day,
                net_sales_cents=net,
                expected_cash_cents=expected,
                variance_cents=figures["actual_cash_cents"] - expected,
                generated_by=actor_id,
                created_at=self.clock(),
                **figures,
            )
            self.session.add(report)
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise ValidationError(
                    "Z-Report already generated for this date",
                    details={"location_id": location_id, "report_date": day.isoformat()},
                ) from exc
            return report

        report = run_atomic(self.session, _op)
        logger.info("Z-report %s generated (net %s, variance %s)", report.report_number, report.net_sales_cents, report.variance_cents)
        return report

    def get_report(self, location_id: int, report_date) -> ZReport:
        day = parse_business_date(report_date)
        report = self.session.execute(
            select(ZReport).where(ZReport.location_id == location_id, ZReport.report_date == day)
        ).scalar_one_or_none()
        if report is None:
            raise NotFoundError("Z-Report", details={"location_id": location_id, "report_date": day.isoformat()})
        return report

    def list_reports(self, *, location_id: int | None = None, start=None, end=None, limit: int = 20) -> list[ZReport]:
        """Reports newest first; start/end are inclusive business dates."""
        stmt = select(ZReport)
        if location_id is not None:
            stmt = stmt.where(ZReport.location_id == location_id)
        if start is not None:
            stmt = stmt.where(ZReport.report_date >= parse_business_date(start))
        if end is not None:
            stmt = stmt.where(ZReport.report_date <= parse_business_date(end))
        stmt = stmt.order_by(ZReport.report_date.desc(), ZReport.id.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars())
