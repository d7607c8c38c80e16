# Overview: Engine container; wires every component to one session and its collaborators.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from .services.order_service import OrderFulfillment
from .services.outbox_service import Outbox, OutboxDispatcher
from .services.sales_service import SaleWorkflow
from .services.shift_service import ShiftLedger
from .services.stock_ledger import StockLedger
from .services.zreport_service import ZReportAggregator
from .time_utils import utcnow


@dataclass
class Engine:
    session: object
    outbox: Outbox
    stock: StockLedger
    shifts: ShiftLedger
    sales: SaleWorkflow
    zreports: ZReportAggregator
    orders: OrderFulfillment

    def dispatcher(self, event_sink=None, notification_queue=None, *, max_attempts: int = 5) -> OutboxDispatcher:
        return OutboxDispatcher(
            self.session,
            event_sink,
            notification_queue,
            max_attempts=max_attempts,
            clock=self.outbox.clock,
        )


def build_engine(
    session,
    *,
    clock=utcnow,
    variance_threshold_cents: int = 500,
    max_discount_pct: int = 10,
) -> Engine:
    """
    Construct every component around one session.

    The session is anything with the SQLAlchemy Session API; the app passes
    Flask-SQLAlchemy's scoped db.session, tests may pass their own.
    """
    outbox = Outbox(session, clock=clock)
    stock = StockLedger(session, outbox, clock=clock)
    shifts = ShiftLedger(session, outbox, clock=clock, variance_threshold_cents=variance_threshold_cents)
    sales = SaleWorkflow(session, stock, shifts, outbox, clock=clock, max_discount_pct=max_discount_pct)
    zreports = ZReportAggregator(session, clock=clock)
    orders = OrderFulfillment(session, stock, outbox, clock=clock)
    return Engine(
        session=session,
        outbox=outbox,
        stock=stock,
        shifts=shifts,
        sales=sales,
        zreports=zreports,
        orders=orders,
    )


def get_engine() -> Engine:
    """Engine of the current Flask app (set up by create_app)."""
    return current_app.extensions["posengine"]
