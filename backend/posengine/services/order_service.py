# Overview: Online order fulfillment; storefront submissions, status lifecycle and stock deduction.

"""
Online Order Fulfillment

WHY: Storefront orders compete with the tills for the same stock. Orders are
priced server-side at submission and deduct inventory exactly once, when they
are fulfilled.

DESIGN PRINCIPLES:
- Client prices are never trusted; every line is re-priced from the catalog
- No stock is reserved or deducted at submission
- Status moves only along ORDER_TRANSITIONS (strict ordering)
- process_order claims the order with a conditional UPDATE before touching
  stock, so a second call (even a concurrent one) is rejected by the status
  guard and deducts nothing
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, func, select, update

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Location, OnlineOrder, OrderItem, ProductVariant
from ..states import ORDER_PROCESSABLE, MovementType, OrderStatus, coerce_status, require_transition
from ..time_utils import to_utc_z, utcnow
from .concurrency import lock_for_update, run_atomic

logger = logging.getLogger(__name__)

ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
ORDER_NUMBER_ATTEMPTS = 5

# Work queue ordering for list_orders.
_STATUS_RANK = {
    OrderStatus.PENDING.value: 1,
    OrderStatus.CONFIRMED.value: 2,
    OrderStatus.PROCESSING.value: 3,
    OrderStatus.READY.value: 4,
}


@dataclass(frozen=True)
class CustomerContact:
    name: str
    phone: str
    email: str | None = None
    address: str | None = None
    city: str | None = None


@dataclass(frozen=True)
class OrderItemInput:
    variant_id: int
    quantity: int


@dataclass(frozen=True)
class OrderReceipt:
    order_id: int
    order_number: str
    total_cents: int
    item_count: int

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "total_cents": self.total_cents,
            "item_count": self.item_count,
        }


class OrderFulfillment:
    def __init__(self, session, stock, outbox, *, clock=utcnow):
        self.session = session
        self.stock = stock
        self.outbox = outbox
        self.clock = clock

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def _new_order_number(self, now: datetime) -> str:
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            suffix = "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(4))
            number = f"WEB-{now:%Y%m%d%H%M%S}-{suffix}"
            taken = self.session.execute(
                select(OnlineOrder.id).where(OnlineOrder.order_number == number)
            ).first()
            if taken is None:
                return number
        raise ConflictError("Could not allocate a unique order number")

    def _price_lines(self, items: list[OrderItemInput]) -> list[dict]:
        if not items:
            raise ValidationError("At least one item is required")

        lines = []
        for index, item in enumerate(items):
            if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity < 1:
                raise ValidationError(
                    "Invalid quantity",
                    details={"index": index, "variant_id": item.variant_id, "quantity": item.quantity},
                )

            variant = self.session.get(ProductVariant, item.variant_id)
            if variant is None:
                raise ValidationError(
                    "Product not found",
                    details={"index": index, "variant_id": item.variant_id},
                )
            if not variant.is_available:
                raise ValidationError(
                    f'"{variant.display_name}" is no longer available',
                    details={"index": index, "variant_id": item.variant_id},
                )

            lines.append({
                "variant_id": variant.id,
                "product_name": variant.product_name,
                "variant_name": variant.variant_name,
                "quantity": item.quantity,
                "unit_price_cents": variant.price_cents,
                "line_total_cents": variant.price_cents * item.quantity,
            })
        return lines

    def submit_order(
        self,
        contact: CustomerContact,
        items: list[OrderItemInput],
        *,
        notes: str | None = None,
        source: str = "WEBSITE",
    ) -> OrderReceipt:
        """
        Accept a storefront order in status pending.

        Raises:
            ValidationError: missing contact fields, bad quantity, unknown or
                unavailable variant (the message names the item)
        """
        name = (contact.name or "").strip()
        phone = (contact.phone or "").strip()
        if not name:
            raise ValidationError("Name is required")
        if not phone:
            raise ValidationError("Phone is required")

        def _op() -> OrderReceipt:
            lines = self._price_lines(items)
            subtotal = sum(line["line_total_cents"] for line in lines)
            now = self.clock()

            order = OnlineOrder(
                order_number=self._new_order_number(now),
                source=source,
                customer_name=name,
                customer_phone=phone,
                customer_email=contact.email,
                customer_address=contact.address,
                customer_city=contact.city,
                subtotal_cents=subtotal,
                total_cents=subtotal,
                status=OrderStatus.PENDING.value,
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            order.items = [OrderItem(**line) for line in lines]
            self.session.add(order)
            self.session.flush()
            return OrderReceipt(
                order_id=order.id,
                order_number=order.order_number,
                total_cents=order.total_cents,
                item_count=len(lines),
            )

        receipt = run_atomic(self.session, _op)
        logger.info("Online order %s submitted (total %s)", receipt.order_number, receipt.total_cents)
        return receipt

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def _get(self, order_id: int) -> OnlineOrder:
        order = self.session.get(OnlineOrder, order_id)
        if order is None:
            raise NotFoundError("Order", details={"order_id": order_id})
        return order

    def update_status(
        self,
        order_id: int,
        new_status,
        *,
        actor_id: int,
        location_id: int | None = None,
    ) -> OnlineOrder:
        """
        Move an order one step along its lifecycle.

        Entry into any state other than pending/cancelled stamps
        processed_by/processed_at. Moving to completed requires the
        fulfilling location and goes through process_order, so stock is
        deducted on every path into completed.
        """
        target = coerce_status(OrderStatus, new_status)

        if target == OrderStatus.COMPLETED:
            if location_id is None:
                raise ValidationError("Location ID is required to complete an order")
            order = self._get(order_id)
            require_transition(order.status, target, entity="order")
            return self.process_order(order_id, location_id, actor_id=actor_id)

        def _op() -> OnlineOrder:
            order = lock_for_update(self.session.query(OnlineOrder).filter_by(id=order_id)).first()
            if order is None:
                raise NotFoundError("Order", details={"order_id": order_id})
            require_transition(order.status, target, entity="order")

            now = self.clock()
            order.status = target.value
            order.updated_at = now
            if target not in (OrderStatus.PENDING, OrderStatus.CANCELLED):
                order.processed_by = actor_id
                order.processed_at = now
            self.session.flush()
            return order

        order = run_atomic(self.session, _op)
        logger.info("Online order %s -> %s", order.order_number, order.status)

        self.outbox.publish_event(
            "online-order-updated",
            {"order_id": order.id, "status": order.status, "updated_at": to_utc_z(order.updated_at)},
        )
        return order

    def process_order(self, order_id: int, location_id: int, *, actor_id: int) -> OnlineOrder:
        """
        Fulfil an order from one location: deduct every line and complete it.

        Accepted from pending, confirmed, processing and ready. A completed or
        cancelled order is rejected with ConflictError and nothing is deducted.
        """
        def _op() -> OnlineOrder:
            if self.session.get(Location, location_id) is None:
                raise NotFoundError("Location", details={"location_id": location_id})
            order = self._get(order_id)

            now = self.clock()
            claim = self.session.execute(
                update(OnlineOrder)
                .where(
                    OnlineOrder.id == order_id,
                    OnlineOrder.status.in_([status.value for status in ORDER_PROCESSABLE]),
                )
                .values(
                    status=OrderStatus.COMPLETED.value,
                    processed_by=actor_id,
                    processed_at=now,
                    updated_at=now,
                    fulfilled_location_id=location_id,
                    version_id=OnlineOrder.version_id + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if not claim.rowcount:
                self.session.refresh(order)
                if order.status == OrderStatus.CANCELLED.value:
                    message = "Cannot process a cancelled order"
                else:
                    message = "Order is already completed"
                raise ConflictError(message, details={"order_id": order_id, "status": order.status})

            for item in order.items:
                self.stock.apply_delta(
                    item.variant_id,
                    location_id,
                    -item.quantity,
                    MovementType.ONLINE_SALE,
                    reference_type="ONLINE_ORDER",
                    reference_id=order.id,
                    actor_id=actor_id,
                    notes=f"Online order {order.order_number}",
                )

            self.session.refresh(order)
            return order

        order = run_atomic(self.session, _op)
        logger.info("Online order %s processed from location %s", order.order_number, location_id)

        self.outbox.publish_event(
            "online-order-completed",
            {"order_id": order.id, "order_number": order.order_number},
        )
        self.outbox.publish_event(
            "inventory-updated",
            {"source": "online-order", "order_id": order.id},
            location_id=location_id,
        )
        return order

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_order(self, order_id: int) -> OnlineOrder:
        return self._get(order_id)

    def track(self, order_number: str) -> dict:
        """Public tracking view: no contact details, no lines."""
        order = self.session.execute(
            select(OnlineOrder).where(OnlineOrder.order_number == order_number)
        ).scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order", details={"order_number": order_number})
        return {
            "order_number": order.order_number,
            "status": order.status,
            "total_cents": order.total_cents,
            "created_at": to_utc_z(order.created_at),
        }

    def list_orders(
        self,
        *,
        status=None,
        source: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
    ) -> dict:
        """Open work first (pending, confirmed, processing, ready), then the rest; plus counts per status."""
        rank = case(_STATUS_RANK, value=OnlineOrder.status, else_=5)
        stmt = select(OnlineOrder)
        if status is not None:
            stmt = stmt.where(OnlineOrder.status == coerce_status(OrderStatus, status).value)
        if source is not None:
            stmt = stmt.where(OnlineOrder.source == source)
        if start is not None:
            stmt = stmt.where(OnlineOrder.created_at >= start)
        if end is not None:
            stmt = stmt.where(OnlineOrder.created_at < end)
        stmt = stmt.order_by(rank, OnlineOrder.created_at.desc(), OnlineOrder.id.desc()).limit(limit)

        orders = list(self.session.execute(stmt).scalars())
        counts = {
            row_status: int(count)
            for row_status, count in self.session.execute(
                select(OnlineOrder.status, func.count(OnlineOrder.id)).group_by(OnlineOrder.status)
            )
        }
        return {"orders": orders, "status_counts": counts}
