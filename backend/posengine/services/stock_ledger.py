# Overview: Stock ledger; the single point of inventory mutation for every engine component.

"""
Stock Ledger Invariants (authoritative)

Storage model:
- StockLevel holds the materialized quantity per (variant, location).
- StockMovement is the append-only log; every level change writes exactly one
  movement in the same transaction, so for every level
      quantity_on_hand == SUM(movements.quantity_change)

Concurrency:
- apply_delta is an UPDATE ... SET quantity_on_hand = quantity_on_hand + delta,
  never a read-modify-write of a value held in memory. Concurrent deltas on the
  same row serialize on the database row lock.
- A missing row is created lazily inside a savepoint; losing that insert race
  retries the UPDATE against the winner's row.

Negative stock:
- SALE / ONLINE_SALE deductions may push quantity_on_hand below zero (an
  oversold shelf is accepted, not blocked).
- ADJUSTMENT and the TRANSFER source side are manual operations and are
  rejected if they would go negative.

Transactions:
- apply_delta never commits; it joins the caller's atomic unit.
- receive / adjust / transfer are complete operations: they commit via
  run_atomic and publish their events after the commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from ..errors import NotFoundError, ValidationError
from ..models import Location, ProductVariant, StockLevel, StockMovement
from ..states import MovementType
from ..time_utils import utcnow
from .concurrency import run_atomic
from .sequence_service import next_sequence_value

logger = logging.getLogger(__name__)

DEFAULT_REORDER_LEVEL = 10
DEFAULT_REORDER_QUANTITY = 10

# Movement types that may never leave a level below zero.
GUARDED_TYPES = frozenset({MovementType.ADJUSTMENT, MovementType.TRANSFER})


@dataclass(frozen=True)
class Availability:
    variant_id: int
    location_id: int
    on_hand: int
    reserved: int
    available: int

    def to_dict(self) -> dict:
        return {
            "variant_id": self.variant_id,
            "location_id": self.location_id,
            "on_hand": self.on_hand,
            "reserved": self.reserved,
            "available": self.available,
        }


@dataclass(frozen=True)
class StockLineInput:
    variant_id: int
    quantity: int


def _movement_type(value) -> MovementType:
    if isinstance(value, MovementType):
        return value
    try:
        return MovementType(value)
    except ValueError:
        raise ValidationError(
            f"Invalid transaction type: {value!r}",
            details={"allowed": [m.value for m in MovementType]},
        ) from None


def _require_quantity(quantity, *, field: str = "quantity") -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError(f"{field} must be a positive integer", details={field: quantity})
    return quantity


class StockLedger:
    def __init__(self, session, outbox, *, clock=utcnow):
        self.session = session
        self.outbox = outbox
        self.clock = clock

    # =========================================================================
    # CORE DELTA
    # =========================================================================

    def apply_delta(
        self,
        variant_id: int,
        location_id: int,
        delta: int,
        transaction_type,
        *,
        reference_type: str | None = None,
        reference_id=None,
        actor_id: int | None = None,
        notes: str | None = None,
    ) -> int:
        """
        Apply a signed delta to one stock level and log the movement.

        Runs inside the caller's transaction (no commit). The caller emits the
        location-scoped inventory event once its unit has committed.

        Returns:
            quantity_on_hand after the delta

        Raises:
            ValidationError: zero/non-integer delta, unknown type, or a guarded
                type that would go negative
            NotFoundError: variant or location missing (first movement only)
        """
        movement_type = _movement_type(transaction_type)
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise ValidationError("delta must be a non-zero integer", details={"delta": delta})

        guarded = movement_type in GUARDED_TYPES
        now = self.clock()

        level = self._bump(variant_id, location_id, delta, guarded, now)
        if level is None:
            level = self._create_level(variant_id, location_id, delta, guarded, now)

        quantity_after = level.quantity_on_hand
        quantity_before = quantity_after - delta

        self.session.add(StockMovement(
            variant_id=variant_id,
            location_id=location_id,
            transaction_type=movement_type.value,
            quantity_change=delta,
            quantity_before=quantity_before,
            quantity_after=quantity_after,
            reference_type=reference_type,
            reference_id=str(reference_id) if reference_id is not None else None,
            actor_id=actor_id,
            notes=notes,
            occurred_at=now,
        ))
        self.session.flush()

        if quantity_after < 0:
            logger.warning(
                "Stock for variant %s at location %s is negative (%s) after %s",
                variant_id, location_id, quantity_after, movement_type.value,
            )
        return quantity_after

    def _level_query(self, variant_id: int, location_id: int):
        return select(StockLevel).where(
            StockLevel.variant_id == variant_id,
            StockLevel.location_id == location_id,
        )

    def _bump(self, variant_id, location_id, delta, guarded, now) -> StockLevel | None:
        stmt = (
            update(StockLevel)
            .where(
                StockLevel.variant_id == variant_id,
                StockLevel.location_id == location_id,
            )
            .values(quantity_on_hand=StockLevel.quantity_on_hand + delta, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if guarded and delta < 0:
            stmt = stmt.where(StockLevel.quantity_on_hand + delta >= 0)

        result = self.session.execute(stmt)
        if not result.rowcount:
            if guarded and delta < 0:
                current = self.session.execute(self._level_query(variant_id, location_id)).scalar_one_or_none()
                if current is not None:
                    raise ValidationError(
                        "Adjustment would result in negative inventory",
                        details={
                            "variant_id": variant_id,
                            "location_id": location_id,
                            "on_hand": current.quantity_on_hand,
                            "delta": delta,
                        },
                    )
            return None

        return self.session.execute(
            self._level_query(variant_id, location_id).execution_options(populate_existing=True)
        ).scalar_one()

    def _create_level(self, variant_id, location_id, delta, guarded, now) -> StockLevel:
        if self.session.get(ProductVariant, variant_id) is None:
            raise NotFoundError("Variant", details={"variant_id": variant_id})
        if self.session.get(Location, location_id) is None:
            raise NotFoundError("Location", details={"location_id": location_id})
        if guarded and delta < 0:
            raise ValidationError(
                "Adjustment would result in negative inventory",
                details={"variant_id": variant_id, "location_id": location_id, "on_hand": 0, "delta": delta},
            )

        level = StockLevel(
            variant_id=variant_id,
            location_id=location_id,
            quantity_on_hand=delta,
            quantity_reserved=0,
            reorder_level=DEFAULT_REORDER_LEVEL,
            reorder_quantity=DEFAULT_REORDER_QUANTITY,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.session.begin_nested():
                self.session.add(level)
            return level
        except IntegrityError:
            # Another writer created the row first; apply on top of theirs.
            level = self._bump(variant_id, location_id, delta, guarded, now)
            if level is None:
                raise
            return level

    # =========================================================================
    # READS
    # =========================================================================

    def check_availability(self, variant_id: int, location_id: int) -> Availability:
        """Advisory, non-locking read; nothing is held until the sale commits."""
        level = self.session.execute(self._level_query(variant_id, location_id)).scalar_one_or_none()
        if level is None:
            return Availability(variant_id, location_id, 0, 0, 0)
        return Availability(
            variant_id=variant_id,
            location_id=location_id,
            on_hand=level.quantity_on_hand,
            reserved=level.quantity_reserved,
            available=level.available,
        )

    def get_level(self, variant_id: int, location_id: int) -> StockLevel | None:
        return self.session.execute(self._level_query(variant_id, location_id)).scalar_one_or_none()

    def levels(self, location_id: int) -> list[StockLevel]:
        return list(
            self.session.execute(
                select(StockLevel)
                .where(StockLevel.location_id == location_id)
                .order_by(StockLevel.variant_id)
            ).scalars()
        )

    def low_stock(self, location_id: int) -> list[StockLevel]:
        """Levels whose available quantity is at or below their reorder level."""
        return list(
            self.session.execute(
                select(StockLevel)
                .where(
                    StockLevel.location_id == location_id,
                    StockLevel.quantity_on_hand - StockLevel.quantity_reserved <= StockLevel.reorder_level,
                )
                .order_by(StockLevel.quantity_on_hand - StockLevel.quantity_reserved, StockLevel.variant_id)
            ).scalars()
        )

    def levels_elsewhere(self, variant_id: int, exclude_location_id: int | None = None) -> list[dict]:
        """Per-location availability of one variant, for 'check other stores'."""
        stmt = (
            select(StockLevel, Location)
            .join(Location, Location.id == StockLevel.location_id)
            .where(StockLevel.variant_id == variant_id, Location.is_active.is_(True))
            .order_by(Location.code)
        )
        if exclude_location_id is not None:
            stmt = stmt.where(StockLevel.location_id != exclude_location_id)

        rows = []
        for level, location in self.session.execute(stmt):
            rows.append({
                "location_id": location.id,
                "location_code": location.code,
                "location_name": location.name,
                "on_hand": level.quantity_on_hand,
                "reserved": level.quantity_reserved,
                "available": level.available,
            })
        return rows

    def movements(
        self,
        *,
        variant_id: int | None = None,
        location_id: int | None = None,
        transaction_type=None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
    ) -> list[StockMovement]:
        """Movement history, newest first. start is inclusive, end is exclusive."""
        stmt = select(StockMovement)
        if variant_id is not None:
            stmt = stmt.where(StockMovement.variant_id == variant_id)
        if location_id is not None:
            stmt = stmt.where(StockMovement.location_id == location_id)
        if transaction_type is not None:
            stmt = stmt.where(StockMovement.transaction_type == _movement_type(transaction_type).value)
        if start is not None:
            stmt = stmt.where(StockMovement.occurred_at >= start)
        if end is not None:
            stmt = stmt.where(StockMovement.occurred_at < end)
        stmt = stmt.order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars())

    def movement_total(self, variant_id: int, location_id: int) -> int:
        """SUM(quantity_change) for one level; equals quantity_on_hand when the ledger is intact."""
        return self.session.execute(
            select(func.coalesce(func.sum(StockMovement.quantity_change), 0)).where(
                StockMovement.variant_id == variant_id,
                StockMovement.location_id == location_id,
            )
        ).scalar_one()

    # =========================================================================
    # MANUAL OPERATIONS
    # =========================================================================

    def receive(
        self,
        location_id: int,
        items: list[StockLineInput],
        *,
        actor_id: int,
        reference: str | None = None,
        notes: str | None = None,
    ) -> list[int]:
        """
        Receive stock into a location (one RECEIVE movement per line).

        Returns:
            new quantity_on_hand per line, in input order
        """
        if not items:
            raise ValidationError("At least one item is required")
        for item in items:
            _require_quantity(item.quantity)

        def _op() -> list[int]:
            return [
                self.apply_delta(
                    item.variant_id,
                    location_id,
                    item.quantity,
                    MovementType.RECEIVE,
                    reference_type="RECEIVE",
                    reference_id=reference,
                    actor_id=actor_id,
                    notes=notes,
                )
                for item in items
            ]

        quantities = run_atomic(self.session, _op)
        logger.info("Received %s line(s) at location %s", len(items), location_id)

        self.outbox.publish_event(
            "inventory-received",
            {
                "location_id": location_id,
                "items": [{"variant_id": i.variant_id, "quantity": i.quantity} for i in items],
            },
            location_id=location_id,
        )
        return quantities

    def adjust(
        self,
        variant_id: int,
        location_id: int,
        delta: int,
        *,
        reason: str,
        actor_id: int,
        notes: str | None = None,
    ) -> int:
        """Manual correction; a result below zero is rejected."""
        if not reason or not reason.strip():
            raise ValidationError("Adjustment reason is required")

        note = reason.strip() if not notes else f"{reason.strip()}: {notes}"

        def _op() -> int:
            return self.apply_delta(
                variant_id,
                location_id,
                delta,
                MovementType.ADJUSTMENT,
                reference_type="ADJUSTMENT",
                actor_id=actor_id,
                notes=note[:255],
            )

        quantity = run_atomic(self.session, _op)
        logger.info("Adjusted variant %s at location %s by %s -> %s", variant_id, location_id, delta, quantity)

        self.outbox.publish_event(
            "inventory-updated",
            {"variant_id": variant_id, "location_id": location_id, "quantity": quantity},
            location_id=location_id,
        )
        return quantity

    def transfer(
        self,
        from_location_id: int,
        to_location_id: int,
        items: list[StockLineInput],
        *,
        actor_id: int,
        notes: str | None = None,
    ) -> dict:
        """
        Move stock between locations.

        Two TRANSFER movements per line (-qty at the source, +qty at the
        destination), both referencing the transfer number. The source may
        not go negative.
        """
        if from_location_id == to_location_id:
            raise ValidationError("Source and destination locations must differ")
        if not items:
            raise ValidationError("At least one item is required")
        for item in items:
            _require_quantity(item.quantity)

        def _op() -> dict:
            if self.session.get(Location, to_location_id) is None:
                raise NotFoundError("Location", details={"location_id": to_location_id})

            now = self.clock()
            seq = next_sequence_value(self.session, location_id=from_location_id, sequence_key="TRANSFER")
            transfer_number = f"TR-{now:%Y%m%d%H%M%S}-{seq:04d}"

            lines = []
            for item in items:
                source_after = self.apply_delta(
                    item.variant_id,
                    from_location_id,
                    -item.quantity,
                    MovementType.TRANSFER,
                    reference_type="TRANSFER",
                    reference_id=transfer_number,
                    actor_id=actor_id,
                    notes=notes,
                )
                destination_after = self.apply_delta(
                    item.variant_id,
                    to_location_id,
                    item.quantity,
                    MovementType.TRANSFER,
                    reference_type="TRANSFER",
                    reference_id=transfer_number,
                    actor_id=actor_id,
                    notes=notes,
                )
                lines.append({
                    "variant_id": item.variant_id,
                    "quantity": item.quantity,
                    "from_quantity": source_after,
                    "to_quantity": destination_after,
                })
            return {
                "transfer_number": transfer_number,
                "from_location_id": from_location_id,
                "to_location_id": to_location_id,
                "lines": lines,
            }

        result = run_atomic(self.session, _op)
        logger.info("Transfer %s committed (%s line(s))", result["transfer_number"], len(items))

        for location_id in (from_location_id, to_location_id):
            self.outbox.publish_event(
                "inventory-updated",
                {"source": "transfer", "transfer_number": result["transfer_number"]},
                location_id=location_id,
            )
        return result
