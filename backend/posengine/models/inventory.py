from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StockLevel(db.Model):
    """
    Materialized quantity of one variant at one location.

    INVARIANTS:
    - One row per (variant_id, location_id), created lazily on first movement.
    - quantity_on_hand may go negative (oversold till sales are accepted).
    - available = quantity_on_hand - quantity_reserved; never stored.
    - Only the stock ledger writes this row, always together with a StockMovement.
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.UniqueConstraint("variant_id", "location_id", name="uq_stock_levels_variant_location"),
        db.CheckConstraint("quantity_reserved >= 0", name="reserved_non_negative"),
        db.Index("ix_stock_levels_location", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)

    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    quantity_reserved = db.Column(db.Integer, nullable=False, default=0)

    reorder_level = db.Column(db.Integer, nullable=False, default=10)
    reorder_quantity = db.Column(db.Integer, nullable=False, default=10)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    variant = db.relationship("ProductVariant")
    location = db.relationship("Location")

    @property
    def available(self) -> int:
        return self.quantity_on_hand - self.quantity_reserved

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "location_id": self.location_id,
            "quantity_on_hand": self.quantity_on_hand,
            "quantity_reserved": self.quantity_reserved,
            "available": self.available,
            "reorder_level": self.reorder_level,
            "reorder_quantity": self.reorder_quantity,
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }


class StockMovement(db.Model):
    """
    Append-only record of one StockLevel change.

    IMMUTABLE: rows are never updated or deleted. For every level,
    quantity_on_hand == SUM(quantity_change) over its movements.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_variant_location_occurred", "variant_id", "location_id", "occurred_at"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)

    # SALE, ADJUSTMENT, RECEIVE, ONLINE_SALE, VOID-RESTORE, TRANSFER
    transaction_type = db.Column(db.String(32), nullable=False, index=True)

    quantity_change = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    # What caused the movement: SALE/<sale id>, ONLINE_ORDER/<order id>, TRANSFER/<number>, ...
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)

    actor_id = db.Column(db.Integer, nullable=True, index=True)
    notes = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "location_id": self.location_id,
            "transaction_type": self.transaction_type,
            "quantity_change": self.quantity_change,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "actor_id": self.actor_id,
            "notes": self.notes,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-location document counters.

    sequence_key carries the scope, e.g. "SALE-20240115" (resets daily) or
    "TRANSFER" (never resets).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("location_id", "sequence_key", name="uq_document_sequences_location_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    sequence_key = db.Column(db.String(48), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "sequence_key": self.sequence_key,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
