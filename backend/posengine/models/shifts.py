from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Shift(db.Model):
    """
    Cashier accountability period.

    LIFECYCLE: OPEN (clock-in) -> CLOSED (clock-out) -> RECONCILED (manager sign-off)

    INVARIANTS:
    - At most one OPEN shift per actor (partial unique index below).
    - expected_cash_cents / cash_variance_cents are frozen at clock-out and
      never recomputed, even when one of the shift's sales is voided later.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index(
            "uq_shifts_actor_open",
            "actor_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        db.Index("ix_shifts_location_opened", "location_id", "opened_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    terminal = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)

    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_cash_cents = db.Column(db.Integer, nullable=True)
    expected_cash_cents = db.Column(db.Integer, nullable=True)
    cash_variance_cents = db.Column(db.Integer, nullable=True)
    # OK / FLAGGED, fixed at clock-out
    variance_status = db.Column(db.String(16), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    reconciled_by = db.Column(db.Integer, nullable=True)
    reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reconciliation_notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    location = db.relationship("Location")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "location_id": self.location_id,
            "terminal": self.terminal,
            "status": self.status,
            "opening_cash_cents": self.opening_cash_cents,
            "closing_cash_cents": self.closing_cash_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "cash_variance_cents": self.cash_variance_cents,
            "variance_status": self.variance_status,
            "notes": self.notes,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "reconciled_by": self.reconciled_by,
            "reconciled_at": to_utc_z(self.reconciled_at) if self.reconciled_at else None,
            "reconciliation_notes": self.reconciliation_notes,
        }
