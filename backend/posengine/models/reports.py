from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class ZReport(db.Model):
    """
    End-of-day financial snapshot for one location.

    IMMUTABLE: written once by the Z-report aggregator, never updated.
    One row per (location_id, report_date).
    """
    __tablename__ = "z_reports"
    __table_args__ = (
        db.UniqueConstraint("location_id", "report_date", name="uq_z_reports_location_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    report_number = db.Column(db.String(64), nullable=False, unique=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    report_date = db.Column(db.Date, nullable=False, index=True)

    gross_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    discounts_cents = db.Column(db.Integer, nullable=False, default=0)
    returns_cents = db.Column(db.Integer, nullable=False, default=0)
    net_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_collected_cents = db.Column(db.Integer, nullable=False, default=0)

    cash_total_cents = db.Column(db.Integer, nullable=False, default=0)
    card_total_cents = db.Column(db.Integer, nullable=False, default=0)
    wallet_total_cents = db.Column(db.Integer, nullable=False, default=0)

    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    expected_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    actual_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    variance_cents = db.Column(db.Integer, nullable=False, default=0)

    sale_count = db.Column(db.Integer, nullable=False, default=0)
    void_count = db.Column(db.Integer, nullable=False, default=0)
    return_count = db.Column(db.Integer, nullable=False, default=0)

    generated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    location = db.relationship("Location")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "report_number": self.report_number,
            "location_id": self.location_id,
            "report_date": self.report_date.isoformat(),
            "gross_sales_cents": self.gross_sales_cents,
            "discounts_cents": self.discounts_cents,
            "returns_cents": self.returns_cents,
            "net_sales_cents": self.net_sales_cents,
            "tax_collected_cents": self.tax_collected_cents,
            "cash_total_cents": self.cash_total_cents,
            "card_total_cents": self.card_total_cents,
            "wallet_total_cents": self.wallet_total_cents,
            "opening_cash_cents": self.opening_cash_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "actual_cash_cents": self.actual_cash_cents,
            "variance_cents": self.variance_cents,
            "sale_count": self.sale_count,
            "void_count": self.void_count,
            "return_count": self.return_count,
            "generated_by": self.generated_by,
            "created_at": to_utc_z(self.created_at),
        }
