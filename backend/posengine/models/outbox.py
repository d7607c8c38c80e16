from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class OutboxMessage(db.Model):
    """
    Side effect waiting for delivery after its business transaction committed.

    channel:
    - event: real-time event for connected clients (topic + room)
    - notification: outbound customer message (e.g. SMS receipt)

    status: PENDING -> DELIVERED, or FAILED once attempts reach the limit.
    """
    __tablename__ = "outbox_messages"
    __table_args__ = (
        db.Index("ix_outbox_messages_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    channel = db.Column(db.String(16), nullable=False)
    topic = db.Column(db.String(64), nullable=False)
    room = db.Column(db.String(64), nullable=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)

    status = db.Column(db.String(16), nullable=False, default="PENDING")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "channel": self.channel,
            "topic": self.topic,
            "room": self.room,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
        }
