# Overview: Post-commit side effects (real-time events, customer notifications) via an outbox table.

"""
Outbox

WHY: The atomic unit of a sale, void or order must never depend on whether a
websocket push or an SMS gateway is reachable. Components record the side
effect here after their transaction committed; a dispatcher delivers it later.

DESIGN PRINCIPLES:
- enqueue runs only after the business commit, in its own short transaction
- enqueue failures are logged and swallowed (the business result stands)
- delivery is at-least-once; FAILED after max_attempts
"""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import select

from ..models import OutboxMessage
from ..time_utils import utcnow

logger = logging.getLogger(__name__)

CHANNEL_EVENT = "event"
CHANNEL_NOTIFICATION = "notification"

STATUS_PENDING = "PENDING"
STATUS_DELIVERED = "DELIVERED"
STATUS_FAILED = "FAILED"


def location_room(location_id: int) -> str:
    return f"location-{location_id}"


class EventSink(Protocol):
    def publish(self, topic: str, room: str | None, payload: dict) -> None:
        ...


class NotificationQueue(Protocol):
    def enqueue(self, topic: str, payload: dict) -> None:
        ...


class LoggingEventSink:
    """Default sink: writes events to the log instead of a socket server."""

    def publish(self, topic: str, room: str | None, payload: dict) -> None:
        logger.info("event %s -> %s: %s", topic, room or "*", payload)


class LoggingNotificationQueue:
    """Default queue: writes notifications to the log instead of an SMS gateway."""

    def enqueue(self, topic: str, payload: dict) -> None:
        logger.info("notification %s: %s", topic, payload)


class Outbox:
    def __init__(self, session, *, clock=utcnow):
        self.session = session
        self.clock = clock

    def enqueue(self, channel: str, topic: str, payload: dict, room: str | None = None) -> OutboxMessage | None:
        """Record one side effect. Never raises; returns None when the write failed."""
        try:
            message = OutboxMessage(
                channel=channel,
                topic=topic,
                room=room,
                payload=payload,
                status=STATUS_PENDING,
                attempts=0,
                created_at=self.clock(),
            )
            self.session.add(message)
            self.session.commit()
            return message
        except Exception:
            self.session.rollback()
            logger.exception("Failed to enqueue %s %s", channel, topic)
            return None

    def publish_event(self, topic: str, payload: dict, *, location_id: int | None = None) -> OutboxMessage | None:
        room = location_room(location_id) if location_id is not None else None
        return self.enqueue(CHANNEL_EVENT, topic, payload, room=room)

    def queue_notification(self, topic: str, payload: dict) -> OutboxMessage | None:
        return self.enqueue(CHANNEL_NOTIFICATION, topic, payload)

    def pending(self, limit: int = 100) -> list[OutboxMessage]:
        return list(
            self.session.execute(
                select(OutboxMessage)
                .where(OutboxMessage.status == STATUS_PENDING)
                .order_by(OutboxMessage.id)
                .limit(limit)
            ).scalars()
        )


class OutboxDispatcher:
    """Delivers PENDING outbox rows to the event sink / notification queue."""

    def __init__(
        self,
        session,
        event_sink: EventSink | None = None,
        notification_queue: NotificationQueue | None = None,
        *,
        max_attempts: int = 5,
        clock=utcnow,
    ):
        self.session = session
        self.event_sink = event_sink or LoggingEventSink()
        self.notification_queue = notification_queue or LoggingNotificationQueue()
        self.max_attempts = max_attempts
        self.clock = clock

    def _deliver(self, message: OutboxMessage) -> None:
        if message.channel == CHANNEL_EVENT:
            self.event_sink.publish(message.topic, message.room, message.payload)
        elif message.channel == CHANNEL_NOTIFICATION:
            self.notification_queue.enqueue(message.topic, message.payload)
        else:
            raise ValueError(f"Unknown outbox channel: {message.channel}")

    def dispatch_pending(self, limit: int = 100) -> dict:
        """
        Deliver up to `limit` pending messages, oldest first.

        Each message is committed individually so one bad message cannot
        block the rest of the batch.
        """
        counts = {"delivered": 0, "retrying": 0, "failed": 0}
        messages = Outbox(self.session).pending(limit)

        for message in messages:
            try:
                self._deliver(message)
            except Exception as exc:
                message.attempts += 1
                message.last_error = str(exc)[:1000]
                if message.attempts >= self.max_attempts:
                    message.status = STATUS_FAILED
                    counts["failed"] += 1
                    logger.error("Outbox message %s failed permanently: %s", message.id, exc)
                else:
                    counts["retrying"] += 1
                    logger.warning("Outbox message %s delivery failed (attempt %s): %s", message.id, message.attempts, exc)
            else:
                message.attempts += 1
                message.status = STATUS_DELIVERED
                message.delivered_at = self.clock()
                counts["delivered"] += 1
            self.session.commit()

        return counts
