"""Fire-and-forget publication of booking lifecycle events."""

from __future__ import annotations

import logging

from django.db import transaction

logger = logging.getLogger(__name__)

BOOKING_CREATED = "booking.created"
BOOKING_APPROVED = "booking.approved"
BOOKING_REJECTED = "booking.rejected"
BOOKING_CANCELLED = "booking.cancelled"
PAYMENT_SUCCEEDED = "payment.succeeded"

EVENT_TYPES = frozenset(
    {BOOKING_CREATED, BOOKING_APPROVED, BOOKING_REJECTED, BOOKING_CANCELLED, PAYMENT_SUCCEEDED}
)


class NotificationPublisher:
    """
    Queue a notification task once the surrounding transaction commits.

    Queueing failures are logged and swallowed: a lost notification never
    undoes a booking transition.
    """

    def publish(self, event: str, booking_id: int) -> None:
        if event not in EVENT_TYPES:
            raise ValueError(f"Unknown notification event {event!r}")
        transaction.on_commit(lambda: self._enqueue(event, booking_id))

    def _enqueue(self, event: str, booking_id: int) -> None:
        from notifications import tasks as notification_tasks

        try:
            notification_tasks.send_booking_event_email.delay(event, booking_id)
        except Exception:
            logger.info(
                "notifications: could not queue send_booking_event_email",
                extra={"event": event, "booking_id": booking_id},
                exc_info=True,
            )
