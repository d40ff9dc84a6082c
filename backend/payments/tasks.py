from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from bookings.engine import default_engine
from bookings.errors import BookingError
from payments.store import PaymentIntentStore

logger = logging.getLogger(__name__)


@shared_task(name="payments.reconcile_payment_intents")
def reconcile_payment_intents(grace_seconds: int | None = None, batch_size: int | None = None):
    """
    Re-check non-terminal intents that have not changed for a while against Stripe.

    Picks up payments whose confirmation never reached us (closed tab, lost
    webhook). Safe to run repeatedly; each intent is synced independently.
    """
    if grace_seconds is None:
        grace_seconds = getattr(settings, "PAYMENT_RECONCILE_GRACE_SECONDS", 300)
    if batch_size is None:
        batch_size = getattr(settings, "PAYMENT_RECONCILE_BATCH_SIZE", 200)

    cutoff = timezone.now() - timedelta(seconds=grace_seconds)
    intents = PaymentIntentStore().stale_non_terminal(cutoff, batch_size)
    engine = default_engine()

    advanced = 0
    errors = 0
    for intent in intents:
        try:
            result = engine.sync_payment_intent(intent.gateway_intent_id)
        except Exception as exc:  # noqa: BLE001
            errors += 1
            logger.warning(
                "payments: reconcile failed for intent %s: %s",
                intent.gateway_intent_id,
                exc,
                exc_info=not isinstance(exc, BookingError),
            )
            continue
        if result.changed:
            advanced += 1

    summary = {"checked": len(intents), "advanced": advanced, "errors": errors}
    if intents:
        logger.info("payments: reconcile sweep finished", extra=summary)
    return summary


@shared_task(name="payments.retry_remote_cancellations")
def retry_remote_cancellations(grace_seconds: int | None = None, batch_size: int | None = None):
    """
    Re-attempt gateway cancels/refunds that failed when a booking was cancelled,
    or that were requested and never finished.
    """
    if grace_seconds is None:
        grace_seconds = getattr(settings, "PAYMENT_RECONCILE_GRACE_SECONDS", 300)
    if batch_size is None:
        batch_size = getattr(settings, "PAYMENT_RECONCILE_BATCH_SIZE", 200)

    cutoff = timezone.now() - timedelta(seconds=grace_seconds)
    intents = list(
        PaymentIntentStore().failed_remote_cancels(batch_size, requested_before=cutoff)
    )
    engine = default_engine()
    released = 0
    for intent in intents:
        try:
            if engine.release_remote_payment(intent):
                released += 1
        except Exception:  # noqa: BLE001
            logger.exception(
                "payments: remote cancel retry crashed for intent %s", intent.gateway_intent_id
            )
    return {"checked": len(intents), "released": released}
