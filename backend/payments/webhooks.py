"""Stripe webhook receiver for booking payment intents."""

from __future__ import annotations

import logging

import stripe
from django.conf import settings
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from bookings.engine import default_engine
from bookings.errors import BookingError, GatewayUnavailable, NotFound

logger = logging.getLogger(__name__)
HANDLED_EVENT_PREFIX = "payment_intent."


@api_view(["POST"])
@authentication_classes([])
@permission_classes([])
def stripe_webhook(request):
    """
    Handle signed ``payment_intent.*`` events.

    The event payload only tells us which intent to look at; the status is
    always re-read from Stripe through the booking engine.
    """
    payload = request.body
    sig_header = request.META.get("HTTP_STRIPE_SIGNATURE", "")
    endpoint_secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")
    if not endpoint_secret:
        logger.error("stripe_webhook: STRIPE_WEBHOOK_SECRET is not configured")
        return Response(status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    try:
        event = stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=endpoint_secret,
        )
    except ValueError:
        return Response(status=status.HTTP_400_BAD_REQUEST)
    except stripe.SignatureVerificationError:
        return Response(status=status.HTTP_400_BAD_REQUEST)

    event_type = event.get("type") or ""
    if not event_type.startswith(HANDLED_EVENT_PREFIX):
        return Response(status=status.HTTP_200_OK)

    data_object = event.get("data", {}).get("object", {}) or {}
    intent_id = data_object.get("id", "")
    if not intent_id:
        logger.warning("stripe_webhook: %s without intent id", event_type)
        return Response(status=status.HTTP_200_OK)

    try:
        result = default_engine().sync_payment_intent(intent_id)
    except NotFound:
        logger.info("stripe_webhook: intent %s is not a booking payment", intent_id)
        return Response(status=status.HTTP_200_OK)
    except GatewayUnavailable:
        # Stripe redelivers on non-2xx responses.
        return Response(status=status.HTTP_503_SERVICE_UNAVAILABLE)
    except BookingError as exc:
        logger.error(
            "stripe_webhook: could not sync intent %s: %s", intent_id, exc, exc_info=True
        )
        return Response(status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info(
        "stripe_webhook: synced intent",
        extra={
            "event_type": event_type,
            "intent_id": intent_id,
            "booking_id": result.booking.pk,
            "changed": result.changed,
        },
    )
    return Response(status=status.HTTP_200_OK)
