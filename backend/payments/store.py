"""Persistence for gateway payment intents and operator incidents."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from django.db import IntegrityError, transaction
from django.db.models import F, Q, QuerySet
from django.utils import timezone

from .models import PaymentIncident, PaymentIntent

logger = logging.getLogger(__name__)


class PaymentIntentStore:
    def get(self, gateway_intent_id: str) -> Optional[PaymentIntent]:
        return (
            PaymentIntent.objects.select_related("booking")
            .filter(gateway_intent_id=gateway_intent_id)
            .first()
        )

    def get_for_booking(self, booking_id: int, gateway_intent_id: str) -> Optional[PaymentIntent]:
        return PaymentIntent.objects.filter(
            booking_id=booking_id, gateway_intent_id=gateway_intent_id
        ).first()

    def active_for_booking(self, booking_id: int) -> Optional[PaymentIntent]:
        return (
            PaymentIntent.objects.filter(booking_id=booking_id)
            .exclude(status__in=PaymentIntent.INACTIVE_STATUSES)
            .first()
        )

    def latest_for_booking(self, booking_id: int) -> Optional[PaymentIntent]:
        return PaymentIntent.objects.filter(booking_id=booking_id).order_by("-created_at", "-pk").first()

    def create(
        self,
        *,
        gateway_intent_id: str,
        booking_id: int,
        seeker_id: int,
        amount: int,
        currency: str,
        status: str,
        client_secret: str = "",
    ) -> PaymentIntent:
        return PaymentIntent.objects.create(
            gateway_intent_id=gateway_intent_id,
            booking_id=booking_id,
            seeker_id=seeker_id,
            amount=amount,
            currency=currency,
            status=status,
            client_secret=client_secret,
            last_synced_at=timezone.now(),
        )

    def update_status(self, intent_id: int, *, expected_status: str, new_status: str) -> bool:
        """
        Persist a gateway-observed status if the row still holds ``expected_status``.

        Returns False when another writer got there first.
        """
        now = timezone.now()
        updated = PaymentIntent.objects.filter(pk=intent_id, status=expected_status).update(
            status=new_status,
            version=F("version") + 1,
            last_synced_at=now,
            updated_at=now,
        )
        return bool(updated)

    def touch_synced(self, intent_id: int) -> None:
        """Record a sync that found no change, so the sweep does not revisit it at once."""
        now = timezone.now()
        PaymentIntent.objects.filter(pk=intent_id).update(last_synced_at=now, updated_at=now)

    def set_remote_cancel_state(self, intent_id: int, state: str, error: str = "") -> None:
        PaymentIntent.objects.filter(pk=intent_id).update(
            remote_cancel_state=state,
            remote_cancel_error=error[:500],
            updated_at=timezone.now(),
        )

    def stale_non_terminal(self, older_than: datetime, limit: int) -> list[PaymentIntent]:
        return list(
            PaymentIntent.objects.exclude(status__in=PaymentIntent.TERMINAL_STATUSES)
            .filter(updated_at__lt=older_than)
            .order_by("updated_at", "pk")[:limit]
        )

    def failed_remote_cancels(
        self, limit: int, requested_before: Optional[datetime] = None
    ) -> QuerySet[PaymentIntent]:
        """
        Intents whose remote cancel failed, plus those stuck in ``requested``
        since before ``requested_before`` (the worker died mid-call).
        """
        pending = Q(remote_cancel_state=PaymentIntent.RemoteCancelState.FAILED)
        if requested_before is not None:
            pending |= Q(
                remote_cancel_state=PaymentIntent.RemoteCancelState.REQUESTED,
                updated_at__lt=requested_before,
            )
        return (
            PaymentIntent.objects.filter(pending)
            .select_related("booking")
            .order_by("updated_at", "pk")[:limit]
        )

    def open_incident(self, intent: PaymentIntent, kind: str, detail: str) -> PaymentIncident:
        """Open an incident for ``intent`` unless one of the same kind is already open."""
        existing = PaymentIncident.objects.filter(
            payment_intent=intent, kind=kind, resolved_at__isnull=True
        ).first()
        if existing is not None:
            return existing
        try:
            with transaction.atomic():
                return PaymentIncident.objects.create(payment_intent=intent, kind=kind, detail=detail)
        except IntegrityError:
            return PaymentIncident.objects.get(
                payment_intent=intent, kind=kind, resolved_at__isnull=True
            )

    def resolve_incidents(self, intent: PaymentIntent, kind: str) -> int:
        return PaymentIncident.objects.filter(
            payment_intent=intent, kind=kind, resolved_at__isnull=True
        ).update(resolved_at=timezone.now())

    def refresh(self, intent: PaymentIntent) -> PaymentIntent:
        intent.refresh_from_db()
        return intent
