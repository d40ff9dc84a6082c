"""Persistence for booking requests with conditional (compare-and-swap) updates."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from django.db import IntegrityError, transaction
from django.db.models import F, Q, QuerySet
from django.utils import timezone

from .errors import Conflict, InvalidState, NotFound
from .models import Booking

logger = logging.getLogger(__name__)


class BookingStore:
    """Repository for Booking rows; every status change is a conditional update."""

    def _base_qs(self) -> QuerySet[Booking]:
        return Booking.objects.select_related("listing", "seeker", "provider")

    def get(self, booking_id: int) -> Optional[Booking]:
        return self._base_qs().filter(pk=booking_id).first()

    def require(self, booking_id: int) -> Booking:
        booking = self.get(booking_id)
        if booking is None:
            raise NotFound(user_message="Booking not found.")
        return booking

    def for_seeker(self, seeker_id: int) -> QuerySet[Booking]:
        return self._base_qs().filter(seeker_id=seeker_id)

    def for_provider(self, provider_id: int) -> QuerySet[Booking]:
        return self._base_qs().filter(provider_id=provider_id)

    def for_participant(self, user_id: int) -> QuerySet[Booking]:
        return self._base_qs().filter(Q(seeker_id=user_id) | Q(provider_id=user_id))

    def create(
        self,
        *,
        listing_id: int,
        seeker_id: int,
        provider_id: int,
        status: str,
        payment_required: bool,
        message: str = "",
        requested_date: Optional[date] = None,
        duration_months: int = 1,
    ) -> Booking:
        """Insert a new request; a second open request for the same listing is rejected."""
        try:
            with transaction.atomic():
                booking = Booking.objects.create(
                    listing_id=listing_id,
                    seeker_id=seeker_id,
                    provider_id=provider_id,
                    status=status,
                    payment_required=payment_required,
                    message=message,
                    requested_date=requested_date,
                    duration_months=duration_months,
                )
        except IntegrityError as exc:
            open_request = Booking.objects.filter(
                listing_id=listing_id,
                seeker_id=seeker_id,
                status__in=[
                    Booking.Status.AWAITING_PAYMENT,
                    Booking.Status.PENDING_REVIEW,
                    Booking.Status.APPROVED,
                ],
            ).exists()
            if open_request:
                raise InvalidState(
                    user_message="You already have an open booking request for this listing."
                ) from exc
            raise
        return booking

    def transition(
        self,
        booking_id: int,
        *,
        expected_status: str,
        new_status: str,
        expected_version: Optional[int] = None,
        **fields: Any,
    ) -> Booking:
        """
        Move a booking from ``expected_status`` to ``new_status`` atomically.

        Raises Conflict when the stored row no longer matches the expectation,
        NotFound when it does not exist at all.
        """
        filters: dict[str, Any] = {"pk": booking_id, "status": expected_status}
        if expected_version is not None:
            filters["version"] = expected_version

        updated = Booking.objects.filter(**filters).update(
            status=new_status,
            version=F("version") + 1,
            updated_at=timezone.now(),
            **fields,
        )
        if not updated:
            current = self.get(booking_id)
            if current is None:
                raise NotFound(user_message="Booking not found.")
            logger.info(
                "bookings: conditional update lost",
                extra={
                    "booking_id": booking_id,
                    "expected_status": expected_status,
                    "actual_status": current.status,
                    "new_status": new_status,
                },
            )
            raise Conflict(
                f"Booking {booking_id} is {current.status}; expected {expected_status}."
            )
        return self.require(booking_id)
