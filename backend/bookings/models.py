"""Database models for room booking requests."""

from __future__ import annotations

from django.conf import settings
from django.db import models

from listings.models import Listing


class Booking(models.Model):
    """A seeker's request to book a listing, reviewed by the listing's provider."""

    class Status(models.TextChoices):
        AWAITING_PAYMENT = "awaiting_payment", "awaiting payment"
        PENDING_REVIEW = "pending_review", "pending review"
        APPROVED = "approved", "approved"
        REJECTED = "rejected", "rejected"
        CANCELLED = "cancelled", "cancelled"

    TERMINAL_STATUSES = frozenset({Status.APPROVED, Status.REJECTED, Status.CANCELLED})
    CANCELLABLE_STATUSES = frozenset({Status.AWAITING_PAYMENT, Status.PENDING_REVIEW})

    listing = models.ForeignKey(
        Listing,
        related_name="bookings",
        on_delete=models.PROTECT,
    )
    seeker = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="bookings_as_seeker",
        on_delete=models.PROTECT,
    )
    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="bookings_as_provider",
        on_delete=models.PROTECT,
        help_text="Provider of the listing when the request was created; never re-derived.",
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.AWAITING_PAYMENT,
    )
    payment_required = models.BooleanField(default=True)
    message = models.CharField(max_length=500, blank=True, default="")
    requested_date = models.DateField(null=True, blank=True)
    duration_months = models.PositiveSmallIntegerField(default=1)

    response_message = models.CharField(max_length=500, blank=True, default="")
    responded_at = models.DateTimeField(null=True, blank=True)

    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="cancelled_bookings",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
    )
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=500, blank=True, default="")

    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["seeker", "status"], name="bookings_seeker_status_idx"),
            models.Index(fields=["provider", "status"], name="bookings_provider_status_idx"),
            models.Index(fields=["listing", "status"], name="bookings_listing_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["listing", "seeker"],
                condition=models.Q(
                    status__in=["awaiting_payment", "pending_review", "approved"]
                ),
                name="bookings_one_open_request_per_seeker",
            ),
        ]

    def __str__(self) -> str:
        """Return a human-readable representation."""
        return f"Booking #{self.pk} for {self.listing_id} ({self.status})"

    def is_terminal(self) -> bool:
        """Return True if the booking reached a terminal state."""
        return self.status in self.TERMINAL_STATUSES

    def is_cancellable(self) -> bool:
        return self.status in self.CANCELLABLE_STATUSES

    @property
    def public_status(self) -> str:
        """
        Status in the vocabulary the client application already speaks,
        where both pre-decision states are reported as "pending".
        """
        if self.status in self.CANCELLABLE_STATUSES:
            return "pending"
        return self.status
