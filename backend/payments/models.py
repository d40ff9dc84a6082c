from django.conf import settings
from django.db import models


class PaymentIntent(models.Model):
    """Local mirror of a gateway PaymentIntent created for a booking request."""

    class Status(models.TextChoices):
        REQUIRES_PAYMENT_METHOD = "requires_payment_method", "Requires payment method"
        REQUIRES_CONFIRMATION = "requires_confirmation", "Requires confirmation"
        REQUIRES_ACTION = "requires_action", "Requires action"
        PROCESSING = "processing", "Processing"
        REQUIRES_CAPTURE = "requires_capture", "Requires capture"
        SUCCEEDED = "succeeded", "Succeeded"
        CANCELED = "canceled", "Canceled"
        FAILED = "failed", "Failed"

    class RemoteCancelState(models.TextChoices):
        NONE = "", "Not requested"
        REQUESTED = "requested", "Requested"
        DONE = "done", "Done"
        FAILED = "failed", "Failed"

    TERMINAL_STATUSES = frozenset({Status.SUCCEEDED, Status.CANCELED, Status.FAILED})
    INACTIVE_STATUSES = frozenset({Status.CANCELED, Status.FAILED})

    gateway_intent_id = models.CharField(max_length=255, unique=True)
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="payment_intents",
    )
    seeker = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payment_intents",
    )
    amount = models.PositiveIntegerField(help_text="Amount in the currency's minor units.")
    currency = models.CharField(max_length=8, default="inr")
    status = models.CharField(
        max_length=32,
        choices=Status.choices,
        default=Status.REQUIRES_PAYMENT_METHOD,
    )
    client_secret = models.CharField(max_length=255, blank=True, default="")
    remote_cancel_state = models.CharField(
        max_length=16,
        choices=RemoteCancelState.choices,
        blank=True,
        default=RemoteCancelState.NONE,
    )
    remote_cancel_error = models.CharField(max_length=500, blank=True, default="")
    version = models.PositiveIntegerField(default=0)
    last_synced_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "updated_at"], name="payments_status_updated_idx"),
            models.Index(fields=["booking", "status"], name="payments_booking_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["booking"],
                condition=~models.Q(status__in=["canceled", "failed"]),
                name="payments_one_active_intent_per_booking",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.gateway_intent_id} ({self.status}) for booking {self.booking_id}"

    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def is_active(self) -> bool:
        return self.status not in self.INACTIVE_STATUSES


class PaymentIncident(models.Model):
    """Operator-visible record of a payment side effect that needs attention."""

    class Kind(models.TextChoices):
        REMOTE_CANCEL_FAILED = "remote_cancel_failed", "Remote cancel failed"
        REFUND_REQUIRED = "refund_required", "Refund required"

    payment_intent = models.ForeignKey(
        PaymentIntent,
        on_delete=models.PROTECT,
        related_name="incidents",
    )
    kind = models.CharField(max_length=32, choices=Kind.choices)
    detail = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["payment_intent", "kind"],
                condition=models.Q(resolved_at__isnull=True),
                name="payments_one_open_incident_per_kind",
            ),
        ]

    def __str__(self) -> str:
        state = "open" if self.resolved_at is None else "resolved"
        return f"{self.kind} for {self.payment_intent_id} ({state})"
