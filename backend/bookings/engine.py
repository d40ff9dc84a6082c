"""
Booking lifecycle engine.

Owns every state change of a booking request and its upfront payment:

    awaiting_payment -> pending_review -> approved | rejected
    awaiting_payment | pending_review -> cancelled

Status writes are conditional updates keyed on the expected prior status, so
two concurrent writers can never both win. The gateway is the source of truth
for payment status; the client-supplied status is never trusted.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import QuerySet
from django.utils import timezone

from listings.services import ListingDirectory, ListingTerms
from notifications import events
from notifications.events import NotificationPublisher
from payments.gateway import GatewayIntent, StripeGateway, to_minor_units
from payments.models import PaymentIncident, PaymentIntent
from payments.store import PaymentIntentStore
from users.roles import Principal

from . import policy
from .commands import (
    CancelBooking,
    ConfirmPayment,
    CreateBooking,
    Decision,
    RespondToBooking,
    RetryPayment,
    TransitionResult,
)
from .errors import BookingError, Conflict, Internal, InvalidState, NotFound
from .models import Booking
from .store import BookingStore

logger = logging.getLogger(__name__)
operator_logger = logging.getLogger("roomshare.operator")

DEFAULT_CANCELLATION_REASON = "Cancelled by seeker"
REMOTE_RELEASE_PENDING_WARNING = (
    "Your booking was cancelled. Releasing the payment is taking longer than usual; "
    "our team has been notified."
)


class BookingLifecycleEngine:
    def __init__(
        self,
        *,
        bookings: BookingStore,
        intents: PaymentIntentStore,
        gateway: StripeGateway,
        listings: ListingDirectory,
        notifier: NotificationPublisher,
        currency: Optional[str] = None,
    ):
        self.bookings = bookings
        self.intents = intents
        self.gateway = gateway
        self.listings = listings
        self.notifier = notifier
        self.currency = (currency or getattr(settings, "BOOKING_CURRENCY", "inr")).lower()

    # --- queries ---

    def visible_to(self, actor: Principal) -> QuerySet[Booking]:
        """Bookings the actor takes part in, as seeker or provider."""
        return self.bookings.for_participant(actor.user_id)

    # --- commands ---

    def create(self, cmd: CreateBooking) -> TransitionResult:
        policy.assert_can_request(cmd.actor)
        if cmd.duration_months < 1:
            raise InvalidState(user_message="Duration must be at least one month.")

        terms = self.listings.get_terms(cmd.listing_id)
        if terms is None:
            raise NotFound(user_message="Listing not found.")
        if not (terms.is_active and terms.is_approved):
            raise InvalidState(user_message="This listing is not available for booking.")

        payment_required = terms.requires_upfront_payment
        initial_status = (
            Booking.Status.AWAITING_PAYMENT if payment_required else Booking.Status.PENDING_REVIEW
        )

        remote: Optional[GatewayIntent] = None
        intent: Optional[PaymentIntent] = None
        try:
            with transaction.atomic():
                booking = self.bookings.create(
                    listing_id=terms.listing_id,
                    seeker_id=cmd.actor.user_id,
                    provider_id=terms.provider_id,
                    status=initial_status,
                    payment_required=payment_required,
                    message=cmd.message,
                    requested_date=cmd.requested_date,
                    duration_months=cmd.duration_months,
                )
                if payment_required:
                    amount = to_minor_units(
                        terms.upfront_amount(cmd.duration_months), self.currency
                    )
                    remote = self._create_remote_intent(booking, amount)
                    intent = self.intents.create(
                        gateway_intent_id=remote.id,
                        booking_id=booking.pk,
                        seeker_id=booking.seeker_id,
                        amount=amount,
                        currency=self.currency,
                        status=remote.status,
                        client_secret=remote.client_secret,
                    )
        except DatabaseError as exc:
            logger.exception(
                "bookings: could not persist booking request",
                extra={"listing_id": cmd.listing_id, "seeker_id": cmd.actor.user_id},
            )
            if remote is not None:
                self._cancel_orphaned_intent(remote.id)
            raise Internal("Could not persist booking request.") from exc

        logger.info(
            "bookings: request created",
            extra={
                "booking_id": booking.pk,
                "listing_id": booking.listing_id,
                "status": booking.status,
                "intent_id": remote.id if remote else None,
            },
        )
        self.notifier.publish(events.BOOKING_CREATED, booking.pk)
        return TransitionResult(booking=booking, payment_intent=intent)

    def confirm_payment(self, cmd: ConfirmPayment) -> TransitionResult:
        booking = self.bookings.require(cmd.booking_id)
        policy.assert_is_seeker_of(cmd.actor, booking)
        intent = self.intents.get_for_booking(booking.pk, cmd.gateway_intent_id)
        if intent is None:
            raise NotFound(user_message="Payment not found for this booking.")
        return self.sync_payment_intent(intent.gateway_intent_id)

    def respond(self, cmd: RespondToBooking) -> TransitionResult:
        booking = self.bookings.require(cmd.booking_id)
        policy.assert_is_provider_of(cmd.actor, booking)
        policy.assert_can_respond(booking)

        decision = Decision(cmd.decision)
        new_status = (
            Booking.Status.APPROVED if decision is Decision.APPROVE else Booking.Status.REJECTED
        )
        booking = self.bookings.transition(
            booking.pk,
            expected_status=Booking.Status.PENDING_REVIEW,
            new_status=new_status,
            expected_version=booking.version,
            response_message=cmd.response_message,
            responded_at=timezone.now(),
        )
        self.notifier.publish(
            events.BOOKING_APPROVED if decision is Decision.APPROVE else events.BOOKING_REJECTED,
            booking.pk,
        )
        return TransitionResult(booking=booking)

    def cancel(self, cmd: CancelBooking) -> TransitionResult:
        booking = self.bookings.require(cmd.booking_id)
        policy.assert_is_seeker_of(cmd.actor, booking)
        policy.assert_can_cancel(booking)

        booking = self.bookings.transition(
            booking.pk,
            expected_status=booking.status,
            new_status=Booking.Status.CANCELLED,
            expected_version=booking.version,
            cancelled_by_id=cmd.actor.user_id,
            cancelled_at=timezone.now(),
            cancellation_reason=(cmd.reason or "").strip() or DEFAULT_CANCELLATION_REASON,
        )

        result = TransitionResult(booking=booking)
        intent = self.intents.active_for_booking(booking.pk)
        if intent is not None:
            if not self.release_remote_payment(intent):
                result.warnings.append(REMOTE_RELEASE_PENDING_WARNING)
            result.payment_intent = self.intents.refresh(intent)

        self.notifier.publish(events.BOOKING_CANCELLED, booking.pk)
        return result

    def retry_payment(self, cmd: RetryPayment) -> TransitionResult:
        booking = self.bookings.require(cmd.booking_id)
        policy.assert_is_seeker_of(cmd.actor, booking)
        policy.assert_awaiting_payment(booking)
        if self.intents.active_for_booking(booking.pk) is not None:
            raise InvalidState(user_message="A payment for this booking is already in progress.")

        previous = self.intents.latest_for_booking(booking.pk)
        if previous is not None:
            amount, currency = previous.amount, previous.currency
        else:
            terms = self._require_terms(booking.listing_id)
            currency = self.currency
            amount = to_minor_units(terms.upfront_amount(booking.duration_months), currency)

        remote = self._create_remote_intent(booking, amount, currency=currency)
        try:
            with transaction.atomic():
                intent = self.intents.create(
                    gateway_intent_id=remote.id,
                    booking_id=booking.pk,
                    seeker_id=booking.seeker_id,
                    amount=amount,
                    currency=currency,
                    status=remote.status,
                    client_secret=remote.client_secret,
                )
        except IntegrityError as exc:
            # A concurrent retry already attached an active intent.
            self._cancel_orphaned_intent(remote.id)
            raise Conflict(f"Booking {booking.pk} already has an active intent.") from exc
        except DatabaseError as exc:
            self._cancel_orphaned_intent(remote.id)
            raise Internal("Could not persist payment intent.") from exc

        logger.info(
            "bookings: payment retried",
            extra={"booking_id": booking.pk, "intent_id": remote.id},
        )
        return TransitionResult(booking=booking, payment_intent=intent)

    # --- gateway truth ---

    def sync_payment_intent(self, gateway_intent_id: str) -> TransitionResult:
        """
        Pull the authoritative status of an intent and apply it.

        Shared by seeker confirmation, the webhook and the reconciliation sweep.
        Safe to call any number of times; losing a race to another caller is a
        no-op, not an error.
        """
        intent = self.intents.get(gateway_intent_id)
        if intent is None:
            raise NotFound(user_message="Payment not found.")

        changed = False
        observed = intent.status
        if intent.is_terminal():
            # Terminal statuses are final; never re-read them from the gateway.
            remote_status = observed
        else:
            remote_status = self.gateway.get_intent_status(gateway_intent_id)

        if remote_status != observed:
            changed = self.intents.update_status(
                intent.pk, expected_status=observed, new_status=remote_status
            )
        elif not intent.is_terminal():
            self.intents.touch_synced(intent.pk)
        intent = self.intents.refresh(intent)

        booking = self.bookings.require(intent.booking_id)
        if intent.status == PaymentIntent.Status.SUCCEEDED:
            if booking.status == Booking.Status.AWAITING_PAYMENT:
                try:
                    booking = self.bookings.transition(
                        booking.pk,
                        expected_status=Booking.Status.AWAITING_PAYMENT,
                        new_status=Booking.Status.PENDING_REVIEW,
                    )
                except Conflict:
                    booking = self.bookings.require(booking.pk)
                else:
                    changed = True
                    logger.info(
                        "bookings: payment succeeded, request ready for review",
                        extra={"booking_id": booking.pk, "intent_id": gateway_intent_id},
                    )
                    self.notifier.publish(events.PAYMENT_SUCCEEDED, booking.pk)

            if (
                booking.status == Booking.Status.CANCELLED
                and intent.remote_cancel_state != PaymentIntent.RemoteCancelState.DONE
            ):
                self._flag_refund_required(intent, booking)

        return TransitionResult(booking=booking, payment_intent=intent, changed=changed)

    def release_remote_payment(self, intent: PaymentIntent) -> bool:
        """
        Cancel the gateway intent behind a cancelled booking, or refund it when
        the payment already went through. Returns False if the release failed for
        any reason; the failure is recorded as an incident for an operator.
        """
        self.intents.set_remote_cancel_state(intent.pk, PaymentIntent.RemoteCancelState.REQUESTED)
        try:
            if intent.status == PaymentIntent.Status.SUCCEEDED:
                self.gateway.refund_intent(intent.gateway_intent_id)
            else:
                remote_status = self.gateway.cancel_intent(intent.gateway_intent_id)
                if remote_status == PaymentIntent.Status.SUCCEEDED:
                    # Paid between the seeker's cancel and ours.
                    self.gateway.refund_intent(intent.gateway_intent_id)
                if remote_status != intent.status:
                    self.intents.update_status(
                        intent.pk, expected_status=intent.status, new_status=remote_status
                    )
        except Exception as exc:  # noqa: BLE001
            error = str(exc) or type(exc).__name__
            self.intents.set_remote_cancel_state(
                intent.pk, PaymentIntent.RemoteCancelState.FAILED, error
            )
            self.intents.open_incident(
                intent, PaymentIncident.Kind.REMOTE_CANCEL_FAILED, detail=error
            )
            operator_logger.error(
                "payments: remote cancel failed for booking %s intent %s: %s",
                intent.booking_id,
                intent.gateway_intent_id,
                error,
                exc_info=not isinstance(exc, BookingError),
            )
            return False

        self.intents.set_remote_cancel_state(intent.pk, PaymentIntent.RemoteCancelState.DONE)
        self.intents.resolve_incidents(intent, PaymentIncident.Kind.REMOTE_CANCEL_FAILED)
        self.intents.resolve_incidents(intent, PaymentIncident.Kind.REFUND_REQUIRED)
        return True

    # --- helpers ---

    def _require_terms(self, listing_id: int) -> ListingTerms:
        terms = self.listings.get_terms(listing_id)
        if terms is None:
            raise NotFound(user_message="Listing not found.")
        return terms

    def _create_remote_intent(
        self, booking: Booking, amount: int, *, currency: Optional[str] = None
    ) -> GatewayIntent:
        return self.gateway.create_intent(
            amount,
            currency or self.currency,
            metadata={
                "kind": "booking_upfront",
                "booking_id": str(booking.pk),
                "listing_id": str(booking.listing_id),
                "seeker_id": str(booking.seeker_id),
            },
            idempotency_key=f"booking:{booking.pk}:upfront:{uuid.uuid4().hex}",
        )

    def _cancel_orphaned_intent(self, gateway_intent_id: str) -> None:
        try:
            self.gateway.cancel_intent(gateway_intent_id)
        except BookingError:
            operator_logger.error(
                "payments: could not cancel orphaned intent %s", gateway_intent_id, exc_info=True
            )

    def _flag_refund_required(self, intent: PaymentIntent, booking: Booking) -> None:
        self.intents.open_incident(
            intent,
            PaymentIncident.Kind.REFUND_REQUIRED,
            detail=f"Payment succeeded after booking {booking.pk} was {booking.status}.",
        )
        operator_logger.error(
            "payments: intent %s succeeded for %s booking %s; refund required",
            intent.gateway_intent_id,
            booking.status,
            booking.pk,
        )


def default_engine() -> BookingLifecycleEngine:
    """Engine wired with the database stores, Stripe and Celery notifications."""
    return BookingLifecycleEngine(
        bookings=BookingStore(),
        intents=PaymentIntentStore(),
        gateway=StripeGateway(),
        listings=ListingDirectory(),
        notifier=NotificationPublisher(),
    )
