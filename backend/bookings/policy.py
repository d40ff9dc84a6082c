"""Authorization and state guards for booking transitions.

Every engine entry point goes through these helpers so the rules live in
exactly one place. Admins get no bypass here.
"""

from __future__ import annotations

from users.roles import Principal, ProviderPrincipal, SeekerPrincipal

from .errors import Forbidden, InvalidState
from .models import Booking


def assert_can_request(actor: Principal) -> None:
    """Only seekers may create booking requests, always for themselves."""
    if not isinstance(actor, SeekerPrincipal):
        raise Forbidden(user_message="Only seekers can request bookings.")


def assert_is_seeker_of(actor: Principal, booking: Booking) -> None:
    if not isinstance(actor, SeekerPrincipal) or actor.user_id != booking.seeker_id:
        raise Forbidden(user_message="Unauthorized to modify this booking.")


def assert_is_provider_of(actor: Principal, booking: Booking) -> None:
    if not isinstance(actor, ProviderPrincipal) or actor.user_id != booking.provider_id:
        raise Forbidden(user_message="Unauthorized to modify this booking.")


def assert_can_respond(booking: Booking) -> None:
    """Providers decide only on requests that are paid (or need no payment)."""
    if booking.status == Booking.Status.AWAITING_PAYMENT:
        raise InvalidState(user_message="This booking is still awaiting payment.")
    if booking.status != Booking.Status.PENDING_REVIEW:
        raise InvalidState(user_message="Booking has already been responded to.")


def assert_can_cancel(booking: Booking) -> None:
    if not booking.is_cancellable():
        raise InvalidState(user_message="Only pending bookings can be cancelled.")


def assert_awaiting_payment(booking: Booking) -> None:
    if booking.status != Booking.Status.AWAITING_PAYMENT:
        raise InvalidState(user_message="This booking is not awaiting payment.")
