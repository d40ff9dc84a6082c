"""Typed failures raised by the booking lifecycle engine."""

from __future__ import annotations


class BookingError(Exception):
    """Base class; ``user_message`` is safe to show to the end user."""

    default_message = "Unable to process this booking."

    def __init__(self, message: str | None = None, *, user_message: str | None = None):
        self.user_message = user_message or message or self.default_message
        super().__init__(message or self.user_message)


class NotFound(BookingError):
    """The booking, listing or payment intent does not exist."""

    default_message = "Not found."


class Forbidden(BookingError):
    """The actor is not allowed to perform this action on the booking."""

    default_message = "You are not allowed to modify this booking."


class InvalidState(BookingError):
    """A business rule rejects the action in the booking's current state."""

    default_message = "This booking cannot be changed in its current state."


class Conflict(BookingError):
    """Another writer changed the record first; re-read and retry."""

    default_message = "Please refresh and try again."


class GatewayUnavailable(BookingError):
    """The payment gateway timed out or failed transiently. Nothing was written."""

    default_message = "Payment status temporarily unavailable, try again shortly."


class Internal(BookingError):
    """Unexpected persistence or configuration failure."""

    default_message = "Something went wrong, please try again later."
