"""Stripe adapter used by the booking engine for upfront booking payments."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional

import stripe
from django.conf import settings

from bookings.errors import GatewayUnavailable, Internal, InvalidState, NotFound

from .models import PaymentIntent

logger = logging.getLogger(__name__)

# Currencies Stripe charges in whole units.
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
        "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
    }
)
AUTOMATIC_PAYMENT_METHODS_CONFIG = {"enabled": True}
KNOWN_STATUSES = frozenset(PaymentIntent.Status.values)


@dataclass(frozen=True)
class GatewayIntent:
    id: str
    status: str
    client_secret: str = ""


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a major-unit Decimal amount to the integer Stripe expects."""
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        units = Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    else:
        units = (Decimal(amount) * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(units)


def from_minor_units(amount: int, currency: str) -> Decimal:
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(amount)
    return (Decimal(amount) / Decimal("100")).quantize(Decimal("0.01"))


def _handle_stripe_error(exc: stripe.StripeError) -> None:
    """Map Stripe SDK errors onto booking error types."""
    if isinstance(exc, stripe.CardError):
        raise InvalidState(user_message=exc.user_message or "Your card was declined.") from exc
    if isinstance(
        exc,
        (
            stripe.RateLimitError,
            stripe.APIConnectionError,
            stripe.APIError,
        ),
    ):
        raise GatewayUnavailable("Temporary Stripe error, please retry.") from exc
    if isinstance(exc, (stripe.AuthenticationError, stripe.PermissionError)):
        raise Internal("Stripe credentials are invalid or unauthorized.") from exc
    if isinstance(exc, stripe.InvalidRequestError):
        if getattr(exc, "code", "") == "resource_missing":
            raise NotFound(user_message="Payment not found.") from exc
        raise InvalidState(user_message=exc.user_message or "Invalid payment request.") from exc
    raise Internal(f"Stripe failure: {exc}") from exc


class StripeGateway:
    """
    Thin wrapper over the Stripe PaymentIntent API.

    Every call carries a network timeout; timeouts and transient failures
    surface as ``GatewayUnavailable`` so callers leave local state untouched.
    """

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[float] = None):
        self._api_key = api_key
        self._timeout = timeout

    @property
    def api_key(self) -> str:
        api_key = self._api_key or getattr(settings, "STRIPE_SECRET_KEY", "")
        if not api_key:
            raise Internal("Stripe secret key not configured.")
        return api_key

    def _configure(self) -> None:
        stripe.api_key = self.api_key
        timeout = self._timeout or getattr(settings, "PAYMENT_GATEWAY_TIMEOUT_SECONDS", 10.0)
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    def _normalize_status(self, intent: Any) -> str:
        status = getattr(intent, "status", None)
        if status not in KNOWN_STATUSES:
            raise Internal(f"Unexpected PaymentIntent status {status!r} for {intent.id}.")
        return status

    def create_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> GatewayIntent:
        if amount_minor <= 0:
            raise InvalidState(user_message="Booking amount must be greater than zero.")
        self._configure()
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_minor,
                currency=currency,
                metadata=dict(metadata),
                automatic_payment_methods=AUTOMATIC_PAYMENT_METHODS_CONFIG,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            _handle_stripe_error(exc)
        logger.info(
            "stripe: payment intent created",
            extra={"intent_id": intent.id, "amount": amount_minor, "currency": currency},
        )
        try:
            status = self._normalize_status(intent)
        except Internal:
            # The caller never learns this id, so nothing else could cancel it.
            self._discard_intent(intent.id)
            raise
        return GatewayIntent(
            id=intent.id,
            status=status,
            client_secret=getattr(intent, "client_secret", "") or "",
        )

    def _discard_intent(self, intent_id: str) -> None:
        try:
            stripe.PaymentIntent.cancel(intent_id, cancellation_reason="abandoned")
        except stripe.StripeError:
            logger.error("stripe: could not cancel untracked intent %s", intent_id, exc_info=True)

    def get_intent_status(self, intent_id: str) -> str:
        """Return the authoritative status of ``intent_id`` as reported by Stripe."""
        self._configure()
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id)
        except stripe.StripeError as exc:
            _handle_stripe_error(exc)
        return self._normalize_status(intent)

    def cancel_intent(self, intent_id: str) -> str:
        self._configure()
        try:
            intent = stripe.PaymentIntent.cancel(
                intent_id,
                cancellation_reason="requested_by_customer",
            )
        except stripe.InvalidRequestError as exc:
            # Stripe rejects cancelling an intent that is already canceled.
            if getattr(exc, "code", "") == "payment_intent_unexpected_state":
                logger.info("stripe: intent %s already in a final state", intent_id)
                return self.get_intent_status(intent_id)
            _handle_stripe_error(exc)
        except stripe.StripeError as exc:
            _handle_stripe_error(exc)
        return self._normalize_status(intent)

    def refund_intent(self, intent_id: str) -> str:
        """Refund a succeeded intent in full; returns the Stripe refund id."""
        self._configure()
        try:
            refund = stripe.Refund.create(
                payment_intent=intent_id,
                reason="requested_by_customer",
                idempotency_key=f"refund:{intent_id}",
            )
        except stripe.StripeError as exc:
            _handle_stripe_error(exc)
        logger.info("stripe: refund %s issued for %s", refund.id, intent_id)
        return refund.id
