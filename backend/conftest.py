"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import itertools
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from bookings.api import BookingViewSet
from bookings.engine import BookingLifecycleEngine
from bookings.models import Booking
from bookings.store import BookingStore
from listings.models import Listing
from listings.services import ListingDirectory
from payments.gateway import GatewayIntent
from payments.store import PaymentIntentStore
from users.roles import AdminPrincipal, ProviderPrincipal, SeekerPrincipal

User = get_user_model()


def _create_user(*, username: str, role: str) -> User:
    return User.objects.create_user(
        username=username,
        password="testpass",
        email=f"{username}@example.com",
        role=role,
        email_verified=True,
    )


class FakeGateway:
    """In-memory stand-in for StripeGateway with scriptable statuses and failures."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.statuses: dict[str, str] = {}
        self.created: list[dict] = []
        self.cancelled: list[str] = []
        self.refunded: list[str] = []
        self.status_calls: list[str] = []
        self.failures: dict[str, Exception] = {}

    def fail(self, method: str, exc: Exception) -> None:
        self.failures[method] = exc

    def recover(self, method: str) -> None:
        self.failures.pop(method, None)

    def _maybe_fail(self, method: str) -> None:
        exc = self.failures.get(method)
        if exc is not None:
            raise exc

    def set_status(self, intent_id: str, status: str) -> None:
        self.statuses[intent_id] = status

    def create_intent(self, amount_minor, currency, metadata, idempotency_key):
        self._maybe_fail("create_intent")
        intent_id = f"pi_test_{next(self._ids)}"
        self.statuses[intent_id] = "requires_payment_method"
        self.created.append(
            {
                "id": intent_id,
                "amount": amount_minor,
                "currency": currency,
                "metadata": dict(metadata),
                "idempotency_key": idempotency_key,
            }
        )
        return GatewayIntent(
            id=intent_id,
            status="requires_payment_method",
            client_secret=f"{intent_id}_secret_abc",
        )

    def get_intent_status(self, intent_id):
        self._maybe_fail("get_intent_status")
        self.status_calls.append(intent_id)
        return self.statuses[intent_id]

    def cancel_intent(self, intent_id):
        self._maybe_fail("cancel_intent")
        self.cancelled.append(intent_id)
        if self.statuses.get(intent_id) not in {"succeeded", "canceled"}:
            self.statuses[intent_id] = "canceled"
        return self.statuses[intent_id]

    def refund_intent(self, intent_id):
        self._maybe_fail("refund_intent")
        self.refunded.append(intent_id)
        return f"re_{intent_id}"


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[str, int]] = []

    def publish(self, event: str, booking_id: int) -> None:
        self.events.append((event, booking_id))

    def names(self) -> list[str]:
        return [event for event, _ in self.events]


@pytest.fixture
def api_client():
    """DRF API client for request/response helpers."""
    return APIClient()


@pytest.fixture
def seeker():
    return _create_user(username="seeker", role=User.Role.SEEKER)


@pytest.fixture
def other_seeker():
    return _create_user(username="other-seeker", role=User.Role.SEEKER)


@pytest.fixture
def provider():
    return _create_user(username="provider", role=User.Role.PROVIDER)


@pytest.fixture
def other_provider():
    return _create_user(username="other-provider", role=User.Role.PROVIDER)


@pytest.fixture
def admin_user():
    return _create_user(username="site-admin", role=User.Role.ADMIN)


@pytest.fixture
def seeker_actor(seeker):
    return SeekerPrincipal(user_id=seeker.pk)


@pytest.fixture
def provider_actor(provider):
    return ProviderPrincipal(user_id=provider.pk)


@pytest.fixture
def admin_actor(admin_user):
    return AdminPrincipal(user_id=admin_user.pk)


@pytest.fixture
def listing(provider):
    return Listing.objects.create(
        provider=provider,
        title="Sunny room near campus",
        description="Furnished single room with shared kitchen.",
        city="Pune",
        rent=Decimal("12000.00"),
        security_deposit=Decimal("5000.00"),
        requires_upfront_payment=True,
        is_active=True,
        is_approved=True,
    )


@pytest.fixture
def free_listing(provider):
    """Listing whose provider reviews requests without upfront payment."""
    return Listing.objects.create(
        provider=provider,
        title="Quiet studio",
        city="Pune",
        rent=Decimal("9000.00"),
        security_deposit=Decimal("0.00"),
        requires_upfront_payment=False,
        is_active=True,
        is_approved=True,
    )


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(fake_gateway, notifier):
    return BookingLifecycleEngine(
        bookings=BookingStore(),
        intents=PaymentIntentStore(),
        gateway=fake_gateway,
        listings=ListingDirectory(),
        notifier=notifier,
        currency="inr",
    )


@pytest.fixture
def use_engine(monkeypatch, engine):
    """Make the API and background tasks use the test engine."""
    monkeypatch.setattr(BookingViewSet, "engine_factory", staticmethod(lambda: engine))
    monkeypatch.setattr("payments.tasks.default_engine", lambda: engine)
    monkeypatch.setattr("payments.webhooks.default_engine", lambda: engine)
    return engine


@pytest.fixture
def booking_factory(engine, seeker_actor, listing):
    """Create bookings through the engine so every row has a consistent intent."""
    from bookings.commands import CreateBooking

    def factory(*, actor=None, listing_obj=None, **kwargs):
        result = engine.create(
            CreateBooking(
                actor=actor or seeker_actor,
                listing_id=(listing_obj or listing).pk,
                **kwargs,
            )
        )
        return result

    return factory


@pytest.fixture
def paid_booking(booking_factory, engine, fake_gateway) -> Booking:
    """Booking whose upfront payment succeeded and now waits for the provider."""
    result = booking_factory()
    intent_id = result.payment_intent.gateway_intent_id
    fake_gateway.set_status(intent_id, "succeeded")
    return engine.sync_payment_intent(intent_id).booking
