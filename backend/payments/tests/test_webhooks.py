from __future__ import annotations

import json

import pytest
import stripe
from rest_framework.test import APIClient

from bookings.errors import GatewayUnavailable, Internal
from bookings.models import Booking

pytestmark = [pytest.mark.django_db, pytest.mark.usefixtures("use_engine")]

WEBHOOK_URL = "/api/payments/stripe/webhook/"


def _event(intent_id: str, event_type: str = "payment_intent.succeeded") -> dict:
    return {
        "type": event_type,
        "data": {
            "object": {
                "id": intent_id,
                # Payload status is ignored; the gateway is re-queried.
                "status": "succeeded",
                "metadata": {"kind": "booking_upfront"},
            }
        },
    }


def _post(monkeypatch, event: dict):
    monkeypatch.setattr(
        "payments.webhooks.stripe.Webhook.construct_event",
        lambda payload, sig_header, secret: event,
    )
    return APIClient().post(
        WEBHOOK_URL,
        data=json.dumps(event),
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE="test_sig",
    )


def test_succeeded_event_advances_booking(monkeypatch, booking_factory, fake_gateway):
    created = booking_factory()
    intent_id = created.payment_intent.gateway_intent_id
    fake_gateway.set_status(intent_id, "succeeded")

    resp = _post(monkeypatch, _event(intent_id))

    assert resp.status_code == 200
    created.booking.refresh_from_db()
    assert created.booking.status == Booking.Status.PENDING_REVIEW


def test_payload_status_is_not_trusted(monkeypatch, booking_factory, fake_gateway):
    created = booking_factory()
    intent_id = created.payment_intent.gateway_intent_id
    fake_gateway.set_status(intent_id, "requires_action")

    resp = _post(monkeypatch, _event(intent_id))

    assert resp.status_code == 200
    created.booking.refresh_from_db()
    assert created.booking.status == Booking.Status.AWAITING_PAYMENT


def test_unrelated_events_are_acknowledged(monkeypatch, fake_gateway):
    resp = _post(monkeypatch, {"type": "customer.created", "data": {"object": {"id": "cus_1"}}})

    assert resp.status_code == 200
    assert fake_gateway.status_calls == []


def test_unknown_intent_is_acknowledged(monkeypatch):
    resp = _post(monkeypatch, _event("pi_not_ours"))
    assert resp.status_code == 200


def test_gateway_outage_asks_stripe_to_redeliver(monkeypatch, booking_factory, fake_gateway):
    created = booking_factory()
    fake_gateway.fail("get_intent_status", GatewayUnavailable())

    resp = _post(monkeypatch, _event(created.payment_intent.gateway_intent_id))

    assert resp.status_code == 503


def test_bad_signature_is_rejected(monkeypatch):
    def reject(payload, sig_header, secret):
        raise stripe.SignatureVerificationError("bad signature", sig_header)

    monkeypatch.setattr("payments.webhooks.stripe.Webhook.construct_event", reject)

    resp = APIClient().post(
        WEBHOOK_URL, data="{}", content_type="application/json", HTTP_STRIPE_SIGNATURE="nope"
    )

    assert resp.status_code == 400


def test_missing_webhook_secret(monkeypatch, settings):
    settings.STRIPE_WEBHOOK_SECRET = ""
    resp = APIClient().post(WEBHOOK_URL, data="{}", content_type="application/json")
    assert resp.status_code == 500


def test_unexpected_sync_error_returns_server_error(monkeypatch, booking_factory, fake_gateway, caplog):
    created = booking_factory()
    fake_gateway.fail("get_intent_status", Internal("Unexpected PaymentIntent status 'mystery'."))

    resp = _post(monkeypatch, _event(created.payment_intent.gateway_intent_id))

    assert resp.status_code == 500
    assert "could not sync intent" in caplog.text
    created.booking.refresh_from_db()
    assert created.booking.status == Booking.Status.AWAITING_PAYMENT
