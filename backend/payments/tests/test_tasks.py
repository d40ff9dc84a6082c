"""Reconciliation sweep, remote cancel retries and the management command."""

from __future__ import annotations

from datetime import timedelta

import pytest
from django.core.management import CommandError, call_command
from django.utils import timezone

from bookings.commands import CancelBooking
from bookings.errors import GatewayUnavailable
from bookings.models import Booking
from payments.models import PaymentIncident, PaymentIntent
from payments.tasks import reconcile_payment_intents, retry_remote_cancellations
from users.roles import SeekerPrincipal

pytestmark = [pytest.mark.django_db, pytest.mark.usefixtures("use_engine")]


def _age(intent: PaymentIntent, minutes: int) -> None:
    PaymentIntent.objects.filter(pk=intent.pk).update(
        updated_at=timezone.now() - timedelta(minutes=minutes)
    )


def _set_local_status(intent: PaymentIntent, status: str) -> None:
    PaymentIntent.objects.filter(pk=intent.pk).update(status=status)


def test_stuck_processing_intent_that_failed_stays_awaiting_payment(booking_factory, fake_gateway):
    created = booking_factory()
    intent = created.payment_intent
    _set_local_status(intent, PaymentIntent.Status.PROCESSING)
    _age(intent, 10)
    fake_gateway.set_status(intent.gateway_intent_id, "failed")

    summary = reconcile_payment_intents()

    intent.refresh_from_db()
    created.booking.refresh_from_db()
    assert summary == {"checked": 1, "advanced": 1, "errors": 0}
    assert intent.status == PaymentIntent.Status.FAILED
    assert created.booking.status == Booking.Status.AWAITING_PAYMENT
    assert not intent.is_active()


def test_sweep_advances_paid_bookings(booking_factory, fake_gateway, notifier):
    created = booking_factory()
    intent = created.payment_intent
    _age(intent, 10)
    fake_gateway.set_status(intent.gateway_intent_id, "succeeded")

    summary = reconcile_payment_intents()

    created.booking.refresh_from_db()
    assert summary["advanced"] == 1
    assert created.booking.status == Booking.Status.PENDING_REVIEW
    assert notifier.names().count("payment.succeeded") == 1


def test_sweep_skips_recent_and_terminal_intents(booking_factory, paid_booking, other_seeker):
    recent = booking_factory(actor=SeekerPrincipal(user_id=other_seeker.pk)).payment_intent
    terminal = PaymentIntent.objects.get(booking=paid_booking)
    _age(terminal, 60)

    summary = reconcile_payment_intents()

    assert recent.status == PaymentIntent.Status.REQUIRES_PAYMENT_METHOD
    assert summary == {"checked": 0, "advanced": 0, "errors": 0}


def test_sweep_continues_past_errors(booking_factory, fake_gateway, other_seeker):
    broken = booking_factory().payment_intent
    healthy = booking_factory(
        actor=SeekerPrincipal(user_id=other_seeker.pk)
    ).payment_intent
    _age(broken, 15)
    _age(healthy, 10)
    fake_gateway.set_status(healthy.gateway_intent_id, "succeeded")
    # The gateway lost track of the first intent entirely.
    del fake_gateway.statuses[broken.gateway_intent_id]

    summary = reconcile_payment_intents()

    assert summary == {"checked": 2, "advanced": 1, "errors": 1}
    healthy.refresh_from_db()
    assert healthy.status == PaymentIntent.Status.SUCCEEDED


def test_unchanged_intent_is_not_rechecked_immediately(booking_factory, fake_gateway):
    intent = booking_factory().payment_intent
    _age(intent, 10)

    first = reconcile_payment_intents()
    second = reconcile_payment_intents()

    assert first == {"checked": 1, "advanced": 0, "errors": 0}
    assert second["checked"] == 0


def test_sweep_respects_batch_size(booking_factory, other_seeker):
    for result in (
        booking_factory(),
        booking_factory(actor=SeekerPrincipal(user_id=other_seeker.pk)),
    ):
        _age(result.payment_intent, 10)

    assert reconcile_payment_intents(batch_size=1)["checked"] == 1


def test_retry_remote_cancellations_resolves_incident(engine, fake_gateway, seeker_actor, paid_booking):
    fake_gateway.fail("refund_intent", GatewayUnavailable())
    engine.cancel(CancelBooking(actor=seeker_actor, booking_id=paid_booking.pk))
    intent = PaymentIntent.objects.get(booking=paid_booking)
    assert intent.remote_cancel_state == PaymentIntent.RemoteCancelState.FAILED

    still_failing = retry_remote_cancellations()
    assert still_failing == {"checked": 1, "released": 0}

    fake_gateway.recover("refund_intent")
    summary = retry_remote_cancellations()

    intent.refresh_from_db()
    assert summary == {"checked": 1, "released": 1}
    assert intent.remote_cancel_state == PaymentIntent.RemoteCancelState.DONE
    assert fake_gateway.refunded == [intent.gateway_intent_id]
    incident = PaymentIncident.objects.get(payment_intent=intent)
    assert incident.resolved_at is not None


def test_unexpected_cancel_crash_is_recorded_and_retried(
    engine, fake_gateway, seeker_actor, booking_factory
):
    created = booking_factory()
    fake_gateway.fail("cancel_intent", RuntimeError("connection reset"))

    result = engine.cancel(CancelBooking(actor=seeker_actor, booking_id=created.booking.pk))

    intent = PaymentIntent.objects.get(booking=created.booking)
    assert result.booking.status == Booking.Status.CANCELLED
    assert result.warnings
    assert intent.remote_cancel_state == PaymentIntent.RemoteCancelState.FAILED
    assert PaymentIncident.objects.filter(
        payment_intent=intent,
        kind=PaymentIncident.Kind.REMOTE_CANCEL_FAILED,
        resolved_at__isnull=True,
    ).exists()

    fake_gateway.recover("cancel_intent")
    summary = retry_remote_cancellations()

    intent.refresh_from_db()
    assert summary == {"checked": 1, "released": 1}
    assert intent.remote_cancel_state == PaymentIntent.RemoteCancelState.DONE
    assert intent.status == PaymentIntent.Status.CANCELED


def test_abandoned_remote_cancel_is_picked_up_after_grace(
    booking_factory, fake_gateway, other_seeker
):
    stuck = booking_factory()
    fresh = booking_factory(actor=SeekerPrincipal(user_id=other_seeker.pk))
    for created in (stuck, fresh):
        Booking.objects.filter(pk=created.booking.pk).update(status=Booking.Status.CANCELLED)
        PaymentIntent.objects.filter(pk=created.payment_intent.pk).update(
            remote_cancel_state=PaymentIntent.RemoteCancelState.REQUESTED
        )
    # The worker that requested the first cancel died long ago.
    _age(stuck.payment_intent, 30)

    summary = retry_remote_cancellations(grace_seconds=300)

    stuck_intent = PaymentIntent.objects.get(pk=stuck.payment_intent.pk)
    fresh_intent = PaymentIntent.objects.get(pk=fresh.payment_intent.pk)
    assert summary == {"checked": 1, "released": 1}
    assert fake_gateway.cancelled == [stuck_intent.gateway_intent_id]
    assert stuck_intent.remote_cancel_state == PaymentIntent.RemoteCancelState.DONE
    assert fresh_intent.remote_cancel_state == PaymentIntent.RemoteCancelState.REQUESTED


def test_management_command_runs_one_sweep(capsys, booking_factory, fake_gateway):
    intent = booking_factory().payment_intent
    _age(intent, 2)
    fake_gateway.set_status(intent.gateway_intent_id, "succeeded")

    call_command("reconcile_payments", "--grace-seconds", "60")

    intent.refresh_from_db()
    assert intent.status == PaymentIntent.Status.SUCCEEDED
    assert "Checked 1 intents: 1 advanced, 0 errors." in capsys.readouterr().out


def test_management_command_validates_arguments():
    with pytest.raises(CommandError):
        call_command("reconcile_payments", "--grace-seconds", "-1")
