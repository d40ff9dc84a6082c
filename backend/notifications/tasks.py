from __future__ import annotations

import logging
from typing import Optional

from celery import shared_task
from django.apps import apps
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string

from notifications import events
from notifications.models import NotificationLog

logger = logging.getLogger(__name__)
User = get_user_model()

# event -> (recipient role on the booking, subject, template)
EVENT_EMAILS = {
    events.BOOKING_CREATED: ("provider", "New booking request for {title}", "booking_created.txt"),
    events.BOOKING_APPROVED: ("seeker", "Your booking for {title} was approved", "booking_approved.txt"),
    events.BOOKING_REJECTED: ("seeker", "Your booking for {title} was declined", "booking_rejected.txt"),
    events.BOOKING_CANCELLED: ("provider", "Booking for {title} was cancelled", "booking_cancelled.txt"),
    events.PAYMENT_SUCCEEDED: ("seeker", "Payment received for {title}", "payment_succeeded.txt"),
}


def _get_user(user_id: int) -> Optional[User]:
    try:
        return User.objects.get(pk=user_id)
    except User.DoesNotExist:
        logger.warning("notifications: user %s no longer exists", user_id)
        return None


def _build_email_context(extra: Optional[dict]) -> dict:
    frontend_origin = (getattr(settings, "FRONTEND_ORIGIN", "") or "").rstrip("/")
    context = {
        "site_name": getattr(settings, "SITE_NAME", "Roomshare"),
        "site_url": frontend_origin,
    }
    if extra:
        context.update(extra)
    return context


def _log_notification(
    channel: str,
    type_: str,
    status: str,
    *,
    user_id: int | None = None,
    booking_id: int | None = None,
    error: str | None = None,
) -> None:
    try:
        NotificationLog.objects.create(
            channel=channel,
            type=type_,
            status=status,
            user_id=user_id,
            booking_id=booking_id,
            error=error or "",
        )
    except Exception:
        logger.exception(
            "notifications: failed to persist notification log",
            extra={"channel": channel, "type": type_, "status": status},
        )


def _send_email_logged(
    type_: str,
    *,
    to_email: str | None,
    subject: str,
    template: str,
    context: dict | None = None,
    user_id: int | None = None,
    booking_id: int | None = None,
) -> bool:
    if not to_email:
        _log_notification(
            NotificationLog.Channel.EMAIL,
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            error="missing recipient email",
        )
        logger.warning("notifications: cannot send email without recipient")
        return False

    body = render_to_string(f"email/{template}", _build_email_context(context)).strip()
    message = EmailMultiAlternatives(
        subject=subject,
        body=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[to_email],
    )
    try:
        message.send(fail_silently=False)
    except Exception as exc:
        logger.exception(
            "notifications: email send failed",
            extra={"type": type_, "booking_id": booking_id, "user_id": user_id},
        )
        _log_notification(
            NotificationLog.Channel.EMAIL,
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            error=str(exc) or exc.__class__.__name__,
        )
        return False

    _log_notification(
        NotificationLog.Channel.EMAIL,
        type_,
        NotificationLog.Status.SENT,
        user_id=user_id,
        booking_id=booking_id,
    )
    return True


@shared_task(queue="emails", name="notifications.send_booking_event_email")
def send_booking_event_email(event: str, booking_id: int) -> bool:
    """Email the party a booking lifecycle event concerns."""
    if event not in EVENT_EMAILS:
        logger.warning("notifications: unknown event %s", event)
        return False

    Booking = apps.get_model("bookings", "Booking")
    booking = Booking.objects.select_related("listing").filter(pk=booking_id).first()
    if booking is None:
        logger.warning("notifications: booking %s no longer exists", booking_id)
        return False

    recipient_role, subject_template, template = EVENT_EMAILS[event]
    recipient_id = booking.seeker_id if recipient_role == "seeker" else booking.provider_id
    user = _get_user(recipient_id)
    if user is None:
        return False

    context = {
        "user": user,
        "booking": booking,
        "listing": booking.listing,
    }
    return _send_email_logged(
        event,
        to_email=user.email,
        subject=subject_template.format(title=booking.listing.title),
        template=template,
        context=context,
        user_id=user.id,
        booking_id=booking.id,
    )
