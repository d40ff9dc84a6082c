"""Transition commands accepted by the booking engine, one per state-machine edge."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Optional

from users.roles import Principal

if TYPE_CHECKING:
    from payments.models import PaymentIntent

    from .models import Booking


class Decision(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


@dataclass(frozen=True)
class CreateBooking:
    actor: Principal
    listing_id: int
    requested_date: Optional[date] = None
    duration_months: int = 1
    message: str = ""


@dataclass(frozen=True)
class ConfirmPayment:
    actor: Principal
    booking_id: int
    gateway_intent_id: str


@dataclass(frozen=True)
class RespondToBooking:
    actor: Principal
    booking_id: int
    decision: Decision
    response_message: str = ""


@dataclass(frozen=True)
class CancelBooking:
    actor: Principal
    booking_id: int
    reason: str = ""


@dataclass(frozen=True)
class RetryPayment:
    actor: Principal
    booking_id: int


@dataclass
class TransitionResult:
    """Outcome of a command; ``changed`` is False for idempotent no-ops."""

    booking: Booking
    payment_intent: Optional[PaymentIntent] = None
    changed: bool = True
    warnings: list[str] = field(default_factory=list)
