"""API viewsets for booking requests and their upfront payments."""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response

from users.roles import principal_for

from .commands import (
    CancelBooking,
    ConfirmPayment,
    CreateBooking,
    Decision,
    RespondToBooking,
    RetryPayment,
    TransitionResult,
)
from .engine import BookingLifecycleEngine, default_engine
from .errors import (
    BookingError,
    Conflict,
    Forbidden,
    GatewayUnavailable,
    Internal,
    InvalidState,
    NotFound,
)
from .filters import BookingFilter
from .serializers import (
    BookingCreateSerializer,
    BookingSerializer,
    CancelSerializer,
    ConfirmPaymentSerializer,
    RespondSerializer,
)

logger = logging.getLogger(__name__)
C = TypeVar("C")

ERROR_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    Forbidden: status.HTTP_403_FORBIDDEN,
    InvalidState: status.HTTP_400_BAD_REQUEST,
    Conflict: status.HTTP_409_CONFLICT,
    GatewayUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    Internal: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class BookingPagination(PageNumberPagination):
    page_size = 10
    page_size_query_param = "limit"
    max_page_size = 100


def error_response(exc: BookingError) -> Response:
    for error_cls, http_status in ERROR_STATUS.items():
        if isinstance(exc, error_cls):
            break
    else:
        http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    if http_status >= 500:
        logger.warning("bookings: request failed: %s", exc, exc_info=isinstance(exc, Internal))
    return Response({"detail": exc.user_message}, status=http_status)


class BookingViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """Booking requests and their state transitions."""

    serializer_class = BookingSerializer
    pagination_class = BookingPagination
    filterset_class = BookingFilter
    permission_classes = (permissions.IsAuthenticated,)
    lookup_value_regex = r"\d+"
    engine_factory: Callable[[], BookingLifecycleEngine] = staticmethod(default_engine)

    def get_engine(self) -> BookingLifecycleEngine:
        if not hasattr(self, "_engine"):
            self._engine = self.engine_factory()
        return self._engine

    def get_actor(self):
        try:
            return principal_for(self.request.user)
        except ValueError as exc:
            raise Forbidden(user_message="Your account cannot manage bookings.") from exc

    def get_queryset(self):
        """Restrict bookings to the authenticated participant."""
        return self.get_engine().visible_to(self.get_actor()).order_by("-created_at")

    def handle_exception(self, exc):
        if isinstance(exc, BookingError):
            return error_response(exc)
        return super().handle_exception(exc)

    def _execute(self, operation: Callable[[C], TransitionResult], command: C) -> TransitionResult:
        """Run an engine command, retrying once if another writer got there first."""
        try:
            return operation(command)
        except Conflict:
            logger.info(
                "bookings: retrying after conflict",
                extra={"command": type(command).__name__},
            )
            return operation(command)

    def _result_response(self, result: TransitionResult, *, http_status=status.HTTP_200_OK):
        context = self.get_serializer_context()
        context["payment_intent"] = result.payment_intent
        data = dict(BookingSerializer(result.booking, context=context).data)
        if result.warnings:
            data["warnings"] = list(result.warnings)
        return Response(data, status=http_status)

    def create(self, request, *args, **kwargs):
        """Request a booking; returns the payment details when upfront payment is due."""
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        params = serializer.validated_data
        result = self.get_engine().create(
            CreateBooking(
                actor=self.get_actor(),
                listing_id=params["listing"],
                requested_date=params.get("requested_date"),
                duration_months=params["duration_months"],
                message=params["message"],
            )
        )
        return self._result_response(result, http_status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="confirm-payment")
    def confirm_payment(self, request, pk=None):
        serializer = ConfirmPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        engine = self.get_engine()
        result = self._execute(
            engine.confirm_payment,
            ConfirmPayment(
                actor=self.get_actor(),
                booking_id=int(pk),
                gateway_intent_id=serializer.validated_data["payment_intent_id"],
            ),
        )
        return self._result_response(result)

    @action(detail=True, methods=["post"], url_path="retry-payment")
    def retry_payment(self, request, pk=None):
        result = self._execute(
            self.get_engine().retry_payment,
            RetryPayment(actor=self.get_actor(), booking_id=int(pk)),
        )
        return self._result_response(result, http_status=status.HTTP_201_CREATED)

    def _respond(self, request, pk, decision: Decision):
        serializer = RespondSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = self._execute(
            self.get_engine().respond,
            RespondToBooking(
                actor=self.get_actor(),
                booking_id=int(pk),
                decision=decision,
                response_message=serializer.validated_data["response_message"],
            ),
        )
        return self._result_response(result)

    @action(detail=True, methods=["post"], url_path="approve")
    def approve(self, request, pk=None):
        return self._respond(request, pk, Decision.APPROVE)

    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        return self._respond(request, pk, Decision.REJECT)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        """Cancel a booking request (seeker only, before the provider decides)."""
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = self._execute(
            self.get_engine().cancel,
            CancelBooking(
                actor=self.get_actor(),
                booking_id=int(pk),
                reason=serializer.validated_data["reason"],
            ),
        )
        return self._result_response(result)
