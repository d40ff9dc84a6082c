"""Serializers for booking-related API endpoints."""

from __future__ import annotations

from rest_framework import serializers

from payments.gateway import from_minor_units
from payments.models import PaymentIntent

from .models import Booking

MAX_DURATION_MONTHS = 36


class PaymentIntentSerializer(serializers.ModelSerializer):
    """Payment details the seeker's client needs to complete checkout."""

    payment_intent_id = serializers.ReadOnlyField(source="gateway_intent_id")
    amount_display = serializers.SerializerMethodField()

    class Meta:
        model = PaymentIntent
        fields = (
            "payment_intent_id",
            "status",
            "amount",
            "amount_display",
            "currency",
            "client_secret",
        )
        read_only_fields = fields

    def get_amount_display(self, obj: PaymentIntent) -> str:
        return str(from_minor_units(obj.amount, obj.currency))

    def to_representation(self, instance):
        data = super().to_representation(instance)
        request = self.context.get("request")
        user_id = getattr(getattr(request, "user", None), "id", None)
        if user_id != instance.seeker_id or instance.is_terminal():
            data.pop("client_secret", None)
        return data


class BookingSerializer(serializers.ModelSerializer):
    """Serialize Booking instances for API usage."""

    status = serializers.ReadOnlyField(source="public_status")
    workflow_status = serializers.ReadOnlyField(source="status")
    listing_title = serializers.ReadOnlyField(source="listing.title")
    seeker_username = serializers.ReadOnlyField(source="seeker.username")
    provider_username = serializers.ReadOnlyField(source="provider.username")
    payment_intent = serializers.SerializerMethodField()

    class Meta:
        model = Booking
        fields = (
            "id",
            "listing",
            "listing_title",
            "seeker",
            "seeker_username",
            "provider",
            "provider_username",
            "status",
            "workflow_status",
            "payment_required",
            "message",
            "requested_date",
            "duration_months",
            "response_message",
            "responded_at",
            "cancelled_by",
            "cancelled_at",
            "cancellation_reason",
            "payment_intent",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields

    def get_payment_intent(self, obj: Booking):
        override = self.context.get("payment_intent")
        intent = override if override is not None and override.booking_id == obj.pk else None
        if intent is None:
            intent = obj.payment_intents.order_by("-created_at", "-pk").first()
        if intent is None:
            return None
        return PaymentIntentSerializer(intent, context=self.context).data


class BookingCreateSerializer(serializers.Serializer):
    listing = serializers.IntegerField(min_value=1)
    requested_date = serializers.DateField(required=False, allow_null=True)
    duration_months = serializers.IntegerField(
        required=False, default=1, min_value=1, max_value=MAX_DURATION_MONTHS
    )
    message = serializers.CharField(required=False, allow_blank=True, default="", max_length=500)


class ConfirmPaymentSerializer(serializers.Serializer):
    payment_intent_id = serializers.CharField(max_length=255)


class RespondSerializer(serializers.Serializer):
    response_message = serializers.CharField(
        required=False, allow_blank=True, default="", max_length=500
    )


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=500)
