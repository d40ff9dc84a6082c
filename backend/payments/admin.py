from django.contrib import admin

from .models import PaymentIncident, PaymentIntent


@admin.register(PaymentIntent)
class PaymentIntentAdmin(admin.ModelAdmin):
    list_display = (
        "gateway_intent_id",
        "booking",
        "seeker",
        "amount",
        "currency",
        "status",
        "remote_cancel_state",
        "updated_at",
    )
    list_filter = ("status", "remote_cancel_state", "currency")
    search_fields = ("gateway_intent_id", "seeker__username", "seeker__email")
    readonly_fields = (
        "gateway_intent_id",
        "booking",
        "seeker",
        "amount",
        "currency",
        "status",
        "client_secret",
        "version",
        "last_synced_at",
    )


@admin.register(PaymentIncident)
class PaymentIncidentAdmin(admin.ModelAdmin):
    list_display = ("id", "kind", "payment_intent", "created_at", "resolved_at")
    list_filter = ("kind", "resolved_at")
    search_fields = ("payment_intent__gateway_intent_id", "detail")
