from django.contrib import admin

from .models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("id", "listing", "seeker", "provider", "status", "payment_required", "created_at")
    list_filter = ("status", "payment_required")
    search_fields = ("listing__title", "seeker__username", "provider__username")
    # Status changes go through the lifecycle engine only.
    readonly_fields = ("status", "version", "responded_at", "cancelled_at", "cancelled_by")
