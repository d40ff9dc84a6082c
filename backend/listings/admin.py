from django.contrib import admin

from .models import Listing


@admin.register(Listing)
class ListingAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "provider", "city", "rent", "is_active", "is_approved")
    list_filter = ("is_active", "is_approved", "requires_upfront_payment", "city")
    search_fields = ("title", "provider__username", "city")
