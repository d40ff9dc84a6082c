import django_filters as filters

from .models import Booking


class BookingFilter(filters.FilterSet):
    # Public vocabulary: "pending" covers both pre-decision states.
    status = filters.CharFilter(method="filter_status")
    workflow_status = filters.ChoiceFilter(field_name="status", choices=Booking.Status.choices)
    listing = filters.NumberFilter(field_name="listing_id")

    class Meta:
        model = Booking
        fields = ["status", "workflow_status", "listing"]

    def filter_status(self, queryset, name, value):
        if not value or value == "all":
            return queryset
        if value == "pending":
            return queryset.filter(status__in=Booking.CANCELLABLE_STATUSES)
        return queryset.filter(status=value)
