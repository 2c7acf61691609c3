from django.contrib import admin
from drivers.models import DriverProfile


@admin.register(DriverProfile)
class DriverProfileAdmin(admin.ModelAdmin):
    """Admin panel for driver availability and stats"""

    list_display = [
        "user",
        "vehicle_number",
        "vehicle_class",
        "is_online",
        "current_ride",
        "rating",
        "acceptance_rate",
        "last_location_update",
    ]

    list_filter = ["is_online", "vehicle_class"]

    search_fields = ["user__username", "vehicle_number"]

    readonly_fields = [
        "current_ride",
        "acceptance_rate",
        "cancellation_rate",
        "rating",
        "rating_count",
        "completed_rides",
        "last_location_update",
    ]

    ordering = ("user__username",)
