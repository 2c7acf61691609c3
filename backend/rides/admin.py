"""Tells what to show in the Django admin interface for rides app"""

from django.contrib import admin
from .models import Ride, OtpRecord


@admin.register(Ride)
class RideAdmin(admin.ModelAdmin):
    """Rides are read-only here; status changes go through the API"""
    list_display = ['id', 'rider', 'driver', 'status', 'version', 'total_fare', 'requested_at', 'completed_at']
    list_filter = ['status', 'vehicle_class', 'requested_at']
    search_fields = ['rider__username', 'driver__username', 'pickup_address']
    readonly_fields = [f.name for f in Ride._meta.fields]
    date_hierarchy = 'requested_at'


@admin.register(OtpRecord)
class OtpRecordAdmin(admin.ModelAdmin):
    list_display = ("ride", "subject", "attempts", "max_attempts", "expires_at")
    exclude = ("code_hash",)
    search_fields = ("ride__id", "subject")
