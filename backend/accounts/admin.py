from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from accounts.models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Admin panel for riders and drivers"""

    list_display = [
        "username",
        "role",
        "phone_number",
        "completed_rides",
        "rating",
        "is_active",
    ]

    list_filter = ["role", "is_active", "is_staff"]

    search_fields = ["username", "email", "phone_number"]

    ordering = ("username",)

    fieldsets = BaseUserAdmin.fieldsets + (
        (
            "Rides",
            {"fields": ("role", "phone_number", "completed_rides", "rating", "rating_count")},
        ),
    )

    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("Rides", {"fields": ("role", "phone_number")}),
    )
