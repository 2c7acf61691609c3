from django.db import models
from django.utils import timezone
from django.conf import settings

User = settings.AUTH_USER_MODEL


class VehicleClass(models.TextChoices):
    STANDARD = 'standard', 'Standard'
    COMFORT = 'comfort', 'Comfort'
    PREMIUM = 'premium', 'Premium'


class DriverProfile(models.Model):
    """Driver availability, location and dispatch statistics"""

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='driver_profile')

    # Vehicle details
    vehicle_number = models.CharField(max_length=20, unique=True)
    vehicle_class = models.CharField(
        max_length=10,
        choices=VehicleClass.choices,
        default=VehicleClass.STANDARD,
    )

    # Availability & location
    is_online = models.BooleanField(default=False)
    current_latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    current_longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    last_location_update = models.DateTimeField(default=timezone.now)

    # Ride currently assigned to this driver (implies is_online)
    current_ride = models.ForeignKey(
        'rides.Ride',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )

    # Rolling rates in [0, 1]
    acceptance_rate = models.FloatField(default=1.0)
    cancellation_rate = models.FloatField(default=0.0)

    # Average rating from riders (null until first rating)
    rating = models.FloatField(null=True, blank=True)
    rating_count = models.PositiveIntegerField(default=0)
    completed_rides = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'driver_profiles'
        indexes = [
            models.Index(fields=['is_online', 'current_latitude', 'current_longitude'], name='driver_prof_is_onli_8e2f41_idx'),
        ]

    def __str__(self):
        return f"{self.user.username} - {self.vehicle_number}"

    @property
    def has_location(self) -> bool:
        return self.current_latitude is not None and self.current_longitude is not None
