from django.db import models
from django.conf import settings
from django.db.models import Q

from drivers.models import VehicleClass


class RideStatus(models.TextChoices):
    REQUESTED = 'requested', 'Requested'
    ACCEPTED = 'accepted', 'Accepted'
    DRIVER_ARRIVED = 'driver_arrived', 'Driver Arrived'
    OTP_PENDING = 'otp_pending', 'OTP Pending'
    IN_PROGRESS = 'in_progress', 'In Progress'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


TERMINAL_STATUSES = (RideStatus.COMPLETED, RideStatus.CANCELLED)
ACTIVE_STATUSES = (
    RideStatus.REQUESTED,
    RideStatus.ACCEPTED,
    RideStatus.DRIVER_ARRIVED,
    RideStatus.OTP_PENDING,
    RideStatus.IN_PROGRESS,
)


class ActorRole(models.TextChoices):
    RIDER = 'rider', 'Rider'
    DRIVER = 'driver', 'Driver'
    SYSTEM = 'system', 'System'


class Ride(models.Model):
    """A single rider-to-driver trip. Mutated only through RideLifecycle."""

    # Foreign keys
    rider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='rides_as_rider'
    )

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='rides_as_driver'
    )

    # Driver that was assigned when an accepted ride got cancelled
    released_driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    # Pickup / dropoff
    pickup_address = models.TextField(blank=True, default='')
    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    dropoff_address = models.TextField(blank=True, default='')
    dropoff_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    dropoff_longitude = models.DecimalField(max_digits=9, decimal_places=6)

    vehicle_class = models.CharField(
        max_length=10,
        choices=VehicleClass.choices,
        default=VehicleClass.STANDARD,
    )

    # Status & optimistic concurrency counter
    status = models.CharField(max_length=20, choices=RideStatus.choices, default=RideStatus.REQUESTED)
    version = models.PositiveIntegerField(default=0)

    # Fare breakdown
    base_fare = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    distance_fare = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    time_fare = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    surge_multiplier = models.DecimalField(max_digits=4, decimal_places=2, default=1)
    total_fare = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    currency = models.CharField(max_length=3, default='USD')

    # Distance (km) & duration (minutes)
    distance_km = models.FloatField(default=0)
    actual_distance_km = models.FloatField(null=True, blank=True)
    estimated_duration_min = models.PositiveIntegerField(default=0)
    actual_duration_min = models.PositiveIntegerField(null=True, blank=True)

    # Pickup verification
    otp_code_hash = models.CharField(max_length=128, blank=True, default='')
    otp_verified = models.BooleanField(default=False)
    otp_verified_by = models.CharField(max_length=10, choices=ActorRole.choices, blank=True, default='')
    otp_verified_at = models.DateTimeField(null=True, blank=True)

    # Timestamps
    requested_at = models.DateTimeField()
    accepted_at = models.DateTimeField(null=True, blank=True)
    arrived_at = models.DateTimeField(null=True, blank=True)
    otp_issued_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    # Cancellation
    cancellation_reason = models.TextField(blank=True, default='')
    cancelled_by = models.CharField(max_length=10, choices=ActorRole.choices, blank=True, default='')
    cancelled_by_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    cancellation_penalty = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    # Ratings (each direction settable once)
    rider_rating = models.PositiveSmallIntegerField(null=True, blank=True)
    rider_comment = models.TextField(blank=True, default='')
    rider_rated_at = models.DateTimeField(null=True, blank=True)
    driver_rating = models.PositiveSmallIntegerField(null=True, blank=True)
    driver_comment = models.TextField(blank=True, default='')
    driver_rated_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'rides'
        ordering = ['-requested_at']
        constraints = [
            models.UniqueConstraint(
                fields=['rider'],
                condition=Q(status__in=ACTIVE_STATUSES),
                name='one_active_ride_per_rider',
            ),
            models.UniqueConstraint(
                fields=['driver'],
                condition=Q(status__in=ACTIVE_STATUSES),
                name='one_active_ride_per_driver',
            ),
        ]
        indexes = [
            models.Index(fields=['status', 'requested_at'], name='rides_status_5ad1e4_idx'),
        ]

    def __str__(self):
        return f"Ride #{self.id} - {self.rider_id} - {self.status}"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class OtpRecord(models.Model):
    """Pickup passcode challenge, keyed by (subject, ride)."""

    subject = models.CharField(max_length=32)
    ride = models.ForeignKey(Ride, on_delete=models.CASCADE, related_name='otp_records')
    code_hash = models.CharField(max_length=128)
    created_at = models.DateTimeField()
    expires_at = models.DateTimeField()
    attempts = models.PositiveSmallIntegerField(default=0)
    max_attempts = models.PositiveSmallIntegerField(default=3)

    class Meta:
        db_table = 'ride_otp_records'
        constraints = [
            models.UniqueConstraint(
                fields=['subject', 'ride'],
                name='unique_otp_subject_ride'
            )
        ]
        indexes = [
            models.Index(fields=['expires_at'], name='ride_otp_re_expires_3c9b0a_idx'),
        ]

    def __str__(self):
        return f"OTP for ride {self.ride_id} ({self.attempts}/{self.max_attempts})"
