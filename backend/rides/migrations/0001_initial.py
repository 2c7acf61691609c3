import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


ACTIVE_STATUSES = ['requested', 'accepted', 'driver_arrived', 'otp_pending', 'in_progress']
ROLE_CHOICES = [('rider', 'Rider'), ('driver', 'Driver'), ('system', 'System')]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Ride',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('pickup_address', models.TextField(blank=True, default='')),
                ('pickup_latitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('pickup_longitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('dropoff_address', models.TextField(blank=True, default='')),
                ('dropoff_latitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('dropoff_longitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('vehicle_class', models.CharField(choices=[('standard', 'Standard'), ('comfort', 'Comfort'), ('premium', 'Premium')], default='standard', max_length=10)),
                ('status', models.CharField(choices=[('requested', 'Requested'), ('accepted', 'Accepted'), ('driver_arrived', 'Driver Arrived'), ('otp_pending', 'OTP Pending'), ('in_progress', 'In Progress'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], default='requested', max_length=20)),
                ('version', models.PositiveIntegerField(default=0)),
                ('base_fare', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('distance_fare', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('time_fare', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('surge_multiplier', models.DecimalField(decimal_places=2, default=1, max_digits=4)),
                ('total_fare', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('currency', models.CharField(default='USD', max_length=3)),
                ('distance_km', models.FloatField(default=0)),
                ('actual_distance_km', models.FloatField(blank=True, null=True)),
                ('estimated_duration_min', models.PositiveIntegerField(default=0)),
                ('actual_duration_min', models.PositiveIntegerField(blank=True, null=True)),
                ('otp_code_hash', models.CharField(blank=True, default='', max_length=128)),
                ('otp_verified', models.BooleanField(default=False)),
                ('otp_verified_by', models.CharField(blank=True, choices=ROLE_CHOICES, default='', max_length=10)),
                ('otp_verified_at', models.DateTimeField(blank=True, null=True)),
                ('requested_at', models.DateTimeField()),
                ('accepted_at', models.DateTimeField(blank=True, null=True)),
                ('arrived_at', models.DateTimeField(blank=True, null=True)),
                ('otp_issued_at', models.DateTimeField(blank=True, null=True)),
                ('started_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('cancellation_reason', models.TextField(blank=True, default='')),
                ('cancelled_by', models.CharField(blank=True, choices=ROLE_CHOICES, default='', max_length=10)),
                ('cancellation_penalty', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('rider_rating', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('rider_comment', models.TextField(blank=True, default='')),
                ('rider_rated_at', models.DateTimeField(blank=True, null=True)),
                ('driver_rating', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('driver_comment', models.TextField(blank=True, default='')),
                ('driver_rated_at', models.DateTimeField(blank=True, null=True)),
                ('rider', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='rides_as_rider', to=settings.AUTH_USER_MODEL)),
                ('driver', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='rides_as_driver', to=settings.AUTH_USER_MODEL)),
                ('released_driver', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('cancelled_by_user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'rides',
                'ordering': ['-requested_at'],
                'indexes': [models.Index(fields=['status', 'requested_at'], name='rides_status_5ad1e4_idx')],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status__in', ACTIVE_STATUSES)), fields=('rider',), name='one_active_ride_per_rider'),
                    models.UniqueConstraint(condition=models.Q(('status__in', ACTIVE_STATUSES)), fields=('driver',), name='one_active_ride_per_driver'),
                ],
            },
        ),
        migrations.CreateModel(
            name='OtpRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('subject', models.CharField(max_length=32)),
                ('code_hash', models.CharField(max_length=128)),
                ('created_at', models.DateTimeField()),
                ('expires_at', models.DateTimeField()),
                ('attempts', models.PositiveSmallIntegerField(default=0)),
                ('max_attempts', models.PositiveSmallIntegerField(default=3)),
                ('ride', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='otp_records', to='rides.ride')),
            ],
            options={
                'db_table': 'ride_otp_records',
                'indexes': [models.Index(fields=['expires_at'], name='ride_otp_re_expires_3c9b0a_idx')],
                'constraints': [
                    models.UniqueConstraint(fields=('subject', 'ride'), name='unique_otp_subject_ride'),
                ],
            },
        ),
    ]
