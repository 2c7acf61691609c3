"""Shared fixtures for ride tests."""

import re
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.utils import timezone

from drivers.models import DriverProfile
from realtime.bus import EventBus
from services.container import build_ride_services

User = get_user_model()

PICKUP = (28.6139, 77.2090)
DROPOFF = (28.6129, 77.2295)

# Roughly 1km of latitude
ONE_KM_LAT = 1 / 111.19


class FakeClock:
    def __init__(self, now=None):
        self.now = now or timezone.now()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingBus(EventBus):
    """Keeps (channel, event) pairs instead of sending them to the channel layer."""

    def __init__(self):
        super().__init__(channel_layer=None)
        self.sent = []

    def publish(self, channel, event):
        self.sent.append((channel, event))

    def events(self, channel=None, event_type=None):
        return [
            event for sent_channel, event in self.sent
            if (channel is None or sent_channel == channel)
            and (event_type is None or event.type == event_type)
        ]


class RecordingScheduler:
    def __init__(self):
        self.calls = []

    def __call__(self, ride_id, attempt, countdown):
        self.calls.append((ride_id, attempt, countdown))


def make_services(clock=None):
    bus = RecordingBus()
    scheduler = RecordingScheduler()
    services = build_ride_services(bus=bus, scheduler=scheduler, clock=clock)
    return services, bus, scheduler


def make_rider(username="rider", phone_number="9000000000"):
    return User.objects.create_user(
        username=username,
        password="pass1234",
        role="rider",
        phone_number=phone_number,
    )


def make_driver(
    username,
    phone_number,
    km_north=0.0,
    vehicle_class="standard",
    is_online=True,
    **profile_fields
):
    """A driver ``km_north`` kilometers north of the standard pickup point."""
    user = User.objects.create_user(
        username=username,
        password="driver1234",
        role="driver",
        phone_number=phone_number,
    )
    DriverProfile.objects.create(
        user=user,
        vehicle_number=f"WB-{user.id:04d}",
        vehicle_class=vehicle_class,
        is_online=is_online,
        current_latitude=round(PICKUP[0] + km_north * ONE_KM_LAT, 6),
        current_longitude=PICKUP[1],
        last_location_update=timezone.now(),
        **profile_fields
    )
    return user


def delivered_code(outbox, ride_id):
    """Pull the last pickup code sent for ``ride_id`` out of a notification outbox."""
    pattern = re.compile(r"ride #%d is (\d{6})" % ride_id)
    for _, message in reversed(outbox):
        match = pattern.search(message)
        if match:
            return match.group(1)
    return None
