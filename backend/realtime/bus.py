"""
Event bus for ride events.

Events go to channel-layer groups (``user_<id>``, ``driver_<id>``,
``ride_<id>``) which WebSocket consumers join, and to any in-process
subscribers registered with ``EventBus.subscribe``.

Every ride event carries the ride version as ``seq`` so receivers can drop
anything older than what they already delivered.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, Iterable, List, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from django.utils import timezone

logger = logging.getLogger(__name__)

# Channel-layer message type, routed to ``BaseConsumer.bus_event``
BUS_MESSAGE_TYPE = "bus.event"

RIDE_REQUESTED = "ride_requested"
RIDE_OFFER = "ride_offer"
RIDE_TAKEN = "ride_taken"
RIDE_ACCEPTED = "ride_accepted"
DRIVER_ARRIVED = "driver_arrived"
OTP_ISSUED = "otp_issued"
RIDE_STARTED = "ride_started"
RIDE_COMPLETED = "ride_completed"
RIDE_CANCELLED = "ride_cancelled"
RIDE_RATED = "ride_rated"
NO_DRIVERS_AVAILABLE = "no_drivers_available"
LOCATION_UPDATE = "location_update"

# Events that come from a version bump, so their seq is unique per ride
ORDERED_EVENT_TYPES = frozenset({
    RIDE_REQUESTED,
    RIDE_ACCEPTED,
    DRIVER_ARRIVED,
    OTP_ISSUED,
    RIDE_STARTED,
    RIDE_COMPLETED,
    RIDE_CANCELLED,
    RIDE_RATED,
})


def is_stale(event: Dict[str, Any], last_seq: Optional[int]) -> bool:
    """
    True when ``event`` is older than what a receiver already delivered.

    Status events must move seq forward; informational ones (offers,
    location pings) may share the current seq.
    """
    seq = event.get("seq")
    if last_seq is None or seq is None:
        return False
    if event.get("type") in ORDERED_EVENT_TYPES:
        return seq <= last_seq
    return seq < last_seq


def user_channel(user_id: int) -> str:
    return f"user_{user_id}"


def driver_channel(driver_id: int) -> str:
    return f"driver_{driver_id}"


def ride_channel(ride_id: int) -> str:
    return f"ride_{ride_id}"


@dataclass
class RideEvent:
    type: str
    ride_id: int
    status: str
    seq: int
    timestamp: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_ride(cls, ride, event_type: str, payload: Optional[Dict[str, Any]] = None) -> "RideEvent":
        return cls(
            type=event_type,
            ride_id=ride.id,
            status=ride.status,
            seq=ride.version,
            timestamp=timezone.now().isoformat(),
            payload=payload or {},
        )

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


Handler = Callable[[RideEvent], None]


class EventBus:
    """Publish ride events to channel-layer groups and local subscribers."""

    def __init__(self, channel_layer=None):
        self._channel_layer = channel_layer
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    def subscribe(self, channel: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``channel``. Returns a callable that unsubscribes."""
        self._handlers[channel].append(handler)

        def unsubscribe():
            if handler in self._handlers.get(channel, []):
                self._handlers[channel].remove(handler)

        return unsubscribe

    def publish(self, channel: str, event: RideEvent) -> None:
        """Deliver ``event`` now. Fan-out failures are logged, never raised."""
        for handler in list(self._handlers.get(channel, [])):
            try:
                handler(event)
            except Exception:
                logger.exception("Subscriber on %s failed for %s", channel, event.type)

        channel_layer = self.channel_layer
        if channel_layer is None:
            logger.warning("No channel layer available, dropping %s for %s", event.type, channel)
            return

        try:
            logger.debug("WS -> %s: %s seq=%s", channel, event.type, event.seq)
            async_to_sync(channel_layer.group_send)(
                channel,
                {"type": BUS_MESSAGE_TYPE, "event": event.as_dict()},
            )
        except Exception:
            logger.exception("Failed to publish %s to %s", event.type, channel)

    def publish_many(self, channels: Iterable[str], event: RideEvent) -> None:
        for channel in dict.fromkeys(channels):
            self.publish(channel, event)

    def publish_on_commit(self, channels: Iterable[str], event: RideEvent) -> None:
        """Publish once the surrounding transaction commits (immediately outside one)."""
        channels = list(channels)
        transaction.on_commit(lambda: self.publish_many(channels, event))

    def publish_ride_event(
        self,
        ride,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
        extra_channels: Iterable[str] = (),
    ) -> RideEvent:
        """
        Publish a status event for ``ride`` to its ride channel, the rider and
        the assigned driver, after commit.
        """
        event = RideEvent.for_ride(ride, event_type, payload)
        channels = [ride_channel(ride.id), user_channel(ride.rider_id)]
        if ride.driver_id:
            channels.append(driver_channel(ride.driver_id))
        channels.extend(extra_channels)
        self.publish_on_commit(channels, event)
        return event
