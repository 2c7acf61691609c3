"""Ride tracking WebSocket consumer for real-time ride updates."""

import logging
from typing import Dict, Any

from channels.db import database_sync_to_async

from .base import BaseConsumer
from realtime.bus import ride_channel, is_stale, ORDERED_EVENT_TYPES

logger = logging.getLogger(__name__)


class RideConsumer(BaseConsumer):
    """
    WebSocket consumer for ride tracking.

    Used by both drivers and riders to:
        - Follow one or more rides (ride_<id> groups)
        - Receive ride status events in commit order
        - Receive the driver's live location during a ride

    Events are filtered per ride on ``seq``: anything not newer than the last
    delivered status event for that ride is dropped.
    """

    async def on_connect(self):
        """Set up ride tracking connection."""
        # Last delivered seq per ride
        self.last_seq: Dict[int, int] = {}

        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
            "message": "Ride tracking connection established",
        })

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Handle ride tracking messages."""

        if msg_type == "start_tracking":
            await self._handle_start_tracking(data)
        elif msg_type == "stop_tracking":
            await self._handle_stop_tracking(data)
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Message Handlers ----------------------

    async def _handle_start_tracking(self, data: Dict[str, Any]):
        """
        Join a ride tracking group.
        Both driver and rider join ride_<ride_id> to share updates.
        """
        ride_id = data.get("ride_id")

        if ride_id is None:
            await self.send_error("start_tracking requires ride_id")
            return

        snapshot = await self._participant_snapshot(int(ride_id))
        if snapshot is None:
            await self.send_error("You are not authorized to track this ride", code="unauthorized")
            return

        ride_id = int(ride_id)
        await self._join_group(ride_channel(ride_id))
        self.last_seq[ride_id] = snapshot["seq"]

        await self.send_success("tracking_started", **snapshot)

    async def _handle_stop_tracking(self, data: Dict[str, Any]):
        """Leave a ride tracking group."""
        ride_id = data.get("ride_id")

        if ride_id is None:
            return

        ride_id = int(ride_id)
        await self._leave_group(ride_channel(ride_id))
        self.last_seq.pop(ride_id, None)

        await self.send_success("tracking_stopped", ride_id=ride_id)

    # ---------------------- Event Delivery ----------------------

    async def deliver_event(self, event: Dict[str, Any]):
        ride_id = event.get("ride_id")
        if ride_id is not None and is_stale(event, self.last_seq.get(ride_id)):
            logger.debug("Dropping stale %s for ride %s (seq %s)", event.get("type"), ride_id, event.get("seq"))
            return

        if ride_id is not None and event.get("type") in ORDERED_EVENT_TYPES:
            self.last_seq[ride_id] = event["seq"]
        await self.send_json(event)

    # ---------------------- Database Helpers ----------------------

    @database_sync_to_async
    def _participant_snapshot(self, ride_id: int):
        """Current status and seq of the ride, or None if the user is not part of it."""
        from rides.models import Ride
        ride = Ride.objects.filter(id=ride_id).first()
        if ride is None:
            return None
        if self.user_id not in (ride.rider_id, ride.driver_id, ride.released_driver_id):
            return None
        return {"ride_id": ride.id, "status": ride.status, "seq": ride.version}
