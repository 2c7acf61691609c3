"""Driver WebSocket consumer for location updates, availability and ride offers."""

import logging
from typing import Dict, Any

from channels.db import database_sync_to_async

from .base import BaseConsumer
from drivers import services as driver_services
from realtime.bus import driver_channel
from services.container import get_ride_services
from services.ride_management import RideError

logger = logging.getLogger(__name__)


class DriverConsumer(BaseConsumer):
    """
    WebSocket consumer for drivers.

    Handles:
        - Driver location updates (forwarded to the current ride)
        - Going online / offline
        - Accepting offered rides
        - Ride offers and status events pushed on driver_<id>
    """

    async def on_connect(self):
        """Set up driver-specific groups on connection."""
        if self.role != "driver":
            await self.send_error("This endpoint is for drivers only")
            await self.close()
            return

        # Join driver-specific group for targeted notifications
        self.driver_group = driver_channel(self.user_id)
        await self._join_group(self.driver_group)

        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
            "message": "Driver connected successfully",
        })

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Handle driver-specific messages."""

        if msg_type == "driver_location_update":
            await self._handle_location_update(data)
        elif msg_type == "driver_status_update":
            await self._handle_status_update(data)
        elif msg_type == "accept_ride":
            await self._handle_accept(data)
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Message Handlers ----------------------

    async def _handle_location_update(self, data: Dict[str, Any]):
        lat = data.get("latitude")
        lon = data.get("longitude")

        if lat is None or lon is None:
            await self.send_error("driver_location_update requires latitude and longitude")
            return

        try:
            await self._update_location(lat, lon)
        except RideError as exc:
            await self.send_error(exc.message, code=exc.code)
            return

        logger.debug("Driver %s location update: lat=%s, lon=%s", self.user_id, lat, lon)

    async def _handle_status_update(self, data: Dict[str, Any]):
        """Handle driver going online or offline."""
        status = data.get("status")

        if status not in ["online", "offline"]:
            await self.send_error("Invalid status. Must be: online or offline")
            return

        try:
            await self._set_online(status == "online")
        except RideError as exc:
            await self.send_error(exc.message, code=exc.code)
            return

        await self.send_success("status_updated", status=status)

    async def _handle_accept(self, data: Dict[str, Any]):
        ride_id = data.get("ride_id")
        if ride_id is None:
            await self.send_error("accept_ride requires ride_id")
            return

        try:
            ride = await self._accept(int(ride_id))
        except RideError as exc:
            await self.send_error(exc.message, code=exc.code)
            return

        await self.send_success("ride_accept_confirmed", ride_id=ride.id, status=ride.status, seq=ride.version)

    # ---------------------- Database Helpers ----------------------

    @database_sync_to_async
    def _update_location(self, lat, lon):
        profile = driver_services.update_driver_location(self.user_id, lat, lon)
        driver_services.publish_location_to_ride(profile)
        return profile

    @database_sync_to_async
    def _set_online(self, online: bool):
        return driver_services.set_driver_online(self.user_id, online)

    @database_sync_to_async
    def _accept(self, ride_id: int):
        return get_ride_services().dispatch.accept_ride(ride_id, self.user)
