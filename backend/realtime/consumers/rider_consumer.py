"""Rider WebSocket consumer for ride notifications."""

import logging

from .base import BaseConsumer

logger = logging.getLogger(__name__)


class RiderConsumer(BaseConsumer):
    """
    WebSocket consumer for riders.

    Riders only listen: every event about their rides arrives on user_<id>,
    which the base consumer joins on connect.
    """

    async def on_connect(self):
        """Set up rider-specific connection."""
        if self.role != "rider":
            await self.send_error("This endpoint is for riders only")
            await self.close()
            return

        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
            "message": "Rider connected successfully",
        })

    async def on_disconnect(self, close_code):
        logger.info("Rider %s disconnected (%s)", getattr(self, "user_id", None), close_code)
