"""
Realtime app for WebSocket communication and ride event propagation.

This app provides:
- The event bus that carries ride events to channel-layer groups
- WebSocket consumers for drivers, riders, and ride tracking
- Out-of-band notification delivery (SMS / push backends)
- JWT/Cookie authentication middleware for WebSocket connections

Key Components:
    - bus.py: EventBus, RideEvent envelope, channel names, seq ordering
    - delivery.py: Pluggable notification delivery
    - consumers/: WebSocket consumers (driver, rider, ride)

Usage:
    from realtime.bus import EventBus, RideEvent, ride_channel
    from realtime.consumers import DriverConsumer, RiderConsumer, RideConsumer
"""
