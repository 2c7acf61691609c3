"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket layer.

Modules:
    - ride_management: Ride state machine, persistence and errors
    - matching: Driver matching and offer dispatch
    - otp: Pickup code issue and verification
    - container: Wiring of the above for views, consumers and tasks
"""
