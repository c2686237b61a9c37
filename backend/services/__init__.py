"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket layer.

Modules:
    - ride_management: Ride state machine and lifecycle operations
    - matching: On-duty rider registry and proximity matching
    - dispatch: Per-ride search/timeout controllers
    - pricing: Fare calculation
    - configuration: Cached runtime settings (search radius)
    - events: Outbound event descriptions for the realtime layer
"""
