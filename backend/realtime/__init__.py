"""
Realtime app for WebSocket communication.

This app provides:
- WebSocket consumers for riders and customers
- Typed parsing of inbound client messages
- Channel-layer delivery of outbound ride events
- JWT/Cookie authentication middleware for WebSocket connections

Key Components:
    - events.py: Inbound message dataclasses and parse_inbound()
    - broadcast.py: publish_events / publish_events_async
    - consumers/: WebSocket consumers (rider, customer)
    - middleware.py: JWTOrCookieAuthMiddleware

Usage:
    from realtime.consumers import RiderConsumer, CustomerConsumer
    from realtime.broadcast import publish_events
"""
