"""WebSocket URL routing for the realtime app."""

from django.urls import re_path

from .consumers.rider_consumer import RiderConsumer
from .consumers.customer_consumer import CustomerConsumer

websocket_urlpatterns = [
    # Rider endpoint (duty status, location, ride handling)
    # URL: ws://localhost:8000/ws/rider/?token=<jwt>
    re_path(
        r"ws/rider/$",
        RiderConsumer.as_asgi(),
        name="rider-ws"
    ),
    
    # Customer endpoint (ride requests, tracking)
    # URL: ws://localhost:8000/ws/customer/?token=<jwt>
    re_path(
        r"ws/customer/$",
        CustomerConsumer.as_asgi(),
        name="customer-ws"
    ),
]
