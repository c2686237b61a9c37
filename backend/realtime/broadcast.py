"""
Channel-layer delivery of outbound ride events.

Services hand over lists of OutboundEvent; each one becomes a group_send of
a `ride.event` message that the consumers forward to their client. A failed
send is logged and does not stop the remaining events.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Iterable

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from services.events import OutboundEvent

logger = logging.getLogger(__name__)


# Rate limiting cache (in-memory, per process)
_last_broadcast_times: Dict[str, float] = {}


def should_broadcast(key: str, min_interval: float = 0.5) -> bool:
    """Check if enough time has passed since the last broadcast for this key."""
    now = time.monotonic()
    last_time = _last_broadcast_times.get(key)
    if last_time is not None and now - last_time < min_interval:
        return False
    _last_broadcast_times[key] = now
    return True


def reset_broadcast_throttle():
    _last_broadcast_times.clear()


# ---------------------- Async Broadcast Functions ----------------------

async def publish_events_async(outbound: Iterable[OutboundEvent], channel_layer=None) -> int:
    """
    Send events to their groups.

    Returns:
        Number of events handed to the channel layer
    """
    channel_layer = channel_layer or get_channel_layer()
    if channel_layer is None:
        logger.warning("No channel layer configured; dropping ride events")
        return 0

    sent = 0
    for event in outbound:
        try:
            await channel_layer.group_send(event.group, event.as_message())
            sent += 1
            logger.debug("WS -> %s: %s", event.group, event.name)
        except Exception:
            logger.exception("Failed to publish %s to %s", event.name, event.group)
    return sent


# ---------------------- Sync Broadcast Functions ----------------------

def publish_events(outbound: Iterable[OutboundEvent], channel_layer=None) -> int:
    """Sync version of publish_events_async (views, Celery tasks, management commands)."""
    try:
        return async_to_sync(publish_events_async)(list(outbound), channel_layer)
    except Exception:
        logger.exception("publish_events failed")
        return 0