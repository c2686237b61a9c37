"""Times out searching rides whose dispatch loop no longer exists (e.g. after a restart)."""

import logging
from datetime import timedelta
from typing import Callable, List, Optional

from django.conf import settings
from django.utils import timezone

from rides.models import Ride, STATUS_SEARCHING
from services.ride_management import timeout_ride

logger = logging.getLogger(__name__)


def dispatch_budget_seconds() -> int:
    """How long a live dispatch loop keeps a ride searching."""
    return settings.RIDE_DISPATCH_INTERVAL_SECONDS * settings.RIDE_DISPATCH_MAX_RETRIES


def expire_stale_rides(
    max_age_seconds: Optional[int] = None,
    publish: Optional[Callable] = None,
    dry_run: bool = False,
) -> List[int]:
    """
    Time out SEARCHING rides older than `max_age_seconds`.

    Defaults to the dispatch budget plus one interval, so a ride that still
    has a running loop is never swept before the loop itself expires it.

    Returns:
        Ids of the rides that were (or, with dry_run, would be) timed out
    """
    if max_age_seconds is None:
        max_age_seconds = dispatch_budget_seconds() + settings.RIDE_DISPATCH_INTERVAL_SECONDS
    if publish is None:
        from realtime.broadcast import publish_events
        publish = publish_events

    cutoff = timezone.now() - timedelta(seconds=max_age_seconds)
    stale_ids = list(
        Ride.objects.filter(status=STATUS_SEARCHING, created_at__lt=cutoff).values_list('id', flat=True)
    )
    if dry_run:
        return stale_ids

    expired = []
    for ride_id in stale_ids:
        result = timeout_ride(ride_id)
        if not result.changed:
            continue
        expired.append(ride_id)
        publish(result.events)

    if expired:
        logger.info("Timed out %d stale searching ride(s): %s", len(expired), expired)
    return expired
