"""Celery tasks for ride-related background processing."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def expire_stale_rides_task(max_age_seconds: int = None):
    """
    Time out searching rides that outlived their dispatch loop.

    Dispatch loops live in the ASGI process; if it restarts, rides it was
    searching for would otherwise stay SEARCHING_FOR_RIDER forever. Scheduled
    by Celery beat (see CELERY_BEAT_SCHEDULE).
    """
    from services.dispatch import expire_stale_rides

    try:
        expired = expire_stale_rides(max_age_seconds=max_age_seconds)
    except Exception as e:
        logger.error(f"Error expiring stale rides: {e}")
        raise
    logger.info(f"Stale ride sweep finished, {len(expired)} ride(s) timed out")
    return expired
