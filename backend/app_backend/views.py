import redis
from django.conf import settings
from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework import status
from channels.layers import get_channel_layer

from rides.models import Ride
from rides.tasks import expire_stale_rides_task
from services.dispatch import get_dispatch_manager
from services.matching import get_on_duty_registry


@api_view(["GET"])
@permission_classes([AllowAny])
def health_check(request):
    """Health check endpoint for monitoring system status"""

    health_status = {
        "status": "healthy",
        "timestamp": timezone.now().isoformat(),
        "services": {},
        "dispatch": {
            "on_duty_riders": len(get_on_duty_registry()),
            "active_dispatch_loops": len(get_dispatch_manager().active_ride_ids()),
        },
    }

    # Database check
    try:
        Ride.objects.count()
        health_status["services"]["database"] = "healthy"
    except Exception as e:
        health_status["services"]["database"] = f"unhealthy: {e}"
        health_status["status"] = "unhealthy"

    # Redis check (only when a Redis URL is configured)
    if settings.REDIS_URL:
        try:
            redis_client = redis.Redis.from_url(settings.REDIS_URL, socket_timeout=3)
            redis_client.ping()
            health_status["services"]["redis"] = "healthy"
        except Exception as e:
            health_status["services"]["redis"] = f"unhealthy: {e}"
            health_status["status"] = "unhealthy"

    # Channel layer check
    try:
        channel_layer = get_channel_layer()
        if channel_layer is not None:
            health_status["services"]["channels"] = "healthy"
        else:
            health_status["services"]["channels"] = "unhealthy: no channel layer"
            health_status["status"] = "unhealthy"
    except Exception as e:
        health_status["services"]["channels"] = f"unhealthy: {e}"
        health_status["status"] = "unhealthy"

    # Celery check
    if expire_stale_rides_task.name:
        health_status["services"]["celery"] = "healthy"
    else:
        health_status["services"]["celery"] = "unhealthy: task not registered"
        health_status["status"] = "unhealthy"

    status_code = (
        status.HTTP_200_OK
        if health_status["status"] == "healthy"
        else status.HTTP_503_SERVICE_UNAVAILABLE
    )

    return Response(health_status, status=status_code)
