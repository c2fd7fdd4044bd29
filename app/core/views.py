"""
Core views providing infrastructure endpoints.

The chat system has no HTTP API of its own; the only view is the health
check used by orchestration.
"""

import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint for monitoring and orchestration.

    Returns:
        JsonResponse with status and component health:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "disconnected"
        - realtime: "connected" or "disconnected" (channel layer)

    HTTP Status Codes:
        200: All systems operational
        503: One or more systems unhealthy

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "realtime": "connected"
        }
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "realtime": "unknown",
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception as e:
        logger.error(f"Health check: database unreachable: {e}")
        health_status["database"] = "disconnected"
        is_healthy = False

    # Realtime events are published through the channel layer
    try:
        layer = get_channel_layer()
        if layer is None:
            raise RuntimeError("No channel layer configured")
        async_to_sync(layer.group_send)("health", {"type": "health.ping"})
        health_status["realtime"] = "connected"
    except Exception as e:
        logger.error(f"Health check: channel layer unreachable: {e}")
        health_status["realtime"] = "disconnected"
        is_healthy = False

    if not is_healthy:
        health_status["status"] = "unhealthy"

    return JsonResponse(health_status, status=200 if is_healthy else 503)
