"""
URL configuration for the Django application.

HTTP carries only infrastructure endpoints; chat traffic goes over the
WebSocket routes in chat/routing.py.

URL Structure:
    /health/    - Health check endpoint (for load balancers, Docker)
"""

from django.urls import path

from core.views import health_check

urlpatterns = [
    path("health/", health_check, name="health_check"),
]
