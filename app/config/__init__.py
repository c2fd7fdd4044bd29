# =============================================================================
# Django Project Configuration Package
# =============================================================================
# Settings, ASGI/WSGI applications, URL routes and the Celery app.
#
# The Celery app is imported here so periodic chat tasks are registered
# whenever Django starts.
# =============================================================================

from config.celery import app as celery_app

__all__ = ("celery_app",)
