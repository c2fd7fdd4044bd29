"""
WSGI config for the Django application.

The chat system is served over ASGI (see asgi.py); WSGI only serves the
HTTP health check for deployments that check through a WSGI server.

For more information on this file, see:
https://docs.djangoproject.com/en/5.2/howto/deployment/wsgi/
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
