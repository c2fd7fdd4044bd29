"""
Celery configuration for the Django application.

Celery runs the chat system's periodic maintenance:
- Purging expired typing signals
- Resuming chat deletions that stopped mid-way

Redis is both the message broker and result backend. Tasks are
auto-discovered from all installed Django apps; the beat schedule is
CELERY_BEAT_SCHEDULE in config/settings.py.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
