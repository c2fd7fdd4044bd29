"""
Celery tasks for chat app.

This module defines periodic tasks for:
- Typing signal cleanup
- Resuming chat deletions interrupted mid-way

Both are scheduled by CELERY_BEAT_SCHEDULE in config/settings.py.

Related files:
    - services.py: TypingService, ChatService
    - models.py: TypingSignal, ChatDeletion
"""

import logging
from datetime import timedelta

from celery import shared_task
from django.utils import timezone

from chat.constants import DELETION_CONFIG, TYPING_CONFIG

logger = logging.getLogger(__name__)


@shared_task
def purge_stale_typing_signals(older_than_seconds: int = TYPING_CONFIG.RETENTION_SECONDS) -> int:
    """
    Delete typing signal rows older than the retention window.

    Returns:
        Number of rows deleted
    """
    from chat.services import TypingService

    return TypingService.purge_stale(older_than_seconds)


@shared_task
def resume_stalled_chat_deletions(
    stalled_after_seconds: int = DELETION_CONFIG.STALLED_AFTER_SECONDS,
) -> int:
    """
    Resume chat deletions that stopped in an in-progress state.

    A deletion is considered stalled when its record has not changed for
    stalled_after_seconds (e.g. the worker died between steps).

    Returns:
        Number of deletions that reached DONE
    """
    from chat.models import IN_PROGRESS_DELETION_STATES, ChatDeletion
    from chat.services import ChatService

    cutoff = timezone.now() - timedelta(seconds=stalled_after_seconds)
    stalled = ChatDeletion.objects.filter(
        state__in=IN_PROGRESS_DELETION_STATES,
        updated_at__lt=cutoff,
    ).order_by("created_at")

    completed = 0
    for deletion in stalled:
        result = ChatService.resume_deletion(deletion)
        if result.success:
            completed += 1
        else:
            logger.warning(
                f"Resumed deletion {deletion.id} of chat {deletion.chat_id} "
                f"did not complete: {result.error_code}"
            )

    if completed:
        logger.info(f"Completed {completed} stalled chat deletion(s)")
    return completed
