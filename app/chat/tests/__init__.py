"""
Tests for chat app.

This package contains test modules for:
- test_models.py: Chat, Message, ChatDeletion model tests
- test_services.py: Chat, membership, message, typing and directory services
- test_deletion.py: Ordered chat deletion and resume
- test_realtime.py / test_signals.py: Topics, subscriptions and publishers
- test_client.py / test_presence.py: Client-side state and typing indicator
- test_consumers.py: WebSocket consumer tests
- test_storage.py / test_tasks.py: Object storage helpers and Celery tasks

Usage:
    pytest chat/tests/
    pytest chat/tests/test_consumers.py
"""
