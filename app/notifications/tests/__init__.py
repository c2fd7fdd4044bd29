"""
Tests for notifications app.

This package contains test modules for:
- test_services.py: NotificationFanout tests

Usage:
    pytest notifications/tests/
"""
