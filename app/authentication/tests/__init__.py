"""
Tests for authentication app.

This package contains:
- factories.py: UserFactory shared by chat and notification tests
- test_models.py: User / Profile display data tests

Usage:
    pytest authentication/tests/
"""
