"""Tests for the shared core layer."""
