"""
Authentication application.

Provides the user identity the chat system works with.

Key components:
    - User model: Custom email-based user authentication
    - Profile model: Display data (username, profile picture URL)

Usage:
    from authentication.models import User, Profile
"""
