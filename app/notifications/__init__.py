"""
Notifications app for in-app notifications.

This app provides:
- Notification model for storing user notifications
- NotificationFanout for creating message notifications when a chat
  message is sent

Usage:
    from notifications.services import NotificationFanout

    created = NotificationFanout.fan_out(message)
"""
