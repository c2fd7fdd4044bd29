"""
WebSocket URL routing for the chat application.

URL Patterns:
    ws/chat/<chat_id>/ - Realtime changes of one chat

Authentication:
    Session based, via channels.auth.AuthMiddlewareStack in config/asgi.py.
"""

from django.urls import path

from chat import consumers

websocket_urlpatterns = [
    path(
        "ws/chat/<int:chat_id>/",
        consumers.ChatConsumer.as_asgi(),
    ),
]
