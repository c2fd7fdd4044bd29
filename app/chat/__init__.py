"""
Chat app for real-time messaging.

This app handles:
- 1:1 and group chats
- Message sending, editing and deletion (with file attachments)
- Typing signals
- Realtime row-change events over Django Channels
- Ordered, resumable chat deletion

Related apps:
    - authentication: User model and display data for members
    - notifications: Message notifications fanned out on send

Realtime:
    See realtime.py for topics and subscriptions, signals.py for the
    publishers, consumers.py / routing.py for the WebSocket surface and
    client.py for the in-process client state.

Usage:
    from chat.services import ChatService, MessageService

    result = ChatService.create_direct(user, other_user)
    chat = result.data

    MessageService.send_message(chat.id, user, content="Hello!")
"""
