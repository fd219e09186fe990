"""
Test package for skycrm_backend.

- test_auth.py: Connection gate and token verification
- test_rooms.py: Room membership registry
- test_connection_manager.py: Hub admission, fan-out and disconnect handling
- test_handlers.py: Inbound relay, typing indicators and room requests
- test_notifications.py: Notification formatting and delivery
- test_pubsub.py: Redis bridge
- test_router.py: WebSocket endpoint end to end
"""
