"""Real-time room messaging.

Components:
    - ConnectionRegistry: live connection -> resolved identity
    - RoomMembershipTable: room -> live member connections
    - BroadcastEngine: fan-out of persisted messages and membership notices
    - ConnectionLifecycle: connect/authenticate/disconnect state machine
    - ChatService: join, leave and persist-then-broadcast send
"""
