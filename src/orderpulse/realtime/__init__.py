"""Real-time infrastructure — connection registry, fan-out, WebSocket.

Learn: Events flow one way through the server:
1. OrderService → EventBus (typed domain events, in process)
2. EventBus → Broadcaster → ConnectionRegistry rooms → WebSocket clients

The optional Redis relay mirrors bus events to other server processes,
which feed them into their own Broadcaster.
"""
