"""Real-time delivery — broker broadcasts → registry → WebSocket.

Learn: Progress events flow through two hops:
1. Worker → `broadcasts` destination on the configured broker
2. Forwarder → BroadcastRegistry → per-connection Outbox → WebSocket

The worker never knows which web process holds the socket.
"""
