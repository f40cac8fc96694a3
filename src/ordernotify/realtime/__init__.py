"""Real-time infrastructure — in-process broker + SSE/WebSocket transports.

Learn: Events flow in one direction:
1. Order service → Broker.publish_* (after the DB commit)
2. Broker → per-subscriber DeliveryChannel (non-blocking, drop on full)
3. Channel → SSE stream or WebSocket → browser

Both transports register into the same broker, so a role broadcast
reaches SSE and WebSocket clients alike.
"""
