"""Event type constants.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover all event types pushed to real-time clients.
"""

# ─── Orders ──────────────────────────────────────────────

ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status_changed"
