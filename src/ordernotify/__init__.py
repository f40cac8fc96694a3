"""ordernotify — real-time notifications for the order backend.

The push layer that tells admins about new orders and customers about
status changes, over Server-Sent Events and WebSocket.
"""

__version__ = "0.1.0"
