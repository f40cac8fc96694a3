"""API route aggregation.

All routers registered here get mounted in main.py under /api/v1.
The real-time transports (/events, /ws) are mounted separately at the
root so EventSource and WebSocket clients keep short, stable URLs.
"""

from fastapi import APIRouter

from ordernotify.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

# Operational routes
api_router.include_router(health_router, tags=["health"])
