"""Pydantic schema for pushed notifications.

Learn: This mirrors the persisted notification row the order service
writes before publishing. The real-time layer only ever sees the
serialized JSON; clients that miss a push re-read the same shape from
the notification list endpoint.
"""

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field


class NotificationEvent(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    type: str
    user_id: uuid.UUID
    order_id: uuid.UUID
    message: str
    read: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
