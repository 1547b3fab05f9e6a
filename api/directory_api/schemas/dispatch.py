from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

DeliveryStatus = Literal["sent", "failed"]


class PendingNotificationOut(BaseModel):
    id: str
    labor_request_id: str
    craft_id: str
    agency_id: str
    created_at: datetime
    agency: dict[str, Any]
    labor_request: dict[str, Any]
    craft: dict[str, Any]


class NotificationResultRequest(BaseModel):
    status: DeliveryStatus
    delivery_error: str | None = Field(default=None, max_length=2000)


class NotificationResultOut(BaseModel):
    id: str
    status: str
    sent_at: datetime | None = None
    delivery_error: str | None = None
