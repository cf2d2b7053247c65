from __future__ import annotations

from pydantic import BaseModel, Field


class SendNotificationRequest(BaseModel):
    receiver_id: str = Field(min_length=1, max_length=64)
    title: str = Field(min_length=1, max_length=255)
    body: str = Field(min_length=1, max_length=2000)
