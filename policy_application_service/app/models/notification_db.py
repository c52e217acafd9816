import datetime
import uuid

from pydantic import BaseModel, Field


class NotificationDB(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    recipient_email: str
    message: str
    policy_id: str # Deep-link target
    is_read: bool = False
    created_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
