import datetime
import uuid

from pydantic import BaseModel, Field


def normalize_email(email: str) -> str:
    return email.strip().lower()


class ShareGrantDB(BaseModel):
    # (policy_id, recipient_email) is unique; the id is only a row handle.
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    policy_id: str
    recipient_email: str # Always stored normalized
    shared_by: str # identity id of the granting owner
    created_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
