import datetime
import uuid
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field

from .form_data import FormData


class PolicyStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"


class PolicyDB(BaseModel): # Raw row of the policies collection
    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    status: PolicyStatus = PolicyStatus.DRAFT
    form_data: Dict[str, Any] = Field(default_factory=dict) # JSON blob, unwrapped into FormData on read
    created_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
    updated_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))


class PolicyRecord(BaseModel):
    """A policy row as seen by callers: the form plus store metadata kept alongside it."""
    id: str
    owner_id: str
    status: PolicyStatus
    form_data: FormData
    last_modified: datetime.datetime
    shared_count: int = 0

    @classmethod
    def from_row(cls, row: PolicyDB, shared_count: int = 0) -> "PolicyRecord":
        return cls(
            id=row.id,
            owner_id=row.owner_id,
            status=row.status,
            form_data=FormData.model_validate(row.form_data),
            last_modified=row.updated_at,
            shared_count=shared_count,
        )
