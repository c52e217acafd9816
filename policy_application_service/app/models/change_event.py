import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ChangeTable(str, Enum):
    POLICIES = "policies"
    POLICY_SHARES = "policy_shares"


class ChangeOperation(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """'Something changed' in a table. Carries no row payload or diff."""
    table: ChangeTable
    operation: ChangeOperation
    record_id: Optional[str] = None
    occurred_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
