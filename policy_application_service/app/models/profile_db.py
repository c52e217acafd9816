import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AgentRole(str, Enum):
    AGENT = "agent"
    ADMIN = "admin"


class AgentProfileDB(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: str # identity id from the auth service
    email: str
    role: AgentRole = AgentRole.AGENT # Provisioned externally, never edited here
    first_name: str = ""
    last_name: str = ""
    agent_code: Optional[str] = None
    do_code: Optional[str] = None # Development officer code
    do_name: Optional[str] = None
    updated_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))

    @property
    def display_name(self) -> str:
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or self.email
