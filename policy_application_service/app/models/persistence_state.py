import logging
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

from policy_application_service.app.config import settings

logger = logging.getLogger(__name__)


class NotPersisted(BaseModel):
    """The application has never been written; the next save inserts and the store assigns the ID."""
    model_config = ConfigDict(frozen=True)

    @property
    def policy_id(self) -> None:
        return None


class Persisted(BaseModel):
    model_config = ConfigDict(frozen=True)

    policy_id: str


PersistenceState = Union[NotPersisted, Persisted]


def classify_client_identifier(identifier: Optional[str]) -> PersistenceState:
    """
    Maps an identifier received from a client onto a persistence state.

    Older clients mint short, timestamp-like placeholder IDs for offline drafts.
    Those are never store IDs, so anything no longer than the placeholder limit
    is treated as not yet persisted.
    """
    if not identifier:
        return NotPersisted()
    if len(identifier) <= settings.PLACEHOLDER_ID_MAX_LENGTH:
        logger.info(f"Identifier '{identifier}' looks like a client placeholder; treating application as not persisted.")
        return NotPersisted()
    return Persisted(policy_id=identifier)
