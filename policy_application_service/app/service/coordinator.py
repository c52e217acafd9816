"""
Typed messages between the parts of one agent's session.

Regions of the dashboard that need to react to each other (the header showing
the agent's name, the list that opens a record from an alert) register a
handler for a message type on the session's coordinator instead of listening
for untyped global events.
"""
import logging
from collections import defaultdict
from typing import Annotated, Awaitable, Callable, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, Field, TypeAdapter

from policy_application_service.app.models import AgentProfileDB
from policy_application_service.app.service.dashboard import DashboardView

logger = logging.getLogger(__name__)


class OpenPolicyRequested(BaseModel):
    type: Literal["open_policy"] = "open_policy"
    policy_id: str
    notification_id: Optional[str] = None

class ProfileUpdated(BaseModel):
    type: Literal["profile_updated"] = "profile_updated"
    profile: AgentProfileDB

class DashboardViewChanged(BaseModel):
    type: Literal["view_changed"] = "view_changed"
    view: DashboardView

class RefreshRequested(BaseModel):
    type: Literal["refresh"] = "refresh"


CoordinatorMessage = Annotated[
    Union[OpenPolicyRequested, ProfileUpdated, DashboardViewChanged, RefreshRequested],
    Field(discriminator="type"),
]
coordinator_message_adapter = TypeAdapter(CoordinatorMessage)

MessageHandler = Callable[[BaseModel], Awaitable[None]]


class SessionCoordinator:
    def __init__(self, identity_id: str):
        self.identity_id = identity_id
        self._handlers: Dict[Type[BaseModel], List[MessageHandler]] = defaultdict(list)

    def register(self, message_type: Type[BaseModel], handler: MessageHandler) -> Callable[[], None]:
        """Adds a handler for one message type. Returns a function that removes it again."""
        self._handlers[message_type].append(handler)

        def unregister():
            if handler in self._handlers[message_type]:
                self._handlers[message_type].remove(handler)

        return unregister

    def handler_count(self, message_type: Type[BaseModel]) -> int:
        return len(self._handlers.get(message_type, []))

    async def dispatch(self, message: BaseModel) -> int:
        """Delivers a message to every handler registered for its type. Returns how many ran successfully."""
        delivered = 0
        for handler in list(self._handlers.get(type(message), [])):
            try:
                await handler(message)
                delivered += 1
            except Exception as e:
                logger.error(f"Handler for {type(message).__name__} failed in session of {self.identity_id}: {e}", exc_info=True)
        if not delivered:
            logger.debug(f"No handler delivered {type(message).__name__} for {self.identity_id}.")
        return delivered


class CoordinatorHub:
    """One coordinator per signed-in identity, shared by all of that identity's connections."""

    def __init__(self):
        self._coordinators: Dict[str, SessionCoordinator] = {}

    def get(self, identity_id: str) -> SessionCoordinator:
        if identity_id not in self._coordinators:
            self._coordinators[identity_id] = SessionCoordinator(identity_id)
        return self._coordinators[identity_id]

    def find(self, identity_id: str) -> Optional[SessionCoordinator]:
        return self._coordinators.get(identity_id)

    def discard(self, identity_id: str) -> None:
        self._coordinators.pop(identity_id, None)


_hub_instance: Optional[CoordinatorHub] = None

def get_coordinator_hub() -> CoordinatorHub:
    global _hub_instance
    if _hub_instance is None:
        _hub_instance = CoordinatorHub()
    return _hub_instance
