# In-memory registry of open wizard sessions
import logging
import time
import uuid
from typing import Callable, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from policy_application_service.app.config import settings
from policy_application_service.app.models import Identity, Persisted, WizardStep
from policy_application_service.app.models.form_data import FIRST_STEP, LAST_STEP
from policy_application_service.app.models.persistence_state import classify_client_identifier
from policy_application_service.app.service.exceptions import WizardSessionNotFoundError
from policy_application_service.app.service.reconciler import AttachmentReconciler
from policy_application_service.app.service.sharing import resolve_access
from policy_application_service.app.service.wizard.controller import WizardStateController
from policy_application_service.infrastructure.kafka.producer import ChangeFeedPublisher

logger = logging.getLogger(__name__)


class _SessionEntry:
    __slots__ = ("owner_id", "controller", "last_touched")

    def __init__(self, owner_id: str, controller: WizardStateController, last_touched: float):
        self.owner_id = owner_id
        self.controller = controller
        self.last_touched = last_touched


class WizardSessionRegistry:
    """
    Controllers keyed by session id. A session is only reachable by the identity that opened it.

    Sessions untouched for longer than `idle_seconds` are swept whenever a new one is
    registered, and the least recently used ones are dropped once `max_sessions` is reached.
    A controller in the middle of a save or submit is never swept.
    """

    def __init__(
        self,
        idle_seconds: float = settings.WIZARD_SESSION_IDLE_SECONDS,
        max_sessions: int = settings.WIZARD_SESSION_MAX,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.idle_seconds = idle_seconds
        self.max_sessions = max_sessions
        self.clock = clock
        self._sessions: Dict[str, _SessionEntry] = {}

    def register(self, controller: WizardStateController) -> str:
        self.sweep()
        session_id = str(uuid.uuid4())
        self._sessions[session_id] = _SessionEntry(controller.viewer.id, controller, self.clock())
        logger.debug(f"Wizard session {session_id} opened for {controller.viewer.id}.")
        return session_id

    def get(self, session_id: str, viewer: Identity) -> WizardStateController:
        entry = self._sessions.get(session_id)
        if entry is None or entry.owner_id != viewer.id:
            raise WizardSessionNotFoundError(session_id)
        entry.last_touched = self.clock()
        return entry.controller

    def close(self, session_id: str, viewer: Identity) -> None:
        self.get(session_id, viewer)
        del self._sessions[session_id]
        logger.debug(f"Wizard session {session_id} closed.")

    def discard(self, session_id: str) -> None:
        """Drops a session without an identity check, e.g. once its application is submitted."""
        if self._sessions.pop(session_id, None) is not None:
            logger.debug(f"Wizard session {session_id} discarded.")

    def sweep(self) -> int:
        """Evicts idle sessions, then the least recently used ones until there is room for one more."""
        now = self.clock()
        evictable = [
            (session_id, entry) for session_id, entry in self._sessions.items()
            if not entry.controller.is_busy
        ]
        evicted = [session_id for session_id, entry in evictable if now - entry.last_touched > self.idle_seconds]
        for session_id in evicted:
            del self._sessions[session_id]

        overflow = len(self._sessions) - self.max_sessions + 1
        if overflow > 0:
            survivors = sorted(
                ((session_id, entry) for session_id, entry in evictable if session_id in self._sessions),
                key=lambda item: item[1].last_touched,
            )
            for session_id, _ in survivors[:overflow]:
                del self._sessions[session_id]
            evicted.extend(session_id for session_id, _ in survivors[:overflow])

        if evicted:
            logger.info(f"Evicted {len(evicted)} wizard session(s); {len(self._sessions)} remain open.")
        return len(evicted)

    def __len__(self) -> int:
        return len(self._sessions)


async def open_application(
    db: AsyncIOMotorDatabase,
    viewer: Identity,
    reconciler: AttachmentReconciler,
    change_publisher: Optional[ChangeFeedPublisher] = None,
    client_identifier: Optional[str] = None,
    start_at_summary: bool = False,
    read_only: bool = False,
) -> WizardStateController:
    """
    Builds a controller for a new application or an existing one.

    Identifiers that look like client placeholders open a blank application.
    Existing records are fetched fresh and access is decided at open time;
    a viewer who only holds a share grant always gets a read-only wizard.
    """
    controller = WizardStateController(db, viewer, reconciler, change_publisher)
    start_step: WizardStep = LAST_STEP if start_at_summary else FIRST_STEP
    state = classify_client_identifier(client_identifier)
    if not isinstance(state, Persisted):
        controller.initialize(None, start_step, read_only)
        return controller

    decision = await resolve_access(db, viewer, state.policy_id)
    controller.initialize(decision.record, start_step, read_only or decision.forces_read_only)
    return controller


_registry_instance: Optional[WizardSessionRegistry] = None

def get_wizard_registry() -> WizardSessionRegistry:
    global _registry_instance
    if _registry_instance is None:
        _registry_instance = WizardSessionRegistry()
    return _registry_instance
