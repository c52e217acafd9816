from .document import Document, FilePayload, CapturedImagePayload
from .form_data import FormData, FormSection, WizardStep
from .policy_db import PolicyDB, PolicyRecord, PolicyStatus
from .persistence_state import NotPersisted, Persisted, PersistenceState
from .share_grant_db import ShareGrantDB
from .notification_db import NotificationDB
from .profile_db import AgentProfileDB, AgentRole
from .identity import Identity
from .change_event import ChangeEvent, ChangeOperation, ChangeTable

__all__ = [
    "Document",
    "FilePayload",
    "CapturedImagePayload",
    "FormData",
    "FormSection",
    "WizardStep",
    "PolicyDB",
    "PolicyRecord",
    "PolicyStatus",
    "NotPersisted",
    "Persisted",
    "PersistenceState",
    "ShareGrantDB",
    "NotificationDB",
    "AgentProfileDB",
    "AgentRole",
    "Identity",
    "ChangeEvent",
    "ChangeOperation",
    "ChangeTable",
]
