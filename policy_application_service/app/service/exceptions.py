"""
Custom exceptions for the Policy Application service.
"""
from typing import List, Optional


class BasePolicyApplicationError(Exception):
    """Base class for exceptions in this module."""
    pass

class ValidationFailure(BasePolicyApplicationError):
    """Raised by submit() when required fields are missing or the minor-nominee rule is unmet."""
    def __init__(self, missing_fields: List[str]):
        self.missing_fields = missing_fields
        super().__init__(f"Application is incomplete. Missing required fields: {', '.join(missing_fields)}.")

class ReconciliationFailure(BasePolicyApplicationError):
    """Raised when any attachment upload in a reconciliation batch fails."""
    def __init__(self, file_name: str, cause: Optional[BaseException] = None):
        self.file_name = file_name
        self.cause = cause
        reason = f": {cause}" if cause else ""
        super().__init__(f"Upload failed for attachment '{file_name}'{reason}")

class DuplicateGrant(BasePolicyApplicationError):
    """Raised when a policy is already shared with the recipient."""
    def __init__(self, policy_id: str, recipient_email: str):
        self.policy_id = policy_id
        self.recipient_email = recipient_email
        super().__init__(f"Application '{policy_id}' is already shared with {recipient_email}.")

class PolicyNotFoundError(BasePolicyApplicationError):
    """Raised when a policy does not exist or is not visible to the caller."""
    def __init__(self, policy_id: str):
        self.policy_id = policy_id
        super().__init__(f"Application with ID '{policy_id}' not found.")

class NotPolicyOwnerError(BasePolicyApplicationError):
    """Raised when a non-owner attempts an owner-only operation."""
    def __init__(self, policy_id: str, attempted_action: str):
        self.policy_id = policy_id
        self.attempted_action = attempted_action
        super().__init__(f"Only the owner of application '{policy_id}' may {attempted_action}.")

class NotificationNotFoundError(BasePolicyApplicationError):
    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"Notification with ID '{notification_id}' not found.")

class WizardSessionNotFoundError(BasePolicyApplicationError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Wizard session '{session_id}' not found.")

class WizardBusyError(BasePolicyApplicationError):
    """Raised when the wizard is mutated while a save or submit is in flight."""
    def __init__(self, attempted_action: str):
        self.attempted_action = attempted_action
        super().__init__(f"Cannot {attempted_action} while a save or submission is in progress.")

class InvalidWizardStateError(BasePolicyApplicationError):
    """Raised when an operation is attempted on a wizard in an invalid state."""
    def __init__(self, current_state: str, attempted_action: str):
        self.current_state = current_state
        self.attempted_action = attempted_action
        super().__init__(f"Cannot {attempted_action} for an application in state '{current_state}'.")

class TransientStoreFailure(BasePolicyApplicationError):
    """Raised when the persistence service fails a read, write or delete."""
    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Failed to {operation}: {cause}" if cause else f"Failed to {operation}.")

class IdentityResolutionError(BasePolicyApplicationError):
    """Raised when the current identity cannot be resolved from the auth service."""
    pass

class ConfigurationError(BasePolicyApplicationError):
    """Raised when a configuration issue is detected."""
    pass
