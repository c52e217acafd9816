# Domain error -> HTTP status mapping shared by the v1 routers
import logging

from fastapi import HTTPException

from policy_application_service.app.service.exceptions import (
    BasePolicyApplicationError,
    ConfigurationError,
    DuplicateGrant,
    InvalidWizardStateError,
    NotificationNotFoundError,
    NotPolicyOwnerError,
    PolicyNotFoundError,
    ReconciliationFailure,
    TransientStoreFailure,
    ValidationFailure,
    WizardBusyError,
    WizardSessionNotFoundError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = {
    ValidationFailure: 422,
    ReconciliationFailure: 502,
    DuplicateGrant: 409,
    PolicyNotFoundError: 404,
    NotificationNotFoundError: 404,
    WizardSessionNotFoundError: 404,
    NotPolicyOwnerError: 403,
    WizardBusyError: 409,
    InvalidWizardStateError: 409,
    TransientStoreFailure: 503,
    ConfigurationError: 503,
}


def to_http_exception(error: BasePolicyApplicationError) -> HTTPException:
    status_code = STATUS_BY_ERROR.get(type(error), 500)
    if status_code >= 500:
        logger.error(f"{type(error).__name__}: {error}")
    else:
        logger.warning(f"{type(error).__name__}: {error}")

    if isinstance(error, ValidationFailure):
        return HTTPException(status_code=status_code, detail={"message": str(error), "missing_fields": error.missing_fields})
    if isinstance(error, ReconciliationFailure):
        return HTTPException(status_code=status_code, detail={"message": str(error), "file_name": error.file_name})
    return HTTPException(status_code=status_code, detail=str(error))
