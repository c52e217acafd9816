import uuid

import pytest

from policy_application_service.app.models import NotPersisted, Persisted
from policy_application_service.app.models.persistence_state import classify_client_identifier


@pytest.mark.parametrize("identifier", [None, "", "1718000000000", "x" * 20])
def test_placeholder_identifiers_are_not_persisted(identifier):
    state = classify_client_identifier(identifier)
    assert isinstance(state, NotPersisted)
    assert state.policy_id is None

def test_store_identifier_is_persisted():
    policy_id = str(uuid.uuid4())
    state = classify_client_identifier(policy_id)
    assert state == Persisted(policy_id=policy_id)
