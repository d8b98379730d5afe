"""
Reference normalisation tests.
"""
import pytest

from tenant_authz.models import Organisation, User
from tenant_authz.references import (
    ById,
    ByName,
    ByValue,
    Principal,
    as_reference,
    organisation_id_of,
    principal_id_of,
)


def test_as_reference():
    org = Organisation(id=4, name="Acme Corp")

    assert as_reference(7) == ById(7)
    assert as_reference("admin") == ByName("admin")
    assert as_reference(org) == ByValue(org)
    assert as_reference(org).id == 4
    assert as_reference(ByName("viewer")) == ByName("viewer")


@pytest.mark.parametrize("value", [True, None, 1.5, object()])
def test_as_reference_rejects_unusable_values(value):
    with pytest.raises(TypeError):
        as_reference(value)


def test_organisation_id_of():
    assert organisation_id_of(4) == 4
    assert organisation_id_of(Organisation(id=4, name="Acme Corp")) == 4
    assert organisation_id_of(None) is None
    assert organisation_id_of(False) is None
    assert organisation_id_of("4") is None


def test_principal_id_of():
    user = User(id=9, email="ana@example.com", name="Ana", organisation_id=4)

    assert principal_id_of(9) == 9
    assert principal_id_of(user) == 9
    assert isinstance(user, Principal)
    with pytest.raises(TypeError):
        principal_id_of(True)
    with pytest.raises(TypeError):
        principal_id_of("9")
