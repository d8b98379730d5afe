"""
Boundary types for the authorization port.

Permissions, roles, templates and organisations can be identified by id, by
name or by an already-loaded entity. Callers normalise their argument into a
Reference once; services resolve the Reference to a concrete id once.
"""
from dataclasses import dataclass
from typing import Any, Protocol, Union, runtime_checkable


@runtime_checkable
class Principal(Protocol):
    """Identity of an authenticated principal. The User model satisfies it."""

    id: int
    organisation_id: int | None


@dataclass(frozen=True)
class ById:
    id: int


@dataclass(frozen=True)
class ByName:
    name: str


@dataclass(frozen=True)
class ByValue:
    entity: Any

    @property
    def id(self) -> int:
        return self.entity.id


Reference = Union[ById, ByName, ByValue]


def as_reference(value) -> Reference:
    """
    Normalise a raw argument into a Reference.

    Args:
        value: int id, str name, an existing Reference or a mapped entity

    Raises:
        TypeError: for booleans, None and anything without an integer id
    """
    if isinstance(value, (ById, ByName, ByValue)):
        return value
    if isinstance(value, bool) or value is None:
        raise TypeError(f"Cannot build a reference from {value!r}")
    if isinstance(value, int):
        return ById(value)
    if isinstance(value, str):
        return ByName(value)
    if isinstance(getattr(value, "id", None), int):
        return ByValue(value)
    raise TypeError(f"Cannot build a reference from {type(value).__name__}")


def organisation_id_of(organisation) -> int | None:
    """
    Resolve an organisation argument (int id or Organisation) to its id.

    Numeric and object arguments resolve identically. Returns None for
    anything that cannot name an organisation.
    """
    if isinstance(organisation, bool) or organisation is None:
        return None
    if isinstance(organisation, int):
        return organisation
    org_id = getattr(organisation, "id", None)
    return org_id if isinstance(org_id, int) else None


def principal_id_of(principal) -> int:
    """
    Resolve a principal argument (Principal or int id) to its id.

    Raises:
        TypeError: for anything that does not carry an integer id
    """
    if isinstance(principal, int) and not isinstance(principal, bool):
        return principal
    principal_id = getattr(principal, "id", None)
    if isinstance(principal_id, int) and not isinstance(principal_id, bool):
        return principal_id
    raise TypeError(f"Cannot identify a principal from {type(principal).__name__}")
