"""
Exceptions raised by the authorization engine.

Authorization decisions never raise for business reasons: a missing
permission is a False return. These exceptions cover programming errors,
forbidden mutations and integrity failures.
"""


class AuthorizationError(Exception):
    """Base class for tenant-authz errors."""


class NotFoundError(AuthorizationError):
    """A referenced permission, template, role or organisation does not exist."""

    def __init__(self, kind: str, reference):
        self.kind = kind
        self.reference = reference
        super().__init__(f"{kind} not found: {reference!r}")


class ImmutableResourceError(AuthorizationError):
    """Attempt to alter a system template or role outside the privileged path."""

    def __init__(self, kind: str, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier!r} is a system resource and cannot be modified")


class InvalidStateError(AuthorizationError):
    """A multi-step operation failed and was rolled back."""


class DuplicateTemplateError(AuthorizationError, ValueError):
    """A template with the same name already exists in the same scope."""


class CacheError(AuthorizationError):
    """The cache backend failed while evicting authorization state."""
