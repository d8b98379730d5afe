"""
Import every model so relationship strings resolve before the first query.
"""
from tenant_authz.models.base import Base, TimestampMixin
from tenant_authz.models.organisation import Organisation
from tenant_authz.models.user import User
from tenant_authz.models.permission import Permission
from tenant_authz.models.role_template import RoleTemplate, template_has_permissions
from tenant_authz.models.role import Role
from tenant_authz.models.role_assignment import RoleAssignment, USER_MODEL_TYPE
from tenant_authz.models.permission_override import PermissionOverride

__all__ = [
    "Base",
    "TimestampMixin",
    "Organisation",
    "User",
    "Permission",
    "RoleTemplate",
    "template_has_permissions",
    "Role",
    "RoleAssignment",
    "USER_MODEL_TYPE",
    "PermissionOverride",
]
