"""
Built-in permission catalog and system role templates.

Permissions follow "{model}.{action}" naming plus a few "manage-{resource}"
specials. System templates are seeded by `tenant-authz catalog sync`.
"""

PERMISSION_MODELS = [
    "project",
    "task",
    "user",
    "organisation",
    "board",
    "status",
    "priority",
    "taskType",
    "comment",
    "attachment",
    "notification",
    "team",
    "role",
    "permission",
]

STANDARD_ACTIONS = [
    "viewAny",
    "view",
    "create",
    "update",
    "delete",
    "forceDelete",
    "restore",
]

EXTENDED_ACTIONS = {
    "project": ["addMember", "removeMember", "changeOwner"],
    "task": ["assign", "changeStatus", "changePriority", "addLabel", "removeLabel", "moveTask", "attachFile"],
    "team": ["addMember", "removeMember", "changeLead"],
    "board": ["reorderColumns", "addColumn"],
    "organisation": ["invite", "manageSettings"],
    "permission": ["manage"],
}

CUSTOM_PERMISSIONS = [
    "manage-roles",
    "manage-permissions",
]

# Sentinel meaning "every defined permission".
ALL_PERMISSIONS = "all"

SYSTEM_ROLE_TEMPLATES = {
    "super-admin": {
        "display_name": "Super Administrator",
        "description": "System-wide administrator with access to all organisations",
        "level": 1000,
        "permissions": ALL_PERMISSIONS,
    },
    "admin": {
        "display_name": "Administrator",
        "description": "Full administrative access to the organisation",
        "level": 100,
        "permissions": ALL_PERMISSIONS,
    },
    "project_manager": {
        "display_name": "Project Manager",
        "description": "Manage projects and their resources",
        "level": 80,
        "permissions": [
            "user.viewAny", "user.view",
            "project.viewAny", "project.view", "project.create", "project.update",
            "project.addMember", "project.removeMember",
            "task.viewAny", "task.view", "task.create", "task.update", "task.delete",
            "task.assign", "task.changeStatus", "task.changePriority", "task.moveTask",
            "team.viewAny", "team.view",
            "board.viewAny", "board.view", "board.create", "board.update",
            "board.reorderColumns", "board.addColumn",
            "comment.viewAny", "comment.view", "comment.create", "comment.update", "comment.delete",
        ],
    },
    "team_leader": {
        "display_name": "Team Leader",
        "description": "Lead a team and manage team resources",
        "level": 60,
        "permissions": [
            "user.viewAny", "user.view",
            "team.viewAny", "team.view", "team.update", "team.addMember", "team.removeMember",
            "project.viewAny", "project.view",
            "task.viewAny", "task.view", "task.create", "task.update", "task.assign", "task.changeStatus",
            "board.viewAny", "board.view",
            "comment.viewAny", "comment.view", "comment.create", "comment.update",
        ],
    },
    "member": {
        "display_name": "Member",
        "description": "Regular organisation member",
        "level": 40,
        "permissions": [
            "user.viewAny", "user.view",
            "project.viewAny", "project.view",
            "task.viewAny", "task.view", "task.create", "task.update",
            "team.viewAny", "team.view",
            "board.viewAny", "board.view",
            "comment.viewAny", "comment.view", "comment.create",
        ],
    },
    "viewer": {
        "display_name": "Viewer",
        "description": "Read-only access",
        "level": 10,
        "permissions": [
            "project.viewAny", "project.view",
            "task.viewAny", "task.view",
            "board.viewAny", "board.view",
            "comment.viewAny", "comment.view",
        ],
    },
}


def all_defined_permissions() -> list[str]:
    """Every permission name the catalog defines, in a stable order."""
    names = [f"{model}.{action}" for model in PERMISSION_MODELS for action in STANDARD_ACTIONS]
    for model, actions in EXTENDED_ACTIONS.items():
        names.extend(f"{model}.{action}" for action in actions)
    names.extend(CUSTOM_PERMISSIONS)
    return list(dict.fromkeys(names))


def permission_category(name: str) -> str:
    return name.split(".", 1)[0] if "." in name else "custom"


def template_permissions(name: str) -> list[str]:
    """Resolve the permission list of a system template, expanding ALL_PERMISSIONS."""
    permissions = SYSTEM_ROLE_TEMPLATES[name]["permissions"]
    if permissions == ALL_PERMISSIONS:
        return all_defined_permissions()
    return list(permissions)
