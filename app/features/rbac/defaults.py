"""
Default permissions and system roles.

This is the documented permission matrix. It is written to the database by
the seed routine and can be changed afterwards through role management.
"""

DEFAULT_PERMISSIONS = [
    # User administration
    ("user", "create", "Create users"),
    ("user", "read", "View users"),
    ("user", "update", "Edit user profile fields"),
    ("user", "delete", "Delete users"),
    ("user", "ban", "Ban and unban users"),
    ("user", "set-role", "Change a user's platform role"),
    ("user", "set-password", "Reset a user's password"),
    ("user", "impersonate", "Act as another user"),

    # Sessions
    ("session", "read", "View user sessions"),
    ("session", "revoke", "Revoke user sessions"),

    # Organizations
    ("organization", "create", "Create organizations"),
    ("organization", "read", "View organizations and members"),
    ("organization", "update", "Update organizations and member roles"),
    ("organization", "delete", "Delete organizations"),
    ("organization", "invite", "Add and invite organization members"),

    # Role management
    ("rbac", "read", "View roles and permissions"),
    ("rbac", "create", "Create roles"),
    ("rbac", "update", "Update roles and their permissions"),
    ("rbac", "delete", "Delete roles"),
]


DEFAULT_ROLES = {
    "admin": {
        "display_name": "Admin",
        "description": "Platform administrator with every permission",
        "color": "red",
        "permissions": "ALL",  # Special case - gets all permissions
    },
    "manager": {
        "display_name": "Manager",
        "description": "Manages members of their active organization",
        "color": "blue",
        "permissions": [
            "user:read", "user:update", "user:ban",
            "session:read", "session:revoke",
            "organization:read", "organization:update", "organization:invite",
            "rbac:read",
        ],
    },
    "member": {
        "display_name": "Member",
        "description": "Regular member without administrative permissions",
        "color": "gray",
        "permissions": [],
    },
}


def permission_name(resource: str, action: str) -> str:
    return f"{resource}:{action}"


def default_role_grants() -> dict[str, list[str]]:
    """Expand DEFAULT_ROLES into role -> permission names."""
    every = [permission_name(resource, action) for resource, action, _ in DEFAULT_PERMISSIONS]
    return {
        role_name: every if role_config["permissions"] == "ALL" else list(role_config["permissions"])
        for role_name, role_config in DEFAULT_ROLES.items()
    }
