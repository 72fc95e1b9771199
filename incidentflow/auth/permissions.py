"""Permission catalog: the fixed token set and the role to token mapping."""

# Permission constants
PERM_INCIDENTS_READ = "incidents:read"
PERM_INCIDENTS_CREATE = "incidents:create"
PERM_INCIDENTS_EDIT_OWN = "incidents:edit:own"
PERM_INCIDENTS_EDIT_ANY = "incidents:edit:any"
PERM_INCIDENTS_STATUS_LIMITED = "incidents:status:limited"
PERM_INCIDENTS_STATUS_ANY = "incidents:status:any"
PERM_INCIDENTS_SEVERITY_ANY = "incidents:severity:any"
PERM_INCIDENTS_ASSIGN = "incidents:assign"
PERM_INCIDENTS_DELETE = "incidents:delete"
PERM_INCIDENTS_RESTORE = "incidents:restore"
PERM_INCIDENTS_AUDIT_READ = "incidents:audit:read"
PERM_USERS_MANAGE = "users:manage"
PERM_ROLES_MANAGE = "roles:manage"
PERM_DASHBOARD_BASIC = "dashboard:basic"
PERM_DASHBOARD_FULL = "dashboard:full"

ALL_PERMISSIONS = frozenset({
    PERM_INCIDENTS_READ, PERM_INCIDENTS_CREATE, PERM_INCIDENTS_EDIT_OWN,
    PERM_INCIDENTS_EDIT_ANY, PERM_INCIDENTS_STATUS_LIMITED, PERM_INCIDENTS_STATUS_ANY,
    PERM_INCIDENTS_SEVERITY_ANY, PERM_INCIDENTS_ASSIGN, PERM_INCIDENTS_DELETE,
    PERM_INCIDENTS_RESTORE, PERM_INCIDENTS_AUDIT_READ, PERM_USERS_MANAGE,
    PERM_ROLES_MANAGE, PERM_DASHBOARD_BASIC, PERM_DASHBOARD_FULL,
})

ROLE_ADMIN = "Admin"
ROLE_MANAGER = "Manager"
ROLE_RESPONDER = "Responder"
ROLE_USER = "User"

_OPERATOR_PERMISSIONS = frozenset({
    PERM_INCIDENTS_READ, PERM_INCIDENTS_CREATE, PERM_INCIDENTS_EDIT_ANY,
    PERM_INCIDENTS_STATUS_ANY, PERM_INCIDENTS_SEVERITY_ANY, PERM_INCIDENTS_ASSIGN,
    PERM_DASHBOARD_BASIC, PERM_DASHBOARD_FULL,
})

FALLBACK_PERMISSIONS = frozenset({PERM_INCIDENTS_READ, PERM_DASHBOARD_BASIC})

DEFAULT_ROLES = {
    ROLE_ADMIN: {
        "description": "Full system access, including user, role and audit management",
        "permissions": ALL_PERMISSIONS,
    },
    ROLE_MANAGER: {
        "description": "Operates on any incident",
        "permissions": _OPERATOR_PERMISSIONS,
    },
    ROLE_RESPONDER: {
        "description": "Operates on any incident",
        "permissions": _OPERATOR_PERMISSIONS,
    },
    ROLE_USER: {
        "description": "Reports incidents and works on their own",
        "permissions": frozenset({
            PERM_INCIDENTS_READ, PERM_INCIDENTS_CREATE, PERM_INCIDENTS_EDIT_OWN,
            PERM_INCIDENTS_STATUS_LIMITED, PERM_DASHBOARD_BASIC,
        }),
    },
}


def permissions_for_role(role: str | None) -> frozenset[str]:
    """Return the permission set for a role.

    Unknown roles get the read-only fallback tier and never write access.
    """
    role_def = DEFAULT_ROLES.get(role or "")
    if role_def is None:
        return FALLBACK_PERMISSIONS
    return role_def["permissions"]
