from enum import Enum


class Role(str, Enum):
    USER = "user"
    ANALYST = "analyst"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


# Roles allowed to read engagement dashboards and trigger summary refreshes.
DASHBOARD_ROLES = frozenset({Role.ANALYST, Role.ADMIN, Role.SUPER_ADMIN})
