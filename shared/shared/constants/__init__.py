from shared.constants.roles import DASHBOARD_ROLES, Role

__all__ = ["DASHBOARD_ROLES", "Role"]
