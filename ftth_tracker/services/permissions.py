"""
Static permission table and access-level evaluation.

A user either carries a custom permission list (when ``custom_permissions`` is
set) or inherits the permission set of its access level. Evaluation is a pure
membership test; there is no delegation and no time-bounded grant.
"""
from typing import Any, Dict, FrozenSet, List, Optional


class PERMISSIONS:
    # Agenda
    VIEW_TASKS = "view_tasks"
    CREATE_TASKS = "create_tasks"
    EDIT_TASKS = "edit_tasks"
    DELETE_TASKS = "delete_tasks"
    COMPLETE_TASKS = "complete_tasks"
    VIEW_COMPLETED = "view_completed"

    # Technician / vehicle tracking
    VIEW_TECHNICIANS = "view_technicians"
    ADD_TECHNICIAN = "add_technician"
    EDIT_TECHNICIAN = "edit_technician"
    DELETE_TECHNICIAN = "delete_technician"
    VIEW_STATISTICS = "view_statistics"
    VIEW_MAP = "view_map"
    VIEW_BY_OPERATION = "view_by_operation"

    # Vehicle maintenance
    VIEW_MAINTENANCE = "view_maintenance"
    ADD_MAINTENANCE = "add_maintenance"
    EDIT_MAINTENANCE = "edit_maintenance"
    DELETE_MAINTENANCE = "delete_maintenance"

    # Administration
    MANAGE_USERS = "manage_users"


ALL_PERMISSIONS: FrozenSet[str] = frozenset(
    v for k, v in vars(PERMISSIONS).items() if not k.startswith("_")
)

MUTATING_PERMISSIONS: FrozenSet[str] = frozenset({
    PERMISSIONS.CREATE_TASKS,
    PERMISSIONS.EDIT_TASKS,
    PERMISSIONS.DELETE_TASKS,
    PERMISSIONS.COMPLETE_TASKS,
    PERMISSIONS.ADD_TECHNICIAN,
    PERMISSIONS.EDIT_TECHNICIAN,
    PERMISSIONS.DELETE_TECHNICIAN,
    PERMISSIONS.ADD_MAINTENANCE,
    PERMISSIONS.EDIT_MAINTENANCE,
    PERMISSIONS.DELETE_MAINTENANCE,
    PERMISSIONS.MANAGE_USERS,
})


_TASKS_BASIC = [
    PERMISSIONS.VIEW_TASKS,
    PERMISSIONS.CREATE_TASKS,
    PERMISSIONS.EDIT_TASKS,
    PERMISSIONS.COMPLETE_TASKS,
    PERMISSIONS.VIEW_COMPLETED,
]

ACCESS_LEVELS: Dict[str, Dict[str, Any]] = {
    "ADMIN": {
        "name": "Administrador",
        "permissions": frozenset(ALL_PERMISSIONS),
    },
    "TECH_MANAGER": {
        "name": "Gestor de Técnicos",
        "permissions": frozenset(_TASKS_BASIC + [
            PERMISSIONS.VIEW_TECHNICIANS,
            PERMISSIONS.ADD_TECHNICIAN,
            PERMISSIONS.EDIT_TECHNICIAN,
            PERMISSIONS.DELETE_TECHNICIAN,
            PERMISSIONS.VIEW_STATISTICS,
            PERMISSIONS.VIEW_MAP,
            PERMISSIONS.VIEW_BY_OPERATION,
            PERMISSIONS.VIEW_MAINTENANCE,
        ]),
    },
    "MAINTENANCE_MANAGER": {
        "name": "Gestor de Manutenção",
        "permissions": frozenset(_TASKS_BASIC + [
            PERMISSIONS.VIEW_TECHNICIANS,
            PERMISSIONS.VIEW_STATISTICS,
            PERMISSIONS.VIEW_BY_OPERATION,
            PERMISSIONS.VIEW_MAINTENANCE,
            PERMISSIONS.ADD_MAINTENANCE,
            PERMISSIONS.EDIT_MAINTENANCE,
            PERMISSIONS.DELETE_MAINTENANCE,
        ]),
    },
    "USER": {
        "name": "Usuário Padrão",
        "permissions": frozenset(_TASKS_BASIC + [
            PERMISSIONS.VIEW_TECHNICIANS,
            PERMISSIONS.ADD_TECHNICIAN,
            PERMISSIONS.VIEW_STATISTICS,
            PERMISSIONS.VIEW_MAP,
            PERMISSIONS.VIEW_BY_OPERATION,
            PERMISSIONS.VIEW_MAINTENANCE,
            PERMISSIONS.ADD_MAINTENANCE,
        ]),
    },
    "VIEWER": {
        "name": "Visualizador",
        "permissions": frozenset([
            PERMISSIONS.VIEW_TASKS,
            PERMISSIONS.VIEW_COMPLETED,
            PERMISSIONS.VIEW_TECHNICIANS,
            PERMISSIONS.VIEW_STATISTICS,
            PERMISSIONS.VIEW_MAINTENANCE,
        ]),
    },
}


def _field(user: Any, name: str, default=None):
    # Users arrive as ORM rows on the server and as plain dicts on the client
    if isinstance(user, dict):
        return user.get(name, default)
    return getattr(user, name, default)


def effective_permissions(user: Any) -> FrozenSet[str]:
    if not user:
        return frozenset()
    level = ACCESS_LEVELS.get(_field(user, "access_level") or "")
    if level is None:
        return frozenset()
    custom = _field(user, "permissions")
    if _field(user, "custom_permissions", False) and custom is not None:
        return frozenset(p for p in custom if p in ALL_PERMISSIONS)
    return level["permissions"]


def has_permission(user: Any, permission: str) -> bool:
    return permission in effective_permissions(user)


def validate_permission_list(perms: Optional[List[str]]) -> List[str]:
    """Return the unknown names in ``perms`` (empty when all are valid)."""
    return sorted(p for p in (perms or []) if p not in ALL_PERMISSIONS)


def is_valid_access_level(level: Optional[str]) -> bool:
    return bool(level) and level in ACCESS_LEVELS
