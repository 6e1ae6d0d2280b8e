"""
Role-based access control.

Roles and the permission matrix mirror how the tournament office is staffed:
referees and managers arrange groups, only admins manage user accounts.
Anonymous visitors are treated as PUBLIC users.
"""
from enum import Enum
from functools import wraps
from typing import Iterable, Optional

from flask import jsonify
from flask_login import current_user

from .errors import ForbiddenError


class Role(str, Enum):
    PUBLIC = "PUBLIC"
    REFEREE = "REFEREE"
    EDITOR = "EDITOR"
    BILLING = "BILLING"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"


PERMISSIONS = [
    'teams:read', 'teams:create', 'teams:edit', 'teams:delete', 'teams:manage',
    'tournaments:read', 'tournaments:create', 'tournaments:edit',
    'tournaments:delete', 'tournaments:manage',
    'groups:manage',
    'matches:read', 'matches:create', 'matches:edit', 'matches:delete', 'matches:referee',
    'users:manage',
    'system:settings', 'system:reports', 'system:billing',
]

ROLE_PERMISSIONS = {
    Role.PUBLIC: ['teams:read', 'teams:create', 'tournaments:read', 'matches:read'],
    Role.REFEREE: [
        'teams:read', 'tournaments:read', 'groups:manage',
        'matches:read', 'matches:edit', 'matches:referee',
    ],
    Role.EDITOR: ['teams:read', 'tournaments:read', 'matches:read', 'system:reports'],
    Role.BILLING: [
        'teams:read', 'tournaments:read', 'matches:read',
        'system:reports', 'system:billing',
    ],
    Role.MANAGER: [
        'teams:read', 'teams:create', 'teams:edit', 'teams:delete', 'teams:manage',
        'tournaments:read', 'tournaments:create', 'tournaments:edit',
        'groups:manage',
        'matches:read', 'matches:create', 'matches:edit', 'matches:delete',
        'system:reports',
    ],
    Role.ADMIN: list(PERMISSIONS),
}

ROLE_LEVELS = {
    Role.PUBLIC: 0,
    Role.REFEREE: 1,
    Role.EDITOR: 2,
    Role.BILLING: 3,
    Role.MANAGER: 4,
    Role.ADMIN: 5,
}


def parse_role(value: str) -> Optional[Role]:
    try:
        return Role(str(value).upper())
    except ValueError:
        return None


def get_user_role(user) -> Role:
    if user is None or not getattr(user, 'is_authenticated', False):
        return Role.PUBLIC
    return parse_role(user.role) or Role.PUBLIC


def has_permission(user, permission: str) -> bool:
    return permission in ROLE_PERMISSIONS[get_user_role(user)]


def has_any_permission(user, permissions: Iterable[str]) -> bool:
    return any(has_permission(user, p) for p in permissions)


def has_all_permissions(user, permissions: Iterable[str]) -> bool:
    return all(has_permission(user, p) for p in permissions)


def is_admin(user) -> bool:
    return get_user_role(user) in (Role.ADMIN, Role.MANAGER)


def has_admin_panel_access(user) -> bool:
    return get_user_role(user) != Role.PUBLIC


def get_role_level(role) -> int:
    parsed = role if isinstance(role, Role) else parse_role(role)
    return ROLE_LEVELS.get(parsed, 0)


def has_role_level(user, minimum_role) -> bool:
    return get_role_level(get_user_role(user)) >= get_role_level(minimum_role)


def require_permission(user, permission: str):
    if not has_permission(user, permission):
        raise ForbiddenError()


def permission_required(permission: str):
    """Route decorator: 401 for anonymous callers, 403 without the permission."""
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'error': 'Authentication required'}), 401
            require_permission(current_user, permission)
            return view(*args, **kwargs)
        return wrapped
    return decorator
