"""
Unit tests for role-based access control.
Tests: get_user_role, has_permission, is_admin, has_admin_panel_access,
       role levels, permission_required
"""
import json

import pytest
from flask import Flask

from tournado.rbac import (
    Role, ROLE_PERMISSIONS, PERMISSIONS, get_user_role, has_permission,
    has_any_permission, has_all_permissions, is_admin, has_admin_panel_access,
    get_role_level, has_role_level, require_permission, permission_required, parse_role
)
from tournado.errors import ForbiddenError


class FakeUser:
    def __init__(self, role, is_authenticated=True):
        self.role = role
        self.is_authenticated = is_authenticated


class TestGetUserRole:
    """Tests for get_user_role."""

    def test_none_is_public(self):
        assert get_user_role(None) == Role.PUBLIC

    def test_anonymous_is_public(self):
        assert get_user_role(FakeUser('ADMIN', is_authenticated=False)) == Role.PUBLIC

    def test_unknown_role_is_public(self):
        assert get_user_role(FakeUser('WIZARD')) == Role.PUBLIC

    def test_role_is_case_insensitive(self):
        assert get_user_role(FakeUser('manager')) == Role.MANAGER

    def test_parse_role_invalid(self):
        assert parse_role('nope') is None


class TestPermissions:
    """Tests for the permission matrix."""

    def test_admin_has_every_permission(self):
        admin = FakeUser('ADMIN')
        assert all(has_permission(admin, p) for p in PERMISSIONS)

    def test_only_admin_manages_users(self):
        holders = [role for role, perms in ROLE_PERMISSIONS.items() if 'users:manage' in perms]
        assert holders == [Role.ADMIN]

    @pytest.mark.parametrize('role', ['REFEREE', 'MANAGER', 'ADMIN'])
    def test_group_managers(self, role):
        assert has_permission(FakeUser(role), 'groups:manage')

    @pytest.mark.parametrize('role', ['PUBLIC', 'EDITOR', 'BILLING'])
    def test_group_management_denied(self, role):
        assert not has_permission(FakeUser(role), 'groups:manage')

    def test_public_can_register_teams(self):
        assert has_permission(None, 'teams:create')
        assert not has_permission(None, 'teams:delete')

    def test_any_and_all(self):
        editor = FakeUser('EDITOR')
        assert has_any_permission(editor, ['users:manage', 'system:reports'])
        assert not has_all_permissions(editor, ['users:manage', 'system:reports'])

    def test_require_permission_raises(self):
        with pytest.raises(ForbiddenError):
            require_permission(FakeUser('PUBLIC'), 'tournaments:create')


class TestRoleHelpers:
    """Tests for admin checks and role levels."""

    def test_is_admin(self):
        assert is_admin(FakeUser('ADMIN'))
        assert is_admin(FakeUser('MANAGER'))
        assert not is_admin(FakeUser('REFEREE'))

    def test_admin_panel_access(self):
        assert has_admin_panel_access(FakeUser('BILLING'))
        assert not has_admin_panel_access(FakeUser('PUBLIC'))
        assert not has_admin_panel_access(None)

    def test_role_levels_ordered(self):
        levels = [get_role_level(r) for r in ('PUBLIC', 'REFEREE', 'EDITOR', 'BILLING', 'MANAGER', 'ADMIN')]
        assert levels == sorted(levels)
        assert get_role_level('unknown') == 0

    def test_has_role_level(self):
        assert has_role_level(FakeUser('ADMIN'), Role.MANAGER)
        assert not has_role_level(FakeUser('EDITOR'), 'MANAGER')


class TestPermissionRequired:
    """Tests for the route decorator."""

    @pytest.fixture
    def guarded_app(self, mocker):
        app = Flask(__name__)

        @app.errorhandler(ForbiddenError)
        def forbidden(error):
            return error.to_dict(), error.status_code

        @app.route('/guarded')
        @permission_required('groups:manage')
        def guarded():
            return {'ok': True}

        return app

    def test_anonymous_gets_401(self, guarded_app, mocker):
        mocker.patch('tournado.rbac.current_user', FakeUser('ADMIN', is_authenticated=False))
        response = guarded_app.test_client().get('/guarded')
        assert response.status_code == 401

    def test_missing_permission_gets_403(self, guarded_app, mocker):
        mocker.patch('tournado.rbac.current_user', FakeUser('EDITOR'))
        response = guarded_app.test_client().get('/guarded')
        assert response.status_code == 403
        assert 'Forbidden' in json.loads(response.data)['error']

    def test_permission_granted(self, guarded_app, mocker):
        mocker.patch('tournado.rbac.current_user', FakeUser('REFEREE'))
        response = guarded_app.test_client().get('/guarded')
        assert response.status_code == 200
