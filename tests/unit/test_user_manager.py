"""
Unit tests for UserManager.
Tests: create_user, lookups, list_users, audited changes and their short-circuits
"""
import pytest

from conftest import make_user
from tournado.user_manager import UserManager
from tournado.models import UserAuditLog
from tournado.errors import ValidationError, NotFoundError
from shared.events import EventType


@pytest.fixture
def manager(db_session, mock_events):
    return UserManager(mock_events)


@pytest.fixture
def admin(db_session):
    return make_user('admin@example.com', role='ADMIN')


@pytest.fixture
def member(db_session):
    return make_user('member@example.com')


class TestCreateUser:
    """Tests for create_user."""

    def test_defaults(self, manager):
        user = manager.create_user('New.Person@Example.com', password='s3cret-pass', display_name='New Person')

        assert user.email == 'new.person@example.com'
        assert user.role == 'PUBLIC'
        assert user.first_name == 'New'
        assert user.last_name == 'Person'
        assert user.check_password('s3cret-pass')
        assert not user.check_password('wrong')

    def test_name_from_email(self, manager):
        user = manager.create_user('solo@example.com')
        assert user.first_name == 'solo'
        assert user.password_hash is None

    def test_duplicate_email(self, manager, member):
        with pytest.raises(ValidationError) as exc:
            manager.create_user('MEMBER@example.com')
        assert 'email' in exc.value.errors

    def test_invalid_role(self, manager):
        with pytest.raises(ValidationError):
            manager.create_user('x@example.com', role='SUPERUSER')


class TestQueries:
    """Tests for lookups and listing."""

    def test_get_by_email_case_insensitive(self, manager, member):
        assert manager.get_user_by_email('Member@Example.com').id == member.id

    def test_require_missing(self, manager):
        with pytest.raises(NotFoundError, match='User not found'):
            manager.require_user(999)

    def test_pagination(self, manager):
        for i in range(5):
            make_user(f'user{i}@example.com')

        result = manager.list_users(page=2, per_page=2)

        assert result['total'] == 5
        assert result['total_pages'] == 3
        assert len(result['users']) == 2

    def test_search_and_role_filter(self, manager, admin, member):
        make_user('referee@club.nl', role='REFEREE')

        assert [u.email for u in manager.list_users(search='club')['users']] == ['referee@club.nl']
        assert [u.email for u in manager.list_users(role='admin')['users']] == ['admin@example.com']

    def test_users_by_role_and_active_count(self, manager, admin, member):
        make_user('gone@example.com', active=False)

        assert [u.id for u in manager.get_users_by_role('PUBLIC')] != []
        assert manager.get_active_users_count() == 2


class TestAuditedChanges:
    """Role, display name and activation changes."""

    def test_update_role_writes_audit(self, manager, admin, member, mock_events):
        user = manager.update_user_role(member.id, 'REFEREE', admin.id, reason='Needs group access')

        assert user.role == 'REFEREE'
        entry = manager.get_audit_log(member.id)[0]
        assert (entry.action, entry.previous_value, entry.new_value) == ('role_change', 'PUBLIC', 'REFEREE')
        assert entry.performed_by == admin.id
        assert entry.reason == 'Needs group access'
        assert mock_events.publish.call_args[0][0].type == EventType.USER_ROLE_CHANGED

    def test_same_role_short_circuits(self, manager, admin, member, mock_events):
        manager.update_user_role(member.id, 'PUBLIC', admin.id)

        assert UserAuditLog.query.count() == 0
        mock_events.publish.assert_not_called()

    def test_invalid_role(self, manager, admin, member):
        with pytest.raises(ValidationError, match='Invalid role'):
            manager.update_user_role(member.id, 'OVERLORD', admin.id)

    def test_missing_user(self, manager, admin):
        with pytest.raises(NotFoundError):
            manager.update_user_role(404, 'ADMIN', admin.id)

    def test_display_name(self, manager, admin, member):
        user = manager.update_user_display_name(member.id, '  Coach Kim ', admin.id)

        assert user.display_name == 'Coach Kim'
        entry = manager.get_audit_log(member.id)[0]
        assert (entry.action, entry.previous_value, entry.new_value) == ('display_name_change', '', 'Coach Kim')

    def test_empty_display_name(self, manager, admin, member):
        with pytest.raises(ValidationError):
            manager.update_user_display_name(member.id, '   ', admin.id)

    def test_deactivate_and_reactivate(self, manager, admin, member):
        manager.deactivate_user(member.id, admin.id, reason='Left the club')
        assert manager.get_user(member.id).active is False

        manager.deactivate_user(member.id, admin.id)
        manager.reactivate_user(member.id, admin.id)

        actions = [(e.action, e.previous_value, e.new_value) for e in manager.get_audit_log(member.id)]
        assert sorted(actions) == [('deactivate', 'true', 'false'), ('reactivate', 'false', 'true')]
        assert manager.get_user(member.id).is_active is True
