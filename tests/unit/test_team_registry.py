"""
Unit tests for TeamRegistry.
Tests: validate_team_data, create_team_from_form_data, team leader reuse,
       contact encryption, confirmation email, delete_team slot release
"""
import pytest

from conftest import make_tournament, make_teams
from tournado.team_registry import TeamRegistry, validate_team_data
from tournado.tournament_registry import TournamentRegistry
from tournado.group_manager import GroupStageManager
from tournado.email_sender import EmailSender
from tournado.assignment_snapshot import SlotAssignment
from tournado.models import db, Team, TeamLeader, GroupSlot
from tournado.errors import ValidationError, EmailError
from shared.events import EventType

FORM = {
    'club_name': 'VV Oranje',
    'name': 'JO10-1',
    'division': 'FIRST_DIVISION',
    'category': 'JO10',
    'team_leader_name': 'Jan de Vries',
    'team_leader_phone': '+31 6 1234 5678',
    'team_leader_email': 'Jan@Example.com',
    'privacy_agreement': True,
}


@pytest.fixture
def mailer(mocker):
    return mocker.MagicMock(spec=EmailSender)


@pytest.fixture
def registry(db_session, mailer, mock_events):
    return TeamRegistry(TournamentRegistry(), mailer, mock_events)


@pytest.fixture
def tournament(db_session):
    return make_tournament()


class TestValidation:
    """Tests for validate_team_data."""

    def test_valid(self):
        values = validate_team_data(FORM)
        assert values['team_leader_email'] == 'jan@example.com'

    @pytest.mark.parametrize('field,value', [
        ('club_name', ''), ('club_name', 'x' * 101), ('name', 'x' * 51),
        ('team_leader_name', ''), ('team_leader_phone', 'call me'),
        ('team_leader_email', 'jan@'), ('division', 'TENTH'), ('category', 'U10'),
        ('privacy_agreement', False), ('privacy_agreement', 'true'),
    ])
    def test_invalid(self, field, value):
        with pytest.raises(ValidationError) as exc:
            validate_team_data(dict(FORM, **{field: value}))
        assert field in exc.value.errors


class TestCreateTeam:
    """Tests for create_team_from_form_data."""

    def test_creates_team_and_leader(self, registry, tournament, mailer, mock_events):
        team = registry.create_team_from_form_data(tournament.tournament_id, FORM)

        assert team.id is not None
        assert team.team_leader.first_name == 'Jan'
        assert team.team_leader.last_name == 'de Vries'
        assert team.team_leader.email == 'jan@example.com'
        mailer.send_team_registered.assert_called_once_with(team, tournament)
        assert mock_events.publish.call_args[0][0].type == EventType.TEAM_REGISTERED

    def test_phone_encrypted_at_rest(self, registry, tournament):
        team = registry.create_team_from_form_data(tournament.tournament_id, FORM)
        leader = team.team_leader

        assert leader.phone_encrypted != FORM['team_leader_phone']
        assert leader.phone == FORM['team_leader_phone']
        assert leader.to_dict()['phone'] is None
        assert leader.to_dict(reveal_contact=True)['phone'] == FORM['team_leader_phone']

    def test_reuses_team_leader(self, registry, tournament):
        registry.create_team_from_form_data(tournament.tournament_id, FORM)
        registry.create_team_from_form_data(tournament.tournament_id, dict(FORM, name='JO10-2'))

        assert TeamLeader.query.count() == 1
        assert Team.query.count() == 2

    def test_unknown_tournament(self, registry):
        with pytest.raises(ValidationError) as exc:
            registry.create_team_from_form_data('t_missing', FORM)
        assert exc.value.errors == {'tournament_id': 'Tournament not found'}

    def test_category_not_offered(self, registry, tournament):
        with pytest.raises(ValidationError) as exc:
            registry.create_team_from_form_data(tournament.tournament_id, dict(FORM, category='JO19'))
        assert 'category' in exc.value.errors
        assert Team.query.count() == 0

    def test_email_failure_keeps_registration(self, registry, tournament, mailer, caplog):
        mailer.send_team_registered.side_effect = EmailError('Failed to send confirmation email')

        team = registry.create_team_from_form_data(tournament.tournament_id, FORM)

        assert db.session.get(Team, team.id) is not None
        assert 'Failed to send confirmation email' in caplog.text


class TestListAndDelete:
    """Tests for list_teams and delete_team."""

    def test_list_by_category(self, registry, tournament):
        make_teams(tournament, 2, category='JO10')
        make_teams(tournament, 1, category='JO12', prefix='Other')

        assert len(registry.list_teams(tournament.tournament_id)) == 3
        assert [t.category for t in registry.list_teams(tournament.tournament_id, 'JO12')] == ['JO12']

    def test_delete_releases_group_slot(self, registry, tournament, mock_events):
        teams = make_teams(tournament, 3)
        groups = GroupStageManager(registry.tournaments)
        stage = groups.create_group_stage(tournament.tournament_id, {
            'name': 'Round 1', 'categories': ['JO10'], 'config_groups': 2, 'config_slots': 3
        })
        group_a = stage.groups[0]
        stage = groups.batch_save_group_assignments(
            stage.id, tournament.tournament_id, [SlotAssignment(group_a.id, 0, teams[0].id)],
            stage.updated_at.isoformat()
        )
        version = stage.updated_at

        registry.delete_team(teams[0].id)

        slot = GroupSlot.query.filter_by(group_id=group_a.id, slot_index=0).one()
        assert slot.team_id is None
        assert stage.updated_at > version
        assert mock_events.publish.call_args[0][0].type == EventType.TEAM_DELETED

    def test_delete_removes_reserve_row(self, registry, tournament):
        teams = make_teams(tournament, 2)
        GroupStageManager(registry.tournaments).create_group_stage(tournament.tournament_id, {
            'name': 'Round 1', 'categories': ['JO10'], 'config_groups': 2, 'config_slots': 3
        })

        registry.delete_team(teams[1].id)

        assert GroupSlot.query.filter(GroupSlot.group_id.is_(None)).count() == 1
