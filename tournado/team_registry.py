import re
import logging
from typing import Optional, List, Dict, Any

from .models import db, Team, TeamLeader, next_version
from .errors import ValidationError, NotFoundError, EmailError
from .email_sender import EmailSender, mask_email
from .tournament_registry import TournamentRegistry, DIVISIONS, CATEGORIES
from shared.events import Event, EventType, team_registered_event
from shared.pubsub import EventPublisher

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
PHONE_REGEX = re.compile(r'^\+?[0-9\s\-()]+$')


def _text(data: Dict[str, Any], key: str) -> str:
    return str(data.get(key) or '').strip()


def validate_team_data(data: Dict[str, Any]) -> Dict[str, Any]:
    errors = {}
    values = {
        'club_name': _text(data, 'club_name'),
        'name': _text(data, 'name'),
        'division': _text(data, 'division'),
        'category': _text(data, 'category'),
        'team_leader_name': _text(data, 'team_leader_name'),
        'team_leader_phone': _text(data, 'team_leader_phone'),
        'team_leader_email': _text(data, 'team_leader_email').lower(),
    }

    for field, label, max_len in (
        ('club_name', 'Club name', 100),
        ('name', 'Team name', 50),
        ('team_leader_name', 'Team leader name', 100),
    ):
        if not values[field]:
            errors[field] = f'{label} is required'
        elif len(values[field]) > max_len:
            errors[field] = f'{label} is too long'

    if not values['division']:
        errors['division'] = 'Division is required'
    elif values['division'] not in DIVISIONS:
        errors['division'] = 'Invalid division'

    if not values['category']:
        errors['category'] = 'Category is required'
    elif values['category'] not in CATEGORIES:
        errors['category'] = 'Invalid category'

    if not values['team_leader_phone']:
        errors['team_leader_phone'] = 'Phone number is required'
    elif not PHONE_REGEX.match(values['team_leader_phone']):
        errors['team_leader_phone'] = 'Phone number is invalid'

    if not values['team_leader_email']:
        errors['team_leader_email'] = 'Email is required'
    elif not EMAIL_REGEX.match(values['team_leader_email']):
        errors['team_leader_email'] = 'Email is invalid'

    if data.get('privacy_agreement') is not True:
        errors['privacy_agreement'] = 'You must accept the privacy agreement'

    if errors:
        raise ValidationError('Invalid team data', errors)
    return values


class TeamRegistry:
    """Team registration and lookups, including team leader bookkeeping."""

    def __init__(self, tournaments: TournamentRegistry, mailer: EmailSender = None,
                 events: EventPublisher = None):
        self.tournaments = tournaments
        self.mailer = mailer
        self.events = events or EventPublisher()

    def find_or_create_team_leader(self, name: str, email: str, phone: str) -> TeamLeader:
        leader = TeamLeader.query.filter_by(email=email).first()
        if leader:
            return leader

        first_name, _, last_name = name.partition(' ')
        leader = TeamLeader(first_name=first_name, last_name=last_name.strip(), email=email)
        leader.phone = phone
        db.session.add(leader)
        return leader

    def create_team_from_form_data(self, tournament_id: str, data: Dict[str, Any]) -> Team:
        values = validate_team_data(data)

        tournament = self.tournaments.get_tournament(tournament_id)
        if not tournament:
            raise ValidationError('Invalid team data', {'tournament_id': 'Tournament not found'})

        errors = {}
        if values['division'] not in (tournament.divisions or []):
            errors['division'] = 'Division is not offered by this tournament'
        if values['category'] not in (tournament.categories or []):
            errors['category'] = 'Category is not offered by this tournament'
        if errors:
            raise ValidationError('Invalid team data', errors)

        try:
            leader = self.find_or_create_team_leader(
                values['team_leader_name'],
                values['team_leader_email'],
                values['team_leader_phone']
            )
            team = Team(
                tournament=tournament,
                club_name=values['club_name'],
                name=values['name'],
                division=values['division'],
                category=values['category'],
                team_leader=leader
            )
            db.session.add(team)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"Registered team {team.id} ({team.club_name} {team.name}) "
                    f"for {tournament.tournament_id}, leader {mask_email(leader.email)}")
        self.events.publish(team_registered_event(tournament.tournament_id, team.id, team.category))
        self._send_confirmation(team, tournament)
        return team

    def _send_confirmation(self, team: Team, tournament):
        """Registration stands even when the confirmation email cannot go out."""
        if not self.mailer:
            return
        try:
            self.mailer.send_team_registered(team, tournament)
        except EmailError as e:
            logger.error(f"Failed to send confirmation email for team {team.id}: {e}")

    def get_team(self, team_id: int) -> Optional[Team]:
        return db.session.get(Team, team_id)

    def require_team(self, team_id: int) -> Team:
        team = self.get_team(team_id)
        if not team:
            raise NotFoundError('Team not found')
        return team

    def list_teams(self, tournament_id: str, category: str = None) -> List[Team]:
        tournament = self.tournaments.require_tournament(tournament_id)
        query = Team.query.filter_by(tournament_id=tournament.id)
        if category:
            query = query.filter_by(category=category)
        return query.order_by(Team.category, Team.club_name, Team.name).all()

    def delete_team(self, team_id: int):
        team = self.require_team(team_id)
        tournament_id = team.tournament.tournament_id

        slot = team.group_slot
        if slot is not None:
            stage = slot.group_stage
            slot.team = None
            if slot.group_id is None:
                db.session.delete(slot)
            stage.updated_at = next_version(stage.updated_at)

        db.session.delete(team)
        db.session.commit()

        self.events.publish(Event(EventType.TEAM_DELETED, tournament_id, data={'team_id': team_id}))

