import uuid
import logging
from datetime import date
from typing import Optional, List, Dict, Any

from .models import db, Tournament
from .errors import ValidationError, NotFoundError
from shared.events import Event, EventType
from shared.pubsub import EventPublisher

logger = logging.getLogger(__name__)

DIVISIONS = [
    'PREMIER_DIVISION',
    'FIRST_DIVISION',
    'SECOND_DIVISION',
    'THIRD_DIVISION',
    'FOURTH_DIVISION',
    'FIFTH_DIVISION',
]

# Dutch youth football age groups (JO = boys under, MO = girls under) plus veterans
CATEGORIES = (
    [f'JO{age}' for age in (8, 9, 10, 11, 12, 13, 14, 15, 16, 17, 19)] +
    [f'MO{age}' for age in (8, 9, 10, 11, 12, 13, 14, 15, 16, 17, 19)] +
    ['Veteranen 35+', 'Veteranen 40+', 'Veteranen 45+', 'Veteranen 50+']
)


def parse_date(value) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def validate_tournament_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate tournament form data, returning the cleaned values."""
    errors = {}

    name = (data.get('name') or '').strip()
    location = (data.get('location') or '').strip()
    divisions = data.get('divisions') or []
    categories = data.get('categories') or []

    if not name:
        errors['name'] = 'Tournament name is required'
    elif len(name) > 200:
        errors['name'] = 'Tournament name is too long'

    if not location:
        errors['location'] = 'Location is required'

    if not isinstance(divisions, list) or not divisions:
        errors['divisions'] = 'At least one division is required'
    elif any(d not in DIVISIONS for d in divisions):
        errors['divisions'] = 'Unknown division'

    if not isinstance(categories, list) or not categories:
        errors['categories'] = 'At least one category is required'
    elif any(c not in CATEGORIES for c in categories):
        errors['categories'] = 'Unknown category'

    start_date = parse_date(data.get('start_date'))
    end_date = parse_date(data.get('end_date'))
    if start_date is None:
        errors['start_date'] = 'A valid start date is required'
    if data.get('end_date') and end_date is None:
        errors['end_date'] = 'End date is not a valid date'
    elif start_date and end_date and end_date < start_date:
        errors['end_date'] = 'End date must be on or after the start date'

    if errors:
        raise ValidationError('Invalid tournament data', errors)

    return {
        'name': name,
        'location': location,
        # keep the order of the canonical lists, drop duplicates
        'divisions': [d for d in DIVISIONS if d in divisions],
        'categories': [c for c in CATEGORIES if c in categories],
        'start_date': start_date,
        'end_date': end_date,
    }


class TournamentRegistry:
    """
    Manages tournament records:
    - Create/update/delete tournaments
    - Lookups by public ID
    - Announce changes to connected editors
    """

    def __init__(self, events: EventPublisher = None):
        self.events = events or EventPublisher()

    def create_tournament(self, data: Dict[str, Any]) -> Tournament:
        values = validate_tournament_data(data)
        tournament = Tournament(
            tournament_id=f"t_{uuid.uuid4().hex[:12]}",
            **values
        )

        db.session.add(tournament)
        db.session.commit()

        logger.info(f"Created tournament {tournament.tournament_id} ({tournament.name})")
        self.events.publish(Event(EventType.TOURNAMENT_CREATED, tournament.tournament_id,
                                  data={'name': tournament.name}))
        return tournament

    def update_tournament(self, tournament_id: str, data: Dict[str, Any]) -> Tournament:
        tournament = self.require_tournament(tournament_id)
        values = validate_tournament_data(data)

        for key, value in values.items():
            setattr(tournament, key, value)
        db.session.commit()

        self.events.publish(Event(EventType.TOURNAMENT_UPDATED, tournament.tournament_id))
        return tournament

    def delete_tournament(self, tournament_id: str):
        tournament = self.require_tournament(tournament_id)
        db.session.delete(tournament)
        db.session.commit()

        logger.info(f"Deleted tournament {tournament_id}")
        self.events.publish(Event(EventType.TOURNAMENT_DELETED, tournament_id))

    def get_tournament(self, tournament_id: str) -> Optional[Tournament]:
        """Get tournament by its public ID."""
        return Tournament.query.filter_by(tournament_id=tournament_id).first()

    def require_tournament(self, tournament_id: str) -> Tournament:
        tournament = self.get_tournament(tournament_id)
        if not tournament:
            raise NotFoundError('Tournament not found')
        return tournament

    def list_tournaments(self, limit: int = 50, offset: int = 0) -> List[Tournament]:
        query = Tournament.query.order_by(Tournament.start_date.desc(), Tournament.id.desc())
        return query.offset(offset).limit(limit).all()
