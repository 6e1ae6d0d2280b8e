import json
import logging
import string
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from sqlalchemy.orm import selectinload

from .models import db, GroupStage, Group, GroupSlot, Team, next_version
from .errors import ValidationError, NotFoundError, ConflictError
from .tournament_registry import TournamentRegistry
from .assignment_snapshot import AssignmentSnapshot, SlotAssignment
from shared.events import (
    Event, EventType, group_stage_created_event, assignments_saved_event, team_removed_event
)
from shared.pubsub import EventPublisher

logger = logging.getLogger(__name__)

MIN_GROUPS, MAX_GROUPS = 2, 8
MIN_SLOTS, MAX_SLOTS = 3, 10

OPERATIONS = ('assign', 'swap', 'reserve', 'remove')


def _as_int(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip('-').isdigit():
        return int(value.strip())
    return None


def parse_assignments(raw) -> List[SlotAssignment]:
    """
    Parse submitted assignments.

    Accepts a list or its JSON text. Every entry needs groupId, slotIndex
    and teamId. A slot or a team may appear only once.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValidationError('Invalid assignments format')

    if not isinstance(raw, list):
        raise ValidationError('Invalid assignments format')

    result = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValidationError('Invalid assignments format')
        group_id = _as_int(item.get('groupId'))
        slot_index = _as_int(item.get('slotIndex'))
        team_id = _as_int(item.get('teamId'))
        if group_id is None or slot_index is None or team_id is None or slot_index < 0:
            raise ValidationError('Invalid assignments format')
        result.append(SlotAssignment(group_id, slot_index, team_id))

    positions = [(a.group_id, a.slot_index) for a in result]
    if len(set(positions)) != len(positions):
        raise ValidationError('Invalid assignments format', {'assignments': 'Duplicate slot assignment'})

    team_ids = [a.team_id for a in result]
    if len(set(team_ids)) != len(team_ids):
        raise ValidationError('Invalid assignments format', {'assignments': 'Team assigned more than once'})

    return result


def parse_client_timestamp(value) -> datetime:
    """Parse the client's updatedAt into the naive UTC the database stores."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or '').strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError('Invalid updatedAt timestamp')

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def validate_group_stage_data(data: Dict[str, Any], offered_categories: List[str]) -> Dict[str, Any]:
    errors = {}

    name = str(data.get('name') or '').strip()
    if not name:
        errors['name'] = 'Name is required'
    elif len(name) > 100:
        errors['name'] = 'Name is too long'

    categories = data.get('categories') or []
    if not isinstance(categories, list) or not categories:
        errors['categories'] = 'At least one category is required'
    elif any(c not in offered_categories for c in categories):
        errors['categories'] = 'Category is not offered by this tournament'

    config_groups = _as_int(data.get('config_groups'))
    if config_groups is None or not MIN_GROUPS <= config_groups <= MAX_GROUPS:
        errors['config_groups'] = f'Number of groups must be between {MIN_GROUPS} and {MAX_GROUPS}'

    config_slots = _as_int(data.get('config_slots'))
    if config_slots is None or not MIN_SLOTS <= config_slots <= MAX_SLOTS:
        errors['config_slots'] = f'Teams per group must be between {MIN_SLOTS} and {MAX_SLOTS}'

    auto_fill = data.get('auto_fill', True)
    if not isinstance(auto_fill, bool):
        errors['auto_fill'] = 'auto_fill must be a boolean'

    if errors:
        raise ValidationError('Invalid group stage data', errors)

    return {
        'name': name,
        'categories': [c for c in offered_categories if c in categories],
        'config_groups': config_groups,
        'config_slots': config_slots,
        'auto_fill': auto_fill,
    }


class GroupStageManager:
    """
    Group stages of a tournament:
    - Create stages with their groups and empty slots
    - Build the editable assignment snapshot
    - Save edited assignments with optimistic concurrency on updated_at
    """

    def __init__(self, tournaments: TournamentRegistry, events: EventPublisher = None):
        self.tournaments = tournaments
        self.events = events or EventPublisher()

    # ==================== Stage lifecycle ====================

    def create_group_stage(self, tournament_id: str, data: Dict[str, Any]) -> GroupStage:
        tournament = self.tournaments.require_tournament(tournament_id)
        values = validate_group_stage_data(data, list(tournament.categories or []))

        reserve_teams = []
        if values['auto_fill']:
            reserve_teams = self.get_teams_by_categories(tournament_id, values['categories'])

        try:
            # the stage is transient until added, so nothing may flush while it is built
            with db.session.no_autoflush:
                stage = GroupStage(tournament=tournament, updated_at=next_version(), **values)
                for order in range(values['config_groups']):
                    group = Group(name=f"Group {string.ascii_uppercase[order]}", order=order)
                    stage.groups.append(group)
                    for index in range(values['config_slots']):
                        slot = GroupSlot(slot_index=index, group=group)
                        stage.slots.append(slot)

                for team in reserve_teams:
                    stage.slots.append(GroupSlot(slot_index=0, team=team))

                db.session.add(stage)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"Created group stage {stage.id} '{stage.name}' for {tournament_id} "
                    f"({stage.config_groups}x{stage.config_slots}, {len(stage.reserve_slots)} reserve)")
        self.events.publish(group_stage_created_event(tournament_id, stage.id, stage.name))
        return stage

    def delete_group_stage(self, group_stage_id: int):
        stage = self.require_group_stage(group_stage_id)
        tournament_id = stage.tournament.tournament_id

        db.session.delete(stage)
        db.session.commit()

        logger.info(f"Deleted group stage {group_stage_id} of {tournament_id}")
        self.events.publish(Event(EventType.GROUP_STAGE_DELETED, tournament_id,
                                  data={'group_stage_id': group_stage_id}))

    # ==================== Lookups ====================

    def get_group_stage(self, group_stage_id: int) -> Optional[GroupStage]:
        return db.session.get(GroupStage, group_stage_id)

    def require_group_stage(self, group_stage_id: int) -> GroupStage:
        stage = self.get_group_stage(group_stage_id)
        if not stage:
            raise NotFoundError('Group stage not found')
        return stage

    def get_group_stage_with_details(self, group_stage_id: int) -> Optional[GroupStage]:
        return db.session.get(GroupStage, group_stage_id, options=[
            selectinload(GroupStage.groups).selectinload(Group.slots).selectinload(GroupSlot.team),
            selectinload(GroupStage.slots).selectinload(GroupSlot.team),
        ])

    def get_tournament_group_stages(self, tournament_id: str) -> List[GroupStage]:
        tournament = self.tournaments.require_tournament(tournament_id)
        return (GroupStage.query
                .filter_by(tournament_id=tournament.id)
                .order_by(GroupStage.created_at.desc(), GroupStage.id.desc())
                .all())

    def get_teams_by_categories(self, tournament_id: str, categories: List[str]) -> List[Team]:
        """Teams of the given categories that hold no slot in any stage."""
        tournament = self.tournaments.require_tournament(tournament_id)
        if not categories:
            return []

        placed = db.select(GroupSlot.team_id).where(GroupSlot.team_id.isnot(None))
        return (Team.query
                .filter(Team.tournament_id == tournament.id,
                        Team.category.in_(categories),
                        ~Team.id.in_(placed))
                .order_by(Team.category, Team.club_name, Team.name)
                .all())

    def get_assignment_snapshot(self, group_stage_id: int) -> AssignmentSnapshot:
        stage = self.get_group_stage_with_details(group_stage_id)
        if not stage:
            raise NotFoundError('Group stage not found')

        available = self.get_teams_by_categories(stage.tournament.tournament_id, list(stage.categories or []))
        return AssignmentSnapshot.from_group_stage(stage, available)

    # ==================== Assignment writes ====================

    def _lock_stage(self, group_stage_id: int, client_version: datetime) -> GroupStage:
        # populate_existing so a stage already in the session is re-read under the lock
        stage = (GroupStage.query
                 .filter_by(id=group_stage_id)
                 .populate_existing()
                 .with_for_update()
                 .first())
        if not stage:
            raise NotFoundError('Group stage not found')

        if stage.updated_at and stage.updated_at > client_version:
            logger.warning(f"Conflict on group stage {group_stage_id}: server {stage.updated_at.isoformat()} "
                           f"newer than client {client_version.isoformat()}")
            raise ConflictError(server_updated_at=stage.updated_at.isoformat())
        return stage

    def _validate_assignments(self, stage: GroupStage, assignments: List[SlotAssignment]) -> Dict[tuple, GroupSlot]:
        slots_by_position = {
            (slot.group_id, slot.slot_index): slot
            for slot in stage.slots if slot.group_id is not None
        }
        group_ids = {g.id for g in stage.groups}
        categories = set(stage.categories or [])

        team_ids = [a.team_id for a in assignments]
        teams = {t.id: t for t in Team.query.filter(Team.id.in_(team_ids)).all()} if team_ids else {}

        for a in assignments:
            if a.group_id not in group_ids:
                raise ValidationError(f"Group {a.group_id} does not belong to this group stage")
            if not 0 <= a.slot_index < stage.config_slots:
                raise ValidationError(f"Slot index {a.slot_index} is out of range")
            if (a.group_id, a.slot_index) not in slots_by_position:
                raise ValidationError(f"Slot {a.slot_index} of group {a.group_id} does not exist")

            team = teams.get(a.team_id)
            if team is None or team.tournament_id != stage.tournament_id:
                raise ValidationError(f"Team {a.team_id} does not belong to this tournament")
            if team.category not in categories:
                raise ValidationError(f"Team {a.team_id} is not in a category of this group stage")
            if team.group_slot is not None and team.group_slot.group_stage_id != stage.id:
                raise ValidationError(f"Team {a.team_id} is already assigned to another group stage")

        return slots_by_position

    def batch_save_group_assignments(self, group_stage_id: int, tournament_id: str,
                                     assignments: List[SlotAssignment], client_updated_at) -> GroupStage:
        """
        Replace every group slot assignment of a stage in one transaction.

        Raises ConflictError when the stage changed after the client's
        updated_at. Teams leaving the groups move to the reserve.
        """
        client_version = parse_client_timestamp(client_updated_at)
        assigned_ids = {a.team_id for a in assignments}

        try:
            stage = self._lock_stage(group_stage_id, client_version)
            if stage.tournament.tournament_id != tournament_id:
                raise ValidationError('Group stage does not belong to this tournament')

            slots_by_position = self._validate_assignments(stage, assignments)
            previously_grouped = {
                s.team_id for s in stage.slots if s.group_id is not None and s.team_id is not None
            }

            # team_id is unique, so old references go before new ones are written
            for slot in list(stage.slots):
                if slot.group_id is None:
                    if slot.team_id in assigned_ids:
                        stage.slots.remove(slot)
                else:
                    slot.team_id = None
            db.session.flush()

            for a in assignments:
                slots_by_position[(a.group_id, a.slot_index)].team_id = a.team_id
            db.session.flush()

            for team_id in sorted(previously_grouped - assigned_ids):
                stage.slots.append(GroupSlot(slot_index=0, team_id=team_id))

            stage.updated_at = next_version(stage.updated_at)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        updated_at = stage.updated_at.isoformat()
        logger.info(f"Saved {len(assignments)} assignments for group stage {group_stage_id} ({updated_at})")
        self.events.publish(assignments_saved_event(tournament_id, group_stage_id, updated_at, len(assignments)))
        return stage

    def delete_team_from_group_stage(self, group_stage_id: int, team_id: int,
                                     client_updated_at=None) -> GroupStage:
        """
        Clear the team's group slot or drop its reserve row.

        With client_updated_at the stage row is locked and checked for
        conflicts in the same transaction as the removal.
        """
        client_version = None
        if client_updated_at is not None:
            client_version = parse_client_timestamp(client_updated_at)

        try:
            if client_version is not None:
                stage = self._lock_stage(group_stage_id, client_version)
            else:
                stage = self.require_group_stage(group_stage_id)

            slot = next((s for s in stage.slots if s.team_id == team_id), None)
            if slot is None:
                raise NotFoundError('Team is not in this group stage')

            if slot.group_id is None:
                stage.slots.remove(slot)
            else:
                slot.team_id = None
            stage.updated_at = next_version(stage.updated_at)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        tournament_id = stage.tournament.tournament_id
        updated_at = stage.updated_at.isoformat()
        logger.info(f"Removed team {team_id} from group stage {group_stage_id}")
        self.events.publish(team_removed_event(tournament_id, group_stage_id, team_id, updated_at))
        return stage

    def apply_operation(self, group_stage_id: int, operation: Dict[str, Any], client_updated_at) -> GroupStage:
        """
        Apply one edit (assign, swap, reserve or remove) on the server.

        The edit runs against the current snapshot and is written through
        the batch save, so stale clients get the same ConflictError. A
        remove takes the same stage lock on the direct removal path.
        """
        op_type = operation.get('type')
        if op_type not in OPERATIONS:
            raise ValidationError(f"Unknown operation: {op_type}")

        team_id = _as_int(operation.get('team_id'))
        if team_id is None:
            raise ValidationError('team_id is required')

        if op_type == 'remove':
            return self.delete_team_from_group_stage(group_stage_id, team_id, client_updated_at)

        snapshot = self.get_assignment_snapshot(group_stage_id)

        if op_type == 'reserve':
            result = snapshot.move_team_to_confirmed(team_id)
        else:
            group_id = _as_int(operation.get('group_id'))
            slot_index = _as_int(operation.get('slot_index'))
            if group_id is None or slot_index is None:
                raise ValidationError('group_id and slot_index are required')
            if op_type == 'assign':
                result = snapshot.assign_team_to_slot(team_id, group_id, slot_index)
            else:
                result = snapshot.swap_team_with_slot(team_id, group_id, slot_index)

        if result is None:
            raise ValidationError(f"Operation '{op_type}' cannot be applied")

        return self.batch_save_group_assignments(
            group_stage_id,
            snapshot.tournament_id,
            result.to_assignments(),
            client_updated_at
        )
