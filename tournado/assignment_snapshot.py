"""
Editable view of a group stage's team placement.

A snapshot holds every group slot plus the teams of the stage that hold no
slot ("unassigned"). Unassigned teams are either confirmed, meaning they fit
in the remaining capacity, or on the waitlist.

All operations are pure. They return a new snapshot, or None when the
operation is invalid or would change nothing, so callers can tell a rejected
edit from a successful one without exceptions.
"""
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple, List, Iterable


@dataclass(frozen=True)
class SlotTeam:
    id: int
    name: str
    club_name: str
    category: str

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'club_name': self.club_name,
            'category': self.category,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SlotTeam":
        return cls(
            id=data['id'],
            name=data['name'],
            club_name=data['club_name'],
            category=data['category']
        )


@dataclass(frozen=True)
class Slot:
    slot_id: int
    group_id: int
    slot_index: int
    team: Optional[SlotTeam] = None

    def to_dict(self) -> dict:
        return {
            'slot_id': self.slot_id,
            'group_id': self.group_id,
            'slot_index': self.slot_index,
            'team': self.team.to_dict() if self.team else None,
        }


@dataclass(frozen=True)
class SnapshotGroup:
    id: int
    name: str
    order: int
    slots: Tuple[Slot, ...] = ()

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'order': self.order,
            'slots': [s.to_dict() for s in self.slots],
        }


@dataclass(frozen=True)
class UnassignedTeam:
    team: SlotTeam
    is_waitlist: bool = False

    @property
    def id(self) -> int:
        return self.team.id

    def to_dict(self) -> dict:
        data = self.team.to_dict()
        data['is_waitlist'] = self.is_waitlist
        return data


@dataclass(frozen=True)
class SlotAssignment:
    group_id: int
    slot_index: int
    team_id: int


@dataclass(frozen=True)
class TeamLocation:
    location: str  # 'group' or 'reserve'
    team: SlotTeam
    group_id: Optional[int] = None
    slot_index: Optional[int] = None
    is_waitlist: bool = False


@dataclass(frozen=True)
class AssignmentSnapshot:
    group_stage_id: int
    group_stage_name: str
    tournament_id: str
    updated_at: str
    groups: Tuple[SnapshotGroup, ...] = ()
    unassigned_teams: Tuple[UnassignedTeam, ...] = ()
    total_slots: int = 0

    # ------------------------------------------------------------------ queries

    @property
    def assigned_count(self) -> int:
        return sum(1 for g in self.groups for s in g.slots if s.team is not None)

    @property
    def confirmed_capacity(self) -> int:
        return self.total_slots - self.assigned_count

    @property
    def confirmed_teams(self) -> Tuple[UnassignedTeam, ...]:
        return tuple(t for t in self.unassigned_teams if not t.is_waitlist)

    @property
    def waitlist_teams(self) -> Tuple[UnassignedTeam, ...]:
        return tuple(t for t in self.unassigned_teams if t.is_waitlist)

    def find_slot(self, group_id: int, slot_index: int) -> Optional[Slot]:
        for group in self.groups:
            if group.id == group_id:
                for slot in group.slots:
                    if slot.slot_index == slot_index:
                        return slot
        return None

    def find_team(self, team_id: int) -> Optional[TeamLocation]:
        for entry in self.unassigned_teams:
            if entry.id == team_id:
                return TeamLocation('reserve', entry.team, is_waitlist=entry.is_waitlist)

        for group in self.groups:
            for slot in group.slots:
                if slot.team is not None and slot.team.id == team_id:
                    return TeamLocation('group', slot.team, group.id, slot.slot_index)
        return None

    def get_team_location(self, team_id: int) -> Optional[str]:
        found = self.find_team(team_id)
        if found is None:
            return None
        if found.location == 'group':
            return 'group'
        return 'waitlist' if found.is_waitlist else 'confirmed'

    def can_promote_from_waitlist(self) -> bool:
        return self.confirmed_capacity > len(self.confirmed_teams)

    def is_dirty(self, original: Optional["AssignmentSnapshot"]) -> bool:
        if original is None:
            return False
        return self != original

    def to_assignments(self) -> List[SlotAssignment]:
        return [
            SlotAssignment(group.id, slot.slot_index, slot.team.id)
            for group in self.groups
            for slot in group.slots
            if slot.team is not None
        ]

    # ---------------------------------------------------------------- internals

    def _map_slots(self, fn) -> Tuple[SnapshotGroup, ...]:
        return tuple(
            replace(group, slots=tuple(fn(group, slot) for slot in group.slots))
            for group in self.groups
        )

    def _clear_team(self, team_id: int) -> Tuple[SnapshotGroup, ...]:
        return self._map_slots(
            lambda g, s: replace(s, team=None) if s.team is not None and s.team.id == team_id else s
        )

    def _without_unassigned(self, team_id: int) -> Tuple[UnassignedTeam, ...]:
        return tuple(t for t in self.unassigned_teams if t.id != team_id)

    @staticmethod
    def _place(groups, group_id: int, slot_index: int, team: SlotTeam) -> Tuple[SnapshotGroup, ...]:
        return tuple(
            group if group.id != group_id else replace(
                group,
                slots=tuple(replace(s, team=team) if s.slot_index == slot_index else s
                            for s in group.slots)
            )
            for group in groups
        )

    # --------------------------------------------------------------- operations

    def assign_team_to_slot(self, team_id: int, group_id: int, slot_index: int) -> Optional["AssignmentSnapshot"]:
        """Place a team in an empty slot, moving it out of its current spot."""
        target = self.find_slot(group_id, slot_index)
        if target is None or target.team is not None:
            return None

        found = self.find_team(team_id)
        if found is None:
            return None

        groups = self._clear_team(team_id) if found.location == 'group' else self.groups
        return replace(
            self,
            groups=self._place(groups, group_id, slot_index, found.team),
            unassigned_teams=self._without_unassigned(team_id)
        )

    def swap_team_with_slot(self, team_id: int, group_id: int, slot_index: int) -> Optional["AssignmentSnapshot"]:
        """
        Move a team into a slot whatever it holds.

        Within one group the two teams trade places. Otherwise the displaced
        team drops back to the confirmed pool.
        """
        target = self.find_slot(group_id, slot_index)
        if target is None or (target.team is not None and target.team.id == team_id):
            return None

        found = self.find_team(team_id)
        if found is None:
            return None

        if found.location == 'group' and found.group_id == group_id and target.team is not None:
            displaced = target.team
            source_index = found.slot_index

            def trade(group, slot):
                if group.id != group_id:
                    return slot
                if slot.slot_index == slot_index:
                    return replace(slot, team=found.team)
                if slot.slot_index == source_index:
                    return replace(slot, team=displaced)
                return slot

            return replace(self, groups=self._map_slots(trade))

        groups = self._place(self._clear_team(team_id), group_id, slot_index, found.team)
        unassigned = self._without_unassigned(team_id)
        if target.team is not None:
            unassigned = unassigned + (UnassignedTeam(target.team, is_waitlist=False),)

        return replace(self, groups=groups, unassigned_teams=unassigned)

    def move_team_to_confirmed(self, team_id: int) -> Optional["AssignmentSnapshot"]:
        """Clear a team's slot and return it to the confirmed pool."""
        found = self.find_team(team_id)
        if found is None or found.location != 'group':
            return None

        return replace(
            self,
            groups=self._clear_team(team_id),
            unassigned_teams=self._without_unassigned(team_id) + (UnassignedTeam(found.team, False),)
        )

    def move_team_to_waitlist(self, team_id: int) -> Optional["AssignmentSnapshot"]:
        found = self.find_team(team_id)
        if found is None or (found.location == 'reserve' and found.is_waitlist):
            return None

        groups = self._clear_team(team_id) if found.location == 'group' else self.groups
        return replace(
            self,
            groups=groups,
            unassigned_teams=self._without_unassigned(team_id) + (UnassignedTeam(found.team, True),)
        )

    def promote_from_waitlist(self, team_id: int) -> Optional["AssignmentSnapshot"]:
        if not self.can_promote_from_waitlist():
            return None

        entry = next((t for t in self.unassigned_teams if t.id == team_id), None)
        if entry is None or not entry.is_waitlist:
            return None

        return replace(
            self,
            unassigned_teams=tuple(
                replace(t, is_waitlist=False) if t.id == team_id else t
                for t in self.unassigned_teams
            )
        )

    def remove_team_from_group_stage(self, team_id: int) -> Optional["AssignmentSnapshot"]:
        if self.find_team(team_id) is None:
            return None
        return replace(
            self,
            groups=self._clear_team(team_id),
            unassigned_teams=self._without_unassigned(team_id)
        )

    # ------------------------------------------------------------ serialization

    def to_dict(self) -> dict:
        return {
            'group_stage_id': self.group_stage_id,
            'group_stage_name': self.group_stage_name,
            'tournament_id': self.tournament_id,
            'updated_at': self.updated_at,
            'groups': [g.to_dict() for g in self.groups],
            'unassigned_teams': [t.to_dict() for t in self.unassigned_teams],
            'total_slots': self.total_slots,
            'confirmed_capacity': self.confirmed_capacity,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AssignmentSnapshot":
        groups = tuple(
            SnapshotGroup(
                id=g['id'],
                name=g['name'],
                order=g['order'],
                slots=tuple(
                    Slot(
                        slot_id=s['slot_id'],
                        group_id=s.get('group_id', g['id']),
                        slot_index=s['slot_index'],
                        team=SlotTeam.from_dict(s['team']) if s.get('team') else None
                    )
                    for s in g.get('slots', [])
                )
            )
            for g in data.get('groups', [])
        )
        unassigned = tuple(
            UnassignedTeam(SlotTeam.from_dict(t), bool(t.get('is_waitlist', False)))
            for t in data.get('unassigned_teams', [])
        )
        return cls(
            group_stage_id=data['group_stage_id'],
            group_stage_name=data.get('group_stage_name', ''),
            tournament_id=data.get('tournament_id'),
            updated_at=data['updated_at'],
            groups=groups,
            unassigned_teams=unassigned,
            total_slots=data.get('total_slots', 0)
        )

    @classmethod
    def from_group_stage(cls, group_stage, available_teams: Iterable = ()) -> "AssignmentSnapshot":
        """
        Build a snapshot from a stored group stage.

        Reserve rows come first, followed by available teams not yet in the
        stage. Everything past the remaining capacity is waitlisted.
        """
        groups = tuple(
            SnapshotGroup(
                id=group.id,
                name=group.name,
                order=group.order,
                slots=tuple(
                    Slot(
                        slot_id=slot.id,
                        group_id=group.id,
                        slot_index=slot.slot_index,
                        team=_slot_team(slot.team) if slot.team else None
                    )
                    for slot in group.slots
                )
            )
            for group in group_stage.groups
        )

        candidates = [_slot_team(s.team) for s in group_stage.reserve_slots if s.team]
        seen = {t.id for t in candidates}
        for team in available_teams:
            if team.id not in seen:
                candidates.append(_slot_team(team))
                seen.add(team.id)

        total_slots = group_stage.config_groups * group_stage.config_slots
        assigned = sum(1 for g in groups for s in g.slots if s.team is not None)
        capacity = total_slots - assigned

        return cls(
            group_stage_id=group_stage.id,
            group_stage_name=group_stage.name,
            tournament_id=group_stage.tournament.tournament_id,
            updated_at=group_stage.updated_at.isoformat(),
            groups=groups,
            unassigned_teams=tuple(
                UnassignedTeam(team, is_waitlist=index >= capacity)
                for index, team in enumerate(candidates)
            ),
            total_slots=total_slots
        )


def _slot_team(team) -> SlotTeam:
    return SlotTeam(id=team.id, name=team.name, club_name=team.club_name, category=team.category)
