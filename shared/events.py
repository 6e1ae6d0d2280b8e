from enum import Enum
from dataclasses import dataclass
from datetime import datetime, timezone
import json


class EventType(str, Enum):
    # Tournament lifecycle
    TOURNAMENT_CREATED = "tournament.created"
    TOURNAMENT_UPDATED = "tournament.updated"
    TOURNAMENT_DELETED = "tournament.deleted"

    # Team events
    TEAM_REGISTERED = "team.registered"
    TEAM_DELETED = "team.deleted"

    # Group stage events
    GROUP_STAGE_CREATED = "group_stage.created"
    GROUP_STAGE_DELETED = "group_stage.deleted"
    GROUP_ASSIGNMENTS_SAVED = "group_stage.assignments_saved"
    GROUP_TEAM_REMOVED = "group_stage.team_removed"

    # User administration
    USER_ROLE_CHANGED = "user.role_changed"
    USER_DEACTIVATED = "user.deactivated"
    USER_REACTIVATED = "user.reactivated"


@dataclass
class Event:
    type: EventType
    tournament_id: str = None
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "tournament_id": self.tournament_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        known = {e.value for e in EventType}
        return cls(
            type=EventType(data["type"]) if data["type"] in known else data["type"],
            tournament_id=data.get("tournament_id"),
            timestamp=data.get("timestamp"),
            data=data.get("data", {})
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls.from_dict(json.loads(json_str))


def team_registered_event(tournament_id: str, team_id: int, category: str) -> Event:
    return Event(
        type=EventType.TEAM_REGISTERED,
        tournament_id=tournament_id,
        data={
            "team_id": team_id,
            "category": category
        }
    )


def group_stage_created_event(tournament_id: str, group_stage_id: int, name: str) -> Event:
    return Event(
        type=EventType.GROUP_STAGE_CREATED,
        tournament_id=tournament_id,
        data={
            "group_stage_id": group_stage_id,
            "name": name
        }
    )


def assignments_saved_event(tournament_id: str, group_stage_id: int, updated_at: str,
                            assigned_count: int) -> Event:
    return Event(
        type=EventType.GROUP_ASSIGNMENTS_SAVED,
        tournament_id=tournament_id,
        data={
            "group_stage_id": group_stage_id,
            "updated_at": updated_at,
            "assigned_count": assigned_count
        }
    )


def team_removed_event(tournament_id: str, group_stage_id: int, team_id: int, updated_at: str) -> Event:
    return Event(
        type=EventType.GROUP_TEAM_REMOVED,
        tournament_id=tournament_id,
        data={
            "group_stage_id": group_stage_id,
            "team_id": team_id,
            "updated_at": updated_at
        }
    )


def user_event(event_type: EventType, user_id: int, performed_by: int,
               previous_value: str = None, new_value: str = None) -> Event:
    return Event(
        type=event_type,
        data={
            "user_id": user_id,
            "performed_by": performed_by,
            "previous_value": previous_value,
            "new_value": new_value
        }
    )
