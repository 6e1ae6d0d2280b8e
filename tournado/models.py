from datetime import datetime, timedelta, timezone
from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from cryptography.fernet import Fernet
from werkzeug.security import generate_password_hash, check_password_hash
import base64
import hashlib

db = SQLAlchemy()


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def next_version(previous: datetime = None) -> datetime:
    """A fresh updated_at that always sorts after the previous one."""
    now = utcnow()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def get_encryption_key() -> bytes:
    """Derive the Fernet key for contact details from app config."""
    secret = current_app.config.get('PII_ENCRYPTION_KEY') or current_app.config['SECRET_KEY']
    key = hashlib.sha256(secret.encode()).digest()
    return base64.urlsafe_b64encode(key)


def encrypt_value(value: str) -> str:
    f = Fernet(get_encryption_key())
    return f.encrypt(value.encode()).decode()


def decrypt_value(encrypted: str) -> str:
    f = Fernet(get_encryption_key())
    return f.decrypt(encrypted.encode()).decode()


def _iso(value):
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    first_name = db.Column(db.String(100), nullable=False, default='')
    last_name = db.Column(db.String(100), nullable=False, default='')
    display_name = db.Column(db.String(100), nullable=True)
    role = db.Column(db.String(20), nullable=False, default='PUBLIC', index=True)
    active = db.Column(db.Boolean, nullable=False, default=True)
    password_hash = db.Column(db.String(256), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    audit_logs = db.relationship(
        'UserAuditLog',
        back_populates='user',
        cascade='all, delete-orphan',
        foreign_keys='UserAuditLog.user_id',
        order_by='UserAuditLog.created_at.desc()'
    )

    @property
    def is_active(self):
        """Flask-Login refuses sessions for deactivated accounts."""
        return bool(self.active)

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'display_name': self.display_name,
            'role': self.role,
            'active': self.active,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class UserAuditLog(db.Model):
    __tablename__ = 'user_audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    performed_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    action = db.Column(db.String(50), nullable=False)  # role_change, display_name_change, deactivate, reactivate
    previous_value = db.Column(db.String(255), nullable=True)
    new_value = db.Column(db.String(255), nullable=True)
    reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship('User', back_populates='audit_logs', foreign_keys=[user_id])

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'performed_by': self.performed_by,
            'action': self.action,
            'previous_value': self.previous_value,
            'new_value': self.new_value,
            'reason': self.reason,
            'created_at': _iso(self.created_at),
        }


class TeamLeader(db.Model):
    __tablename__ = 'team_leaders'

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False, default='')
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    phone_encrypted = db.Column(db.String(500), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    teams = db.relationship('Team', back_populates='team_leader')

    @property
    def phone(self) -> str:
        return decrypt_value(self.phone_encrypted)

    @phone.setter
    def phone(self, value: str):
        self.phone_encrypted = encrypt_value(value)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self, reveal_contact: bool = False):
        return {
            'id': self.id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'email': self.email if reveal_contact else None,
            'phone': self.phone if reveal_contact else None,
        }


class Tournament(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.String(50), unique=True, nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    location = db.Column(db.String(200), nullable=False)
    divisions = db.Column(db.JSON, nullable=False, default=list)
    categories = db.Column(db.JSON, nullable=False, default=list)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    teams = db.relationship('Team', back_populates='tournament', cascade='all, delete-orphan')
    group_stages = db.relationship('GroupStage', back_populates='tournament', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'tournament_id': self.tournament_id,
            'name': self.name,
            'location': self.location,
            'divisions': list(self.divisions or []),
            'categories': list(self.categories or []),
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'team_count': len(self.teams),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Team(db.Model):
    __tablename__ = 'teams'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    club_name = db.Column(db.String(100), nullable=False)
    name = db.Column(db.String(50), nullable=False)
    division = db.Column(db.String(50), nullable=False)
    category = db.Column(db.String(50), nullable=False, index=True)
    team_leader_id = db.Column(db.Integer, db.ForeignKey('team_leaders.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    tournament = db.relationship('Tournament', back_populates='teams')
    team_leader = db.relationship('TeamLeader', back_populates='teams')
    group_slot = db.relationship('GroupSlot', back_populates='team', uselist=False)

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament.tournament_id if self.tournament else None,
            'club_name': self.club_name,
            'name': self.name,
            'division': self.division,
            'category': self.category,
            'team_leader': self.team_leader.to_dict() if self.team_leader else None,
            'group_stage_id': self.group_slot.group_stage_id if self.group_slot else None,
            'created_at': _iso(self.created_at),
        }

    def to_slot_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'club_name': self.club_name,
            'category': self.category,
        }


class GroupStage(db.Model):
    __tablename__ = 'group_stages'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    categories = db.Column(db.JSON, nullable=False, default=list)
    config_groups = db.Column(db.Integer, nullable=False)
    config_slots = db.Column(db.Integer, nullable=False)
    auto_fill = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow)

    tournament = db.relationship('Tournament', back_populates='group_stages')
    groups = db.relationship(
        'Group',
        back_populates='group_stage',
        cascade='all, delete-orphan',
        order_by='Group.order'
    )
    slots = db.relationship('GroupSlot', back_populates='group_stage', cascade='all, delete-orphan')

    @property
    def total_slots(self) -> int:
        return self.config_groups * self.config_slots

    @property
    def reserve_slots(self):
        return sorted((s for s in self.slots if s.group_id is None), key=lambda s: s.id)

    def to_summary_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament.tournament_id,
            'name': self.name,
            'categories': list(self.categories or []),
            'config_groups': self.config_groups,
            'config_slots': self.config_slots,
            'auto_fill': self.auto_fill,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }

    def to_dict(self):
        data = self.to_summary_dict()
        data['groups'] = [g.to_dict() for g in self.groups]
        data['reserve_slots'] = [s.to_dict() for s in self.reserve_slots]
        return data


class Group(db.Model):
    __tablename__ = 'groups'

    id = db.Column(db.Integer, primary_key=True)
    group_stage_id = db.Column(db.Integer, db.ForeignKey('group_stages.id'), nullable=False, index=True)
    name = db.Column(db.String(50), nullable=False)
    order = db.Column(db.Integer, nullable=False)

    group_stage = db.relationship('GroupStage', back_populates='groups')
    slots = db.relationship(
        'GroupSlot',
        back_populates='group',
        order_by='GroupSlot.slot_index',
        passive_deletes=True
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'order': self.order,
            'slots': [s.to_dict() for s in self.slots],
        }


class GroupSlot(db.Model):
    """A position in a group, or a reserve entry when group_id is NULL."""
    __tablename__ = 'group_slots'

    id = db.Column(db.Integer, primary_key=True)
    group_stage_id = db.Column(db.Integer, db.ForeignKey('group_stages.id'), nullable=False, index=True)
    group_id = db.Column(db.Integer, db.ForeignKey('groups.id', ondelete='CASCADE'), nullable=True, index=True)
    slot_index = db.Column(db.Integer, nullable=False, default=0)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=True, unique=True)

    group_stage = db.relationship('GroupStage', back_populates='slots')
    group = db.relationship('Group', back_populates='slots')
    team = db.relationship('Team', back_populates='group_slot')

    __table_args__ = (
        db.UniqueConstraint('group_id', 'slot_index', name='unique_group_slot_position'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'slot_index': self.slot_index,
            'team': self.team.to_slot_dict() if self.team else None,
        }
