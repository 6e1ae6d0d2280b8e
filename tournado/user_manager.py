import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import or_

from .models import db, User, UserAuditLog
from .errors import ValidationError, NotFoundError
from .rbac import Role, parse_role
from shared.events import EventType, user_event
from shared.pubsub import EventPublisher

logger = logging.getLogger(__name__)


def _require_role(value) -> Role:
    role = parse_role(value)
    if role is None:
        raise ValidationError(f"Invalid role: {value}")
    return role


def _audit_value(value) -> str:
    if value is None:
        return ''
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


class UserManager:
    """
    User administration. Every change is written together with its audit
    entry, and setting a value a user already has changes nothing.
    """

    def __init__(self, events: EventPublisher = None):
        self.events = events or EventPublisher()

    def create_user(self, email: str, password: str = None, display_name: str = None,
                    role: str = Role.PUBLIC.value) -> User:
        email = (email or '').strip().lower()
        if not email or '@' not in email:
            raise ValidationError('Invalid user data', {'email': 'A valid email is required'})
        if self.get_user_by_email(email):
            raise ValidationError('Invalid user data', {'email': 'Email is already registered'})

        first_name, _, last_name = (display_name or email.split('@')[0]).strip().partition(' ')
        user = User(
            email=email,
            first_name=first_name or 'User',
            last_name=last_name.strip(),
            display_name=display_name or None,
            role=_require_role(role).value
        )
        if password:
            user.set_password(password)

        db.session.add(user)
        db.session.commit()

        logger.info(f"Created user {user.id} with role {user.role}")
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        return db.session.get(User, user_id)

    def require_user(self, user_id: int) -> User:
        user = self.get_user(user_id)
        if not user:
            raise NotFoundError('User not found')
        return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        return User.query.filter_by(email=(email or '').strip().lower()).first()

    def list_users(self, page: int = 1, per_page: int = 20, search: str = None,
                   role: str = None) -> Dict[str, Any]:
        query = User.query
        if role:
            query = query.filter_by(role=_require_role(role).value)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                User.email.ilike(pattern),
                User.display_name.ilike(pattern),
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern)
            ))

        page = max(page, 1)
        total = query.count()
        users = (query.order_by(User.created_at.desc(), User.id.desc())
                 .offset((page - 1) * per_page)
                 .limit(per_page)
                 .all())

        return {
            'users': users,
            'total': total,
            'page': page,
            'per_page': per_page,
            'total_pages': (total + per_page - 1) // per_page,
        }

    def get_users_by_role(self, role: str) -> List[User]:
        return (User.query
                .filter_by(role=_require_role(role).value)
                .order_by(User.created_at.desc())
                .all())

    def get_active_users_count(self) -> int:
        return User.query.filter_by(active=True).count()

    def get_audit_log(self, user_id: int, limit: int = 50) -> List[UserAuditLog]:
        self.require_user(user_id)
        return (UserAuditLog.query
                .filter_by(user_id=user_id)
                .order_by(UserAuditLog.created_at.desc(), UserAuditLog.id.desc())
                .limit(limit)
                .all())

    # ==================== Audited changes ====================

    def _apply_change(self, user_id: int, performed_by: int, action: str, attribute: str,
                      new_value, reason: str = None, event_type: EventType = None) -> User:
        try:
            user = User.query.filter_by(id=user_id).with_for_update().first()
            if not user:
                raise NotFoundError('User not found')

            previous = getattr(user, attribute)
            if previous == new_value:
                return user

            setattr(user, attribute, new_value)
            db.session.add(UserAuditLog(
                user_id=user.id,
                performed_by=performed_by,
                action=action,
                previous_value=_audit_value(previous),
                new_value=_audit_value(new_value),
                reason=reason
            ))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"User {user_id}: {action} {previous!r} -> {new_value!r} by {performed_by}")
        if event_type:
            self.events.publish(user_event(event_type, user_id, performed_by,
                                         _audit_value(previous), _audit_value(new_value)))
        return user

    def update_user_role(self, user_id: int, new_role: str, performed_by: int, reason: str = None) -> User:
        role = _require_role(new_role)
        return self._apply_change(user_id, performed_by, 'role_change', 'role', role.value,
                                  reason, EventType.USER_ROLE_CHANGED)

    def update_user_display_name(self, user_id: int, display_name: str, performed_by: int) -> User:
        display_name = (display_name or '').strip()
        if not display_name:
            raise ValidationError('Display name cannot be empty')
        return self._apply_change(user_id, performed_by, 'display_name_change', 'display_name', display_name)

    def deactivate_user(self, user_id: int, performed_by: int, reason: str = None) -> User:
        return self._apply_change(user_id, performed_by, 'deactivate', 'active', False,
                                  reason, EventType.USER_DEACTIVATED)

    def reactivate_user(self, user_id: int, performed_by: int, reason: str = None) -> User:
        return self._apply_change(user_id, performed_by, 'reactivate', 'active', True,
                                  reason, EventType.USER_REACTIVATED)
