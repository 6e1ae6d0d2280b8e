import logging

from flask import Blueprint, request, jsonify, current_app
from flask_login import current_user

from ..app import client_ip
from ..rbac import permission_required

logger = logging.getLogger(__name__)

bp = Blueprint('users', __name__, url_prefix='/api/v1/users')

# Actions an admin may not perform on their own account
SELF_GUARDED = {
    'updateRole': 'You cannot change your own role',
    'deactivate': 'You cannot deactivate your own account',
    'reactivate': 'You cannot reactivate your own account',
}


@bp.route('', methods=['GET'])
@permission_required('users:manage')
def list_users():
    result = current_app.users.list_users(
        page=request.args.get('page', 1, type=int),
        per_page=min(request.args.get('per_page', 20, type=int), 100),
        search=request.args.get('search') or None,
        role=request.args.get('role') or None
    )
    return jsonify({
        'users': [u.to_dict() for u in result['users']],
        'total': result['total'],
        'page': result['page'],
        'per_page': result['per_page'],
        'total_pages': result['total_pages'],
        'active_count': current_app.users.get_active_users_count()
    })


@bp.route('/<int:user_id>', methods=['GET'])
@permission_required('users:manage')
def get_user(user_id: int):
    user = current_app.users.require_user(user_id)
    return jsonify(user.to_dict())


@bp.route('/<int:user_id>', methods=['POST'])
@permission_required('users:manage')
def update_user(user_id: int):
    """Role, display name and activation changes, selected by intent."""
    current_app.rate_limiter.check_role_based('users:update', current_user, client_ip())

    data = request.get_json(silent=True) or request.form.to_dict()
    intent = data.get('intent')
    reason = (data.get('reason') or '').strip() or None

    if intent in SELF_GUARDED and user_id == current_user.id:
        return jsonify({'error': SELF_GUARDED[intent]}), 400

    users = current_app.users
    if intent == 'updateRole':
        if not data.get('role'):
            return jsonify({'error': 'Role is required'}), 400
        user = users.update_user_role(user_id, data['role'], current_user.id, reason)
    elif intent == 'updateDisplayName':
        user = users.update_user_display_name(user_id, data.get('display_name'), current_user.id)
    elif intent == 'deactivate':
        user = users.deactivate_user(user_id, current_user.id, reason)
    elif intent == 'reactivate':
        user = users.reactivate_user(user_id, current_user.id, reason)
    else:
        logger.warning(f"Unknown user intent: {intent!r}")
        return jsonify({'error': 'Unknown intent'}), 400

    return jsonify({'success': True, 'user': user.to_dict()})


@bp.route('/<int:user_id>/audit-log', methods=['GET'])
@permission_required('users:manage')
def audit_log(user_id: int):
    entries = current_app.users.get_audit_log(user_id, limit=request.args.get('limit', 50, type=int))
    return jsonify({
        'entries': [e.to_dict() for e in entries],
        'count': len(entries)
    })
