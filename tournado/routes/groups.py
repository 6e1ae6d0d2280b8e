import logging

from flask import Blueprint, request, jsonify, current_app
from flask_login import current_user

from ..app import client_ip
from ..errors import ValidationError, NotFoundError, ConflictError
from ..group_manager import parse_assignments
from ..rbac import permission_required

logger = logging.getLogger(__name__)

bp = Blueprint('groups', __name__)


def _request_data() -> dict:
    """Form posts and JSON bodies are both accepted."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _int_or_none(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ==================== Assignment resource action ====================

@bp.route('/api/v1/resources/group-assignments', methods=['POST'])
@permission_required('groups:manage')
def group_assignments_action():
    """Save, cancel or delete for the group assignment editor, selected by intent."""
    current_app.rate_limiter.check_role_based('group-assignments:batch-save', current_user, client_ip())

    data = _request_data()
    intent = data.get('intent')

    if intent == 'save':
        return _save_assignments(data)
    if intent == 'cancel':
        return _cancel_edits(data)
    if intent == 'delete':
        return _delete_team(data)

    logger.warning(f"Unknown group assignment intent: {intent!r}")
    return jsonify({'success': False, 'error': 'Unknown intent'}), 400


def _save_assignments(data: dict):
    group_stage_id = _int_or_none(data.get('groupStageId'))
    tournament_id = data.get('tournamentId')
    updated_at = data.get('updatedAt')
    raw_assignments = data.get('assignments')

    if not group_stage_id or not tournament_id or not updated_at or raw_assignments in (None, ''):
        return jsonify({'success': False, 'error': 'Missing required fields'}), 400

    try:
        assignments = parse_assignments(raw_assignments)
    except ValidationError:
        return jsonify({'success': False, 'error': 'Invalid assignments format'}), 400

    try:
        stage = current_app.groups.batch_save_group_assignments(
            group_stage_id, tournament_id, assignments, updated_at
        )
    except ConflictError as e:
        return jsonify({'success': False, 'conflict': True, 'error': e.message,
                        'updatedAt': e.server_updated_at}), 409
    except NotFoundError:
        return jsonify({'success': False, 'error': 'Group stage not found'}), 404
    except ValidationError as e:
        return jsonify({'success': False, 'error': e.message}), 400

    return jsonify({'success': True, 'updatedAt': stage.updated_at.isoformat()})


def _cancel_edits(data: dict):
    group_stage_id = _int_or_none(data.get('groupStageId'))
    if not group_stage_id:
        return jsonify({'success': False}), 400

    try:
        snapshot = current_app.groups.get_assignment_snapshot(group_stage_id)
    except NotFoundError:
        return jsonify({'success': False}), 404

    return jsonify({'success': True, 'snapshot': snapshot.to_dict()})


def _delete_team(data: dict):
    group_stage_id = _int_or_none(data.get('groupStageId'))
    team_id = _int_or_none(data.get('teamId'))
    if not group_stage_id or not team_id:
        return jsonify({'success': False, 'error': 'Missing required fields'}), 400

    try:
        current_app.groups.delete_team_from_group_stage(group_stage_id, team_id)
    except NotFoundError as e:
        return jsonify({'success': False, 'error': e.message}), 404

    return jsonify({'success': True})


# ==================== Group stages (pools) ====================

@bp.route('/api/v1/groups', methods=['GET'])
@permission_required('groups:manage')
def list_groups():
    tournament_id = request.args.get('tournament')
    if not tournament_id:
        return jsonify({'error': 'Missing required parameter', 'parameter': 'tournament'}), 400

    stages = current_app.groups.get_tournament_group_stages(tournament_id)
    return jsonify({
        'group_stages': [s.to_summary_dict() for s in stages],
        'count': len(stages)
    })


@bp.route('/api/v1/tournaments/<tournament_id>/group-stages', methods=['GET'])
@bp.route('/api/v1/tournaments/<tournament_id>/pools', methods=['GET'])
@permission_required('groups:manage')
def list_group_stages(tournament_id: str):
    stages = current_app.groups.get_tournament_group_stages(tournament_id)
    return jsonify({
        'group_stages': [s.to_summary_dict() for s in stages],
        'count': len(stages)
    })


@bp.route('/api/v1/tournaments/<tournament_id>/group-stages', methods=['POST'])
@bp.route('/api/v1/tournaments/<tournament_id>/pools', methods=['POST'])
@permission_required('groups:manage')
def create_group_stage(tournament_id: str):
    stage = current_app.groups.create_group_stage(tournament_id, request.get_json(silent=True) or {})
    return jsonify({
        'message': 'Group stage created',
        'group_stage': stage.to_dict()
    }), 201


@bp.route('/api/v1/group-stages/<int:group_stage_id>', methods=['GET'])
@bp.route('/api/v1/pools/<int:group_stage_id>', methods=['GET'])
@permission_required('groups:manage')
def get_group_stage(group_stage_id: int):
    stage = current_app.groups.get_group_stage_with_details(group_stage_id)
    if not stage:
        raise NotFoundError('Group stage not found')
    return jsonify(stage.to_dict())


@bp.route('/api/v1/group-stages/<int:group_stage_id>', methods=['DELETE'])
@bp.route('/api/v1/pools/<int:group_stage_id>', methods=['DELETE'])
@permission_required('groups:manage')
def delete_group_stage(group_stage_id: int):
    current_app.groups.delete_group_stage(group_stage_id)
    return jsonify({'message': 'Group stage deleted'})


@bp.route('/api/v1/group-stages/<int:group_stage_id>/snapshot', methods=['GET'])
@bp.route('/api/v1/pools/<int:group_stage_id>/snapshot', methods=['GET'])
@permission_required('groups:manage')
def get_snapshot(group_stage_id: int):
    snapshot = current_app.groups.get_assignment_snapshot(group_stage_id)
    return jsonify(snapshot.to_dict())


@bp.route('/api/v1/group-stages/<int:group_stage_id>/operations', methods=['POST'])
@bp.route('/api/v1/pools/<int:group_stage_id>/operations', methods=['POST'])
@permission_required('groups:manage')
def apply_operation(group_stage_id: int):
    """Apply one assign, swap, reserve or remove edit."""
    current_app.rate_limiter.check_role_based('group-assignments:operation', current_user, client_ip())

    data = request.get_json(silent=True) or {}
    operation = data.get('operation')
    updated_at = data.get('updated_at')
    if not isinstance(operation, dict) or not updated_at:
        raise ValidationError('operation and updated_at are required')

    current_app.groups.apply_operation(group_stage_id, operation, updated_at)
    snapshot = current_app.groups.get_assignment_snapshot(group_stage_id)
    return jsonify({
        'message': 'Operation applied',
        'snapshot': snapshot.to_dict()
    })


@bp.route('/api/v1/tournaments/<tournament_id>/unassigned-teams', methods=['GET'])
@permission_required('groups:manage')
def unassigned_teams(tournament_id: str):
    """Teams holding no slot in any group stage."""
    categories = request.args.getlist('category')
    if not categories:
        categories = list(current_app.tournaments.require_tournament(tournament_id).categories or [])

    teams = current_app.groups.get_teams_by_categories(tournament_id, categories)
    return jsonify({
        'teams': [t.to_slot_dict() for t in teams],
        'count': len(teams)
    })
