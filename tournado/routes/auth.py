from flask import Blueprint, request, jsonify, current_app
from flask_login import login_user, logout_user, login_required, current_user

from ..app import client_ip
from ..errors import ValidationError

bp = Blueprint('auth', __name__, url_prefix='/api/v1/auth')

MIN_PASSWORD_LENGTH = 8


@bp.route('/signup', methods=['POST'])
def signup():
    """Create a PUBLIC account and sign it in."""
    current_app.rate_limiter.check_role_based('user-registration', None, client_ip())

    data = request.get_json(silent=True) or {}
    password = data.get('password') or ''
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError('Invalid user data',
                              {'password': f'Password must be at least {MIN_PASSWORD_LENGTH} characters'})

    user = current_app.users.create_user(
        email=data.get('email'),
        password=password,
        display_name=(data.get('display_name') or '').strip() or None
    )
    login_user(user)
    return jsonify({'message': 'Account created', 'user': user.to_dict()}), 201


@bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    user = current_app.users.get_user_by_email(data.get('email'))

    if not user or not user.check_password(data.get('password') or ''):
        return jsonify({'error': 'Invalid email or password'}), 401
    if not user.active:
        return jsonify({'error': 'Account is deactivated'}), 403

    login_user(user, remember=bool(data.get('remember')))
    return jsonify({'message': 'Logged in', 'user': user.to_dict()})


@bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'message': 'Logged out'})


@bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify({'user': current_user.to_dict()})
