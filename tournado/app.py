import os
import logging

import redis
from flask import Flask, request, jsonify, Response
from flask_login import LoginManager, current_user
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError

from .config import config
from .models import db, User
from .errors import TournadoError, RateLimitError
from .rbac import permission_required, has_permission
from .rate_limiter import RateLimiter
from .tournament_registry import TournamentRegistry, DIVISIONS, CATEGORIES
from .team_registry import TeamRegistry
from .group_manager import GroupStageManager
from .user_manager import UserManager
from .email_sender import EmailSender
from shared.pubsub import EventPublisher, tournament_channel

logger = logging.getLogger(__name__)

login_manager = LoginManager()
migrate = Migrate()


def client_ip() -> str:
    forwarded = request.headers.get('X-Forwarded-For', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.remote_addr or 'unknown'


def create_app(config_name: str = None) -> Flask:
    """Application factory for the Tournado API."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__, template_folder='templates')
    app.config.from_object(config[config_name])

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    # Redis is optional; without it rate limiting and event fan-out are off
    app.redis = redis.from_url(app.config['REDIS_URL'], decode_responses=True) if app.config['REDIS_URL'] else None

    # Initialize services
    app.events = EventPublisher(app.redis)
    app.rate_limiter = RateLimiter(app.redis, enabled=app.config['RATE_LIMIT_ENABLED'])
    app.mailer = EmailSender()
    app.tournaments = TournamentRegistry(app.events)
    app.teams = TeamRegistry(app.tournaments, app.mailer, app.events)
    app.groups = GroupStageManager(app.tournaments, app.events)
    app.users = UserManager(app.events)

    # Create tables
    with app.app_context():
        db.create_all()

    register_error_handlers(app)
    register_api_routes(app)

    from .routes import auth, groups, users
    app.register_blueprint(auth.bp)
    app.register_blueprint(groups.bp)
    app.register_blueprint(users.bp)

    logger.info(f"Tournado started with '{config_name}' config "
                f"(redis {'on' if app.redis else 'off'}, rate limiting {'on' if app.rate_limiter.active else 'off'})")
    return app


@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'error': 'Authentication required'}), 401


def register_error_handlers(app: Flask):

    @app.errorhandler(TournadoError)
    def handle_tournado_error(error: TournadoError):
        response = jsonify(error.to_dict())
        response.status_code = error.status_code
        if isinstance(error, RateLimitError):
            response.headers['Retry-After'] = str(error.retry_after)
        return response

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405


def register_api_routes(app: Flask):
    """Register tournament, team, event and health routes."""

    # ==================== Tournament CRUD ====================

    @app.route('/api/v1/tournaments', methods=['GET'])
    def api_list_tournaments():
        """List tournaments, newest start date first."""
        limit = request.args.get('limit', 50, type=int)
        offset = request.args.get('offset', 0, type=int)

        tournaments = app.tournaments.list_tournaments(limit=limit, offset=offset)

        return jsonify({
            'tournaments': [t.to_dict() for t in tournaments],
            'count': len(tournaments),
            'limit': limit,
            'offset': offset
        })

    @app.route('/api/v1/tournaments/options', methods=['GET'])
    def api_tournament_options():
        """Divisions and categories a tournament can offer."""
        return jsonify({'divisions': DIVISIONS, 'categories': CATEGORIES})

    @app.route('/api/v1/tournaments', methods=['POST'])
    @permission_required('tournaments:create')
    def api_create_tournament():
        tournament = app.tournaments.create_tournament(request.get_json(silent=True) or {})
        return jsonify({
            'message': 'Tournament created',
            'tournament': tournament.to_dict()
        }), 201

    @app.route('/api/v1/tournaments/<tournament_id>', methods=['GET'])
    def api_get_tournament(tournament_id: str):
        tournament = app.tournaments.require_tournament(tournament_id)
        return jsonify(tournament.to_dict())

    @app.route('/api/v1/tournaments/<tournament_id>', methods=['PUT'])
    @permission_required('tournaments:edit')
    def api_update_tournament(tournament_id: str):
        tournament = app.tournaments.update_tournament(tournament_id, request.get_json(silent=True) or {})
        return jsonify({
            'message': 'Tournament updated',
            'tournament': tournament.to_dict()
        })

    @app.route('/api/v1/tournaments/<tournament_id>', methods=['DELETE'])
    @permission_required('tournaments:delete')
    def api_delete_tournament(tournament_id: str):
        app.tournaments.delete_tournament(tournament_id)
        return jsonify({'message': 'Tournament deleted'})

    # ==================== Team Registration ====================

    @app.route('/api/v1/tournaments/<tournament_id>/teams', methods=['GET'])
    def api_list_teams(tournament_id: str):
        """List teams in a tournament, optionally for one category."""
        teams = app.teams.list_teams(tournament_id, category=request.args.get('category'))
        return jsonify({
            'teams': [t.to_dict() for t in teams],
            'count': len(teams)
        })

    @app.route('/api/v1/tournaments/<tournament_id>/teams', methods=['POST'])
    def api_register_team(tournament_id: str):
        """Public team registration."""
        app.rate_limiter.check_role_based('team-registration', current_user, client_ip())

        team = app.teams.create_team_from_form_data(tournament_id, request.get_json(silent=True) or {})
        return jsonify({
            'message': 'Team registered',
            'team': team.to_dict()
        }), 201

    @app.route('/api/v1/teams/<int:team_id>', methods=['GET'])
    def api_get_team(team_id: int):
        team = app.teams.require_team(team_id)
        data = team.to_dict()
        # leader contact details only for staff that manages teams
        if has_permission(current_user, 'teams:manage'):
            data['team_leader'] = team.team_leader.to_dict(reveal_contact=True)
        return jsonify(data)

    @app.route('/api/v1/teams/<int:team_id>', methods=['DELETE'])
    @permission_required('teams:delete')
    def api_delete_team(team_id: int):
        app.teams.delete_team(team_id)
        return jsonify({'message': 'Team deleted'})

    # ==================== Real-time Events (SSE) ====================

    @app.route('/api/v1/events/tournaments/<tournament_id>')
    def api_tournament_events(tournament_id: str):
        """SSE stream of a tournament's events."""
        if not app.redis:
            return jsonify({'error': 'Event streaming is not available'}), 503

        app.tournaments.require_tournament(tournament_id)
        redis_url = app.config['REDIS_URL']

        def generate():
            # Dedicated connection without a read timeout for the long-lived stream
            sse_redis = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=None,
                socket_connect_timeout=5
            )
            pubsub = sse_redis.pubsub(ignore_subscribe_messages=True)
            pubsub.subscribe(tournament_channel(tournament_id))

            yield f"data: {{\"type\":\"connected\",\"tournament_id\":\"{tournament_id}\"}}\n\n"

            try:
                while True:
                    message = pubsub.get_message(timeout=30)
                    if message and message['type'] == 'message':
                        yield f"data: {message['data']}\n\n"
                    else:
                        yield ": keepalive\n\n"
            finally:
                pubsub.close()

        return Response(generate(), mimetype='text/event-stream', headers={
            'Cache-Control': 'no-cache',
            'X-Accel-Buffering': 'no'
        })

    @app.route('/api/v1/tournaments/<tournament_id>/events', methods=['GET'])
    def api_tournament_event_history(tournament_id: str):
        """Recent events of a tournament, newest first, for clients catching up after a reconnect."""
        app.tournaments.require_tournament(tournament_id)
        count = min(max(request.args.get('limit', 50, type=int), 1), EventPublisher.LOG_SIZE)

        events = app.events.get_recent_events(tournament_id, count=count)
        return jsonify({
            'events': [e.to_dict() for e in events],
            'count': len(events)
        })

    # ==================== Health Check ====================

    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        redis_status = 'disabled'
        if app.redis:
            try:
                app.redis.ping()
                redis_status = 'connected'
            except redis.RedisError:
                redis_status = 'disconnected'

        try:
            db.session.execute(db.text('SELECT 1'))
            db_ok = True
        except SQLAlchemyError:
            db_ok = False

        healthy = db_ok and redis_status != 'disconnected'
        return jsonify({
            'status': 'healthy' if healthy else 'unhealthy',
            'redis': redis_status,
            'database': 'connected' if db_ok else 'disconnected'
        }), 200 if healthy else 503
