"""
Pytest configuration and fixtures for Tournado tests.

Requests through the test client must not run inside an app context held by
the test, otherwise Flask-Login's cached user and the SQLAlchemy session leak
between requests. Fixtures used by HTTP tests therefore create their rows in
a short-lived context and hand back plain ids.
"""
import os
import sys
from datetime import date

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from tournado.app import create_app
from tournado.models import db, User, Tournament, Team, TeamLeader

PASSWORD = 'correct-horse-battery'


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture(autouse=True)
def clean_db(app):
    """Empty every table and the email outbox before each test."""
    with app.app_context():
        db.session.remove()
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
    app.mailer.outbox.clear()
    yield


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Database session inside an app context, for manager-level tests."""
    with app.app_context():
        yield db.session
        db.session.rollback()


# ==================== Data helpers ====================

def make_tournament(tournament_id='t_test0001', categories=None, divisions=None, **kwargs):
    tournament = Tournament(
        tournament_id=tournament_id,
        name=kwargs.get('name', 'Spring Cup'),
        location=kwargs.get('location', 'Amsterdam'),
        divisions=divisions or ['FIRST_DIVISION', 'SECOND_DIVISION'],
        categories=categories or ['JO10', 'JO12', 'MO12'],
        start_date=kwargs.get('start_date', date(2026, 5, 1)),
        end_date=kwargs.get('end_date', date(2026, 5, 2))
    )
    db.session.add(tournament)
    db.session.commit()
    return tournament


def make_teams(tournament, count, category='JO10', prefix='Club'):
    leader = TeamLeader.query.filter_by(email='leader@example.com').first()
    if leader is None:
        leader = TeamLeader(first_name='Jan', last_name='Jansen', email='leader@example.com')
        leader.phone = '+31 6 12345678'
        db.session.add(leader)

    teams = []
    for i in range(count):
        team = Team(
            tournament=tournament,
            club_name=f'{prefix} {i + 1:02d}',
            name=f'{category}-{i + 1}',
            division='FIRST_DIVISION',
            category=category,
            team_leader=leader
        )
        db.session.add(team)
        teams.append(team)
    db.session.commit()
    return teams


def make_user(email, role='PUBLIC', password=PASSWORD, active=True):
    user = User(email=email, first_name=email.split('@')[0], last_name='', role=role, active=active)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


def login(client, email, password=PASSWORD):
    return client.post('/api/v1/auth/login', json={'email': email, 'password': password})


# ==================== HTTP fixtures (plain values) ====================

@pytest.fixture
def tournament_id(app):
    with app.app_context():
        return make_tournament().tournament_id


@pytest.fixture
def team_ids(app, tournament_id):
    with app.app_context():
        tournament = Tournament.query.filter_by(tournament_id=tournament_id).first()
        return [t.id for t in make_teams(tournament, 6)]


@pytest.fixture
def admin_email(app):
    with app.app_context():
        return make_user('admin@example.com', role='ADMIN').email


@pytest.fixture
def manager_email(app):
    with app.app_context():
        return make_user('manager@example.com', role='MANAGER').email


@pytest.fixture
def public_email(app):
    with app.app_context():
        return make_user('visitor@example.com', role='PUBLIC').email


@pytest.fixture
def admin_client(client, admin_email):
    login(client, admin_email)
    return client


@pytest.fixture
def manager_client(client, manager_email):
    login(client, manager_email)
    return client


@pytest.fixture
def mock_events(mocker):
    """Event publisher double that records published events."""
    return mocker.MagicMock()
