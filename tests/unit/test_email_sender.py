"""
Unit tests for EmailSender and address masking.
"""
from types import SimpleNamespace

import pytest
import requests

from tournado.email_sender import EmailSender, mask_email, mask_emails
from tournado.errors import EmailError


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def team():
    leader = SimpleNamespace(full_name='Jan Jansen', email='jan@example.com')
    return SimpleNamespace(id=42, name='JO10-1', team_leader=leader)


@pytest.fixture
def tournament():
    return SimpleNamespace(name='Spring Cup')


class TestMasking:
    """Tests for mask_email and mask_emails."""

    def test_mask_long_name(self):
        assert mask_email('john@example.com') == 'jo***@example.com'

    def test_mask_short_name(self):
        assert mask_email('ab@test.org') == '**@test.org'

    def test_mask_invalid(self):
        assert mask_email('not-an-email') == '***@***'
        assert mask_email(None) == '***@***'

    def test_mask_list(self):
        assert mask_emails(['john@example.com', 'ab@test.org']) == 'jo***@example.com, **@test.org'


class TestSuppressedSend:
    """Testing config keeps mail in the outbox."""

    def test_payload_in_outbox(self, app_ctx, team, tournament):
        sender = EmailSender()
        payload = sender.send_team_registered(team, tournament)

        assert sender.outbox == [payload]
        assert payload['to'] == 'jan@example.com'
        assert payload['from'] == 'tournado@example.com'
        assert payload['subject'] == 'Team JO10-1 registered for Spring Cup'
        assert 'Jan Jansen' in payload['html']
        assert 'http://localhost:5000/teams/42' in payload['html']

    def test_missing_sender_address(self, app_ctx, team, tournament, monkeypatch):
        monkeypatch.setitem(app_ctx.config, 'EMAIL_FROM', '')
        with pytest.raises(EmailError, match='EMAIL_FROM'):
            EmailSender().send_team_registered(team, tournament)

    def test_missing_team_leader(self, app_ctx, tournament):
        with pytest.raises(EmailError, match='Team leader not found'):
            EmailSender().send_team_registered(SimpleNamespace(id=1, name='x', team_leader=None), tournament)


class TestResendDelivery:
    """Delivery through the Resend HTTP API."""

    @pytest.fixture
    def live_config(self, app_ctx, monkeypatch):
        monkeypatch.setitem(app_ctx.config, 'EMAIL_SUPPRESS_SEND', False)
        return app_ctx.config

    def test_posts_to_resend(self, live_config, team, tournament, mocker):
        session = mocker.MagicMock()
        sender = EmailSender(session=session)

        sender.send_team_registered(team, tournament)

        args, kwargs = session.post.call_args
        assert args[0] == live_config['RESEND_API_URL']
        assert kwargs['headers'] == {'Authorization': 'Bearer test-resend-key'}
        assert kwargs['json']['to'] == 'jan@example.com'
        assert sender.outbox == []

    def test_missing_api_key(self, live_config, team, tournament, monkeypatch, mocker):
        monkeypatch.setitem(live_config, 'RESEND_API_KEY', '')
        with pytest.raises(EmailError, match='RESEND_API_KEY'):
            EmailSender(session=mocker.MagicMock()).send_team_registered(team, tournament)

    def test_transport_failure(self, live_config, team, tournament, mocker):
        session = mocker.MagicMock()
        session.post.side_effect = requests.exceptions.ConnectionError('refused')

        with pytest.raises(EmailError, match='Failed to send confirmation email'):
            EmailSender(session=session).send_team_registered(team, tournament)

    def test_http_error_status(self, live_config, team, tournament, mocker):
        session = mocker.MagicMock()
        session.post.return_value.raise_for_status.side_effect = requests.exceptions.HTTPError('422')

        with pytest.raises(EmailError):
            EmailSender(session=session).send_team_registered(team, tournament)
