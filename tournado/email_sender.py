import logging
from typing import List, Union

import requests
from flask import current_app, render_template

from .errors import EmailError

logger = logging.getLogger(__name__)


def mask_email(email: str) -> str:
    """
    Mask an address for log output.

    >>> mask_email("john@example.com")
    'jo***@example.com'
    >>> mask_email("ab@test.org")
    '**@test.org'
    """
    name, _, domain = (email or '').partition('@')
    if not name or not domain:
        return '***@***'
    safe_name = '*' * len(name) if len(name) <= 2 else f"{name[:2]}***"
    return f"{safe_name}@{domain}"


def mask_emails(emails: Union[str, List[str]]) -> str:
    if isinstance(emails, (list, tuple)):
        return ', '.join(mask_email(e) for e in emails)
    return mask_email(emails)


class EmailSender:
    """Sends transactional email through the Resend HTTP API."""

    def __init__(self, session: requests.Session = None, timeout: int = 10):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.outbox: List[dict] = []

    def _build_payload(self, team, tournament) -> dict:
        config = current_app.config
        if not config.get('EMAIL_FROM'):
            raise EmailError('EMAIL_FROM environment variable is not set')

        leader = team.team_leader
        if leader is None:
            raise EmailError(f"Team leader not found for team {team.id}")

        base_url = config.get('EMAIL_BASE_URL', '').rstrip('/')
        html = render_template(
            'emails/team_registered.html',
            team_name=team.name,
            team_leader_name=leader.full_name,
            tournament_name=tournament.name,
            team_url=f"{base_url}/teams/{team.id}",
            logo_url=f"{base_url}/favicon/soccer_ball.png",
        )

        return {
            'from': config['EMAIL_FROM'],
            'to': leader.email,
            'subject': f"Team {team.name} registered for {tournament.name}",
            'html': html,
        }

    def send_team_registered(self, team, tournament) -> dict:
        payload = self._build_payload(team, tournament)

        if current_app.config.get('EMAIL_SUPPRESS_SEND'):
            self.outbox.append(payload)
            logger.info(f"Email stored in outbox - to: {mask_emails(payload['to'])}")
            return payload

        api_key = current_app.config.get('RESEND_API_KEY')
        if not api_key:
            raise EmailError('RESEND_API_KEY environment variable is not set')

        try:
            resp = self.session.post(
                current_app.config['RESEND_API_URL'],
                json=payload,
                headers={'Authorization': f"Bearer {api_key}"},
                timeout=self.timeout
            )
            resp.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to send confirmation email to {mask_emails(payload['to'])}: {e}")
            raise EmailError('Failed to send confirmation email') from e

        logger.info(f"Confirmation email sent - to: {mask_emails(payload['to'])}")
        return payload
