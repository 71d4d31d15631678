"""
Notification Dispatcher Module

Sends agent designation emails over SMTP. Delivery failures are reported
to the caller and never raised.
"""

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Tuple

from flask import current_app, render_template_string


AGENT_DESIGNATION_HTML = """
<!DOCTYPE html>
<html>
<head>
    <style>
        body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
        .container { max-width: 600px; margin: 0 auto; padding: 20px; }
        .header { background: #1f3a5f; color: white; padding: 20px; text-align: center; }
        .content { padding: 20px; background: #f9f9f9; }
        .warning { background: #fff3cd; border-left: 4px solid #ffc107; padding: 15px; margin: 20px 0; }
        .footer { padding: 20px; font-size: 12px; color: #666; text-align: center; }
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1>You Have Been Named as an Agent</h1>
        </div>
        <div class="content">
            <p>Dear {{ agent_name }},</p>

            <p>{{ principal_name }} has named you as {{ role_text }} in a {{ document_name }}.</p>

            <div class="warning">
                <strong>Important:</strong> Acting as an agent is a position of trust. You must act
                in good faith, within the scope of the authority granted, and in the principal's
                best interest.
            </div>

            <p>Please review the appointment and record whether you accept or decline it:</p>
            <p>Accept: <a href="{{ accept_url }}">{{ accept_url }}</a></p>
            <p>Decline: <a href="{{ decline_url }}">{{ decline_url }}</a></p>
        </div>
        <div class="footer">
            <p>This email was sent from the POA Builder system.</p>
            <p>This is not legal advice. Consult an attorney about your duties as an agent.</p>
        </div>
    </div>
</body>
</html>
"""

AGENT_DESIGNATION_TEXT = """
You Have Been Named as an Agent
===============================

Dear {{ agent_name }},

{{ principal_name }} has named you as {{ role_text }} in a {{ document_name }}.

IMPORTANT: Acting as an agent is a position of trust. You must act in good
faith, within the scope of the authority granted, and in the principal's
best interest.

Please review the appointment and record whether you accept or decline it:
Accept: {{ accept_url }}
Decline: {{ decline_url }}

---
This email was sent from the POA Builder system.
This is not legal advice. Consult an attorney about your duties as an agent.
"""

ROLE_TEXT = {
    'primary': 'the primary agent',
    'successor': 'a successor agent',
    'co_agent': 'a co-agent',
}


class NotificationDispatcher:
    """Interface for agent notifications; returns (sent, error_message)."""

    def send_agent_designation(self, agent, poa) -> Tuple[bool, Optional[str]]:
        raise NotImplementedError


def _template_vars(agent, poa) -> dict:
    base_url = current_app.config.get('APP_BASE_URL', '').rstrip('/')
    document_name = (
        'Healthcare Power of Attorney' if poa.poa_type == 'HEALTHCARE'
        else f'{poa.poa_type.title()} Power of Attorney'
    )
    return {
        'agent_name': agent.full_name,
        'principal_name': poa.principal_name,
        'role_text': ROLE_TEXT.get(agent.agent_type, 'an agent'),
        'document_name': document_name,
        'accept_url': f'{base_url}/api/poa/agents/{agent.id}/accept',
        'decline_url': f'{base_url}/api/poa/agents/{agent.id}/decline',
    }


class SMTPNotificationDispatcher(NotificationDispatcher):
    """Sends designation emails through the configured SMTP server."""

    def __init__(self, config):
        self.smtp_host = config.get('SMTP_HOST', '')
        self.smtp_port = int(config.get('SMTP_PORT', 587))
        self.smtp_user = config.get('SMTP_USERNAME', '')
        self.smtp_password = config.get('SMTP_PASSWORD', '')
        self.smtp_tls = config.get('SMTP_USE_TLS', True)
        self.from_address = config.get('EMAIL_FROM_ADDRESS', 'noreply@poabuilder.local')
        self.from_name = config.get('EMAIL_FROM_NAME', 'POA Builder')

    def is_configured(self) -> bool:
        return bool(self.smtp_host)

    def send_agent_designation(self, agent, poa) -> Tuple[bool, Optional[str]]:
        """
        Email an agent about their designation.

        Returns:
            Tuple of (success: bool, error_message: str or None)
        """
        if not self.is_configured():
            return False, 'Email service not configured'

        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = f'{poa.principal_name} has named you as an agent'
            msg['From'] = f'{self.from_name} <{self.from_address}>'
            msg['To'] = agent.email

            template_vars = _template_vars(agent, poa)
            text_content = render_template_string(AGENT_DESIGNATION_TEXT, **template_vars)
            html_content = render_template_string(AGENT_DESIGNATION_HTML, **template_vars)

            msg.attach(MIMEText(text_content, 'plain'))
            msg.attach(MIMEText(html_content, 'html'))

            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                if self.smtp_tls:
                    server.starttls()
                if self.smtp_user:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)

            return True, None

        except Exception as e:
            error_msg = str(e)
            current_app.logger.error(f'Failed to send agent email to {agent.email}: {error_msg}')
            return False, error_msg


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Records designations in the application log instead of sending mail."""

    def __init__(self):
        self.sent = []

    def send_agent_designation(self, agent, poa) -> Tuple[bool, Optional[str]]:
        template_vars = _template_vars(agent, poa)
        current_app.logger.info(
            f'Agent designation for POA {poa.id}: {agent.email} ({template_vars["role_text"]})'
        )
        self.sent.append((poa.id, agent.email))
        return True, None


def init_notifications(app, dispatcher: NotificationDispatcher = None):
    """Register the dispatcher: SMTP when SMTP_HOST is set, otherwise logging only."""
    if dispatcher is None:
        if app.config.get('SMTP_HOST'):
            dispatcher = SMTPNotificationDispatcher(app.config)
        else:
            dispatcher = LoggingNotificationDispatcher()
    app.extensions['poa_notifications'] = dispatcher
    return dispatcher


def get_dispatcher() -> NotificationDispatcher:
    return current_app.extensions['poa_notifications']
