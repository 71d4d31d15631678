"""
Request hardening for the POA API.

The API is called by a gateway that has already authenticated the user and
forwards who they are in headers. This module turns those headers into an
Identity, keys rate limits on it, strips markup from payload text before
validation and sets response headers suited to a JSON and PDF API.
"""

import re
from dataclasses import dataclass
from functools import wraps
from typing import Optional, Dict, Any

from flask import request, g, jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf.csrf import CSRFProtect


TENANT_HEADER = 'X-Tenant-Id'
USER_HEADER = 'X-User-Id'
EMAIL_HEADER = 'X-User-Email'


@dataclass(frozen=True)
class Identity:
    """Authenticated caller, as asserted by the upstream gateway."""
    tenant_id: str
    user_id: str
    email: str

    def to_dict(self) -> Dict[str, str]:
        return {'tenant_id': self.tenant_id, 'user_id': self.user_id, 'email': self.email}


def get_request_identity() -> Optional[Identity]:
    """
    Read the caller identity from the gateway headers.

    Emails are compared case-insensitively everywhere, so they are lowered
    here once. The user id falls back to the email.

    Returns:
        Identity, or None when the tenant or email header is missing
    """
    tenant_id = (request.headers.get(TENANT_HEADER) or '').strip()
    email = (request.headers.get(EMAIL_HEADER) or '').strip().lower()
    if not tenant_id or not email:
        return None
    user_id = (request.headers.get(USER_HEADER) or '').strip() or email
    return Identity(tenant_id=tenant_id, user_id=user_id, email=email)


def identity_required(f):
    """Decorator rejecting requests without an identity; stores it on g.identity."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        identity = get_request_identity()
        if identity is None:
            return jsonify({
                'ok': False,
                'errors': [{'field': '', 'message': 'Authentication required', 'code': 'unauthenticated'}]
            }), 401
        g.identity = identity
        return f(*args, **kwargs)
    return decorated_function


def get_client_ip() -> str:
    """Client address, preferring the first hop of X-Forwarded-For."""
    forwarded_for = request.headers.get('X-Forwarded-For')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    return request.headers.get('X-Real-Ip') or request.remote_addr or 'unknown'


def rate_limit_key() -> str:
    """Limit per tenant and user when identified, per address otherwise."""
    identity = get_request_identity()
    if identity is not None:
        return f'{identity.tenant_id}:{identity.user_id}'
    return get_remote_address()


csrf = CSRFProtect()
limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=["2000 per day", "300 per hour"]
)

# Per-endpoint-group limits; creation and assembly render PDFs
RATE_LIMITS = {
    'create': "20 per hour",
    'assemble': "30 per hour",
    'validate': "120 per hour",
    'lifecycle': "60 per hour",
    'wizard': "300 per hour",
}


def rate_limit(name: str):
    """Decorator applying one of the named RATE_LIMITS."""
    return limiter.limit(RATE_LIMITS[name])


def init_security(app):
    """Attach CSRF protection and the rate limiter."""
    app.config.setdefault('SESSION_COOKIE_HTTPONLY', True)
    app.config.setdefault('SESSION_COOKIE_SAMESITE', 'Strict')
    csrf.init_app(app)
    limiter.init_app(app)


def add_security_headers(response):
    """
    Add security headers to a response.

    Responses carry personal and legal data, so nothing may be cached or
    framed.
    """
    response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['Referrer-Policy'] = 'no-referrer'
    response.headers['Cache-Control'] = 'no-store'
    return response


# Payload text cleaning
SCRIPT_PATTERN = re.compile(r'<(script|style)[^>]*>.*?</\1\s*>', re.DOTALL | re.IGNORECASE)
HTML_TAG_PATTERN = re.compile(r'<[^>]*>')
STRAY_BRACKET_PATTERN = re.compile(r'[<>]')
# Control characters other than tab and newline
CONTROL_CHAR_PATTERN = re.compile(r'[\x00-\x08\x0b-\x1f\x7f]')

MAX_TEXT_LENGTH = 10000


def sanitize_string(value: Any, max_length: int = MAX_TEXT_LENGTH) -> str:
    """
    Strip markup and control characters from one text value.

    Script and style elements go with their content; other tags leave their
    inner text. The result is trimmed and cut to max_length.
    """
    if value is None:
        return ''
    if not isinstance(value, str):
        value = str(value)

    value = SCRIPT_PATTERN.sub('', value)
    value = HTML_TAG_PATTERN.sub('', value)
    value = STRAY_BRACKET_PATTERN.sub('', value)
    value = CONTROL_CHAR_PATTERN.sub('', value)
    return value.strip()[:max_length]


def sanitize_payload(payload: Any) -> Any:
    """Apply sanitize_string to every string in a JSON payload; other values pass through."""
    if isinstance(payload, dict):
        return {k: sanitize_payload(v) for k, v in payload.items()}
    if isinstance(payload, list):
        return [sanitize_payload(item) for item in payload]
    if isinstance(payload, str):
        return sanitize_string(payload)
    return payload
