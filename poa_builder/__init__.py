"""
POA Builder Application

Guided authoring of financial and healthcare powers of attorney with
deterministic PDF assembly.

create_app() wires:
- Flask-SQLAlchemy persistence
- CSRF protection and rate limiting
- Blob storage for generated and notarized documents
- Agent designation notifications
- Security headers and request timing logs
"""

import os
from flask import Flask, request, g
from flask_sqlalchemy import SQLAlchemy

from poa_builder.utils import utcnow

db = SQLAlchemy()


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == 'true'


def default_config() -> dict:
    """Settings read from the environment, overridable by instance config.py or test_config."""
    return dict(
        SECRET_KEY=os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production'),
        SQLALCHEMY_DATABASE_URI=os.environ.get('DATABASE_URL', 'sqlite:///poa_builder.db'),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,

        # Document assembly
        STORAGE_ROOT=os.environ.get('STORAGE_ROOT', ''),
        ASSEMBLY_TIMEOUT_SECONDS=float(os.environ.get('ASSEMBLY_TIMEOUT_SECONDS', 30)),
        ASSEMBLY_MAX_ATTEMPTS=int(os.environ.get('ASSEMBLY_MAX_ATTEMPTS', 3)),
        REGENERATE_ON_EDIT=_env_flag('REGENERATE_ON_EDIT', 'true'),
        DOCUMENT_TIMEZONE=os.environ.get('DOCUMENT_TIMEZONE', 'UTC'),
        APP_BASE_URL=os.environ.get('APP_BASE_URL', 'http://localhost:5000'),

        # The JSON API is exempt; CSRF applies to anything session based
        WTF_CSRF_ENABLED=True,
        WTF_CSRF_TIME_LIMIT=3600,

        RATELIMIT_ENABLED=_env_flag('RATELIMIT_ENABLED', 'true'),
        RATELIMIT_STORAGE_URI=os.environ.get('REDIS_URL', 'memory://'),
        RATELIMIT_STRATEGY='fixed-window',
        RATELIMIT_HEADERS_ENABLED=True,

        # Agent notifications; without SMTP_HOST they are only logged
        SMTP_HOST=os.environ.get('SMTP_HOST', ''),
        SMTP_PORT=int(os.environ.get('SMTP_PORT', 587)),
        SMTP_USERNAME=os.environ.get('SMTP_USERNAME', ''),
        SMTP_PASSWORD=os.environ.get('SMTP_PASSWORD', ''),
        SMTP_USE_TLS=_env_flag('SMTP_USE_TLS', 'true'),
        EMAIL_FROM_ADDRESS=os.environ.get('EMAIL_FROM_ADDRESS', 'poa@example.com'),
        EMAIL_FROM_NAME=os.environ.get('EMAIL_FROM_NAME', 'POA Builder'),
    )


def _error_body(message: str, code: str) -> dict:
    return {'ok': False, 'errors': [{'field': '', 'message': message, 'code': code}]}


def create_app(test_config=None):
    """Application factory pattern."""
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(default_config())

    if test_config is None:
        app.config.from_pyfile('config.py', silent=True)
    else:
        app.config.from_mapping(test_config)

    os.makedirs(app.instance_path, exist_ok=True)
    if not app.config['STORAGE_ROOT']:
        app.config['STORAGE_ROOT'] = os.path.join(app.instance_path, 'documents')

    db.init_app(app)

    # Imported here; these modules import db from this package
    from poa_builder.security import add_security_headers, init_security
    from poa_builder.storage import init_storage
    from poa_builder.notifications import init_notifications
    from poa_builder.routes import api_bp

    init_security(app)
    init_storage(app)
    init_notifications(app)
    app.register_blueprint(api_bp)

    @app.before_request
    def start_timer():
        g.request_start_time = utcnow()

    @app.after_request
    def finish_request(response):
        add_security_headers(response)
        if hasattr(g, 'request_start_time'):
            duration = (utcnow() - g.request_start_time).total_seconds()
            app.logger.info(
                f'{request.method} {request.path} - {response.status_code} - {duration:.3f}s'
            )
        return response

    with app.app_context():
        from poa_builder import models  # noqa: F401
        db.create_all()

    @app.errorhandler(404)
    def not_found(error):
        return _error_body('Not found', 'not_found'), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return _error_body('Method not allowed', 'method_not_allowed'), 405

    @app.errorhandler(429)
    def rate_limited(error):
        app.logger.warning(f'Rate limit exceeded on {request.path}')
        return _error_body('Too many requests; please try again later', 'rate_limited'), 429

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        app.logger.error(f'Internal error: {str(error)}')
        return _error_body('Internal server error', 'internal_error'), 500

    return app
