"""
Shared pytest fixtures: an application on an in-memory database with
documents written under a temporary directory.
"""

import pytest

from poa_builder import create_app, db
from poa_builder.sample_payloads import PRINCIPAL_EMAIL, PRIMARY_AGENT_EMAIL
from poa_builder.security import Identity

TENANT_ID = 'tenant-1'


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'WTF_CSRF_ENABLED': False,
        'RATELIMIT_ENABLED': False,
        'STORAGE_ROOT': str(tmp_path / 'documents'),
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def principal_identity():
    return Identity(tenant_id=TENANT_ID, user_id='user-1', email=PRINCIPAL_EMAIL)


@pytest.fixture
def agent_identity():
    return Identity(tenant_id=TENANT_ID, user_id='user-2', email=PRIMARY_AGENT_EMAIL)


def identity_headers(email=PRINCIPAL_EMAIL, tenant_id=TENANT_ID, user_id='user-1'):
    return {'X-Tenant-Id': tenant_id, 'X-User-Id': user_id, 'X-User-Email': email}


@pytest.fixture
def principal_headers():
    return identity_headers()


@pytest.fixture
def agent_headers():
    return identity_headers(PRIMARY_AGENT_EMAIL, user_id='user-2')
