"""
Shared pytest fixtures for the rewards ledger tests.
"""
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from rewards_ledger import create_app
from rewards_ledger.extensions import db
from rewards_ledger.services import get_services


def _build_app(overrides=None):
    app = create_app('testing', overrides)
    with app.app_context():
        db.create_all()
    return app


def _teardown_app(app):
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
    get_services_for(app).close()


def get_services_for(app):
    return app.extensions['loyalty']


@pytest.fixture
def app():
    """Test application on an in-memory SQLite database."""
    app = _build_app()
    yield app
    _teardown_app(app)


@pytest.fixture
def file_app(tmp_path):
    """
    Test application on a file-backed SQLite database.

    In-memory SQLite shares one connection across threads, so
    multi-threaded tests need a real file and a connection pool.
    """
    db_path = tmp_path / 'ledger.db'
    app = _build_app({
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
        'LEDGER_TRANSACTION_TIMEOUT': 30,
    })
    yield app
    _teardown_app(app)


@pytest.fixture
def client(app):
    """Test client."""
    return app.test_client()


@pytest.fixture
def make_headers(app):
    """Factory for Authorization headers carrying a signed access token."""
    def _make(user_id='user-1', role=None, name=None, email=None, expires_in=3600):
        payload = {
            'sub': user_id,
            'exp': datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        }
        if role:
            payload['role'] = role
        if name:
            payload['name'] = name
        if email:
            payload['email'] = email
        token = jwt.encode(payload, app.config['SECRET_KEY'], algorithm='HS256')
        return {
            'Authorization': f'Bearer {token}',
            'Content-Type': 'application/json'
        }
    return _make


@pytest.fixture
def auth_headers(make_headers):
    """Headers for a regular member, user-1."""
    return make_headers('user-1', name='Ana Member', email='ana@example.com')


@pytest.fixture
def admin_headers(make_headers):
    """Headers for an administrator."""
    return make_headers('admin-1', role='admin', name='Gym Admin')


@pytest.fixture
def make_reward(app):
    """Factory that creates a catalog reward and returns its id."""
    def _make(target_app=None, **overrides):
        target_app = target_app or app
        data = {
            'name': 'Protein Shake',
            'type': 'product',
            'points_cost': 100,
            'stock': 10,
        }
        data.update(overrides)
        with target_app.app_context():
            reward = get_services().catalog.create(data)
            return reward.id
    return _make


@pytest.fixture
def credit_user(app):
    """Factory that credits points to a user."""
    def _credit(user_id, amount, target_app=None, description='Class attendance'):
        with (target_app or app).app_context():
            get_services().ledger.credit(user_id, amount, description)
    return _credit
