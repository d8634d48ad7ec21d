"""Shared fixtures: an in-memory application and repository factories."""

import pytest

from cmsstore import create_app
from cmsstore.config import TestingConfig
from cmsstore.extensions import db
from cmsstore.services.users import hash_password


@pytest.fixture
def app():
    """Create and configure a test application instance."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create a test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a CLI runner for the app."""
    return app.test_cli_runner()


@pytest.fixture(scope='session')
def credentials():
    """One bcrypt hash for the whole run; hashing is deliberately slow."""
    password_hash, salt = hash_password('CorrectHorse42!')
    return {'password': 'CorrectHorse42!', 'password_hash': password_hash, 'salt': salt}


@pytest.fixture
def make_user(app, credentials):
    """Factory inserting users through the repository."""
    from cmsstore.services.users import UserRepository

    repository = UserRepository()

    def _make(username='alice', email=None, **extra):
        data = {
            'username': username,
            'email': email or f'{username}@example.com',
            'password_hash': credentials['password_hash'],
            'salt': credentials['salt'],
            **extra,
        }
        return repository.insert(data)

    return _make


@pytest.fixture
def make_content(app):
    """Factory inserting content through the repository."""
    from cmsstore.services.content import ContentRepository

    repository = ContentRepository()

    def _make(title='Hello World!', **extra):
        return repository.insert({'title': title, **extra})

    return _make
