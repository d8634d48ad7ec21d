"""
Session repository tests:
- lifetime clamping on create and extend
- live-session lookups
- destroy, sweep and cleanup
"""

from datetime import timedelta

import pytest

from cmsstore.errors import NotFoundError
from cmsstore.models import UserSession, utcnow
from cmsstore.services.sessions import SessionRepository


@pytest.fixture
def repo(app):
    return SessionRepository()


def _open(repo, session_id='sess-1', user_id='u' * 40, **kwargs):
    return repo.create_session(session_id, user_id, '203.0.113.7', 'pytest-agent', **kwargs)


def _stored(repo, session_id, created_ago, expires_in, **extra):
    """Insert a session row with explicit timestamps."""
    now = utcnow()
    return repo.insert({
        'session_id': session_id,
        'user_id': extra.pop('user_id', 'u' * 40),
        'ip_address': '203.0.113.7',
        'user_agent': 'pytest-agent',
        'created_at': now - created_ago,
        'last_accessed': extra.pop('last_accessed', now - created_ago),
        'expires_at': now + expires_in,
        **extra,
    })


class TestLifetime:
    """Expiry is capped at thirty days after creation."""

    def test_default_ttl_from_config(self, app, repo):
        session = _open(repo)

        expected = session.created_at + timedelta(seconds=app.config['SESSION_DEFAULT_TTL_SECONDS'])
        assert session.expires_at == expected
        assert session.is_active is True
        assert session.data == {}

    def test_long_request_is_clamped(self, repo):
        session = _open(repo, expires_in=40 * 86400)

        assert session.expires_at == session.created_at + timedelta(days=30)

    def test_extend_is_clamped(self, repo):
        session = _stored(repo, 'old', created_ago=timedelta(days=29, hours=23), expires_in=timedelta(minutes=30))

        extended = repo.extend('old', additional_seconds=86400)

        assert extended.expires_at == session.created_at + timedelta(days=30)

    def test_extend_within_limit(self, repo):
        _open(repo)

        extended = repo.extend('sess-1')

        assert 3500 < extended.time_until_expiry <= 3600

    def test_is_expired(self, repo):
        live = _open(repo)
        stale = _stored(repo, 'stale', created_ago=timedelta(days=2), expires_in=-timedelta(hours=1))

        assert repo.is_expired(live) is False
        assert repo.is_expired(stale) is True


class TestLookups:
    """Only active, unexpired sessions are returned."""

    def test_find_by_session_id(self, repo):
        _open(repo)
        _stored(repo, 'expired', created_ago=timedelta(days=2), expires_in=-timedelta(hours=1))

        assert repo.find_by_session_id('sess-1').ip_address == '203.0.113.7'
        assert repo.find_by_session_id('expired') is None
        assert repo.find_by_session_id('unknown') is None

    def test_destroyed_session_is_hidden(self, repo):
        _open(repo)

        destroyed = repo.destroy('sess-1')

        assert destroyed.is_active is False
        assert repo.find_by_session_id('sess-1') is None
        assert repo.count({'session_id': 'sess-1'}) == 1

    def test_find_active_by_user_and_count(self, repo):
        _open(repo, 'a', user_id='x' * 40)
        _open(repo, 'b', user_id='x' * 40)
        _open(repo, 'c', user_id='y' * 40)
        repo.destroy('b')

        assert [s.session_id for s in repo.find_active_by_user('x' * 40)] == ['a']
        assert repo.get_user_session_count('x' * 40) == 1
        assert repo.get_user_session_count('y' * 40) == 1

    def test_unknown_session_operations(self, repo):
        with pytest.raises(NotFoundError) as excinfo:
            repo.touch('missing')

        assert excinfo.value.message == 'Session touch failed: Session not found'


class TestSessionData:
    """Session payload updates."""

    def test_update_data_merges(self, repo):
        _open(repo)

        repo.update_data('sess-1', {'cart': [1, 2]})
        updated = repo.update_data('sess-1', {'theme': 'dark'})

        assert updated.data == {'cart': [1, 2], 'theme': 'dark'}

    def test_touch_moves_last_accessed(self, repo):
        session = _stored(repo, 'idle', created_ago=timedelta(hours=2), expires_in=timedelta(hours=1))
        before = session.last_accessed

        touched = repo.touch('idle')

        assert touched.last_accessed > before


class TestCleanup:
    """Bulk destroy and physical removal."""

    def test_destroy_all_user_sessions(self, repo):
        _open(repo, 'a', user_id='x' * 40)
        _open(repo, 'b', user_id='x' * 40)
        _open(repo, 'c', user_id='y' * 40)

        assert repo.destroy_all_user_sessions('x' * 40) == 2
        assert repo.get_user_session_count('x' * 40) == 0
        assert repo.get_user_session_count('y' * 40) == 1

    def test_destroy_expired_sessions(self, repo):
        _open(repo)
        _stored(repo, 'expired', created_ago=timedelta(days=2), expires_in=-timedelta(hours=1))

        assert repo.destroy_expired_sessions() == 1
        assert [s.session_id for s in repo.get_list()] == ['sess-1']

    def test_cleanup_old_sessions(self, repo):
        now = utcnow()
        _open(repo, 'live')
        _stored(repo, 'expired', created_ago=timedelta(days=2), expires_in=-timedelta(hours=1))
        _stored(
            repo, 'abandoned', created_ago=timedelta(days=29), expires_in=timedelta(hours=12),
            is_active=False, last_accessed=now - timedelta(days=29),
        )
        _stored(
            repo, 'logged-out', created_ago=timedelta(days=1), expires_in=timedelta(hours=12),
            is_active=False,
        )

        removed = repo.cleanup_old_sessions(older_than_days=7)

        assert removed == 2
        assert sorted(s.session_id for s in repo.get_list()) == ['live', 'logged-out']
        assert repo.count([UserSession.is_active == False]) == 1  # noqa: E712
