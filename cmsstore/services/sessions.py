"""Session repository: login sessions with bounded lifetimes."""
from __future__ import annotations

from datetime import timedelta
from typing import Any

from flask import current_app
from sqlalchemy import and_, or_

from cmsstore.errors import NotFoundError
from cmsstore.models.models import UserSession, utcnow
from cmsstore.services.crud import CRUDService, repository_operation


class SessionRepository(CRUDService):
    """Repository for user sessions.

    Expired sessions are never returned by the lookups below; they are
    physically removed by ``destroy_expired_sessions`` (run from the
    ``maintenance sessions`` command).
    """

    def __init__(self):
        super().__init__(UserSession)

    def _live(self) -> list:
        return [UserSession.is_active == True, UserSession.expires_at > utcnow()]  # noqa: E712

    def _get(self, session_id: str) -> UserSession:
        session = self.find_one({'session_id': session_id})
        if session is None:
            raise NotFoundError('Session not found')
        return session

    @repository_operation("Session creation")
    def create_session(
        self,
        session_id: str,
        user_id: str,
        ip_address: str,
        user_agent: str,
        device_info: dict[str, Any] | None = None,
        expires_in: int | None = None,
    ) -> UserSession:
        if expires_in is None:
            expires_in = current_app.config.get('SESSION_DEFAULT_TTL_SECONDS', 86400)

        now = utcnow()
        return self.insert({
            'session_id': session_id,
            'user_id': user_id,
            'ip_address': ip_address,
            'user_agent': user_agent,
            'device_info': device_info,
            'data': {},
            'created_at': now,
            'last_accessed': now,
            'expires_at': now + timedelta(seconds=expires_in),
            'is_active': True,
        })

    @repository_operation("Find session")
    def find_by_session_id(self, session_id: str, **options) -> UserSession | None:
        return self.find_one([UserSession.session_id == session_id, *self._live()], **options)

    @repository_operation("Find user sessions")
    def find_active_by_user(self, user_id: str) -> list[UserSession]:
        return self.get_list(
            [UserSession.user_id == user_id, *self._live()],
            sort={'last_accessed': -1},
        )

    @repository_operation("Session touch")
    def touch(self, session_id: str) -> UserSession:
        session = self._get(session_id)
        return self.update(session.id, {'last_accessed': utcnow()})

    @repository_operation("Session extension")
    def extend(self, session_id: str, additional_seconds: int = 3600) -> UserSession:
        session = self._get(session_id)
        now = utcnow()
        return self.update(session.id, {
            'expires_at': now + timedelta(seconds=additional_seconds),
            'last_accessed': now,
        })

    @repository_operation("Session data update")
    def update_data(self, session_id: str, new_data: dict[str, Any]) -> UserSession:
        session = self._get(session_id)
        return self.update(session.id, {
            'data': {**(session.data or {}), **new_data},
            'last_accessed': utcnow(),
        })

    @repository_operation("Session destroy")
    def destroy(self, session_id: str) -> UserSession:
        session = self._get(session_id)
        return self.update(session.id, {'is_active': False})

    @staticmethod
    def is_expired(session: UserSession) -> bool:
        return session.expires_at < utcnow()

    @repository_operation("Destroy user sessions")
    def destroy_all_user_sessions(self, user_id: str) -> int:
        return self.bulk_update([{
            'filter': {'user_id': user_id, 'is_active': True},
            'update': {'is_active': False},
        }])

    @repository_operation("Expired session sweep")
    def destroy_expired_sessions(self) -> int:
        removed = self.delete_many([UserSession.expires_at < utcnow()])
        current_app.logger.info(f"Removed {removed} expired sessions")
        return removed

    @repository_operation("Session count")
    def get_user_session_count(self, user_id: str) -> int:
        return self.count([UserSession.user_id == user_id, *self._live()])

    @repository_operation("Session cleanup")
    def cleanup_old_sessions(self, older_than_days: int = 30) -> int:
        now = utcnow()
        cutoff = now - timedelta(days=older_than_days)
        return self.delete_many([
            or_(
                UserSession.expires_at < now,
                and_(UserSession.last_accessed < cutoff, UserSession.is_active == False),  # noqa: E712
            )
        ])


__all__ = ['SessionRepository']
