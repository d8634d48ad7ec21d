"""Lifecycle hooks applied at flush time."""

from __future__ import annotations

import secrets
from datetime import timedelta

from flask import current_app, has_app_context
from sqlalchemy import event, inspect as sa_inspect

from cmsstore.models.models import (
    Content,
    ContentStatus,
    Media,
    ProcessingStatus,
    User,
    UserSession,
    utcnow,
)

DEFAULT_SESSION_LIFETIME_DAYS = 30


def _max_session_lifetime() -> timedelta:
    days = DEFAULT_SESSION_LIFETIME_DAYS
    if has_app_context():
        days = current_app.config.get("SESSION_MAX_LIFETIME_DAYS", days)
    return timedelta(days=days)


def clamp_session_expiry(session: UserSession) -> None:
    """Cap expires_at at created_at plus the maximum session lifetime."""
    if session.created_at is None:
        session.created_at = utcnow()
    if session.expires_at is None:
        return
    latest = session.created_at + _max_session_lifetime()
    if session.expires_at > latest:
        session.expires_at = latest


@event.listens_for(UserSession, "before_insert")
@event.listens_for(UserSession, "before_update")
def _session_before_save(mapper, connection, target):
    clamp_session_expiry(target)


@event.listens_for(Content, "before_insert")
@event.listens_for(Content, "before_update")
def _stamp_published_at(mapper, connection, target):
    if target.status == ContentStatus.PUBLISHED and target.published_at is None:
        target.published_at = utcnow()


@event.listens_for(User, "before_insert")
def _user_before_insert(mapper, connection, target):
    if target.email:
        target.email = target.email.lower()
    if not target.email_verification_token and target.email_verified_at is None:
        target.email_verification_token = secrets.token_hex(32)


@event.listens_for(User, "before_update")
def _user_before_update(mapper, connection, target):
    if target.email:
        target.email = target.email.lower()
    if sa_inspect(target).attrs.password_hash.history.has_changes():
        target.password_changed_at = utcnow()


@event.listens_for(Media, "before_insert")
def _media_before_insert(mapper, connection, target):
    processing = dict(target.processing or {})
    processing.setdefault("status", ProcessingStatus.PENDING.value)
    processing.setdefault("thumbnails", [])
    target.processing = processing


__all__ = ["clamp_session_expiry"]
