"""User repository: registration, authentication lookups and account state."""
from __future__ import annotations

import secrets
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import undefer

from cmsstore.errors import ConflictError, NotFoundError, ValidationError
from cmsstore.extensions import bcrypt, db
from cmsstore.models.models import User, UserRole, UserStatus, utcnow
from cmsstore.services.crud import CRUDService, repository_operation

RECENT_USER_FIELDS = ['id', 'username', 'email', 'profile', 'role', 'status', 'created_at']


def hash_password(password: str) -> tuple[str, str]:
    """Hash a plain-text password, returning (password_hash, salt)."""
    salt = bcrypt.gensalt()
    password_hash = bcrypt.hashpw(password.encode('utf-8'), salt)
    return password_hash.decode('utf-8'), salt.decode('utf-8')


def check_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


class UserRepository(CRUDService):
    """Repository for user accounts."""

    def __init__(self):
        super().__init__(User)

    @repository_operation("User creation")
    def insert(self, data: dict[str, Any]) -> User:
        if not data.get('username') or not data.get('email') or not data.get('password_hash'):
            raise ValidationError('Username, email, and password are required')

        username = data['username']
        email = data['email'].lower()

        existing = self.find_one([or_(User.username == username, User.email == email)])
        if existing is not None:
            if existing.username == username:
                raise ConflictError('Username already exists')
            if existing.email == email:
                raise ConflictError('Email already exists')

        user_data = {
            'role': UserRole.CONTRIBUTOR.value,
            'status': UserStatus.PENDING.value,
            **data,
            'email': email,
        }
        return super().insert(user_data)

    # Lookups -----------------------------------------------------------
    @repository_operation("Find by username")
    def find_by_username(self, username: str, **options) -> User | None:
        return self.find_one({'username': username}, **options)

    @repository_operation("Find by email")
    def find_by_email(self, email: str, **options) -> User | None:
        return self.find_one({'email': email.lower()}, **options)

    @repository_operation("Find by username or email")
    def find_by_username_or_email(self, identifier: str, **options) -> User | None:
        return self.find_one(
            [or_(User.username == identifier, User.email == identifier.lower())],
            **options,
        )

    @repository_operation("Authentication lookup")
    def find_for_authentication(self, identifier: str) -> User | None:
        """Like find_by_username_or_email, but loads password_hash and salt."""
        return self.find_one(
            [or_(User.username == identifier, User.email == identifier.lower())],
            options=[undefer(User.password_hash), undefer(User.salt)],
        )

    @repository_operation("Find active users")
    def find_active(self, **options) -> list[User]:
        return self.get_list({'status': UserStatus.ACTIVE.value}, **options)

    @repository_operation("Find by role")
    def find_by_role(self, role: str, **options) -> list[User]:
        criteria = [User.role == role, User.status != UserStatus.SUSPENDED]
        return self.get_list(criteria, **options)

    @repository_operation("Find admins")
    def find_admins(self, **options) -> list[User]:
        return self.get_list(
            {
                'role': [UserRole.SUPER_ADMIN.value, UserRole.ADMIN.value],
                'status': UserStatus.ACTIVE.value,
            },
            **options,
        )

    @repository_operation("Find verified users")
    def find_verified(self, **options) -> list[User]:
        return self.get_list([User.email_verified_at.is_not(None)], **options)

    @repository_operation("Find by verification token")
    def find_by_email_verification_token(self, token: str) -> User | None:
        return self.find_one({'email_verification_token': token})

    @repository_operation("Recent users")
    def get_recent_users(self, limit: int = 10) -> list[User]:
        return self.get_list(sort={'created_at': -1}, limit=limit, select=RECENT_USER_FIELDS)

    @repository_operation("User search")
    def search_users(self, term: str, limit: int = 20) -> list[User]:
        pattern = f"%{term}%"
        criteria = [or_(
            User.username.ilike(pattern),
            User.email.ilike(pattern),
            User.profile['first_name'].as_string().ilike(pattern),
            User.profile['last_name'].as_string().ilike(pattern),
            User.profile['display_name'].as_string().ilike(pattern),
        )]
        return self.get_list(criteria, limit=limit)

    # Account state -----------------------------------------------------
    @repository_operation("Email verification")
    def verify_email(self, user_id: str) -> User:
        user = self.find_by_id(user_id)
        if user is None:
            raise NotFoundError('User not found')

        changes: dict[str, Any] = {
            'email_verified_at': utcnow(),
            'email_verification_token': None,
        }
        if user.status == UserStatus.PENDING:
            changes['status'] = UserStatus.ACTIVE.value
        return self.update(user_id, changes)

    @repository_operation("Verification token creation")
    def create_email_verification_token(self, user_id: str) -> str:
        token = secrets.token_hex(32)
        self.update(user_id, {'email_verification_token': token})
        return token

    @repository_operation("User suspension")
    def suspend_user(self, user_id: str) -> User:
        return self.update(user_id, {'status': UserStatus.SUSPENDED.value})

    @repository_operation("User activation")
    def activate_user(self, user_id: str) -> User:
        return self.update(user_id, {'status': UserStatus.ACTIVE.value})

    @repository_operation("Password change")
    def change_password(self, user_id: str, password_hash: str, salt: str) -> User:
        return self.update(user_id, {
            'password_hash': password_hash,
            'salt': salt,
            'password_changed_at': utcnow(),
        })

    # Activity ----------------------------------------------------------
    @repository_operation("Last login update")
    def update_last_login(self, user_id: str) -> User:
        now = utcnow()
        self._increment(user_id, last_login=now, last_active=now, login_count=User.login_count + 1)
        return self.find_by_id(user_id)

    @repository_operation("Activity update")
    def update_activity(self, user_id: str) -> User:
        self._increment(user_id, last_active=utcnow())
        return self.find_by_id(user_id)

    @repository_operation("Failed login recording")
    def record_failed_login(self, identifier: str) -> User | None:
        user = self.find_by_username_or_email(identifier)
        if user is None:
            return None

        self._increment(
            user.id,
            failed_login_attempts=User.failed_login_attempts + 1,
            last_failed_login=utcnow(),
        )
        return self.find_by_id(user.id)

    @repository_operation("Failed login reset")
    def reset_failed_logins(self, user_id: str) -> User:
        return self.update(user_id, {
            'activity.failed_login_attempts': 0,
            'activity.last_failed_login': None,
        })

    def _increment(self, user_id: str, **values) -> None:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if db.session.execute(stmt).rowcount == 0:
            raise NotFoundError('User not found')
        db.session.commit()

    # Profile -----------------------------------------------------------
    @repository_operation("Profile update")
    def update_profile(self, user_id: str, profile_data: dict[str, Any]) -> User:
        return self.update(user_id, {f'profile.{key}': value for key, value in profile_data.items()})

    @repository_operation("Settings update")
    def update_settings(self, user_id: str, settings_data: dict[str, Any]) -> User:
        return self.update(user_id, {f'settings.{key}': value for key, value in settings_data.items()})

    @repository_operation("User stats")
    def get_user_stats(self) -> dict[str, Any]:
        rows = self.aggregate(
            select(User.status, func.count(User.id).label('count'))
            .group_by(User.status)
            .order_by(User.status)
        )
        statuses = [
            {'status': getattr(row['status'], 'value', row['status']), 'count': row['count']}
            for row in rows
        ]
        return {
            'total': sum(item['count'] for item in statuses),
            'statuses': statuses,
        }


__all__ = ['UserRepository', 'hash_password', 'check_password']
