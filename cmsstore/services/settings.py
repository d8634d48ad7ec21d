"""Settings repository: typed site configuration with access levels."""
from __future__ import annotations

import copy
from types import SimpleNamespace
from typing import Any, Iterable

from sqlalchemy import String, cast, or_

from cmsstore.errors import CMSError, ConflictError, NotFoundError, ValidationError
from cmsstore.models.models import ACCESS_HIERARCHY, AccessLevel, Setting
from cmsstore.services.crud import CRUDService, repository_operation
from cmsstore.services.validation import validate_setting_value

CATEGORY_ORDER = {'category': 1, 'label': 1}
EXPORT_FIELDS = (
    'key', 'value', 'type', 'category', 'label', 'description',
    'default_value', 'validation', 'access_level', 'editable',
)

DEFAULT_SETTINGS: list[dict[str, Any]] = [
    {
        'key': 'site_title',
        'value': 'My Website',
        'type': 'string',
        'category': 'general',
        'label': 'Site Title',
        'description': 'The main title of your website',
        'validation': {'required': True, 'max_length': 100},
        'access_level': 'admin',
    },
    {
        'key': 'site_description',
        'value': 'A great website',
        'type': 'string',
        'category': 'general',
        'label': 'Site Description',
        'description': 'A brief description of your website',
        'validation': {'max_length': 160},
        'access_level': 'admin',
    },
    {
        'key': 'default_meta_description',
        'value': 'Welcome to our website',
        'type': 'string',
        'category': 'seo',
        'label': 'Default Meta Description',
        'description': 'Default meta description for pages without custom descriptions',
        'validation': {'max_length': 160},
        'access_level': 'admin',
    },
    {
        'key': 'posts_per_page',
        'value': 10,
        'type': 'number',
        'category': 'general',
        'label': 'Posts per Page',
        'description': 'Number of posts to display per page',
        'validation': {'required': True},
        'access_level': 'admin',
        'default_value': 10,
    },
    {
        'key': 'enable_comments',
        'value': True,
        'type': 'boolean',
        'category': 'general',
        'label': 'Enable Comments',
        'description': 'Allow comments on blog posts',
        'access_level': 'admin',
        'default_value': True,
    },
    {
        'key': 'smtp_settings',
        'value': {
            'host': '',
            'port': 587,
            'secure': False,
            'auth': {'user': '', 'pass': ''},
        },
        'type': 'object',
        'category': 'email',
        'label': 'SMTP Settings',
        'description': 'Email server configuration',
        'access_level': 'super_admin',
    },
]


def _level(access_level: Any) -> str:
    return getattr(access_level, 'value', access_level)


def _visible_levels(access_level: Any) -> tuple[str, ...]:
    # Unknown levels only see public settings
    return ACCESS_HIERARCHY.get(_level(access_level), (AccessLevel.PUBLIC.value,))


class SettingsRepository(CRUDService):
    """Repository for key/value site settings."""

    def __init__(self):
        super().__init__(Setting)

    validate_value = staticmethod(validate_setting_value)

    def _check_value(self, data: dict[str, Any]) -> None:
        """Reject a new setting whose value fails its own validation block."""
        candidate = SimpleNamespace(type=data.get('type'), validation=data.get('validation'))
        if not validate_setting_value(candidate, data.get('value')):
            raise ValidationError(f"Invalid value for setting '{data.get('key')}'")

    @repository_operation("Setting insert")
    def insert(self, data: dict[str, Any]) -> Setting:
        self._check_value(data)
        return super().insert(data)

    @repository_operation("Setting bulk insert")
    def bulk_insert(self, documents: Iterable[dict[str, Any]]) -> list[Setting]:
        documents = list(documents)
        for data in documents:
            self._check_value(data)
        return super().bulk_insert(documents)

    @repository_operation("Get setting")
    def get_setting(self, key: str) -> Any:
        """Value stored under ``key``, or None when the key does not exist."""
        setting = self.find_one({'key': key}, select=['value'])
        return setting.value if setting is not None else None

    @repository_operation("Set setting")
    def set_setting(self, key: str, value: Any, user_id: str | None = None) -> Setting:
        setting = self.find_one({'key': key})
        if setting is None:
            raise NotFoundError(f"Setting '{key}' not found")

        if not validate_setting_value(setting, value):
            raise ValidationError(f"Invalid value for setting '{key}'")

        return self.update(setting.id, {'value': value, 'updated_by': user_id})

    @repository_operation("Get public settings")
    def get_public_settings(self) -> dict[str, Any]:
        settings = self.get_list(
            {'access_level': AccessLevel.PUBLIC.value},
            sort=CATEGORY_ORDER,
            select=['key', 'value', 'type', 'category', 'label'],
        )
        return {setting.key: setting.value for setting in settings}

    @repository_operation("Get settings by access level")
    def get_settings_by_access_level(self, access_level: Any) -> list[Setting]:
        return self.get_list({'access_level': _visible_levels(access_level)}, sort=CATEGORY_ORDER)

    @repository_operation("Get settings by category")
    def get_settings_by_category(self, category: str) -> list[Setting]:
        return self.get_list({'category': category}, sort={'label': 1})

    @repository_operation("Get editable settings")
    def get_editable_settings(self, access_level: Any = AccessLevel.ADMIN.value) -> list[Setting]:
        return self.get_list(
            {'editable': True, 'access_level': _visible_levels(access_level)},
            sort=CATEGORY_ORDER,
        )

    @repository_operation("Group settings")
    def get_settings_grouped_by_category(self, access_level: Any = AccessLevel.PUBLIC.value) -> dict[str, list[Setting]]:
        grouped: dict[str, list[Setting]] = {}
        for setting in self.get_settings_by_access_level(access_level):
            grouped.setdefault(_level(setting.category), []).append(setting)
        return grouped

    @repository_operation("Settings search")
    def search_settings(self, term: str, access_level: Any = AccessLevel.ADMIN.value) -> list[Setting]:
        pattern = f"%{term}%"
        criteria = [
            or_(
                Setting.key.ilike(pattern),
                Setting.label.ilike(pattern),
                Setting.description.ilike(pattern),
                cast(Setting.category, String).ilike(pattern),
            ),
            Setting.access_level.in_(_visible_levels(access_level)),
        ]
        return self.get_list(criteria, sort=CATEGORY_ORDER)

    @repository_operation("Create setting")
    def create_setting(self, data: dict[str, Any]) -> Setting:
        for field in ('key', 'label', 'type', 'category'):
            if not data.get(field):
                raise ValidationError('Key, label, type, and category are required')

        if self.exists({'key': data['key']}):
            raise ConflictError(f"Setting '{data['key']}' already exists")

        return self.insert({
            'access_level': AccessLevel.ADMIN.value,
            'editable': True,
            **data,
        })

    @repository_operation("Bulk update settings")
    def bulk_update_settings(self, settings_data: dict[str, Any], user_id: str | None = None) -> list[dict[str, Any]]:
        """Set each key independently; one failure never blocks the others."""
        results = []
        for key, value in settings_data.items():
            try:
                setting = self.set_setting(key, value, user_id)
                results.append({'key': key, 'success': True, 'result': setting})
            except CMSError as exc:
                results.append({'key': key, 'success': False, 'error': exc.message})
        return results

    @repository_operation("Reset setting")
    def reset_setting_to_default(self, key: str) -> Setting:
        setting = self.find_one({'key': key})
        if setting is None:
            raise NotFoundError(f"Setting '{key}' not found")
        if setting.default_value is None:
            raise ValidationError(f"Setting '{key}' has no default value")

        return self.update(setting.id, {'value': copy.deepcopy(setting.default_value)})

    @repository_operation("Validate setting value")
    def validate_setting_value_for_key(self, key: str, value: Any) -> dict[str, Any]:
        setting = self.find_one({'key': key})
        if setting is None:
            return {'valid': False, 'error': f"Setting '{key}' not found"}
        if not validate_setting_value(setting, value):
            return {'valid': False, 'error': f"Invalid value for setting '{key}'"}
        return {'valid': True, 'error': None}

    @repository_operation("Initialize defaults")
    def initialize_defaults(self) -> list[dict[str, Any]]:
        """Insert the built-in settings that do not exist yet; existing ones are never touched."""
        results = []
        for default in DEFAULT_SETTINGS:
            if self.exists({'key': default['key']}):
                results.append({'key': default['key'], 'created': False})
                continue
            try:
                self.insert(copy.deepcopy(default))
                results.append({'key': default['key'], 'created': True})
            except ConflictError:
                if not self.exists({'key': default['key']}):
                    raise
                # Inserted concurrently by another process
                results.append({'key': default['key'], 'created': False})
        return results

    # Backup / restore --------------------------------------------------
    @repository_operation("Export settings")
    def export_settings(self, access_level: Any = AccessLevel.SUPER_ADMIN.value) -> list[dict[str, Any]]:
        exported = []
        for setting in self.get_settings_by_access_level(access_level):
            document = self.serialize(setting)
            exported.append({field: document.get(field) for field in EXPORT_FIELDS})
        return exported

    @repository_operation("Import settings")
    def import_settings(self, items: Iterable[dict[str, Any]], overwrite_existing: bool = False) -> list[dict[str, Any]]:
        results = []
        for item in items:
            key = item.get('key')
            try:
                existing = self.find_one({'key': key}) if key else None
                if existing is not None and not overwrite_existing:
                    raise ConflictError(f"Setting '{key}' exists and overwrite is disabled")

                if existing is not None:
                    changes = {field: item[field] for field in EXPORT_FIELDS if field in item and field != 'key'}
                    self.update(existing.id, changes)
                else:
                    self.create_setting({field: item[field] for field in EXPORT_FIELDS if field in item})
                results.append({'key': key, 'success': True})
            except CMSError as exc:
                results.append({'key': key, 'success': False, 'error': exc.message})
        return results


__all__ = ['SettingsRepository', 'DEFAULT_SETTINGS']
