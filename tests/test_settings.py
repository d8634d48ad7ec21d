"""
Settings repository tests:
- default seeding is insert-only
- value validation and per-key bulk results
- access-level visibility
- export / import
"""

from types import SimpleNamespace

import pytest

from cmsstore.errors import ConflictError, NotFoundError, ValidationError
from cmsstore.services.settings import DEFAULT_SETTINGS, SettingsRepository
from cmsstore.services.validation import validate_setting_value


@pytest.fixture
def repo(app):
    repository = SettingsRepository()
    repository.initialize_defaults()
    return repository


def _public_setting(key='brand_color', value='#0d6efd', **extra):
    return {
        'key': key,
        'value': value,
        'type': 'string',
        'category': 'appearance',
        'label': key.replace('_', ' ').title(),
        'access_level': 'public',
        **extra,
    }


class TestDefaults:
    """initialize_defaults seeds missing keys only."""

    def test_seeds_all_defaults(self, repo):
        keys = {setting.key for setting in repo.get_list()}

        assert keys == {default['key'] for default in DEFAULT_SETTINGS}
        assert repo.get_setting('posts_per_page') == 10
        assert repo.get_setting('smtp_settings')['port'] == 587

    def test_second_run_changes_nothing(self, repo):
        repo.set_setting('posts_per_page', 25)

        results = repo.initialize_defaults()

        assert all(result['created'] is False for result in results)
        assert repo.count() == len(DEFAULT_SETTINGS)
        assert repo.get_setting('posts_per_page') == 25

    def test_missing_defaults_are_restored(self, repo):
        repo.remove(repo.find_one({'key': 'enable_comments'}).id)

        results = repo.initialize_defaults()

        assert [r['key'] for r in results if r['created']] == ['enable_comments']
        assert repo.get_setting('enable_comments') is True


class TestSetSetting:
    """Writing values."""

    def test_set_records_user(self, repo):
        updated = repo.set_setting('site_title', 'Field Notes', user_id='u' * 40)

        assert updated.value == 'Field Notes'
        assert updated.updated_by == 'u' * 40

    def test_negative_posts_per_page_is_accepted(self, repo):
        """Number settings carry no bounds, so -1 passes validation."""
        assert repo.set_setting('posts_per_page', -1).value == -1

    def test_unknown_key(self, repo):
        with pytest.raises(NotFoundError) as excinfo:
            repo.set_setting('no_such_key', 1)

        assert "Setting 'no_such_key' not found" in excinfo.value.message

    def test_required_and_length_rules(self, repo):
        with pytest.raises(ValidationError):
            repo.set_setting('site_title', '')

        with pytest.raises(ValidationError):
            repo.set_setting('site_title', 'x' * 101)

        assert repo.get_setting('site_title') == 'My Website'

    def test_clear_optional_value(self, repo):
        cleared = repo.set_setting('site_description', None)

        assert cleared.value is None
        assert repo.get_setting('site_description') is None

        with pytest.raises(ValidationError):
            repo.set_setting('site_title', None)

    def test_get_setting_returns_value(self, repo):
        assert repo.get_setting('site_title') == 'My Website'
        assert repo.get_setting('enable_comments') is True
        assert repo.get_setting('no_such_key') is None

    def test_bulk_update_reports_each_key(self, repo):
        results = repo.bulk_update_settings({
            'site_title': 'New title',
            'missing_key': 1,
            'site_description': 'x' * 200,
        }, user_id='admin')

        outcome = {result['key']: result['success'] for result in results}
        assert outcome == {'site_title': True, 'missing_key': False, 'site_description': False}
        assert 'not found' in results[1]['error']
        assert repo.get_setting('site_title') == 'New title'

    def test_reset_to_default(self, repo):
        repo.set_setting('posts_per_page', 50)

        assert repo.reset_setting_to_default('posts_per_page').value == 10

        with pytest.raises(ValidationError) as excinfo:
            repo.reset_setting_to_default('site_title')
        assert 'has no default value' in excinfo.value.message

        with pytest.raises(NotFoundError):
            repo.reset_setting_to_default('no_such_key')

    def test_validate_for_key(self, repo):
        assert repo.validate_setting_value_for_key('site_title', 'Ok') == {'valid': True, 'error': None}
        assert repo.validate_setting_value_for_key('site_title', '')['valid'] is False
        assert repo.validate_setting_value_for_key('nope', 1)['valid'] is False


class TestValidateValue:
    """The validation block of a setting."""

    def _setting(self, type_='string', **validation):
        return SimpleNamespace(type=type_, validation=validation or None)

    def test_no_rules_accepts_anything(self):
        assert validate_setting_value(self._setting(), None)
        assert validate_setting_value(self._setting('number'), -1)

    def test_string_rules(self):
        setting = self._setting(min_length=2, max_length=4, pattern=r'^[a-z]+$')

        assert validate_setting_value(setting, 'abc')
        assert not validate_setting_value(setting, 'a')
        assert not validate_setting_value(setting, 'abcde')
        assert not validate_setting_value(setting, 'AB')

    def test_length_rules_ignore_non_strings(self):
        assert validate_setting_value(self._setting('number', max_length=1), 12345)

    def test_options_use_strict_equality(self):
        setting = self._setting('number', options=[1, 2, 3])

        assert validate_setting_value(setting, 2)
        assert not validate_setting_value(setting, True)
        assert not validate_setting_value(setting, 4)

    def test_required(self):
        setting = self._setting(required=True)

        assert not validate_setting_value(setting, None)
        assert not validate_setting_value(setting, '')
        assert validate_setting_value(setting, 0)


class TestAccessLevels:
    """Cumulative visibility of settings."""

    def test_public_settings_mapping(self, repo):
        repo.create_setting(_public_setting())
        repo.create_setting(_public_setting('tagline', 'Notes from the field', category='general'))

        assert repo.get_public_settings() == {
            'brand_color': '#0d6efd',
            'tagline': 'Notes from the field',
        }

    def test_admin_level_excludes_super_admin(self, repo):
        repo.create_setting(_public_setting())

        keys = {setting.key for setting in repo.get_settings_by_access_level('admin')}

        assert 'brand_color' in keys
        assert 'site_title' in keys
        assert 'smtp_settings' not in keys

    def test_super_admin_sees_everything(self, repo):
        assert len(repo.get_settings_by_access_level('super_admin')) == len(DEFAULT_SETTINGS)

    def test_unknown_level_sees_public_only(self, repo):
        repo.create_setting(_public_setting())

        keys = [setting.key for setting in repo.get_settings_by_access_level('intern')]

        assert keys == ['brand_color']

    def test_grouped_by_category(self, repo):
        grouped = repo.get_settings_grouped_by_category('admin')

        assert sorted(grouped) == ['general', 'seo']
        assert [s.key for s in grouped['seo']] == ['default_meta_description']

    def test_by_category_and_editable(self, repo):
        repo.create_setting(_public_setting(editable=False))

        assert [s.key for s in repo.get_settings_by_category('email')] == ['smtp_settings']
        editable = {s.key for s in repo.get_editable_settings('super_admin')}
        assert 'brand_color' not in editable
        assert 'smtp_settings' in editable

    def test_search_settings(self, repo):
        keys = [s.key for s in repo.search_settings('meta')]

        assert keys == ['default_meta_description']


class TestCreateSetting:
    """Creating custom settings."""

    def test_create_defaults(self, repo):
        setting = repo.create_setting({
            'key': 'max_upload_mb',
            'value': 20,
            'type': 'number',
            'category': 'custom',
            'label': 'Max upload size',
        })

        assert setting.access_level.value == 'admin'
        assert setting.editable is True

    def test_duplicate_key(self, repo):
        with pytest.raises(ConflictError) as excinfo:
            repo.create_setting(_public_setting('site_title'))

        assert "Setting 'site_title' already exists" in excinfo.value.message

    def test_required_fields(self, repo):
        with pytest.raises(ValidationError) as excinfo:
            repo.create_setting({'key': 'orphan', 'value': 1})

        assert 'Key, label, type, and category are required' in excinfo.value.message

    def test_initial_value_is_validated(self, repo):
        with pytest.raises(ValidationError):
            repo.create_setting(_public_setting('layout', 'grid', validation={'options': ['list', 'cards']}))

    def test_without_default_value(self, repo):
        setting = repo.create_setting(_public_setting('accent_color', '#ff6600'))

        assert setting.default_value is None
        with pytest.raises(ValidationError):
            repo.reset_setting_to_default('accent_color')

    def test_insert_checks_value(self, repo):
        document = _public_setting('code', 'way-too-long', validation={'max_length': 3})
        before = repo.count()

        with pytest.raises(ValidationError) as excinfo:
            repo.insert(document)
        assert "Invalid value for setting 'code'" in excinfo.value.message

        with pytest.raises(ValidationError):
            repo.bulk_insert([_public_setting('short_code', 'ok'), document])

        assert repo.count() == before
        assert repo.get_setting('short_code') is None


class TestExportImport:
    """Backup and restore."""

    def test_import_respects_overwrite_flag(self, repo):
        exported = repo.export_settings()
        site_title = next(item for item in exported if item['key'] == 'site_title')
        site_title['value'] = 'Restored title'

        skipped = repo.import_settings([site_title])
        assert skipped[0]['success'] is False
        assert 'overwrite is disabled' in skipped[0]['error']

        applied = repo.import_settings([site_title], overwrite_existing=True)
        assert applied == [{'key': 'site_title', 'success': True}]
        assert repo.get_setting('site_title') == 'Restored title'

    def test_import_creates_new_keys(self, repo):
        results = repo.import_settings([
            _public_setting('footer_text', 'Bye'),
            {'key': 'broken'},
        ])

        assert [r['success'] for r in results] == [True, False]
        assert repo.get_setting('footer_text') == 'Bye'

    def test_export_shape(self, repo):
        exported = repo.export_settings()

        smtp = next(item for item in exported if item['key'] == 'smtp_settings')
        assert smtp['access_level'] == 'super_admin'
        assert smtp['type'] == 'object'
        assert 'id' not in smtp
