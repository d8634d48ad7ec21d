"""Declarative field rules and document shape for each entity.

The rules are plain data; they are enforced by
``cmsstore.services.validation`` and read by the generic repository to map
document-style keys (``metrics.view_count``, ``metadata``) onto columns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from cmsstore.models.models import (
    AccessLevel,
    AnalyticsEvent,
    Content,
    ContentStatus,
    ContentType,
    EventType,
    Media,
    ProcessingStatus,
    Setting,
    SettingCategory,
    SettingType,
    User,
    UserRole,
    UserSession,
    UserStatus,
    Visibility,
)

SLUG_PATTERN = r"^[a-z0-9-]+$"
USERNAME_PATTERN = r"^[a-zA-Z0-9_]+$"
EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"


def _values(enum_cls) -> tuple[str, ...]:
    return tuple(member.value for member in enum_cls)


@dataclass(frozen=True)
class FieldRule:
    required: bool = False
    # (field, value): required only while `field` equals `value`
    required_when: tuple[str, str] | None = None
    choices: tuple[Any, ...] | None = None
    pattern: str | None = None
    min_length: int | None = None
    max_length: int | None = None
    minimum: float | None = None
    maximum: float | None = None
    instance_of: tuple[type, ...] | None = None


@dataclass(frozen=True)
class EntityRules:
    # Attribute name, or `json_column.key` for a rule inside a sub-record
    fields: dict[str, FieldRule] = field(default_factory=dict)
    # JSON sub-records and the keys partial updates may address
    nested: dict[str, frozenset[str]] = field(default_factory=dict)
    # Document groups stored as flat columns: group -> {key: attribute}
    flattened: dict[str, dict[str, str]] = field(default_factory=dict)
    # Document key -> attribute, where the two differ
    renamed: dict[str, str] = field(default_factory=dict)
    # Searchable attribute -> relevance weight
    search: dict[str, int] = field(default_factory=dict)
    hidden: frozenset[str] = frozenset()
    # Non-column attributes included when serializing
    extras: tuple[str, ...] = ()


CONTENT_RULES = EntityRules(
    fields={
        "title": FieldRule(required=True, min_length=1, max_length=200),
        "slug": FieldRule(required=True, pattern=SLUG_PATTERN),
        "type": FieldRule(choices=_values(ContentType)),
        "status": FieldRule(choices=_values(ContentStatus)),
        "visibility": FieldRule(choices=_values(Visibility)),
        "content": FieldRule(required_when=("status", ContentStatus.PUBLISHED.value)),
        "excerpt": FieldRule(max_length=500),
        "author": FieldRule(instance_of=(dict,)),
        "meta.seo_title": FieldRule(max_length=60),
        "meta.seo_description": FieldRule(max_length=160),
        "blog_specific.reading_time": FieldRule(minimum=0),
        "blog_specific.word_count": FieldRule(minimum=0),
        "blog_specific.part_number": FieldRule(minimum=1),
        "version.number": FieldRule(minimum=1),
    },
    nested={
        "author": frozenset({"id", "name", "email"}),
        "meta": frozenset({
            "seo_title", "seo_description", "seo_keywords", "featured_image",
            "og_image", "canonical_url", "robots", "schema_markup",
        }),
        "blog_specific": frozenset({
            "reading_time", "word_count", "comments_enabled", "featured",
            "series", "part_number",
        }),
        "page_specific": frozenset({
            "template", "menu_order", "parent_page", "show_in_nav", "custom_fields",
        }),
        "schedule": frozenset({"publish_at", "unpublish_at", "timezone"}),
        "version": frozenset({"number", "changelog", "auto_save"}),
    },
    flattened={
        "metrics": {
            "view_count": "view_count",
            "like_count": "like_count",
            "share_count": "share_count",
            "comment_count": "comment_count",
            "last_viewed": "last_viewed",
        },
        "timestamps": {
            "created_at": "created_at",
            "updated_at": "updated_at",
            "published_at": "published_at",
            "last_modified_by": "last_modified_by",
        },
    },
    renamed={"metadata": "meta"},
    search={"title": 3, "excerpt": 2, "content": 1},
    extras=("tags", "categories", "url"),
)

USER_RULES = EntityRules(
    fields={
        "username": FieldRule(required=True, min_length=3, max_length=30, pattern=USERNAME_PATTERN),
        "email": FieldRule(required=True, pattern=EMAIL_PATTERN),
        "password_hash": FieldRule(required=True),
        "salt": FieldRule(required=True),
        "role": FieldRule(choices=_values(UserRole)),
        "status": FieldRule(choices=_values(UserStatus)),
        "permissions": FieldRule(instance_of=(list,)),
        "profile.first_name": FieldRule(max_length=50),
        "profile.last_name": FieldRule(max_length=50),
        "profile.display_name": FieldRule(max_length=100),
        "profile.bio": FieldRule(max_length=500),
        "settings.theme": FieldRule(choices=("light", "dark", "auto")),
    },
    nested={
        "profile": frozenset({
            "first_name", "last_name", "display_name", "bio", "avatar", "website", "social",
        }),
        "settings": frozenset({
            "theme", "language", "timezone", "notifications", "editor_preferences",
        }),
        "two_factor": frozenset({"enabled", "secret", "backup_codes"}),
    },
    flattened={
        "activity": {
            "last_login": "last_login",
            "last_active": "last_active",
            "login_count": "login_count",
            "failed_login_attempts": "failed_login_attempts",
            "last_failed_login": "last_failed_login",
            "password_changed_at": "password_changed_at",
        },
    },
    search={"username": 3, "email": 2},
    hidden=frozenset({"password_hash", "salt", "email_verification_token"}),
    extras=("full_name",),
)

SETTING_RULES = EntityRules(
    fields={
        "key": FieldRule(required=True, min_length=1, max_length=100),
        "type": FieldRule(required=True, choices=_values(SettingType)),
        "category": FieldRule(required=True, choices=_values(SettingCategory)),
        "label": FieldRule(required=True, max_length=200),
        "access_level": FieldRule(choices=_values(AccessLevel)),
        "validation": FieldRule(instance_of=(dict,)),
        "validation.options": FieldRule(instance_of=(list,)),
    },
    nested={
        "validation": frozenset({"required", "min_length", "max_length", "pattern", "options"}),
    },
    search={"key": 3, "label": 2, "description": 1},
)

SESSION_RULES = EntityRules(
    fields={
        "session_id": FieldRule(required=True),
        "user_id": FieldRule(required=True),
        "ip_address": FieldRule(required=True),
        "user_agent": FieldRule(required=True),
        "expires_at": FieldRule(required=True),
        "data": FieldRule(instance_of=(dict,)),
        "device_info.device_type": FieldRule(choices=("desktop", "mobile", "tablet")),
    },
    nested={
        "device_info": frozenset({"browser", "os", "device_type"}),
    },
)

MEDIA_RULES = EntityRules(
    fields={
        "filename": FieldRule(required=True),
        "original_filename": FieldRule(required=True),
        "file_path": FieldRule(required=True),
        "url": FieldRule(required=True),
        "file_size": FieldRule(required=True, minimum=0),
        "mime_type": FieldRule(required=True),
        "file_extension": FieldRule(required=True),
        "uploaded_by": FieldRule(required=True),
        "processing.status": FieldRule(choices=_values(ProcessingStatus)),
        "image_metadata.quality": FieldRule(minimum=1, maximum=100),
        "seo.alt_text": FieldRule(max_length=200),
        "seo.caption": FieldRule(max_length=500),
        "seo.description": FieldRule(max_length=1000),
    },
    nested={
        "image_metadata": frozenset({
            "width", "height", "aspect_ratio", "color_space", "has_transparency",
            "dominant_colors", "exif", "format", "quality",
        }),
        "seo": frozenset({"alt_text", "caption", "title", "description"}),
    },
    flattened={
        "stats": {
            "download_count": "download_count",
            "view_count": "view_count",
            "last_accessed": "last_accessed",
        },
    },
    search={"original_filename": 3, "filename": 2, "folder": 1},
    extras=("tags", "used_in", "file_type", "file_size_formatted"),
)

ANALYTICS_RULES = EntityRules(
    fields={
        "event_type": FieldRule(required=True, choices=_values(EventType)),
        "page_url": FieldRule(required=True),
        "timestamp": FieldRule(required=True),
        "event_data": FieldRule(instance_of=(dict,)),
        "visitor.ip_address": FieldRule(required=True),
        "metrics.duration": FieldRule(minimum=0),
        "metrics.scroll_depth": FieldRule(minimum=0, maximum=100),
        "metrics.page_load_time": FieldRule(minimum=0),
        "metrics.interactions": FieldRule(minimum=0),
    },
    nested={
        "visitor": frozenset({"ip_address", "user_agent", "session_id", "user_id"}),
        "meta": frozenset({"ip_address_raw", "user_agent_raw", "processed", "version"}),
    },
    search={"page_url": 2, "page_title": 2},
)

ENTITY_RULES: dict[type, EntityRules] = {
    Content: CONTENT_RULES,
    User: USER_RULES,
    Setting: SETTING_RULES,
    UserSession: SESSION_RULES,
    Media: MEDIA_RULES,
    AnalyticsEvent: ANALYTICS_RULES,
}

_NO_RULES = EntityRules()


def rules_for(model) -> EntityRules:
    return ENTITY_RULES.get(model, _NO_RULES)


__all__ = [
    "FieldRule",
    "EntityRules",
    "ENTITY_RULES",
    "SLUG_PATTERN",
    "rules_for",
]
