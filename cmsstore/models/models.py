from __future__ import annotations

import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.associationproxy import association_proxy
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cmsstore.extensions import db

JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), 'postgresql')


def new_id() -> str:
    """Opaque 40-character document identifier."""
    return secrets.token_hex(20)


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum(enum_cls, name: str) -> SqlEnum:
    return SqlEnum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=lambda members: [m.value for m in members],
    )


class DocumentBase(db.Model):
    """Abstract base providing id/created/updated columns."""

    __abstract__ = True

    id: Mapped[str] = mapped_column(String(40), primary_key=True, default=new_id)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class ContentType(str, Enum):
    PAGE = "page"
    BLOG = "blog"
    SERVICE = "service"
    PRODUCT = "product"
    CUSTOM = "custom"


class ContentStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    SCHEDULED = "scheduled"


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    PROTECTED = "protected"


class UserRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    EDITOR = "editor"
    AUTHOR = "author"
    CONTRIBUTOR = "contributor"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING = "pending"


class SettingType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"


class SettingCategory(str, Enum):
    GENERAL = "general"
    SEO = "seo"
    SOCIAL = "social"
    EMAIL = "email"
    SECURITY = "security"
    APPEARANCE = "appearance"
    ANALYTICS = "analytics"
    CUSTOM = "custom"


class AccessLevel(str, Enum):
    PUBLIC = "public"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


# Cumulative visibility: each level sees its own settings and every level below it
ACCESS_HIERARCHY: dict[str, tuple[str, ...]] = {
    AccessLevel.PUBLIC.value: ("public",),
    AccessLevel.ADMIN.value: ("public", "admin"),
    AccessLevel.SUPER_ADMIN.value: ("public", "admin", "super_admin"),
}


class UsageType(str, Enum):
    FEATURED_IMAGE = "featured_image"
    INLINE = "inline"
    ATTACHMENT = "attachment"
    GALLERY = "gallery"
    THUMBNAIL = "thumbnail"


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Allowed media processing moves; completed is terminal, failed may be retried
PROCESSING_TRANSITIONS: dict[str, frozenset[str]] = {
    ProcessingStatus.PENDING.value: frozenset({"processing", "completed", "failed"}),
    ProcessingStatus.PROCESSING.value: frozenset({"completed", "failed"}),
    ProcessingStatus.FAILED.value: frozenset({"processing"}),
    ProcessingStatus.COMPLETED.value: frozenset(),
}


class ThumbnailSize(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    XLARGE = "xlarge"


class EventType(str, Enum):
    PAGE_VIEW = "page_view"
    DOWNLOAD = "download"
    FORM_SUBMIT = "form_submit"
    SEARCH = "search"
    CLICK = "click"
    VIDEO_PLAY = "video_play"
    VIDEO_COMPLETE = "video_complete"
    SCROLL_MILESTONE = "scroll_milestone"
    TIME_MILESTONE = "time_milestone"
    CUSTOM = "custom"


class Content(DocumentBase):
    """Pages, blog posts and other publishable documents."""
    __tablename__ = "content"
    __table_args__ = (
        Index("ix_content_type_status", "type", "status"),
        Index("ix_content_status_published", "status", "published_at"),
        Index("ix_content_type_status_published", "type", "status", "published_at"),
    )

    type: Mapped[ContentType] = mapped_column(
        _enum(ContentType, "content_type"),
        nullable=False,
        default=ContentType.PAGE,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    content: Mapped[str | None] = mapped_column(Text)
    excerpt: Mapped[str | None] = mapped_column(String(500))

    # Publishing
    status: Mapped[ContentStatus] = mapped_column(
        _enum(ContentStatus, "content_status"),
        nullable=False,
        default=ContentStatus.DRAFT,
        index=True,
    )
    visibility: Mapped[Visibility] = mapped_column(
        _enum(Visibility, "content_visibility"),
        nullable=False,
        default=Visibility.PUBLIC,
    )

    # Denormalized {id, name, email}
    author: Mapped[dict | None] = mapped_column(JSONType)

    # SEO & type-specific sub-records
    meta: Mapped[dict | None] = mapped_column("metadata", JSONType)
    blog_specific: Mapped[dict | None] = mapped_column(JSONType)
    page_specific: Mapped[dict | None] = mapped_column(JSONType)
    schedule: Mapped[dict | None] = mapped_column(JSONType)
    version: Mapped[dict | None] = mapped_column(JSONType)

    # Engagement
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    like_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    share_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    comment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_viewed: Mapped[datetime | None] = mapped_column(DateTime)

    published_at: Mapped[datetime | None] = mapped_column(DateTime)
    last_modified_by: Mapped[str | None] = mapped_column(String(40))

    tag_links: Mapped[list["ContentTag"]] = relationship(
        back_populates="content_item",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    category_links: Mapped[list["ContentCategory"]] = relationship(
        back_populates="content_item",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    tags = association_proxy("tag_links", "tag", creator=lambda tag: ContentTag(tag=tag))
    categories = association_proxy(
        "category_links", "category", creator=lambda category: ContentCategory(category=category)
    )

    @property
    def url(self) -> str:
        if self.type == ContentType.BLOG:
            return f"/blog/{self.slug}"
        return f"/{self.slug}"


class ContentTag(db.Model):
    __tablename__ = "content_tag"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content_id: Mapped[str] = mapped_column(
        String(40),
        ForeignKey("content.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tag: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    content_item: Mapped[Content] = relationship(back_populates="tag_links")


class ContentCategory(db.Model):
    __tablename__ = "content_category"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content_id: Mapped[str] = mapped_column(
        String(40),
        ForeignKey("content.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    content_item: Mapped[Content] = relationship(back_populates="category_links")


class User(DocumentBase):
    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_role_status", "role", "status"),
    )

    username: Mapped[str] = mapped_column(String(30), nullable=False, unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    # Secrets are never loaded unless a query undefers them
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False, deferred=True)
    salt: Mapped[str] = mapped_column(String(255), nullable=False, deferred=True)
    two_factor: Mapped[dict | None] = mapped_column(JSONType)

    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole, "user_role"),
        nullable=False,
        default=UserRole.CONTRIBUTOR,
        index=True,
    )
    permissions: Mapped[list | None] = mapped_column(JSONType, default=list)
    status: Mapped[UserStatus] = mapped_column(
        _enum(UserStatus, "user_status"),
        nullable=False,
        default=UserStatus.PENDING,
        index=True,
    )

    profile: Mapped[dict | None] = mapped_column(JSONType, default=dict)
    settings: Mapped[dict | None] = mapped_column(JSONType, default=dict)

    # Activity tracking
    last_login: Mapped[datetime | None] = mapped_column(DateTime, index=True)
    last_active: Mapped[datetime | None] = mapped_column(DateTime)
    login_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_login_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_failed_login: Mapped[datetime | None] = mapped_column(DateTime)
    password_changed_at: Mapped[datetime | None] = mapped_column(DateTime)

    email_verified_at: Mapped[datetime | None] = mapped_column(DateTime, index=True)
    email_verification_token: Mapped[str | None] = mapped_column(String(64), index=True)

    @property
    def full_name(self) -> str:
        profile = self.profile or {}
        if profile.get("first_name") and profile.get("last_name"):
            return f"{profile['first_name']} {profile['last_name']}"
        return profile.get("display_name") or self.username

    @property
    def display_name(self) -> str:
        return (self.profile or {}).get("display_name") or self.full_name or self.username


class Setting(DocumentBase):
    __tablename__ = "settings"
    __table_args__ = (
        Index("ix_settings_access_editable", "access_level", "editable"),
    )

    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    # Interpretation of value/default_value is discriminated by `type`
    value: Mapped[Any | None] = mapped_column(JSONType, nullable=True)
    type: Mapped[SettingType] = mapped_column(_enum(SettingType, "setting_type"), nullable=False)
    category: Mapped[SettingCategory] = mapped_column(
        _enum(SettingCategory, "setting_category"),
        nullable=False,
        index=True,
    )
    label: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    default_value: Mapped[Any | None] = mapped_column(JSONType, nullable=True)
    validation: Mapped[dict | None] = mapped_column(JSONType)
    access_level: Mapped[AccessLevel] = mapped_column(
        _enum(AccessLevel, "setting_access_level"),
        nullable=False,
        default=AccessLevel.ADMIN,
        index=True,
    )
    editable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_by: Mapped[str | None] = mapped_column(String(40))

    updated_by_user: Mapped["User | None"] = relationship(
        "User",
        primaryjoin="foreign(Setting.updated_by) == User.id",
        viewonly=True,
    )


class UserSession(DocumentBase):
    __tablename__ = "sessions"
    __table_args__ = (
        Index("ix_sessions_user_active", "user_id", "is_active"),
        Index("ix_sessions_user_accessed", "user_id", "last_accessed"),
    )

    session_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)
    user_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    data: Mapped[dict | None] = mapped_column(JSONType, default=dict)
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    user_agent: Mapped[str] = mapped_column(String(512), nullable=False)
    last_accessed: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    device_info: Mapped[dict | None] = mapped_column(JSONType)

    user: Mapped["User | None"] = relationship(
        "User",
        primaryjoin="foreign(UserSession.user_id) == User.id",
        viewonly=True,
    )

    @property
    def age(self) -> float:
        """Seconds since the session was created."""
        return (utcnow() - self.created_at).total_seconds()

    @property
    def time_until_expiry(self) -> float:
        return (self.expires_at - utcnow()).total_seconds()


class Media(DocumentBase):
    __tablename__ = "media"
    __table_args__ = (
        Index("ix_media_uploader_uploaded", "uploaded_by", "uploaded_at"),
        Index("ix_media_folder_uploaded", "folder", "uploaded_at"),
    )

    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(500), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1000), nullable=False, unique=True)
    url: Mapped[str] = mapped_column(String(1000), nullable=False)

    file_size: Mapped[int] = mapped_column(Integer, nullable=False)  # in bytes
    mime_type: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    file_extension: Mapped[str] = mapped_column(String(20), nullable=False)

    image_metadata: Mapped[dict | None] = mapped_column(JSONType)
    folder: Mapped[str] = mapped_column(String(500), nullable=False, default="uploads", index=True)

    uploaded_by: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)

    processing: Mapped[dict | None] = mapped_column(JSONType)
    seo: Mapped[dict | None] = mapped_column(JSONType)

    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_accessed: Mapped[datetime | None] = mapped_column(DateTime)

    tag_links: Mapped[list["MediaTag"]] = relationship(
        back_populates="media",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    usages: Mapped[list["MediaUsage"]] = relationship(
        back_populates="media",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    uploader: Mapped["User | None"] = relationship(
        "User",
        primaryjoin="foreign(Media.uploaded_by) == User.id",
        viewonly=True,
    )

    tags = association_proxy("tag_links", "tag", creator=lambda tag: MediaTag(tag=tag))

    @property
    def is_image(self) -> bool:
        return (self.mime_type or "").startswith("image/")

    @property
    def is_video(self) -> bool:
        return (self.mime_type or "").startswith("video/")

    @property
    def is_audio(self) -> bool:
        return (self.mime_type or "").startswith("audio/")

    @property
    def file_type(self) -> str:
        if self.is_image:
            return "image"
        if self.is_video:
            return "video"
        if self.is_audio:
            return "audio"
        return "document"

    @property
    def file_size_formatted(self) -> str:
        size = self.file_size or 0
        if size == 0:
            return "0 Bytes"
        units = ["Bytes", "KB", "MB", "GB"]
        index = 0
        while size >= 1024 and index < len(units) - 1:
            size /= 1024
            index += 1
        return f"{round(size, 2):g} {units[index]}"

    @property
    def used_in(self) -> list[dict]:
        return [
            {"content_id": usage.content_id, "usage_type": getattr(usage.usage_type, "value", usage.usage_type)}
            for usage in self.usages
        ]


class MediaTag(db.Model):
    __tablename__ = "media_tag"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    media_id: Mapped[str] = mapped_column(
        String(40),
        ForeignKey("media.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tag: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    media: Mapped[Media] = relationship(back_populates="tag_links")


class MediaUsage(db.Model):
    """Back-reference from a media file to the content using it."""
    __tablename__ = "media_usage"
    __table_args__ = (
        UniqueConstraint("media_id", "content_id", "usage_type", name="uq_media_usage"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    media_id: Mapped[str] = mapped_column(
        String(40),
        ForeignKey("media.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    content_id: Mapped[str | None] = mapped_column(String(40), index=True)
    usage_type: Mapped[UsageType] = mapped_column(_enum(UsageType, "media_usage_type"), nullable=False)

    media: Mapped[Media] = relationship(back_populates="usages")


class AnalyticsEvent(DocumentBase):
    """Append-only tracking event, retained for one year."""
    __tablename__ = "analytics"
    __table_args__ = (
        Index("ix_analytics_type_timestamp", "event_type", "timestamp"),
        Index("ix_analytics_content_timestamp", "content_id", "timestamp"),
        Index("ix_analytics_page_timestamp", "page_url", "timestamp"),
    )

    event_type: Mapped[EventType] = mapped_column(
        _enum(EventType, "analytics_event_type"),
        nullable=False,
        index=True,
    )
    content_id: Mapped[str | None] = mapped_column(String(40), index=True)
    page_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    page_title: Mapped[str | None] = mapped_column(String(500))
    event_data: Mapped[dict | None] = mapped_column(JSONType)

    visitor: Mapped[dict | None] = mapped_column(JSONType)
    location: Mapped[dict | None] = mapped_column(JSONType)
    device: Mapped[dict | None] = mapped_column(JSONType)
    referrer: Mapped[dict | None] = mapped_column(JSONType)
    metrics: Mapped[dict | None] = mapped_column(JSONType)

    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    meta: Mapped[dict | None] = mapped_column(JSONType)


__all__ = [name for name in globals() if name[0].isupper()] + ["new_id", "utcnow"]
