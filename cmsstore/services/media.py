"""Media library repository."""
from __future__ import annotations

import os
from datetime import timedelta
from typing import Any, Iterable

from flask import current_app
from sqlalchemy import func, not_, or_, select, update

from cmsstore.errors import NotFoundError, ValidationError
from cmsstore.extensions import db
from cmsstore.models.models import (
    PROCESSING_TRANSITIONS,
    Media,
    MediaTag,
    MediaUsage,
    ProcessingStatus,
    ThumbnailSize,
    UsageType,
    utcnow,
)
from cmsstore.services.crud import CRUDService, repository_operation

UPLOADED_FIRST = {'uploaded_at': -1}
THUMBNAIL_SIZES = tuple(size.value for size in ThumbnailSize)


def file_extension(filename: str) -> str:
    return os.path.splitext(filename or '')[1].lstrip('.').lower()


class MediaRepository(CRUDService):
    """Repository for uploaded media files and their usage references."""

    def __init__(self):
        super().__init__(Media)

    def _get(self, media_id: str) -> Media:
        media = self.find_by_id(media_id)
        if media is None:
            raise NotFoundError('Media not found')
        return media

    @repository_operation("Media creation")
    def insert(self, data: dict[str, Any]) -> Media:
        media_data = {'folder': 'uploads', **data}
        if not media_data.get('file_extension') and media_data.get('filename'):
            media_data['file_extension'] = file_extension(media_data['filename'])
        elif media_data.get('file_extension'):
            media_data['file_extension'] = media_data['file_extension'].lower()
        media_data.setdefault('processing', {'status': ProcessingStatus.PENDING.value, 'thumbnails': []})
        return super().insert(media_data)

    @repository_operation("Media deletion")
    def remove(self, media_id: str) -> Media:
        media = self._get(media_id)
        # The storage layer owns the file itself
        current_app.logger.info(f"Deleting media file: {media.file_path}")
        return super().remove(media_id)

    # Usage references --------------------------------------------------
    @repository_operation("Add usage")
    def add_usage(self, media_id: str, content_id: str, usage_type: str) -> Media:
        usage_value = getattr(usage_type, 'value', usage_type)
        if usage_value not in {usage.value for usage in UsageType}:
            raise ValidationError(f"'{usage_value}' is not a valid usage type")

        media = self._get(media_id)
        already_used = any(
            usage.content_id == content_id and usage.usage_type == usage_value
            for usage in media.usages
        )
        if not already_used:
            media.usages.append(MediaUsage(content_id=content_id, usage_type=usage_value))
            db.session.commit()
        return media

    @repository_operation("Remove usage")
    def remove_usage(self, media_id: str, content_id: str, usage_type: str | None = None) -> Media:
        usage_value = getattr(usage_type, 'value', usage_type)
        media = self._get(media_id)
        media.usages = [
            usage for usage in media.usages
            if not (usage.content_id == content_id and (usage_value is None or usage.usage_type == usage_value))
        ]
        db.session.commit()
        return media

    # Stats -------------------------------------------------------------
    def _bump(self, media_id: str, **values) -> Media:
        stmt = (
            update(Media)
            .where(Media.id == media_id)
            .values(last_accessed=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if db.session.execute(stmt).rowcount == 0:
            raise NotFoundError('Media not found')
        db.session.commit()
        return self.find_by_id(media_id)

    @repository_operation("Download increment")
    def increment_downloads(self, media_id: str) -> Media:
        return self._bump(media_id, download_count=Media.download_count + 1)

    @repository_operation("View increment")
    def increment_views(self, media_id: str) -> Media:
        return self._bump(media_id, view_count=Media.view_count + 1)

    # Processing state --------------------------------------------------
    def _transition(self, media: Media, target: ProcessingStatus, **fields) -> Media:
        processing = dict(media.processing or {})
        current = processing.get('status', ProcessingStatus.PENDING.value)
        if target.value not in PROCESSING_TRANSITIONS.get(current, frozenset()):
            raise ValidationError(f"Cannot move media processing from '{current}' to '{target.value}'")

        processing.update(fields, status=target.value)
        processing.setdefault('thumbnails', [])
        return self.update(media.id, {'processing': processing})

    @repository_operation("Processing start")
    def mark_processing_started(self, media_id: str) -> Media:
        return self._transition(self._get(media_id), ProcessingStatus.PROCESSING, error_message=None)

    @repository_operation("Processing completion")
    def mark_processing_complete(self, media_id: str, thumbnails: Iterable[dict[str, Any]] = ()) -> Media:
        thumbnails = [dict(thumbnail) for thumbnail in thumbnails]
        for thumbnail in thumbnails:
            if thumbnail.get('size') not in THUMBNAIL_SIZES:
                raise ValidationError(f"'{thumbnail.get('size')}' is not a valid thumbnail size")
            if not thumbnail.get('url'):
                raise ValidationError('Thumbnail url is required')

        return self._transition(
            self._get(media_id),
            ProcessingStatus.COMPLETED,
            thumbnails=thumbnails,
            processed_at=utcnow().isoformat(),
        )

    @repository_operation("Processing failure")
    def mark_processing_failed(self, media_id: str, error_message: str) -> Media:
        return self._transition(self._get(media_id), ProcessingStatus.FAILED, error_message=error_message)

    @repository_operation("Get thumbnail")
    def get_thumbnail(self, media_id: str, size: str = ThumbnailSize.MEDIUM.value) -> str | None:
        media = self._get(media_id)
        if not media.is_image:
            return None
        for thumbnail in (media.processing or {}).get('thumbnails', []):
            if thumbnail.get('size') == size:
                return thumbnail.get('url')
        return media.url

    # Finders -----------------------------------------------------------
    @repository_operation("Find by type")
    def find_by_type(self, file_type: str, **options) -> list[Media]:
        options.setdefault('sort', UPLOADED_FIRST)
        return self.get_list([Media.mime_type.like(f"{file_type}/%")], **options)

    @repository_operation("Find images")
    def find_images(self, **options) -> list[Media]:
        return self.find_by_type('image', **options)

    @repository_operation("Find by user")
    def find_by_user(self, user_id: str, **options) -> list[Media]:
        options.setdefault('sort', UPLOADED_FIRST)
        return self.get_list({'uploaded_by': user_id}, **options)

    @repository_operation("Find by folder")
    def find_by_folder(self, folder: str, **options) -> list[Media]:
        options.setdefault('sort', UPLOADED_FIRST)
        return self.get_list({'folder': folder}, **options)

    @repository_operation("Find unused")
    def find_unused(self, **options) -> list[Media]:
        options.setdefault('sort', UPLOADED_FIRST)
        return self.get_list([~Media.usages.any()], **options)

    @repository_operation("Find used in content")
    def find_used_in_content(self, content_id: str, **options) -> list[Media]:
        return self.get_list([Media.usages.any(MediaUsage.content_id == content_id)], **options)

    @repository_operation("Tag search")
    def search_by_tags(self, tags: str | Iterable[str], **options) -> list[Media]:
        tags = [tags] if isinstance(tags, str) else list(tags)
        options.setdefault('sort', UPLOADED_FIRST)
        return self.get_list([Media.tag_links.any(MediaTag.tag.in_(tags))], **options)

    @repository_operation("Cleanup candidates")
    def find_cleanup_candidates(self, older_than_days: int = 30) -> list[Media]:
        cutoff = utcnow() - timedelta(days=older_than_days)
        return self.get_list(
            [~Media.usages.any(), Media.uploaded_at < cutoff],
            sort={'uploaded_at': 1},
        )

    @repository_operation("Storage stats")
    def get_storage_stats(self) -> dict[str, int]:
        is_image = Media.mime_type.like('image/%')
        is_video = Media.mime_type.like('video/%')
        is_audio = Media.mime_type.like('audio/%')
        rows = self.aggregate(
            select(
                func.count(Media.id).label('total_files'),
                func.coalesce(func.sum(Media.file_size), 0).label('total_size'),
                func.count(Media.id).filter(is_image).label('images'),
                func.count(Media.id).filter(is_video).label('videos'),
                func.count(Media.id).filter(is_audio).label('audio'),
                func.count(Media.id).filter(not_(or_(is_image, is_video, is_audio))).label('documents'),
            )
        )
        return {key: int(value or 0) for key, value in rows[0].items()}


__all__ = ['MediaRepository', 'file_extension']
