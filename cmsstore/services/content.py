"""Content repository: slugs, publishing workflow and content finders."""
from __future__ import annotations

import re
from typing import Any, Iterable

from flask import current_app
from sqlalchemy import func, select, update

from cmsstore.errors import ConflictError, NotFoundError, ValidationError
from cmsstore.extensions import db
from cmsstore.models.models import (
    Content,
    ContentCategory,
    ContentStatus,
    ContentTag,
    ContentType,
    Visibility,
    utcnow,
)
from cmsstore.services.crud import CRUDService, repository_operation

PUBLISHED_FIRST = {"published_at": -1}


def slugify(text: str) -> str:
    """Convert a title to a URL-friendly slug."""
    slug = text.lower().strip()
    slug = re.sub(r'[^a-z0-9\s-]', '', slug)
    slug = re.sub(r'\s+', '-', slug)
    slug = re.sub(r'-+', '-', slug)
    return re.sub(r'^-|-$', '', slug)


def _as_list(values: str | Iterable[str]) -> list[str]:
    if isinstance(values, str):
        return [values]
    return list(values)


class ContentRepository(CRUDService):
    """Repository for pages, blog posts and other content documents."""

    def __init__(self):
        super().__init__(Content)

    generate_slug = staticmethod(slugify)

    @repository_operation("Slug generation")
    def ensure_unique_slug(self, base_slug: str, exclude_id: str | None = None) -> str:
        """Return base_slug, or the first free base_slug-1, base_slug-2, ..."""
        slug = base_slug
        counter = 1
        while True:
            criteria = [Content.slug == slug]
            if exclude_id:
                criteria.append(Content.id != exclude_id)
            if not self.exists(criteria):
                return slug
            slug = f"{base_slug}-{counter}"
            counter += 1

    @repository_operation("Content creation")
    def insert(self, data: dict[str, Any]) -> Content:
        content_data = {
            'type': ContentType.PAGE.value,
            'status': ContentStatus.DRAFT.value,
            'visibility': Visibility.PUBLIC.value,
            **data,
        }
        if not content_data.get('title'):
            raise ValidationError('Title is required')

        base_slug = (content_data.get('slug') or slugify(content_data['title'])).lower()
        attempts = current_app.config.get('SLUG_CLAIM_ATTEMPTS', 5)

        for _ in range(attempts):
            content_data['slug'] = self.ensure_unique_slug(base_slug)
            try:
                return super().insert(content_data)
            except ConflictError:
                # Another writer claimed the free slug between lookup and insert
                if not self.exists({'slug': content_data['slug']}):
                    raise
                current_app.logger.info(f"Slug '{content_data['slug']}' was claimed concurrently, retrying")

        raise ConflictError(f"Could not claim a unique slug for '{base_slug}'")

    @repository_operation("Content update")
    def update(self, object_id: str, data: dict[str, Any]) -> Content:
        update_data = dict(data)

        if update_data.get('slug'):
            update_data['slug'] = self.ensure_unique_slug(update_data['slug'].lower(), object_id)

        if update_data.get('title') and not update_data.get('slug'):
            existing = self.find_by_id(object_id)
            if existing is not None and not existing.slug:
                update_data['slug'] = self.ensure_unique_slug(slugify(update_data['title']), object_id)

        return super().update(object_id, update_data)

    # Finders -----------------------------------------------------------
    @repository_operation("Find by type")
    def find_by_type(self, content_type: str, **options) -> list[Content]:
        options.setdefault('sort', PUBLISHED_FIRST)
        return self.get_list(
            {'type': content_type, 'status': ContentStatus.PUBLISHED.value},
            **options,
        )

    @repository_operation("Find by slug")
    def find_by_slug(self, slug: str, **options) -> Content | None:
        return self.find_one({'slug': slug}, **options)

    @repository_operation("Find published")
    def find_published(self, **options) -> list[Content]:
        options.setdefault('sort', PUBLISHED_FIRST)
        return self.get_list({'status': ContentStatus.PUBLISHED.value}, **options)

    @repository_operation("Find by author")
    def find_by_author(self, author_id: str, **options) -> list[Content]:
        return self.get_list([Content.author['id'].as_string() == author_id], **options)

    @repository_operation("Find by tags")
    def find_by_tags(self, tags: str | Iterable[str], **options) -> list[Content]:
        options.setdefault('sort', PUBLISHED_FIRST)
        criteria = [
            Content.status == ContentStatus.PUBLISHED,
            Content.tag_links.any(ContentTag.tag.in_(_as_list(tags))),
        ]
        return self.get_list(criteria, **options)

    @repository_operation("Find by categories")
    def find_by_categories(self, categories: str | Iterable[str], **options) -> list[Content]:
        options.setdefault('sort', PUBLISHED_FIRST)
        criteria = [
            Content.status == ContentStatus.PUBLISHED,
            Content.category_links.any(ContentCategory.category.in_(_as_list(categories))),
        ]
        return self.get_list(criteria, **options)

    @repository_operation("Find featured")
    def find_featured(self, **options) -> list[Content]:
        options.setdefault('sort', PUBLISHED_FIRST)
        criteria = [
            Content.status == ContentStatus.PUBLISHED,
            Content.blog_specific['featured'].as_boolean() == True,  # noqa: E712
        ]
        return self.get_list(criteria, **options)

    @repository_operation("Content search")
    def search_content(self, term: str, **options) -> list[Content]:
        return self.search(term, query={'status': ContentStatus.PUBLISHED.value}, **options)

    @repository_operation("Popular content")
    def get_popular_content(self, limit: int = 10) -> list[Content]:
        return self.get_list(
            {'status': ContentStatus.PUBLISHED.value},
            sort={'view_count': -1},
            limit=limit,
        )

    # Workflow ----------------------------------------------------------
    @repository_operation("Publish")
    def publish(self, object_id: str) -> Content:
        existing = self.find_by_id(object_id)
        if existing is None:
            raise NotFoundError('Content not found')

        changes: dict[str, Any] = {'status': ContentStatus.PUBLISHED.value}
        if existing.published_at is None:
            changes['published_at'] = utcnow()
        return self.update(object_id, changes)

    @repository_operation("Archive")
    def archive(self, object_id: str) -> Content:
        return self.update(object_id, {'status': ContentStatus.ARCHIVED.value})

    @repository_operation("View increment")
    def increment_views(self, object_id: str) -> Content:
        stmt = (
            update(Content)
            .where(Content.id == object_id)
            .values(view_count=Content.view_count + 1, last_viewed=utcnow())
            .execution_options(synchronize_session=False)
        )
        if db.session.execute(stmt).rowcount == 0:
            raise NotFoundError('Content not found')
        db.session.commit()
        return self.find_by_id(object_id)

    # Reporting ---------------------------------------------------------
    @repository_operation("Content stats")
    def get_content_stats(self) -> dict[str, Any]:
        rows = self.aggregate(
            select(Content.status, func.count(Content.id).label('count'))
            .group_by(Content.status)
            .order_by(Content.status)
        )
        statuses = [
            {'status': getattr(row['status'], 'value', row['status']), 'count': row['count']}
            for row in rows
        ]
        return {
            'total': sum(item['count'] for item in statuses),
            'statuses': statuses,
        }

    @repository_operation("Published pagination")
    def get_published_paginated(self, page: int = 1, limit: int | None = None) -> dict[str, Any]:
        return self.paginate(
            {'status': ContentStatus.PUBLISHED.value},
            page=page,
            limit=limit,
            sort=PUBLISHED_FIRST,
        )

    @repository_operation("Type pagination")
    def get_by_type_paginated(self, content_type: str, page: int = 1, limit: int | None = None) -> dict[str, Any]:
        return self.paginate(
            {'type': content_type, 'status': ContentStatus.PUBLISHED.value},
            page=page,
            limit=limit,
            sort=PUBLISHED_FIRST,
        )


__all__ = ['ContentRepository', 'slugify']
