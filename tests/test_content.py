"""
Content repository tests:
- slug generation and uniqueness probing
- insert defaults and update slug handling
- publish / archive workflow and view counting
- published-only finders
"""

import re

import pytest

from cmsstore.errors import NotFoundError, ValidationError
from cmsstore.models import ContentStatus, ContentType, Visibility
from cmsstore.services.content import ContentRepository, slugify


@pytest.fixture
def repo(app):
    return ContentRepository()


class TestSlugify:
    """Slug derivation rules."""

    @pytest.mark.parametrize('title, expected', [
        ('Hello World!', 'hello-world'),
        ('  Multiple   Spaces -- here  ', 'multiple-spaces-here'),
        ('-Leading and trailing-', 'leading-and-trailing'),
        ('C++ & Rust: 2024 Edition', 'c-rust-2024-edition'),
        ('Crème brûlée', 'crme-brle'),
        ('!!!', ''),
    ])
    def test_slugify(self, title, expected):
        assert slugify(title) == expected

    def test_slug_shape(self):
        for title in ('A -- B', ' x ', 'Tabs\tand\nnewlines', '--already-slugged--'):
            slug = slugify(title)
            assert re.fullmatch(r'[a-z0-9-]*', slug)
            assert '--' not in slug
            assert not slug.startswith('-') and not slug.endswith('-')


class TestInsert:
    """Content creation."""

    def test_insert_applies_defaults(self, repo):
        content = repo.insert({'title': 'Hello World!'})

        assert content.slug == 'hello-world'
        assert content.type == ContentType.PAGE
        assert content.status == ContentStatus.DRAFT
        assert content.visibility == Visibility.PUBLIC
        assert content.author is None

    def test_duplicate_titles_get_numbered_slugs(self, repo):
        first = repo.insert({'title': 'Hello World!'})
        second = repo.insert({'title': 'Hello World!'})
        third = repo.insert({'title': 'Hello, World'})

        assert first.slug == 'hello-world'
        assert second.slug == 'hello-world-1'
        assert third.slug == 'hello-world-2'

    def test_explicit_slug_is_deduplicated_too(self, repo):
        repo.insert({'title': 'One', 'slug': 'landing'})
        other = repo.insert({'title': 'Two', 'slug': 'Landing'})

        assert other.slug == 'landing-1'

    def test_title_is_required(self, repo):
        with pytest.raises(ValidationError) as excinfo:
            repo.insert({'content': 'No title here'})

        assert excinfo.value.message == 'Content creation failed: Title is required'

    def test_invalid_type_is_rejected(self, repo):
        with pytest.raises(ValidationError):
            repo.insert({'title': 'Odd', 'type': 'newsletter'})

    def test_published_content_requires_body(self, repo):
        with pytest.raises(ValidationError) as excinfo:
            repo.insert({'title': 'Empty', 'status': 'published'})

        assert 'content is required when status is published' in excinfo.value.message

    def test_insert_published_stamps_published_at(self, repo):
        content = repo.insert({'title': 'Live', 'status': 'published', 'content': 'Body'})

        assert content.published_at is not None


class TestUpdate:
    """Slug handling on update."""

    def test_update_keeping_own_slug(self, repo):
        content = repo.insert({'title': 'Hello World!'})

        updated = repo.update(content.id, {'slug': 'hello-world', 'excerpt': 'Same slug'})

        assert updated.slug == 'hello-world'
        assert updated.excerpt == 'Same slug'

    def test_update_to_taken_slug_is_suffixed(self, repo):
        repo.insert({'title': 'Taken'})
        content = repo.insert({'title': 'Other'})

        updated = repo.update(content.id, {'slug': 'taken'})

        assert updated.slug == 'taken-1'

    def test_title_change_keeps_existing_slug(self, repo):
        content = repo.insert({'title': 'Original'})

        updated = repo.update(content.id, {'title': 'Renamed'})

        assert updated.title == 'Renamed'
        assert updated.slug == 'original'

    def test_update_missing(self, repo):
        with pytest.raises(NotFoundError) as excinfo:
            repo.update('a' * 40, {'title': 'Ghost'})

        assert excinfo.value.message.startswith('Content update failed:')


class TestWorkflow:
    """Publishing workflow and engagement counters."""

    def test_publish_stamps_once(self, repo):
        content = repo.insert({'title': 'Post', 'content': 'Body'})

        published = repo.publish(content.id)
        first_stamp = published.published_at
        republished = repo.publish(content.id)

        assert published.status == ContentStatus.PUBLISHED
        assert first_stamp is not None
        assert republished.published_at == first_stamp

    def test_publish_without_body_fails(self, repo):
        content = repo.insert({'title': 'Post'})

        with pytest.raises(ValidationError):
            repo.publish(content.id)

        assert repo.find_by_id(content.id).status == ContentStatus.DRAFT

    def test_publish_missing(self, repo):
        with pytest.raises(NotFoundError):
            repo.publish('b' * 40)

    def test_archive(self, repo):
        content = repo.insert({'title': 'Post'})

        assert repo.archive(content.id).status == ContentStatus.ARCHIVED

    def test_increment_views(self, repo):
        content = repo.insert({'title': 'Post'})

        repo.increment_views(content.id)
        viewed = repo.increment_views(content.id)

        assert viewed.view_count == 2
        assert viewed.last_viewed is not None

    def test_increment_views_missing(self, repo):
        with pytest.raises(NotFoundError):
            repo.increment_views('c' * 40)

    def test_url(self, repo):
        blog = repo.insert({'title': 'Blog post', 'type': 'blog'})
        page = repo.insert({'title': 'Contact'})

        assert blog.url == '/blog/blog-post'
        assert page.url == '/contact'


class TestFinders:
    """Finders return published content only, except by author or slug."""

    @pytest.fixture
    def library(self, repo):
        author = {'id': 'author-1', 'name': 'Ada', 'email': 'ada@example.com'}
        repo.insert({
            'title': 'Python tips', 'type': 'blog', 'status': 'published', 'content': 'Body',
            'tags': ['python', 'tips'], 'categories': ['dev'], 'author': author,
            'blog_specific': {'featured': True},
        })
        repo.insert({
            'title': 'Rust notes', 'type': 'blog', 'status': 'published', 'content': 'Body',
            'tags': ['rust'], 'categories': ['dev', 'systems'],
        })
        repo.insert({
            'title': 'Python draft', 'type': 'blog', 'tags': ['python'],
            'author': author, 'blog_specific': {'featured': True},
        })
        repo.insert({'title': 'About', 'status': 'published', 'content': 'Body'})
        return repo

    def test_find_by_type(self, library):
        blogs = library.find_by_type('blog')

        assert sorted(c.title for c in blogs) == ['Python tips', 'Rust notes']

    def test_find_by_slug_ignores_status(self, library):
        assert library.find_by_slug('python-draft').status == ContentStatus.DRAFT
        assert library.find_by_slug('missing') is None

    def test_find_by_author_ignores_status(self, library):
        found = library.find_by_author('author-1')

        assert sorted(c.title for c in found) == ['Python draft', 'Python tips']

    def test_find_by_tags_any_match(self, library):
        assert [c.title for c in library.find_by_tags('python')] == ['Python tips']
        assert sorted(c.title for c in library.find_by_tags(['python', 'rust'])) == ['Python tips', 'Rust notes']

    def test_find_by_categories(self, library):
        assert sorted(c.title for c in library.find_by_categories(['systems'])) == ['Rust notes']
        assert len(library.find_by_categories('dev')) == 2

    def test_find_featured(self, library):
        assert [c.title for c in library.find_featured()] == ['Python tips']

    def test_find_published_and_stats(self, library):
        assert len(library.find_published()) == 3

        stats = library.get_content_stats()
        assert stats['total'] == 4
        assert {'status': 'draft', 'count': 1} in stats['statuses']
        assert {'status': 'published', 'count': 3} in stats['statuses']

    def test_search_content_is_published_only(self, library):
        results = library.search_content('python')

        assert [c.title for c in results] == ['Python tips']

    def test_popular_content(self, library):
        rust = library.find_by_slug('rust-notes')
        library.increment_views(rust.id)

        popular = library.get_popular_content(limit=1)

        assert [c.title for c in popular] == ['Rust notes']

    def test_paginated_views(self, library):
        page = library.get_published_paginated(page=1, limit=2)
        assert page['pagination']['total_documents'] == 3
        assert len(page['documents']) == 2

        blogs = library.get_by_type_paginated('blog', page=1, limit=10)
        assert blogs['pagination']['total_documents'] == 2
