"""Analytics repository: append-only event recording and traffic reports."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from flask import current_app
from sqlalchemy import case, distinct, func, select

from cmsstore.errors import NotFoundError, ValidationError
from cmsstore.models.models import AnalyticsEvent, EventType, utcnow
from cmsstore.services.crud import CRUDService, repository_operation

ANONYMIZED = 'anonymized'

session_key = AnalyticsEvent.visitor['session_id'].as_string()


class AnalyticsRepository(CRUDService):
    """Repository for analytics events.

    Events are only ever appended; the sole in-place change is
    ``anonymize``, which scrubs visitor identifiers.
    """

    def __init__(self):
        super().__init__(AnalyticsEvent)

    def _window(self, start: datetime, end: datetime, event_type: str | None = EventType.PAGE_VIEW.value) -> list:
        criteria = [AnalyticsEvent.timestamp >= start, AnalyticsEvent.timestamp <= end]
        if event_type is not None:
            criteria.append(AnalyticsEvent.event_type == event_type)
        return criteria

    # Recording ---------------------------------------------------------
    @repository_operation("Event recording")
    def record_event(self, event_type: str, data: dict[str, Any]) -> AnalyticsEvent:
        event_data = {
            **data,
            'event_type': getattr(event_type, 'value', event_type),
            'timestamp': utcnow(),
        }
        return self.insert(event_data)

    @repository_operation("Page view recording")
    def record_page_view(self, data: dict[str, Any]) -> AnalyticsEvent:
        return self.record_event(EventType.PAGE_VIEW.value, data)

    @repository_operation("Update")
    def update(self, object_id: str, data: dict[str, Any]) -> AnalyticsEvent:
        raise ValidationError('Analytics events are append-only')

    @repository_operation("Anonymize")
    def anonymize(self, event_id: str) -> AnalyticsEvent:
        event = self.find_by_id(event_id)
        if event is None:
            raise NotFoundError('Analytics event not found')

        changes = {}
        if event.visitor:
            visitor = dict(event.visitor)
            if visitor.get('ip_address'):
                visitor['ip_address'] = ANONYMIZED
            if visitor.get('user_agent'):
                visitor['user_agent'] = ANONYMIZED
            changes['visitor'] = visitor
        if event.meta:
            meta = dict(event.meta)
            for key in ('ip_address_raw', 'user_agent_raw'):
                if meta.get(key):
                    meta[key] = ANONYMIZED
            changes['meta'] = meta

        return super().update(event_id, changes) if changes else event

    # Reports -----------------------------------------------------------
    @repository_operation("Page view count")
    def get_page_views(self, start: datetime, end: datetime, content_id: str | None = None) -> int:
        criteria = self._window(start, end)
        if content_id:
            criteria.append(AnalyticsEvent.content_id == content_id)
        return self.count(criteria)

    @repository_operation("Unique visitors")
    def get_unique_visitors(self, start: datetime, end: datetime) -> int:
        rows = self.aggregate(
            select(func.count(distinct(session_key)).label('unique_visitors'))
            .where(*self._window(start, end))
        )
        return rows[0]['unique_visitors'] if rows else 0

    @repository_operation("Top pages")
    def get_top_pages(self, start: datetime, end: datetime, limit: int = 10) -> list[dict[str, Any]]:
        views = func.count(AnalyticsEvent.id).label('views')
        return self.aggregate(
            select(
                AnalyticsEvent.page_url,
                func.max(AnalyticsEvent.page_title).label('page_title'),
                views,
                func.count(distinct(session_key)).label('unique_visitors'),
            )
            .where(*self._window(start, end))
            .group_by(AnalyticsEvent.page_url)
            .order_by(views.desc())
            .limit(limit)
        )

    def _breakdown(self, key_expr, label: str, start: datetime, end: datetime) -> list[dict[str, Any]]:
        sessions = func.count(distinct(session_key)).label('sessions')
        return self.aggregate(
            select(
                key_expr.label(label),
                sessions,
                func.count(AnalyticsEvent.id).label('pageviews'),
            )
            .where(*self._window(start, end))
            .group_by(key_expr)
            .order_by(sessions.desc())
        )

    @repository_operation("Traffic sources")
    def get_traffic_sources(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        return self._breakdown(AnalyticsEvent.referrer['source'].as_string(), 'source', start, end)

    @repository_operation("Device stats")
    def get_device_stats(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        return self._breakdown(AnalyticsEvent.device['type'].as_string(), 'device_type', start, end)

    @repository_operation("Bounce rate")
    def get_bounce_rate(self, start: datetime, end: datetime) -> float:
        """Percentage of sessions with exactly one page view."""
        per_session = (
            select(session_key.label('session_id'), func.count(AnalyticsEvent.id).label('pageviews'))
            .where(*self._window(start, end), session_key.is_not(None))
            .group_by(session_key)
            .subquery()
        )
        rows = self.aggregate(
            select(
                func.count().label('total_sessions'),
                func.coalesce(func.sum(case((per_session.c.pageviews == 1, 1), else_=0)), 0).label('bounced'),
            ).select_from(per_session)
        )
        total = rows[0]['total_sessions'] if rows else 0
        if not total:
            return 0.0
        return round(rows[0]['bounced'] / total * 100, 2)

    @repository_operation("Average session duration")
    def get_average_session_duration(self, start: datetime, end: datetime) -> float:
        duration = AnalyticsEvent.metrics['duration'].as_float()
        per_session = (
            select(func.sum(duration).label('total_duration'))
            .where(*self._window(start, end), session_key.is_not(None), duration > 0)
            .group_by(session_key)
            .subquery()
        )
        rows = self.aggregate(
            select(func.avg(per_session.c.total_duration).label('average'))
        )
        average = rows[0]['average'] if rows else None
        return round(float(average), 2) if average is not None else 0.0

    @repository_operation("Popular content")
    def get_popular_content(self, start: datetime, end: datetime, limit: int = 10) -> list[dict[str, Any]]:
        views = func.count(AnalyticsEvent.id).label('views')
        rows = self.aggregate(
            select(
                AnalyticsEvent.content_id,
                views,
                func.count(distinct(session_key)).label('unique_visitors'),
                func.avg(AnalyticsEvent.metrics['duration'].as_float()).label('avg_duration'),
            )
            .where(*self._window(start, end), AnalyticsEvent.content_id.is_not(None))
            .group_by(AnalyticsEvent.content_id)
            .order_by(views.desc())
            .limit(limit)
        )
        for row in rows:
            if row['avg_duration'] is not None:
                row['avg_duration'] = round(float(row['avg_duration']), 2)
        return rows

    # Retention ---------------------------------------------------------
    @repository_operation("Analytics cleanup")
    def cleanup_old_data(self, older_than_days: int | None = None) -> int:
        if older_than_days is None:
            older_than_days = current_app.config.get('ANALYTICS_RETENTION_DAYS', 365)
        cutoff = utcnow() - timedelta(days=older_than_days)
        removed = self.delete_many([AnalyticsEvent.timestamp < cutoff])
        current_app.logger.info(f"Removed {removed} analytics events older than {older_than_days} days")
        return removed


__all__ = ['AnalyticsRepository']
