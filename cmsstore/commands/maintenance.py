"""Housekeeping sweeps for expired sessions and analytics."""

import click
from flask import current_app
from flask.cli import with_appcontext

from cmsstore.errors import CMSError
from cmsstore.services.analytics import AnalyticsRepository
from cmsstore.services.sessions import SessionRepository


@click.group('maintenance')
def maintenance_commands():
    """Maintenance commands."""
    pass


@maintenance_commands.command('sessions')
@click.option('--days', type=int, default=30, show_default=True, help='Also drop inactive sessions idle this long')
@with_appcontext
def sweep_sessions(days):
    """Delete expired sessions and long-idle inactive ones."""
    repository = SessionRepository()
    try:
        expired = repository.destroy_expired_sessions()
        stale = repository.cleanup_old_sessions(older_than_days=days)
    except CMSError as e:
        click.echo(click.style(f'Error: {e.message}', fg='red'))
        return

    click.echo(click.style(f'Removed {expired} expired and {stale} stale sessions.', fg='green'))


@maintenance_commands.command('analytics')
@click.option('--days', type=int, default=None, help='Retention in days (default: ANALYTICS_RETENTION_DAYS)')
@with_appcontext
def sweep_analytics(days):
    """Delete analytics events past the retention window."""
    days = days or current_app.config.get('ANALYTICS_RETENTION_DAYS', 365)
    try:
        removed = AnalyticsRepository().cleanup_old_data(older_than_days=days)
    except CMSError as e:
        click.echo(click.style(f'Error: {e.message}', fg='red'))
        return

    click.echo(click.style(f'Removed {removed} analytics events older than {days} days.', fg='green'))
