"""Settings seeding, backup and restore commands."""

import json

import click
from flask.cli import with_appcontext

from cmsstore.errors import CMSError
from cmsstore.services.settings import SettingsRepository


@click.group('settings')
def settings_commands():
    """Site settings commands."""
    pass


@settings_commands.command('init')
@with_appcontext
def init_settings():
    """Insert the built-in settings that are missing.

    Existing settings are left untouched, so this is safe to re-run.

    Example:
        flask settings init
    """
    try:
        results = SettingsRepository().initialize_defaults()
    except CMSError as e:
        click.echo(click.style(f'Error: {e.message}', fg='red'))
        return

    created = [result['key'] for result in results if result['created']]
    for key in created:
        click.echo(f'  Created: {key}')
    click.echo(click.style(f'{len(created)} settings created, {len(results) - len(created)} already present.', fg='green'))


@settings_commands.command('export')
@click.option('--output', type=click.Path(dir_okay=False, writable=True), help='Write JSON to this file instead of stdout')
@with_appcontext
def export_settings(output):
    """Export every setting as JSON."""
    try:
        exported = SettingsRepository().export_settings()
    except CMSError as e:
        click.echo(click.style(f'Error: {e.message}', fg='red'))
        return

    payload = json.dumps(exported, indent=2, default=str)
    if output:
        with open(output, 'w', encoding='utf-8') as handle:
            handle.write(payload)
        click.echo(click.style(f'Exported {len(exported)} settings to {output}', fg='green'))
    else:
        click.echo(payload)


@settings_commands.command('import')
@click.argument('source', type=click.Path(exists=True, dir_okay=False))
@click.option('--overwrite', is_flag=True, default=False, help='Replace settings that already exist')
@with_appcontext
def import_settings(source, overwrite):
    """Import settings from a JSON export."""
    with open(source, encoding='utf-8') as handle:
        try:
            items = json.load(handle)
        except json.JSONDecodeError as e:
            click.echo(click.style(f'Error: {source} is not valid JSON ({e})', fg='red'))
            return

    if not isinstance(items, list):
        click.echo(click.style('Error: expected a JSON list of settings', fg='red'))
        return

    results = SettingsRepository().import_settings(items, overwrite_existing=overwrite)
    failures = 0
    for result in results:
        if result['success']:
            click.echo(f"  Imported: {result['key']}")
        else:
            failures += 1
            click.echo(click.style(f"  Skipped {result['key']}: {result['error']}", fg='yellow'))

    click.echo(click.style(f'{len(results) - failures} imported, {failures} skipped.', fg='green'))
