"""CLI commands for the content data layer."""

from .maintenance import maintenance_commands
from .settings import settings_commands
from .user import user_commands


def register_commands(app):
    """Register all CLI command groups with the Flask app."""
    app.cli.add_command(settings_commands)
    app.cli.add_command(user_commands)
    app.cli.add_command(maintenance_commands)
