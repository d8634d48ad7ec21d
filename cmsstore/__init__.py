"""Application factory for the content management data layer."""

from __future__ import annotations

import os

from flask import Flask

from cmsstore.commands import register_commands
from cmsstore.config import get_config
from cmsstore.errors import register_error_handlers
from cmsstore.extensions import db, migrate


def create_app(config_class=None):
    """Create the Flask application hosting config, database binding and CLI."""
    app = Flask(__name__)
    app.config.from_object(config_class or get_config())

    # Initialize Flask extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Ensure models and lifecycle hooks are registered
    import cmsstore.models  # noqa: F401

    # Development environments without migrations
    if os.getenv('CMS_AUTO_CREATE_TABLES', '0') == '1':
        with app.app_context():
            db.create_all()
            app.logger.info("Created missing database tables")

    register_error_handlers(app)
    register_commands(app)

    return app


__all__ = ["create_app"]
