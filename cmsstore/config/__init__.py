from __future__ import annotations

import json
import os
from datetime import date

from dotenv import load_dotenv

load_dotenv()


def _json_default(value):
    if isinstance(value, date):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def json_dumps(value) -> str:
    """Serializer for JSON columns; dates inside sub-records are stored as ISO strings."""
    return json.dumps(value, default=_json_default)


def _database_uri(default_name: str) -> str:
    host = os.getenv('DB_HOST', '127.0.0.1')
    port = os.getenv('DB_PORT', '5432')
    return os.getenv('DATABASE_URL') or f'postgresql://{host}:{port}/{default_name}'


class Config:
    MODE = 'local'
    SECRET_KEY = os.getenv('SECRET_KEY') or 'dev-secret-key-change-me'
    SQLALCHEMY_DATABASE_URI = _database_uri('content_management_db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 10,
        'pool_timeout': 5,
        'pool_pre_ping': True,
        'json_serializer': json_dumps,
    }

    # Sessions are capped at this lifetime regardless of the requested TTL
    SESSION_MAX_LIFETIME_DAYS = int(os.getenv('SESSION_MAX_LIFETIME_DAYS', '30'))
    SESSION_DEFAULT_TTL_SECONDS = int(os.getenv('SESSION_DEFAULT_TTL_SECONDS', '86400'))
    ANALYTICS_RETENTION_DAYS = int(os.getenv('ANALYTICS_RETENTION_DAYS', '365'))
    DEFAULT_PAGE_SIZE = int(os.getenv('DEFAULT_PAGE_SIZE', '10'))
    # Retries allowed when a slug claim loses the unique-index race
    SLUG_CLAIM_ATTEMPTS = int(os.getenv('SLUG_CLAIM_ATTEMPTS', '5'))


class LocalConfig(Config):
    MODE = 'local'


class StagingConfig(Config):
    MODE = 'staging'
    SQLALCHEMY_DATABASE_URI = _database_uri('content_management_db_staging')


class ProductionConfig(Config):
    MODE = 'production'
    SQLALCHEMY_DATABASE_URI = _database_uri('content_management_db_prod')
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 20,
        'pool_timeout': 5,
        'pool_pre_ping': True,
        'json_serializer': json_dumps,
    }


class TestingConfig(Config):
    MODE = 'testing'
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {'json_serializer': json_dumps}


config_by_name = {
    'local': LocalConfig,
    'staging': StagingConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
}


def get_config(mode: str | None = None):
    """Resolve a config class by mode name, falling back to local."""
    mode = mode or os.getenv('CMS_MODE', 'local')
    return config_by_name.get(mode, LocalConfig)
