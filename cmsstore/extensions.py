from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import MetaData
import bcrypt

# Stable constraint names so autogenerated migrations can drop/alter them
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Shared by the content, user, settings, session, media and analytics tables

db = SQLAlchemy(metadata=MetaData(naming_convention=NAMING_CONVENTION))
# SQLite cannot ALTER constraints in place
migrate = Migrate(render_as_batch=True)

__all__ = [
    "db",
    "migrate",
    "bcrypt",
    "NAMING_CONVENTION",
]
