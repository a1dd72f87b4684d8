"""
Flask extension instances, initialized in create_app().

- db: named constraints, so Flask-Migrate batch migrations on SQLite can
  drop/alter foreign keys and unique constraints by name.
- login_manager: JSON API, no login view; the 401 body comes from the
  unauthorized handler registered in create_app().
- csrf: session-authenticated mutations send the X-CSRFToken header
  (token from /auth/csrf-token).
"""

from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect
from sqlalchemy import MetaData

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

db = SQLAlchemy(metadata=MetaData(naming_convention=NAMING_CONVENTION))
migrate = Migrate(render_as_batch=True)

login_manager = LoginManager()
login_manager.session_protection = "strong"

csrf = CSRFProtect()
