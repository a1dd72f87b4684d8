from .routes import calendar_bp  # noqa: F401
