from .routes import payments_bp  # noqa: F401
