from .routes import investments_bp  # noqa: F401
