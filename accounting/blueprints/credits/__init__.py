from .routes import credits_bp  # noqa: F401
