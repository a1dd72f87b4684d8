from .routes import loans_bp  # noqa: F401
