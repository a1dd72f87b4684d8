"""
accounting/__init__.py

Flask application factory for the real-estate accounting back office.

- SQLAlchemy models + Flask-Migrate; SQLite for development.
- JSON endpoints per area (invoices, payments, credits, loans, investments, settings, reports).
- All permissions are enforced server-side; the navigation returned by "/" is visibility only.
"""

from __future__ import annotations

import logging

import click
from flask import Flask, jsonify
from flask_login import current_user

from .errors import register_error_handlers
from .extensions import csrf, db, login_manager, migrate
from .models import User
from .security import viewer_readonly_guard

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# NAVIGATION STRUCTURE (visibility only; security enforced in routes)
# -------------------------------------------------------------------

NAV_SECTIONS = [
    {
        "key": "accounting",
        "label": "Računovodstvo",
        "items": [
            {"label": "Računi", "endpoint": "invoices.list_invoices", "admin_only": False},
            {"label": "Plaćanja", "endpoint": "payments.list_payments", "admin_only": False},
            {"label": "Stanje duga", "endpoint": "reports.debt_status", "admin_only": False},
            {"label": "Kalendar", "endpoint": "calendar.month_view", "admin_only": False},
        ],
    },
    {
        "key": "financing",
        "label": "Financiranje",
        "items": [
            {"label": "Banke", "endpoint": "credits.list_banks", "admin_only": False},
            {"label": "Krediti", "endpoint": "credits.list_credits", "admin_only": False},
            {"label": "Pozajmice", "endpoint": "loans.list_loans", "admin_only": False},
            {"label": "Investicije", "endpoint": "investments.list_investments", "admin_only": False},
        ],
    },
    {
        "key": "management",
        "label": "Postavke",
        "items": [
            {"label": "Tvrtke", "endpoint": "settings.list_companies", "admin_only": False},
            {"label": "Dobavljači", "endpoint": "settings.list_parties", "admin_only": False},
            {"label": "Ugovori", "endpoint": "settings.list_contracts", "admin_only": False},
            {"label": "Korisnici", "endpoint": "users.list_users", "admin_only": True},
        ],
    },
]


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    app.logger.setLevel(level)


def create_app(config_object: str | object = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    _configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)

    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login."""
        if not str(user_id).isdigit():
            return None
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Potrebna je prijava.", "field": None}), 401

    register_error_handlers(app)

    # ----------------------------------------------------------------------
    # GLOBAL SECURITY NET: viewer read-only guard
    # ----------------------------------------------------------------------
    @app.before_request
    def _viewer_guard_hook():
        return viewer_readonly_guard()

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.auth import auth_bp
    from .blueprints.calendar import calendar_bp
    from .blueprints.credits import credits_bp
    from .blueprints.investments import investments_bp
    from .blueprints.invoices import invoices_bp
    from .blueprints.loans import loans_bp
    from .blueprints.payments import payments_bp
    from .blueprints.reports import reports_bp
    from .blueprints.settings import settings_bp
    from .blueprints.users import users_bp

    for blueprint in (
        auth_bp,
        invoices_bp,
        payments_bp,
        credits_bp,
        loans_bp,
        investments_bp,
        settings_bp,
        reports_bp,
        calendar_bp,
        users_bp,
    ):
        app.register_blueprint(blueprint)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("seed-options")
    def seed_options_command():
        """Seed default invoice categories and refund types."""
        from .seed import seed_default_options

        added = seed_default_options()
        click.echo(f"Seeded {added['categories']} categories and {added['refunds']} refund types.")

    @app.cli.command("create-admin")
    @click.argument("username")
    @click.password_option()
    def create_admin_command(username: str, password: str):
        """Create an admin user (or reset the password of an existing one)."""
        user = User.query.filter_by(username=username).first()
        if user is None:
            user = User(username=username, role="admin", is_active=True)
            db.session.add(user)
        else:
            user.role = "admin"
        user.set_password(password)
        db.session.commit()
        logger.info("Admin user %s saved from CLI", username)
        click.echo(f"Admin '{username}' saved.")

    # ----------------------------------------------------------------------
    # Home
    # ----------------------------------------------------------------------
    @app.route("/")
    def index():
        """App name, the current user and the navigation visible to them."""
        if not current_user.is_authenticated:
            return jsonify({"app": app.config["APP_NAME"], "user": None, "nav_sections": []})

        visible_sections = []
        for section in NAV_SECTIONS:
            items = [
                item
                for item in section["items"]
                if not item["admin_only"] or current_user.is_admin
            ]
            if items:
                visible_sections.append({"key": section["key"], "label": section["label"], "items": items})

        return jsonify({
            "app": app.config["APP_NAME"],
            "user": current_user.to_dict(),
            "nav_sections": visible_sections,
        })

    return app
