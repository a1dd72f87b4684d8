"""
Authentication routes.

Provides:
- /auth/csrf-token (token for the X-CSRFToken header)
- /auth/login
- /auth/logout
- /auth/me
- /auth/seed-admin (first system bootstrap)

Rules:
- Only active users may log in.
- seed-admin works only while the users table is empty.
"""

import logging

from flask import Blueprint, jsonify
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from ...audit import log_action, serialize_model
from ...errors import ValidationError
from ...extensions import db
from ...models import User
from ...utils import request_payload, text_field

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.route("/csrf-token")
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})


# ============================================================
# LOGIN / LOGOUT
# ============================================================

@auth_bp.route("/login", methods=["POST"])
def login():
    data = request_payload()
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""

    user = User.query.filter_by(username=username).first()

    if not user or not user.check_password(password):
        logger.warning("Failed login for %s", username or "-")
        return jsonify({"error": "Pogrešno korisničko ime ili lozinka.", "field": None}), 401

    if not user.is_active:
        return jsonify({"error": "Korisnički račun nije aktivan.", "field": None}), 403

    login_user(user)
    logger.info("User %s logged in", user.username)
    return jsonify(user.to_dict())


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logger.info("User %s logged out", current_user.username)
    logout_user()
    return jsonify({"ok": True})


@auth_bp.route("/me")
@login_required
def me():
    return jsonify(current_user.to_dict())


# ============================================================
# SEED FIRST ADMIN (BOOTSTRAP)
# ============================================================

@auth_bp.route("/seed-admin", methods=["POST"])
def seed_admin():
    """Create the first admin. Blocked as soon as any user exists."""
    if User.query.count() > 0:
        return jsonify({"error": "Korisnik već postoji u sustavu.", "field": None}), 409

    data = request_payload()
    username = text_field(data, "username", required=True, label="Korisničko ime")
    password = data.get("password") or ""
    if not password:
        raise ValidationError("Lozinka je obavezno polje.", "password")

    user = User(
        username=username,
        full_name=text_field(data, "full_name") or "Administrator",
        role="admin",
        is_active=True,
    )
    user.set_password(password)

    db.session.add(user)
    db.session.flush()

    log_action(user, "CREATE", after=serialize_model(user))
    db.session.commit()

    logger.info("Bootstrap admin %s created", username)
    return jsonify(user.to_dict()), 201
