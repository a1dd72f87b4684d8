"""
User management (admin only).

Rules enforced:
- Usernames are unique.
- Role is one of admin / accountant / viewer.
- An admin cannot deactivate or demote themselves (the system must keep an admin).

Audit:
- CREATE / UPDATE logged
"""

import logging

from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from ...audit import log_action, serialize_model
from ...errors import ValidationError
from ...extensions import db
from ...models import USER_ROLES, User
from ...security import admin_required
from ...utils import bool_field, choice_field, request_payload, text_field

logger = logging.getLogger(__name__)

users_bp = Blueprint("users", __name__, url_prefix="/users")


@users_bp.route("/")
@login_required
@admin_required
def list_users():
    users = User.query.order_by(User.username.asc()).all()
    return jsonify([u.to_dict() for u in users])


@users_bp.route("/", methods=["POST"])
@login_required
@admin_required
def create_user():
    data = request_payload()
    username = text_field(data, "username", required=True, label="Korisničko ime")
    password = (data.get("password") or "").strip()
    if not password:
        raise ValidationError("Lozinka je obavezno polje.", "password")

    if User.query.filter_by(username=username).first():
        raise ValidationError("Korisničko ime već postoji.", "username")

    user = User(
        username=username,
        full_name=text_field(data, "full_name"),
        role=choice_field(data, "role", USER_ROLES, default="accountant"),
        is_active=True,
    )
    user.set_password(password)

    db.session.add(user)
    db.session.flush()
    log_action(user, "CREATE", after=serialize_model(user))
    db.session.commit()

    logger.info("User %s created with role %s", user.username, user.role)
    return jsonify(user.to_dict()), 201


@users_bp.route("/<int:user_id>", methods=["PUT"])
@login_required
@admin_required
def update_user(user_id: int):
    """Change role / active flag / full name, optionally reset the password."""
    user = db.get_or_404(User, user_id)
    data = request_payload()
    before_snapshot = serialize_model(user)

    role = choice_field(data, "role", USER_ROLES, default=user.role)
    is_active = bool_field(data, "is_active", default=user.is_active)
    if user.id == current_user.id and (role != "admin" or not is_active):
        raise ValidationError("Ne možete ukloniti vlastita administratorska prava.", "role")

    user.role = role
    user.is_active = is_active
    if "full_name" in data:
        user.full_name = text_field(data, "full_name")

    new_password = (data.get("password") or "").strip()
    if new_password:
        user.set_password(new_password)

    log_action(user, "UPDATE", before=before_snapshot, after=serialize_model(user))
    db.session.commit()

    logger.info("User %s updated", user.username)
    return jsonify(user.to_dict())
