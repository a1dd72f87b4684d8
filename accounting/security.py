"""
accounting/security.py

Access control helpers.

Roles:
- admin: full access, including user management.
- accountant: creates and edits all accounting records.
- viewer: read-only.

viewer_readonly_guard() is the global safety net that blocks POST/PUT/PATCH/DELETE
for viewers. It is wired via app.before_request in the app factory; routes still
decorate themselves with the role they need.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Optional

from flask import jsonify, request
from flask_login import current_user

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Self-service endpoints a viewer may still call with a mutating method
VIEWER_ALLOWED_ENDPOINTS = {"auth.logout", "settings.save_preference"}


def _forbidden():
    return jsonify({"error": "Nemate ovlasti za ovu radnju.", "field": None}), 403


def is_admin() -> bool:
    return bool(current_user.is_authenticated and getattr(current_user, "is_admin", False))


def can_edit() -> bool:
    """Admin or accountant."""
    if not current_user.is_authenticated:
        return False
    return bool(current_user.can_edit())


def viewer_readonly_guard():
    """Block mutating requests from authenticated viewers (allow-list excepted)."""
    if request.method not in MUTATING_METHODS:
        return None

    if not current_user.is_authenticated:
        return None

    if can_edit():
        return None

    if (request.endpoint or "") in VIEWER_ALLOWED_ENDPOINTS:
        return None

    return _forbidden()


def admin_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: admin-only."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not is_admin():
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper


def editor_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: admin or accountant."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not can_edit():
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper


def current_user_id() -> Optional[int]:
    return current_user.id if current_user.is_authenticated else None
