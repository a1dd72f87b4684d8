"""
accounting/audit.py

Audit logging helpers.

Goals:
- Record WHO changed WHICH record and HOW, with BEFORE/AFTER snapshots.
- Keep a username snapshot so the entry stays readable after the user is renamed or deleted.
- Store the client IP address.

IMPORTANT:
- log_action only ADDS an AuditLog row to the current session.
  The calling route owns the transaction (flush -> log_action -> commit).
"""

from __future__ import annotations

import json
from decimal import Decimal
from datetime import date, datetime
from typing import Any, Dict, Optional

from flask import has_request_context, request
from flask_login import current_user

from .extensions import db
from .models import AuditLog


def _snapshot_value(value: Any) -> Optional[str]:
    """Column value -> JSON-safe string (dates in ISO form, Decimals as plain numbers)."""
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def serialize_model(instance: Any) -> Dict[str, Optional[str]]:
    """Snapshot of a model's scalar columns (relationships are not followed)."""
    return {
        column.name: _snapshot_value(getattr(instance, column.name))
        for column in instance.__table__.columns
        if column.name != "password_hash"
    }


def log_action(
    entity: Any,
    action: str,
    *,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Add an AuditLog entry for entity to the current db session.

    action is CREATE / UPDATE / DELETE. The entity must already have an id,
    so call it after db.session.flush() for new records.
    """
    entity_id = getattr(entity, "id", None)
    if entity_id is None:
        raise ValueError("log_action entity must have an 'id' (flush before logging).")

    authenticated = current_user.is_authenticated if has_request_context() else False

    entry = AuditLog(
        user_id=current_user.id if authenticated else None,
        username_snapshot=current_user.username if authenticated else None,
        entity_type=entity.__class__.__name__,
        entity_id=int(entity_id),
        action=action,
        before_data=json.dumps(before, ensure_ascii=False) if before else None,
        after_data=json.dumps(after, ensure_ascii=False) if after else None,
        ip_address=request.remote_addr if has_request_context() else None,
    )
    db.session.add(entry)
    return entry
