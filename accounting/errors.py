"""
accounting/errors.py

Error types and JSON error handlers.

Rules:
- Routes raise ValidationError for bad input; it becomes a 400 JSON response.
- HTTP errors (abort / get_or_404) keep their status code and get a JSON body.
- IntegrityError becomes 409 after rolling back the session.
- Anything else is logged with traceback and answered with a generic Croatian message (500).

Body shape: {"error": "<message>", "field": "<field or null>"}
"""

from __future__ import annotations

import logging

from flask import Flask, jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from .extensions import db

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Došlo je do greške. Pokušajte ponovno."


class ValidationError(Exception):
    """Invalid user input. Carries a user-facing message and the offending field."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        return {"error": self.message, "field": self.field}


def _error_response(message: str, status: int, field: str | None = None):
    return jsonify({"error": message, "field": field}), status


def register_error_handlers(app: Flask) -> None:
    """Wire JSON error handlers into the app."""

    @app.errorhandler(ValidationError)
    def _handle_validation(err: ValidationError):
        db.session.rollback()
        logger.warning("Validation failed (%s): %s", err.field or "-", err.message)
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(IntegrityError)
    def _handle_integrity(err: IntegrityError):
        db.session.rollback()
        logger.warning("Integrity violation: %s", err.orig)
        return _error_response("Zapis je u sukobu s postojećim podacima.", 409)

    @app.errorhandler(HTTPException)
    def _handle_http(err: HTTPException):
        return _error_response(err.description or err.name, err.code or 500)

    @app.errorhandler(Exception)
    def _handle_unexpected(err: Exception):
        db.session.rollback()
        logger.exception("Unhandled error")
        return _error_response(GENERIC_ERROR_MESSAGE, 500)
