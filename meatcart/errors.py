# --- meatcart/errors.py ---
import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

from .extensions import db, jwt
from .utils.api import api_error

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base for domain errors that map onto the API envelope."""
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    status_code = 400


class InsufficientStockError(AppError):
    status_code = 400


class AuthenticationError(AppError):
    status_code = 401


class AuthorizationError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


def _envelope(message, status):
    r = jsonify(api_error(message))
    r.status_code = status
    return r


def register_error_handlers(app):
    @app.errorhandler(AppError)
    def handle_app_error(e: AppError):
        db.session.rollback()
        logger.warning("%s: %s", type(e).__name__, e.message)
        return _envelope(e.message, e.status_code)

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return _envelope(e.description or e.name, e.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        db.session.rollback()
        logger.exception("unhandled error")
        return _envelope("Internal server error", 500)

    # token problems use the same envelope as everything else
    @jwt.unauthorized_loader
    def missing_token(reason):
        return _envelope(reason or "Unauthorized", 401)

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return _envelope(reason or "Invalid token", 401)

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return _envelope("Token has expired", 401)
