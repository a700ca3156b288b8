# Overview: JSON error responses shared by every blueprint.

from flask import jsonify, current_app, request
from werkzeug.exceptions import HTTPException

from .validation import DomainError


def error_response(exc: DomainError):
    """Render a domain error as {"error", "code", "details", "retryable"}."""
    return jsonify(exc.to_dict()), exc.status_code


def register_error_handlers(app) -> None:
    @app.errorhandler(DomainError)
    def handle_domain_error(exc):
        return error_response(exc)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({
            "error": exc.description,
            "code": exc.name.upper().replace(" ", "_"),
            "details": {},
            "retryable": False,
        }), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        # No stack traces or storage detail leave the process
        current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({
            "error": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
            "retryable": False,
        }), 500