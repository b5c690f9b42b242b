"""
JSON error envelope shared by every blueprint.

Handlers return `{"success": false, "error": <message>}` with an HTTP status;
`code` is added when the client is expected to branch on it.
"""
from __future__ import annotations

from typing import Any

from flask import Flask, g, jsonify
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    status = 400
    code: str | None = None

    def __init__(self, message: str, *, status: int | None = None, code: str | None = None, extra: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status
        if code is not None:
            self.code = code
        self.extra = extra or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": False, "error": self.message}
        if self.code:
            body["code"] = self.code
        body.update(self.extra)
        return body


class ValidationError(ApiError):
    status = 400
    code = "VALIDATION_ERROR"


class NotFoundError(ApiError):
    status = 404
    code = "NOT_FOUND"


class ForbiddenError(ApiError):
    status = 403
    code = "FORBIDDEN"


def error_response(message: str, status: int, code: str | None = None, **extra: Any):
    return jsonify(ApiError(message, status=status, code=code, extra=extra).to_dict()), status


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):
        if e.status >= 500:
            app.logger.error("API error %s (request_id=%s): %s", e.status, getattr(g, "request_id", None), e.message)
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        status = e.code or 500
        if status == 403:
            missing = getattr(g, "missing_permission", None)
            if missing:
                app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
                return error_response("Forbidden", 403, "FORBIDDEN", missingPermission=missing)
        if status == 413:
            return error_response("Request too large.", 413)
        return error_response(e.description or e.name, status)

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):
        # Ensure stack trace shows in logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return error_response("Internal server error", 500)
