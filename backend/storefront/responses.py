# Overview: Response envelope {success, message, data} shared by every route.

from __future__ import annotations

from typing import Any

from flask import current_app, jsonify

from .errors import ServiceError


def envelope(success: bool, message: str, data: Any = None, *, status: int = 200):
    body = {"success": success, "message": message}
    if data is not None:
        body["data"] = data
    return jsonify(body), status


def ok(message: str, data: Any = None, status: int = 200):
    return envelope(True, message, data, status=status)


def from_error(exc: ServiceError):
    """Translate a ServiceError; internals are never exposed beyond its message."""
    data = {"reason": exc.reason}
    if exc.details:
        data["details"] = exc.details
    if exc.status_code >= 500:
        current_app.logger.error("%s: %s", exc.reason, exc.message)
    return envelope(False, exc.message, data, status=exc.status_code)


def request_json(request) -> dict:
    return request.get_json(silent=True) or {}
