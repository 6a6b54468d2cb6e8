"""Shared helpers for route blueprints."""

from __future__ import annotations

import logging

from flask import jsonify, request

from services.github_service import MISSING_STATUS_CODES, GitHubError, RateLimitError

__all__ = ["json_error", "json_payload", "github_error_response"]


def json_error(message: str, *, status: int = 400, **extra):
    """Return a JSON error response in the API's usual shape."""
    return jsonify({"success": False, "message": message, **extra}), status


def json_payload() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def github_error_response(error: GitHubError) -> tuple[str, int]:
    status = error.status_code or 502
    if isinstance(error, RateLimitError):
        message = "GitHub rate limit exceeded. Please try again later."
        status = 429
    elif status in (401, 403):
        message = "GitHub authentication failed. Please update your token."
    elif status in MISSING_STATUS_CODES:
        message = "Requested GitHub resource was not found."
    else:
        # Log the detailed error for diagnostics, but do not expose to users
        logging.error("GitHubError encountered: %s", error, exc_info=True)
        message = "An error occurred while communicating with GitHub."
        status = 502
    return message, status
