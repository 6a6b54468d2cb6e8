"""Connecting a user's GitHub account."""
from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from database import db
from models.user import User
from routes import github_error_response, json_error, json_payload
from services.github_service import GitHubError, RateLimitError, list_repositories, test_connection

github_bp = Blueprint("github", __name__, url_prefix="/api/github")


def _invalidate_github(user: User):
    user.github_integration_enabled = False
    user.set_github_token(None)


def _request_token(payload: dict) -> str:
    auth_header = request.headers.get("Authorization", "").strip()
    token = ""
    if auth_header.lower().startswith("bearer "):
        token = auth_header[7:].strip()
    if not token:
        token = (payload.get("token") or "").strip()
    return token


@github_bp.route("/connect", methods=["POST"])
def github_connect():
    payload = json_payload()
    token = _request_token(payload)
    test_only = bool(payload.get("test_only"))
    if not token:
        token = g.user.get_github_token()

    if not token:
        return json_error("Token is required.", status=400)

    if not test_connection(token):
        return json_error("Unable to authenticate with GitHub.", status=403)

    if not test_only:
        g.user.set_github_token(token)
        g.user.github_integration_enabled = True
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logging.error("Error saving GitHub connection: %s", exc, exc_info=True)
            return json_error("Unable to save GitHub settings.", status=500)

    return jsonify({"success": True})


@github_bp.route("/disconnect", methods=["POST"])
def github_disconnect():
    _invalidate_github(g.user)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logging.error("Error removing GitHub connection: %s", exc, exc_info=True)
        return json_error("Unable to save GitHub settings.", status=500)
    return jsonify({"success": True})


@github_bp.route("/repos", methods=["POST"])
def github_repositories():
    token = _request_token(json_payload()) or g.user.get_github_token()
    if not token:
        return json_error("Token is required.", status=400)

    try:
        repos = list_repositories(token)
    except GitHubError as error:
        if error.status_code in (401, 403) and not isinstance(error, RateLimitError):
            _invalidate_github(g.user)
            try:
                db.session.commit()
            except SQLAlchemyError:
                db.session.rollback()
        message, status = github_error_response(error)
        return json_error(message, status=status)

    payload = [
        {"id": repo.id, "full_name": repo.full_name, "private": repo.private}
        for repo in repos
    ]
    return jsonify({"success": True, "repositories": payload})
