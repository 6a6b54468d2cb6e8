"""Repository linking, sync control and file cache routes."""
from __future__ import annotations

import base64
import logging

from flask import Blueprint, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from database import db
from models.repository import Repository
from models.sync_log import SyncDirection
from routes import github_error_response, json_error, json_payload
from services.cache_service import (
    cached_file_count,
    clear_repository_cache,
    get_or_fetch,
    list_cached_files,
    run_cache_warm_job,
    search_cached_files,
    serialize_cached_file,
)
from services.credentials import resolve_token
from services.github_service import GitHubError
from services.repository_service import (
    import_repository,
    repository_overview,
    schedule_initial_sync,
    serialize_repository,
    set_sync_enabled,
    setup_webhook,
)
from services.sync_errors import AuthenticationError, SyncInProgressError, SyncTimeoutError
from services.sync_service import full_sync
from services.sync_state import list_sync_events, record_sync_event, serialize_sync_event
from services.task_runner import schedule

repositories_bp = Blueprint("repositories", __name__, url_prefix="/api/repositories")

MAX_SYNC_LOG_LIMIT = 200


def _load_repository(repository_id: int) -> Repository | None:
    return db.session.get(Repository, repository_id)


@repositories_bp.route("", methods=["GET"])
def list_repositories():
    repositories = Repository.query.filter_by(owner_id=g.user.id).order_by(Repository.full_name).all()
    return jsonify({"success": True, "repositories": [serialize_repository(repo) for repo in repositories]})


@repositories_bp.route("/import", methods=["POST"])
def import_repository_route():
    payload = json_payload()
    full_name = (payload.get("full_name") or "").strip()
    if not full_name:
        return json_error("Repository is required.", status=400)

    try:
        repository = import_repository(g.user, full_name)
    except ValueError as error:
        return json_error(str(error), status=400)
    except AuthenticationError as error:
        return json_error(str(error), status=401)
    except PermissionError as error:
        return json_error(str(error), status=403)
    except GitHubError as error:
        message, status = github_error_response(error)
        return json_error(message, status=status)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logging.error("Error importing repository %s: %s", full_name, exc, exc_info=True)
        return json_error("Unable to save repository.", status=500)

    webhook_id = None
    if payload.get("setup_webhook", True):
        webhook_id = setup_webhook(repository, g.user)
    schedule_initial_sync(repository.id, g.user.id)
    return (
        jsonify(
            {
                "success": True,
                "repository": serialize_repository(repository),
                "webhook_configured": webhook_id is not None,
            }
        ),
        201,
    )


@repositories_bp.route("/<int:repository_id>", methods=["GET"])
def get_repository(repository_id: int):
    repository = _load_repository(repository_id)
    if repository is None:
        return json_error("Repository not found.", status=404)
    payload = serialize_repository(repository)
    payload["cached_files"] = cached_file_count(repository.id)
    return jsonify({"success": True, "repository": payload})


@repositories_bp.route("/<int:repository_id>/sync", methods=["POST"])
def sync_repository(repository_id: int):
    repository = _load_repository(repository_id)
    if repository is None:
        return json_error("Repository not found.", status=404)

    try:
        counts = full_sync(repository.id, g.user.id)
    except SyncInProgressError as error:
        return json_error(str(error), status=409)
    except AuthenticationError as error:
        return json_error(str(error), status=401)
    except SyncTimeoutError as error:
        return json_error(str(error), status=504)
    except GitHubError as error:
        message, status = github_error_response(error)
        return json_error(message, status=status)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logging.error("Error syncing repository %s: %s", repository_id, exc, exc_info=True)
        return json_error("Unable to save synced records.", status=500)
    return jsonify({"success": True, **counts})


@repositories_bp.route("/<int:repository_id>/sync-enabled", methods=["POST"])
def update_sync_enabled(repository_id: int):
    repository = _load_repository(repository_id)
    if repository is None:
        return json_error("Repository not found.", status=404)
    enabled = json_payload().get("enabled")
    if not isinstance(enabled, bool):
        return json_error("enabled must be true or false.", status=400)
    try:
        set_sync_enabled(repository, enabled)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logging.error("Error updating sync setting: %s", exc, exc_info=True)
        return json_error("Unable to update sync setting.", status=500)
    return jsonify({"success": True, "sync_enabled": repository.sync_enabled})


@repositories_bp.route("/<int:repository_id>/webhook", methods=["POST"])
def create_webhook(repository_id: int):
    repository = _load_repository(repository_id)
    if repository is None:
        return json_error("Repository not found.", status=404)
    try:
        webhook_id = setup_webhook(repository, g.user)
    except AuthenticationError as error:
        return json_error(str(error), status=401)
    if webhook_id is None:
        return json_error("Unable to create the GitHub webhook.", status=502)
    return jsonify({"success": True, "webhook_id": webhook_id})


@repositories_bp.route("/<int:repository_id>/sync-log", methods=["GET"])
def sync_log(repository_id: int):
    repository = _load_repository(repository_id)
    if repository is None:
        return json_error("Repository not found.", status=404)
    limit = request.args.get("limit", default=50, type=int)
    limit = max(1, min(limit, MAX_SYNC_LOG_LIMIT))
    entries = list_sync_events(repository.id, limit)
    return jsonify(
        {
            "success": True,
            "sync_status": repository.sync_status,
            "last_synced_at": repository.last_synced_at.isoformat() if repository.last_synced_at else None,
            "events": [serialize_sync_event(entry) for entry in entries],
        }
    )


@repositories_bp.route("/<int:repository_id>/files", methods=["GET"])
def read_file(repository_id: int):
    repository = _load_repository(repository_id)
    if repository is None:
        return json_error("Repository not found.", status=404)
    path = (request.args.get("path") or "").strip()
    if not path:
        return json_error("path is required.", status=400)
    ref = request.args.get("ref") or None

    try:
        token = resolve_token(repository, g.user)
        file = get_or_fetch(repository.id, path, ref, token=token)
    except AuthenticationError as error:
        return json_error(str(error), status=401)
    except LookupError as error:
        return json_error(str(error), status=404)
    except GitHubError as error:
        message, status = github_error_response(error)
        return json_error(message, status=status)

    text = file.text()
    return jsonify(
        {
            "success": True,
            "path": file.path,
            "sha": file.content_hash,
            "size": file.size,
            "from_cache": file.from_cache,
            "cached": file.cached,
            "encoding": "utf-8" if text is not None else "base64",
            "content": text if text is not None else base64.b64encode(file.content).decode("ascii"),
        }
    )


@repositories_bp.route("/<int:repository_id>/files/search", methods=["GET"])
def search_files(repository_id: int):
    repository = _load_repository(repository_id)
    if repository is None:
        return json_error("Repository not found.", status=404)
    query = (request.args.get("q") or "").strip()
    if not query:
        return json_error("q is required.", status=400)
    return jsonify({"success": True, "results": search_cached_files(repository.id, query)})


@repositories_bp.route("/<int:repository_id>/cache/warm", methods=["POST"])
def warm_repository_cache(repository_id: int):
    repository = _load_repository(repository_id)
    if repository is None:
        return json_error("Repository not found.", status=404)
    try:
        resolve_token(repository, g.user)
    except AuthenticationError as error:
        return json_error(str(error), status=401)
    ref = json_payload().get("ref") or None
    schedule(run_cache_warm_job, repository.id, g.user.id, ref)
    return jsonify({"success": True, "message": "Cache warm scheduled."}), 202


@repositories_bp.route("/<int:repository_id>/cache", methods=["GET"])
def list_cache(repository_id: int):
    repository = _load_repository(repository_id)
    if repository is None:
        return json_error("Repository not found.", status=404)
    files = [serialize_cached_file(entry) for entry in list_cached_files(repository.id)]
    return jsonify({"success": True, "files": files})


@repositories_bp.route("/<int:repository_id>/cache", methods=["DELETE"])
def clear_cache(repository_id: int):
    repository = _load_repository(repository_id)
    if repository is None:
        return json_error("Repository not found.", status=404)
    try:
        removed = clear_repository_cache(repository.id)
        record_sync_event(repository.id, "cache.cleared", SyncDirection.INBOUND, True, payload={"removed": removed})
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logging.error("Error clearing cache: %s", exc, exc_info=True)
        return json_error("Unable to clear the cache.", status=500)
    return jsonify({"success": True, "removed": removed})


@repositories_bp.route("/<int:repository_id>/overview", methods=["GET"])
def overview(repository_id: int):
    repository = _load_repository(repository_id)
    if repository is None:
        return json_error("Repository not found.", status=404)
    try:
        token = resolve_token(repository, g.user)
        payload = repository_overview(repository, token)
    except AuthenticationError as error:
        return json_error(str(error), status=401)
    except GitHubError as error:
        message, status = github_error_response(error)
        return json_error(message, status=status)
    return jsonify({"success": True, **payload})
