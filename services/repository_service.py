"""Linking repositories to GitHub and reading their overview."""
from __future__ import annotations

import logging
import re
import secrets
from typing import Any, Dict, Optional, Tuple

from flask import current_app

from database import db
from models.repository import Repository, SyncStatus
from models.sync_log import SyncDirection
from models.user import User
from services import github_service
from services.cache_service import cached_file_count, get_or_fetch, run_cache_warm_job
from services.credentials import get_user_github_token, resolve_token
from services.github_service import GitHubError
from services.sync_errors import AuthenticationError
from services.sync_service import run_full_sync_job
from services.sync_state import record_sync_event
from services.task_runner import schedule

FULL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
WEBHOOK_PATH = "/provider/webhook"


def parse_full_name(full_name: str) -> Tuple[str, str]:
    value = (full_name or "").strip()
    if not FULL_NAME_PATTERN.match(value):
        raise ValueError("Repository must be given as owner/name.")
    owner, name = value.split("/", 1)
    return owner, name


def import_repository(user: User, full_name: str) -> Repository:
    """Link a GitHub repository for ``user``. Re-importing refreshes metadata."""
    token = get_user_github_token(user)
    if not token:
        raise AuthenticationError("Connect your GitHub account to import repositories.")
    owner, name = parse_full_name(full_name)

    remote = github_service.get_repository(token, owner, name)
    login = github_service.get_current_user(token).get("login") or user.username
    permission = github_service.get_permission(token, remote.owner, remote.name, login)
    if permission == "none":
        raise PermissionError(f"You do not have access to {remote.full_name}.")

    repository = Repository.query.filter_by(remote_id=remote.id).first()
    created = repository is None
    if created:
        repository = Repository(remote_id=remote.id, owner_id=user.id)
        db.session.add(repository)

    repository.remote_node_id = remote.node_id or None
    repository.owner = remote.owner
    repository.name = remote.name
    repository.full_name = remote.full_name
    repository.description = remote.description
    repository.html_url = remote.html_url
    repository.default_branch = remote.default_branch
    repository.is_private = remote.private
    repository.sync_enabled = True
    if created:
        repository.sync_status = SyncStatus.IDLE.value
    db.session.flush()

    record_sync_event(
        repository.id,
        "repository.imported",
        SyncDirection.INBOUND,
        True,
        payload={"full_name": remote.full_name, "created": created, "permission": permission},
    )
    db.session.commit()
    current_app.logger.info("Imported repository %s (id=%s)", remote.full_name, repository.id)
    return repository


def webhook_url() -> Optional[str]:
    base = (current_app.config.get("WEBHOOK_BASE_URL") or "").rstrip("/")
    if not base:
        return None
    return f"{base}{WEBHOOK_PATH}"


def setup_webhook(repository: Repository, user: Optional[User] = None) -> Optional[int]:
    """Register the sync webhook on GitHub. Returns the webhook id or None."""
    token = resolve_token(repository, user)
    url = webhook_url()
    if url is None:
        logging.warning("WEBHOOK_BASE_URL is not configured; webhook for %s not created", repository.full_name)
        record_sync_event(
            repository.id,
            "webhook.setup_failed",
            SyncDirection.OUTBOUND,
            False,
            error="WEBHOOK_BASE_URL is not configured",
        )
        db.session.commit()
        return None

    secret = secrets.token_hex(32)
    owner, name = repository.owner_and_name()
    try:
        hook = github_service.create_webhook(token, owner, name, url, secret)
    except GitHubError as error:
        logging.warning("Unable to create webhook for %s: %s", repository.full_name, error)
        record_sync_event(
            repository.id, "webhook.setup_failed", SyncDirection.OUTBOUND, False, error=str(error)
        )
        db.session.commit()
        return None

    repository.webhook_id = hook.get("id")
    repository.webhook_secret = secret
    record_sync_event(
        repository.id, "webhook.setup", SyncDirection.OUTBOUND, True, payload={"webhook_id": repository.webhook_id}
    )
    db.session.commit()
    return repository.webhook_id


def schedule_initial_sync(repository_id: int, user_id: Optional[int] = None) -> None:
    """Queue the full sync and the cache warm for a newly linked repository."""
    schedule(run_full_sync_job, repository_id, user_id)
    schedule(run_cache_warm_job, repository_id, user_id)


def set_sync_enabled(repository: Repository, enabled: bool) -> None:
    repository.sync_enabled = bool(enabled)
    record_sync_event(
        repository.id,
        "sync.enabled" if enabled else "sync.disabled",
        SyncDirection.INBOUND,
        True,
    )
    db.session.commit()


def _last_commit(token: str, owner: str, name: str, branch: str) -> Optional[Dict[str, Any]]:
    commits = github_service.list_commits(token, owner, name, sha=branch, per_page=1)
    if not commits:
        return None
    latest = commits[0]
    details = latest.get("commit") or {}
    author = details.get("author") or {}
    return {
        "sha": latest.get("sha"),
        "message": (details.get("message") or "").splitlines()[0] if details.get("message") else "",
        "author": author.get("name"),
        "date": author.get("date"),
        "url": latest.get("html_url"),
    }


def repository_overview(repository: Repository, token: str) -> Dict[str, Any]:
    """README, languages, branches and the latest commit of the default branch."""
    owner, name = repository.owner_and_name()
    readme_text = None
    readme = github_service.get_readme(token, owner, name)
    if readme is not None:
        readme_text = get_or_fetch(repository.id, readme.path, token=token).text()

    return {
        "repository": serialize_repository(repository),
        "readme": readme_text,
        "languages": github_service.get_languages(token, owner, name),
        "branches": github_service.list_branches(token, owner, name),
        "last_commit": _last_commit(token, owner, name, repository.default_branch),
        "cached_files": cached_file_count(repository.id),
    }


def serialize_repository(repository: Repository) -> Dict[str, Any]:
    return {
        "id": repository.id,
        "remote_id": repository.remote_id,
        "full_name": repository.full_name,
        "description": repository.description,
        "html_url": repository.html_url,
        "default_branch": repository.default_branch,
        "is_private": repository.is_private,
        "sync_enabled": repository.sync_enabled,
        "sync_status": repository.sync_status,
        "last_synced_at": repository.last_synced_at.isoformat() if repository.last_synced_at else None,
        "webhook_configured": repository.webhook_id is not None,
    }
