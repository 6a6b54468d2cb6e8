"""Content-addressed cache of repository files.

Entries are keyed by (repository, path) and carry the provider's blob sha.
Content is only replaced when the sha changes, so a revalidation that finds
the same sha never downloads the blob again. Files above
``CACHE_MAX_FILE_SIZE`` are served but never stored.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from database import db, utcnow
from models.cached_file import CachedFile
from models.repository import Repository
from models.sync_log import SyncDirection
from models.user import User
from services import github_service
from services.credentials import resolve_token
from services.github_service import GitHubError
from services.retry import call_with_rate_limit_retry
from services.sync_errors import AuthenticationError
from services.sync_state import record_failure_in_new_transaction, record_sync_event

DEFAULT_MAX_FILE_SIZE = 1024 * 1024
SEARCH_SNIPPET_RADIUS = 60


@dataclass
class FileContent:
    path: str
    content: bytes
    content_hash: str
    size: int
    from_cache: bool
    cached: bool

    def text(self) -> Optional[str]:
        try:
            return self.content.decode("utf-8")
        except UnicodeDecodeError:
            return None


@dataclass
class WarmResult:
    cached: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, int]:
        return {
            "cached": self.cached,
            "skipped": self.skipped,
            "failed": self.failed,
            "total": self.total,
        }


def max_file_size() -> int:
    return int(current_app.config.get("CACHE_MAX_FILE_SIZE", DEFAULT_MAX_FILE_SIZE))


def _get_repository(repository_id: int) -> Repository:
    repository = db.session.get(Repository, repository_id)
    if repository is None:
        raise LookupError(f"Repository {repository_id} not found")
    return repository


def get_cached_file(repository_id: int, path: str) -> Optional[CachedFile]:
    return CachedFile.query.filter_by(repository_id=repository_id, path=path).first()


def _apply_hash_gate(entry: CachedFile, content_hash: str, content: bytes, size: int) -> str:
    entry.last_synced_at = utcnow()
    if entry.content_hash == content_hash:
        return "unchanged"
    entry.content_hash = content_hash
    entry.content = content
    entry.size = size
    return "updated"


def store_file(repository_id: int, path: str, content_hash: str, content: bytes, size: int) -> str:
    """Insert or hash-gated update of one cache entry.

    Returns ``created``, ``updated`` or ``unchanged``. Flushes but does not
    commit; an insert that loses a race to a concurrent writer is retried as
    an update against the winner's row.
    """
    entry = get_cached_file(repository_id, path)
    if entry is not None:
        return _apply_hash_gate(entry, content_hash, content, size)

    entry = CachedFile(
        repository_id=repository_id,
        path=path,
        content_hash=content_hash,
        content=content,
        size=size,
        last_synced_at=utcnow(),
    )
    db.session.add(entry)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        entry = get_cached_file(repository_id, path)
        if entry is None:
            raise
        return _apply_hash_gate(entry, content_hash, content, size)
    return "created"


def get_or_fetch(repository_id: int, path: str, ref: Optional[str] = None, *, token: str) -> FileContent:
    """Read-through access to a single file.

    The remote sha is always checked; the blob is only downloaded when the
    cached entry is missing or stale.
    """
    repository = _get_repository(repository_id)
    owner, name = repository.owner_and_name()
    path = path.strip("/")

    metadata = call_with_rate_limit_retry(github_service.get_contents, token, owner, name, path, ref)
    if isinstance(metadata, list) or metadata.type != "file":
        raise LookupError(f"{path or '/'} is not a file")

    entry = get_cached_file(repository_id, path)
    if entry is not None and entry.content_hash == metadata.sha:
        entry.last_synced_at = utcnow()
        db.session.commit()
        return FileContent(path, entry.content, entry.content_hash, entry.size, from_cache=True, cached=True)

    content = call_with_rate_limit_retry(github_service.get_blob, token, owner, name, metadata.sha)
    size = len(content)
    if size > max_file_size():
        if entry is not None:
            db.session.delete(entry)
            db.session.commit()
        logging.info("Serving %s without caching (%s bytes over the cache ceiling)", path, size)
        return FileContent(path, content, metadata.sha, size, from_cache=False, cached=False)

    store_file(repository_id, path, metadata.sha, content, size)
    db.session.commit()
    return FileContent(path, content, metadata.sha, size, from_cache=False, cached=True)


def _collect_files(token: str, owner: str, name: str, ref: Optional[str], result: WarmResult):
    """Walk the tree depth-first one directory listing at a time."""
    files = []
    pending = [""]
    while pending:
        directory = pending.pop()
        try:
            entries = call_with_rate_limit_retry(github_service.get_contents, token, owner, name, directory, ref)
        except GitHubError as error:
            if directory == "":
                raise
            logging.warning("Unable to list %s while warming cache: %s", directory, error)
            result.failed += 1
            result.errors.append(f"{directory}: {error}")
            continue
        if not isinstance(entries, list):
            entries = [entries]
        subdirectories = []
        for entry in entries:
            if entry.type == "dir":
                subdirectories.append(entry.path)
            elif entry.type == "file":
                files.append(entry)
        pending.extend(reversed(subdirectories))
    return files


def warm_cache(repository_id: int, ref: Optional[str] = None, *, token: str) -> Dict[str, int]:
    """Populate the cache for every file in the repository.

    Per-file failures are counted and logged; they never abort the walk.
    """
    repository = _get_repository(repository_id)
    owner, name = repository.owner_and_name()
    result = WarmResult()
    ceiling = max_file_size()

    for entry in _collect_files(token, owner, name, ref, result):
        result.total += 1
        if entry.size > ceiling:
            result.skipped += 1
            continue
        existing = get_cached_file(repository_id, entry.path)
        if existing is not None and existing.content_hash == entry.sha:
            existing.last_synced_at = utcnow()
            db.session.commit()
            result.cached += 1
            continue
        try:
            content = call_with_rate_limit_retry(github_service.get_blob, token, owner, name, entry.sha)
            if len(content) > ceiling:
                result.skipped += 1
                continue
            store_file(repository_id, entry.path, entry.sha, content, len(content))
            db.session.commit()
            result.cached += 1
        except (GitHubError, SQLAlchemyError) as error:
            db.session.rollback()
            logging.warning("Failed to cache %s for repository %s: %s", entry.path, repository_id, error)
            result.failed += 1
            result.errors.append(f"{entry.path}: {error}")

    summary = result.to_dict()
    record_sync_event(
        repository_id,
        "cache.warm",
        SyncDirection.INBOUND,
        result.failed == 0,
        error="; ".join(result.errors[:10]) or None,
        payload=summary,
    )
    db.session.commit()
    return summary


def run_cache_warm_job(repository_id: int, user_id: Optional[int] = None, ref: Optional[str] = None) -> None:
    """Background entry point for warming a repository's cache."""
    repository = db.session.get(Repository, repository_id)
    if repository is None:
        logging.warning("Cache warm skipped: repository %s no longer exists", repository_id)
        return
    user = db.session.get(User, user_id) if user_id else None
    try:
        token = resolve_token(repository, user)
    except AuthenticationError as error:
        logging.warning("Cache warm skipped for repository %s: %s", repository_id, error)
        return
    try:
        warm_cache(repository_id, ref, token=token)
    except GitHubError as error:
        logging.error("Cache warm failed for repository %s", repository_id, exc_info=True)
        record_failure_in_new_transaction(repository_id, "cache.warm", SyncDirection.INBOUND, str(error))


def delete_cached_paths(repository_id: int, paths: Iterable[str]) -> int:
    """Remove the given paths from the cache. The caller commits."""
    paths = [path.strip("/") for path in paths if path]
    if not paths:
        return 0
    return (
        CachedFile.query.filter(CachedFile.repository_id == repository_id, CachedFile.path.in_(paths))
        .delete(synchronize_session=False)
    )


def clear_repository_cache(repository_id: int) -> int:
    """Remove every cache entry of a repository. The caller commits."""
    return CachedFile.query.filter_by(repository_id=repository_id).delete(synchronize_session=False)


def list_cached_files(repository_id: int) -> List[CachedFile]:
    return CachedFile.query.filter_by(repository_id=repository_id).order_by(CachedFile.path).all()


def cached_file_count(repository_id: int) -> int:
    return CachedFile.query.filter_by(repository_id=repository_id).count()


def _snippet(text: str, index: int, length: int) -> str:
    start = max(index - SEARCH_SNIPPET_RADIUS, 0)
    end = min(index + length + SEARCH_SNIPPET_RADIUS, len(text))
    return text[start:end].strip()


def search_cached_files(repository_id: int, query: str, limit: int = 50) -> List[Dict[str, Any]]:
    """Case-insensitive search over cached paths and text content."""
    needle = (query or "").strip().lower()
    if not needle:
        return []
    matches: List[Dict[str, Any]] = []
    for entry in list_cached_files(repository_id):
        if needle in entry.path.lower():
            matches.append({"path": entry.path, "size": entry.size, "match": "path", "snippet": None})
        else:
            text = entry.content.decode("utf-8", errors="ignore")
            index = text.lower().find(needle)
            if index == -1:
                continue
            matches.append(
                {
                    "path": entry.path,
                    "size": entry.size,
                    "match": "content",
                    "snippet": _snippet(text, index, len(needle)),
                }
            )
        if len(matches) >= limit:
            break
    return matches


def serialize_cached_file(entry: CachedFile) -> Dict[str, Any]:
    return {
        "path": entry.path,
        "content_hash": entry.content_hash,
        "size": entry.size,
        "last_synced_at": entry.last_synced_at.isoformat() if entry.last_synced_at else None,
    }
