"""Full reconciliation of a repository's issues and pull requests."""
from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Iterator, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from database import db
from models.repository import Repository
from models.sync_log import SyncDirection
from models.user import User
from services import github_service
from services.credentials import resolve_token
from services.github_service import GitHubError, is_pull_request_payload
from services.retry import call_with_rate_limit_retry
from services.sync_errors import AuthenticationError, SyncInProgressError, SyncTimeoutError
from services.sync_state import claim_sync, mark_sync_error, mark_sync_idle, record_sync_event
from services.upsert_service import upsert_issue, upsert_pull_request

FULL_SYNC_EVENT = "sync.full"


def _iter_pages(
    fetch: Callable[..., List[dict]],
    token: str,
    owner: str,
    name: str,
    page_size: int,
    deadline: float,
    counts: Dict[str, int],
) -> Iterator[List[dict]]:
    """Yield raw pages until one comes back short."""
    page = 1
    while True:
        if time.monotonic() >= deadline:
            raise SyncTimeoutError(f"Full sync of {owner}/{name} exceeded its time limit")
        entries = call_with_rate_limit_retry(
            fetch, token, owner, name, state="all", per_page=page_size, page=page
        )
        counts["pages_fetched"] += 1
        yield entries
        if len(entries) < page_size:
            return
        page += 1


def full_sync(
    repository_id: int,
    user_id: Optional[int] = None,
    *,
    page_size: Optional[int] = None,
    timeout: Optional[int] = None,
) -> Dict[str, int]:
    """Mirror every remote issue and pull request into the local store.

    Each page is committed as it is applied, so an interrupted run keeps its
    progress and the next run only rewrites records in place.
    """
    config = current_app.config
    page_size = page_size or int(config.get("FULL_SYNC_PAGE_SIZE", 100))
    timeout = timeout if timeout is not None else int(config.get("FULL_SYNC_TIMEOUT", 900))

    if db.session.get(Repository, repository_id) is None:
        raise LookupError(f"Repository {repository_id} not found")
    if not claim_sync(repository_id, timeout):
        raise SyncInProgressError(repository_id)

    deadline = time.monotonic() + timeout
    counts = {"issues_synced": 0, "prs_synced": 0, "pages_fetched": 0}
    try:
        repository = db.session.get(Repository, repository_id)
        user = db.session.get(User, user_id) if user_id else None
        token = resolve_token(repository, user)
        owner, name = repository.owner_and_name()

        for entries in _iter_pages(github_service.list_issues, token, owner, name, page_size, deadline, counts):
            for entry in entries:
                if is_pull_request_payload(entry):
                    continue
                upsert_issue(repository, entry)
                counts["issues_synced"] += 1
            db.session.commit()

        for entries in _iter_pages(
            github_service.list_pull_requests, token, owner, name, page_size, deadline, counts
        ):
            for entry in entries:
                upsert_pull_request(repository, entry)
                counts["prs_synced"] += 1
            db.session.commit()

        mark_sync_idle(repository)
        record_sync_event(repository_id, FULL_SYNC_EVENT, SyncDirection.INBOUND, True, payload=counts)
        db.session.commit()
    except Exception as error:
        db.session.rollback()
        logging.error("Full sync failed for repository %s", repository_id, exc_info=True)
        try:
            repository = db.session.get(Repository, repository_id)
            mark_sync_error(repository)
            record_sync_event(
                repository_id,
                FULL_SYNC_EVENT,
                SyncDirection.INBOUND,
                False,
                error=str(error) or error.__class__.__name__,
                payload=counts,
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logging.error("Unable to record full sync failure for repository %s", repository_id, exc_info=True)
        raise

    current_app.logger.info(
        "Full sync of repository %s finished: %s issues, %s pull requests, %s pages",
        repository_id,
        counts["issues_synced"],
        counts["prs_synced"],
        counts["pages_fetched"],
    )
    return counts


def run_full_sync_job(repository_id: int, user_id: Optional[int] = None) -> None:
    """Background entry point. Outcomes are visible through the sync log."""
    try:
        full_sync(repository_id, user_id)
    except SyncInProgressError:
        logging.info("Full sync for repository %s already running; skipped", repository_id)
    except AuthenticationError as error:
        logging.warning("Full sync for repository %s skipped: %s", repository_id, error)
    except (GitHubError, SyncTimeoutError) as error:
        logging.warning("Full sync for repository %s did not complete: %s", repository_id, error)
