"""Push local issue, pull request and comment changes to GitHub.

The local write is always committed before a push runs. Remote failures are
logged to the sync log and never undo the local change.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from database import db
from models.comment import Comment
from models.issue import Issue, IssueStatus
from models.pull_request import PullRequest, PullRequestStatus
from models.repository import Repository
from models.sync_log import SyncDirection
from models.user import User
from services import github_service
from services.credentials import resolve_token
from services.github_service import GitHubError
from services.retry import call_with_rate_limit_retry
from services.sync_errors import AuthenticationError
from services.sync_state import record_sync_event
from services.task_runner import schedule


def remote_issue_state(status: str) -> str:
    return "closed" if status == IssueStatus.CLOSED.value else "open"


def remote_pull_request_state(status: str) -> Optional[str]:
    """Remote state for a local PR status. Merging is never pushed."""
    if status == PullRequestStatus.MERGED.value:
        return None
    return "closed" if status == PullRequestStatus.CLOSED.value else "open"


def _push_context(repository: Optional[Repository], acting_user: Optional[User]) -> Optional[Tuple[str, str, str]]:
    if repository is None or not repository.is_linked or not repository.sync_enabled:
        return None
    token = resolve_token(repository, acting_user)
    owner, name = repository.owner_and_name()
    return token, owner, name


def _commit_result(event_type: str) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logging.error("Failed to save outbound sync result %s", event_type, exc_info=True)
        raise


def _finish(repository_id: int, event_type: str, success: bool, *, error: Optional[str] = None, payload: Any = None):
    record_sync_event(repository_id, event_type, SyncDirection.OUTBOUND, success, error=error, payload=payload)
    _commit_result(event_type)


def _failed(repository_id: int, event_type: str, error: GitHubError, payload: Dict[str, Any]) -> bool:
    logging.warning("GitHub push %s failed: %s", event_type, error)
    _finish(repository_id, event_type, False, error=str(error), payload=payload)
    return False


def _find_mirror(record, remote_id: int):
    """The row an inbound event created for ``remote_id`` before the push linked ``record``."""
    model = type(record)
    if isinstance(record, Comment):
        if record.issue_id is not None:
            query = Comment.query.filter_by(issue_id=record.issue_id, remote_id=remote_id)
        else:
            query = Comment.query.filter_by(pull_request_id=record.pull_request_id, remote_id=remote_id)
    else:
        query = model.query.filter_by(repository_id=record.repository_id, remote_id=remote_id)
    return query.filter(model.id != record.id).first()


def _adopt_mirror(record, mirror) -> None:
    """Move everything hanging off ``mirror`` to ``record`` and drop the mirror."""
    if isinstance(record, Issue):
        for comment in list(mirror.comments):
            comment.issue = record
        PullRequest.query.filter_by(issue_id=mirror.id).update({"issue_id": record.id}, synchronize_session=False)
    elif isinstance(record, PullRequest):
        for comment in list(mirror.comments):
            comment.pull_request = record
    db.session.delete(mirror)
    db.session.flush()


def _link_created(
    record,
    repository_id: int,
    remote_id: int,
    node_id: Optional[str],
    url: Optional[str],
    event_type: str,
    payload: Dict[str, Any],
) -> None:
    """Store the identity of a record the provider just created and commit it.

    The provider may deliver the matching ``opened``/``created`` event before
    this commit; that mirror row is folded into ``record`` so one local row
    holds the remote identity.
    """
    result = {**payload, "remote_id": remote_id}

    record.link_remote(remote_id, node_id, url)
    record_sync_event(repository_id, event_type, SyncDirection.OUTBOUND, True, payload=result)
    try:
        db.session.commit()
        return
    except IntegrityError:
        db.session.rollback()

    mirror = _find_mirror(record, remote_id)
    if mirror is not None:
        logging.info(
            "Adopting %s %s created by an inbound event for remote %s", type(record).__tablename__, mirror.id, remote_id
        )
        _adopt_mirror(record, mirror)
    record.link_remote(remote_id, node_id, url)
    record_sync_event(
        repository_id, event_type, SyncDirection.OUTBOUND, True, payload={**result, "adopted_mirror": mirror is not None}
    )
    _commit_result(event_type)


def push_issue_create(issue: Issue, acting_user: Optional[User] = None) -> bool:
    """Create the issue remotely and store its remote identity.

    The identity is committed before a closed issue is closed remotely, so a
    failed close never leaves the remote issue unlinked.
    """
    if issue.has_remote_link:
        return push_issue_update(issue, acting_user)
    context = _push_context(issue.repository, acting_user)
    if context is None:
        return False
    token, owner, name = context
    payload = {"issue_id": issue.id}
    try:
        remote = call_with_rate_limit_retry(github_service.create_issue, token, owner, name, issue.title, issue.body or "")
    except GitHubError as error:
        return _failed(issue.repository_id, "push.issue.create", error, payload)

    _link_created(issue, issue.repository_id, remote.number, remote.node_id, remote.url, "push.issue.create", payload)
    if remote_issue_state(issue.status) == "closed":
        push_issue_status(issue, acting_user)
    return True


def push_issue_update(issue: Issue, acting_user: Optional[User] = None) -> bool:
    """Push title, body and open/closed state. Priority stays local."""
    if not issue.has_remote_link:
        return False
    context = _push_context(issue.repository, acting_user)
    if context is None:
        return False
    token, owner, name = context
    payload = {"issue_id": issue.id, "remote_id": issue.remote_id}
    try:
        call_with_rate_limit_retry(
            github_service.update_issue,
            token,
            owner,
            name,
            issue.remote_id,
            title=issue.title,
            body=issue.body or "",
            state=remote_issue_state(issue.status),
        )
    except GitHubError as error:
        return _failed(issue.repository_id, "push.issue.update", error, payload)

    issue.link_remote(issue.remote_id, issue.remote_node_id, issue.remote_url)
    _finish(issue.repository_id, "push.issue.update", True, payload=payload)
    return True


def push_issue_status(issue: Issue, acting_user: Optional[User] = None) -> bool:
    if not issue.has_remote_link:
        return False
    context = _push_context(issue.repository, acting_user)
    if context is None:
        return False
    token, owner, name = context
    state = remote_issue_state(issue.status)
    payload = {"issue_id": issue.id, "remote_id": issue.remote_id, "state": state}
    try:
        call_with_rate_limit_retry(github_service.update_issue, token, owner, name, issue.remote_id, state=state)
    except GitHubError as error:
        return _failed(issue.repository_id, "push.issue.status", error, payload)

    issue.link_remote(issue.remote_id, issue.remote_node_id, issue.remote_url)
    _finish(issue.repository_id, "push.issue.status", True, payload=payload)
    return True


def push_pull_request_create(pull_request: PullRequest, acting_user: Optional[User] = None) -> bool:
    if pull_request.has_remote_link:
        return push_pull_request_update(pull_request, acting_user)
    context = _push_context(pull_request.repository, acting_user)
    if context is None:
        return False
    token, owner, name = context
    payload = {"pull_request_id": pull_request.id}
    try:
        remote = call_with_rate_limit_retry(
            github_service.create_pull_request,
            token,
            owner,
            name,
            pull_request.title,
            pull_request.body or "",
            pull_request.source_branch,
            pull_request.target_branch,
        )
    except GitHubError as error:
        return _failed(pull_request.repository_id, "push.pull_request.create", error, payload)

    _link_created(
        pull_request,
        pull_request.repository_id,
        remote.number,
        remote.node_id,
        remote.url,
        "push.pull_request.create",
        payload,
    )
    return True


def push_pull_request_update(pull_request: PullRequest, acting_user: Optional[User] = None) -> bool:
    """Pull requests are patched through the issues endpoint."""
    if not pull_request.has_remote_link:
        return False
    context = _push_context(pull_request.repository, acting_user)
    if context is None:
        return False
    token, owner, name = context
    payload = {"pull_request_id": pull_request.id, "remote_id": pull_request.remote_id}
    try:
        call_with_rate_limit_retry(
            github_service.update_issue,
            token,
            owner,
            name,
            pull_request.remote_id,
            title=pull_request.title,
            body=pull_request.body or "",
            state=remote_pull_request_state(pull_request.status),
        )
    except GitHubError as error:
        return _failed(pull_request.repository_id, "push.pull_request.update", error, payload)

    pull_request.link_remote(pull_request.remote_id, pull_request.remote_node_id, pull_request.remote_url)
    _finish(pull_request.repository_id, "push.pull_request.update", True, payload=payload)
    return True


def push_comment_create(comment: Comment, acting_user: Optional[User] = None) -> bool:
    """Comment on the remote parent. The parent must already be linked."""
    if comment.has_remote_link:
        return False
    parent = comment.parent
    if parent is None or not parent.has_remote_link:
        return False
    context = _push_context(parent.repository, acting_user)
    if context is None:
        return False
    token, owner, name = context
    payload = {"comment_id": comment.id, "parent_remote_id": parent.remote_id}
    try:
        remote = call_with_rate_limit_retry(
            github_service.create_issue_comment, token, owner, name, parent.remote_id, comment.body
        )
    except GitHubError as error:
        return _failed(parent.repository_id, "push.comment.create", error, payload)

    _link_created(comment, parent.repository_id, remote.id, remote.node_id, remote.url, "push.comment.create", payload)
    return True


PUSH_HANDLERS = {
    "issue.create": (Issue, push_issue_create),
    "issue.update": (Issue, push_issue_update),
    "issue.status": (Issue, push_issue_status),
    "pull_request.create": (PullRequest, push_pull_request_create),
    "pull_request.update": (PullRequest, push_pull_request_update),
    "comment.create": (Comment, push_comment_create),
}


def schedule_push(kind: str, record, acting_user: Optional[User]) -> Optional[str]:
    """Queue a push for a committed local change.

    Credentials are checked up front so the caller can warn the user.
    Returns a warning message, or None when the push was queued or not needed.
    """
    if kind not in PUSH_HANDLERS:
        raise ValueError(f"Unknown push kind: {kind}")
    repository = record.repository
    if repository is None or not repository.is_linked or not repository.sync_enabled:
        return None
    try:
        resolve_token(repository, acting_user)
    except AuthenticationError as error:
        return str(error)
    schedule(run_push_job, kind, record.id, acting_user.id if acting_user else None)
    return None


def run_push_job(kind: str, record_id: int, user_id: Optional[int] = None) -> None:
    model, handler = PUSH_HANDLERS[kind]
    record = db.session.get(model, record_id)
    if record is None:
        logging.warning("Push %s skipped: %s %s no longer exists", kind, model.__tablename__, record_id)
        return
    user = db.session.get(User, user_id) if user_id else None
    try:
        handler(record, user)
    except AuthenticationError as error:
        logging.warning("Push %s for %s %s skipped: %s", kind, model.__tablename__, record_id, error)
