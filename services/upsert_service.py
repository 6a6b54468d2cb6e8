"""Apply remote issue, pull request and comment payloads to the local store.

Shared by the webhook processor and the full sync, so both paths write
records the same way. Nothing here commits; callers own the transaction.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple, Union

from database import db
from models.comment import Comment
from models.issue import Issue, IssueStatus
from models.pull_request import PullRequest, PullRequestStatus
from models.repository import Repository
from services.github_service import (
    GitHubPullRequest,
    comment_from_payload,
    issue_from_payload,
    pull_request_from_payload,
)


def issue_status_from_remote(remote_state: str, current_status: Optional[str]) -> str:
    """Map the remote open/closed state onto the local workflow status."""
    if remote_state == "closed":
        return IssueStatus.CLOSED.value
    if current_status is None or current_status == IssueStatus.CLOSED.value:
        return IssueStatus.BACKLOG.value
    return current_status


def pull_request_status_from_remote(remote: GitHubPullRequest) -> str:
    if remote.merged:
        return PullRequestStatus.MERGED.value
    if remote.state == "closed":
        return PullRequestStatus.CLOSED.value
    return PullRequestStatus.OPEN.value


def find_issue(repository_id: int, remote_id: int) -> Optional[Issue]:
    return Issue.query.filter_by(repository_id=repository_id, remote_id=remote_id).first()


def find_pull_request(repository_id: int, remote_id: int) -> Optional[PullRequest]:
    return PullRequest.query.filter_by(repository_id=repository_id, remote_id=remote_id).first()


def upsert_issue(repository: Repository, payload: Dict[str, Any]) -> Tuple[Issue, bool]:
    """Create or update the Issue for ``payload``. Returns (issue, created)."""
    remote = issue_from_payload(payload)
    issue = find_issue(repository.id, remote.number)
    created = issue is None
    if created:
        issue = Issue(
            repository_id=repository.id,
            author_id=repository.owner_id,
            labels=[],
        )
        db.session.add(issue)

    issue.title = remote.title
    issue.body = remote.body
    issue.status = issue_status_from_remote(remote.state, None if created else issue.status)
    issue.link_remote(remote.number, remote.node_id, remote.url)
    return issue, created


def upsert_pull_request(repository: Repository, payload: Dict[str, Any]) -> Tuple[PullRequest, bool]:
    remote = pull_request_from_payload(payload)
    pull_request = find_pull_request(repository.id, remote.number)
    created = pull_request is None
    if created:
        pull_request = PullRequest(repository_id=repository.id, author_id=repository.owner_id)
        db.session.add(pull_request)

    pull_request.title = remote.title
    pull_request.body = remote.body
    pull_request.status = pull_request_status_from_remote(remote)
    pull_request.source_branch = remote.source_branch
    pull_request.target_branch = remote.target_branch
    pull_request.link_remote(remote.number, remote.node_id, remote.url)
    return pull_request, created


def upsert_comment(
    parent: Union[Issue, PullRequest], payload: Dict[str, Any], author_id: int
) -> Tuple[Comment, bool]:
    """Create or update a comment keyed by (parent, remote comment id)."""
    remote = comment_from_payload(payload)
    if isinstance(parent, Issue):
        query = Comment.query.filter_by(issue_id=parent.id, remote_id=remote.id)
        parent_kwargs = {"issue_id": parent.id}
    else:
        query = Comment.query.filter_by(pull_request_id=parent.id, remote_id=remote.id)
        parent_kwargs = {"pull_request_id": parent.id}

    comment = query.first()
    created = comment is None
    if created:
        comment = Comment(author_id=author_id, **parent_kwargs)
        db.session.add(comment)

    comment.body = remote.body
    comment.link_remote(remote.id, remote.node_id, remote.url)
    return comment, created
