"""Local create/update helpers and serializers for issues, pull requests and comments."""

from __future__ import annotations

from typing import Any, Optional

from database import db
from models.comment import Comment
from models.issue import Issue, IssuePriority, IssueStatus
from models.pull_request import PullRequest, PullRequestStatus
from models.repository import Repository
from models.user import User

ISSUE_STATUSES = frozenset(status.value for status in IssueStatus)
ISSUE_PRIORITIES = frozenset(priority.value for priority in IssuePriority)
PULL_REQUEST_STATUSES = frozenset(status.value for status in PullRequestStatus)


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None


def _clean_text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def validate_issue_status(status: Any) -> str:
    if status not in ISSUE_STATUSES:
        raise ValueError(f"Status must be one of: {', '.join(sorted(ISSUE_STATUSES))}.")
    return status


def validate_priority(priority: Any) -> Optional[str]:
    if priority in (None, ""):
        return None
    if priority not in ISSUE_PRIORITIES:
        raise ValueError(f"Priority must be one of: {', '.join(sorted(ISSUE_PRIORITIES))}.")
    return priority


def _clean_labels(labels: Any) -> list[str]:
    if labels is None:
        return []
    if not isinstance(labels, (list, tuple)):
        raise ValueError("Labels must be a list.")
    return [str(label).strip() for label in labels if str(label).strip()]


def create_issue(repository: Repository, author: User, data: dict) -> Issue:
    title = _clean_text(data.get("title"))
    if not title:
        raise ValueError("Title is required.")
    issue = Issue(
        repository_id=repository.id,
        title=title,
        body=data.get("body") or "",
        status=validate_issue_status(data.get("status") or IssueStatus.BACKLOG.value),
        priority=validate_priority(data.get("priority")),
        author_id=author.id,
        labels=_clean_labels(data.get("labels")),
    )
    db.session.add(issue)
    return issue


def update_issue(issue: Issue, data: dict) -> set[str]:
    """Apply editable fields from ``data``. Returns the names that changed."""
    changed: set[str] = set()
    if "title" in data:
        title = _clean_text(data.get("title"))
        if not title:
            raise ValueError("Title is required.")
        if title != issue.title:
            issue.title = title
            changed.add("title")
    if "body" in data:
        body = data.get("body") or ""
        if body != issue.body:
            issue.body = body
            changed.add("body")
    if "priority" in data:
        priority = validate_priority(data.get("priority"))
        if priority != issue.priority:
            issue.priority = priority
            changed.add("priority")
    if "labels" in data:
        labels = _clean_labels(data.get("labels"))
        if labels != list(issue.labels or []):
            issue.labels = labels
            changed.add("labels")
    if "assignee_id" in data:
        assignee_id = data.get("assignee_id")
        if assignee_id is not None and db.session.get(User, assignee_id) is None:
            raise ValueError("Assignee not found.")
        if assignee_id != issue.assignee_id:
            issue.assignee_id = assignee_id
            changed.add("assignee_id")
    return changed


def create_pull_request(repository: Repository, author: User, data: dict) -> PullRequest:
    title = _clean_text(data.get("title"))
    source_branch = _clean_text(data.get("source_branch"))
    target_branch = _clean_text(data.get("target_branch")) or repository.default_branch
    if not title:
        raise ValueError("Title is required.")
    if not source_branch:
        raise ValueError("Source branch is required.")
    issue_id = data.get("issue_id")
    if issue_id is not None:
        issue = db.session.get(Issue, issue_id)
        if issue is None or issue.repository_id != repository.id:
            raise ValueError("Linked issue not found in this repository.")
    pull_request = PullRequest(
        repository_id=repository.id,
        title=title,
        body=data.get("body") or "",
        status=PullRequestStatus.OPEN.value,
        source_branch=source_branch,
        target_branch=target_branch,
        author_id=author.id,
        issue_id=issue_id,
    )
    db.session.add(pull_request)
    return pull_request


def update_pull_request(pull_request: PullRequest, data: dict) -> set[str]:
    changed: set[str] = set()
    if "title" in data:
        title = _clean_text(data.get("title"))
        if not title:
            raise ValueError("Title is required.")
        if title != pull_request.title:
            pull_request.title = title
            changed.add("title")
    if "body" in data:
        body = data.get("body") or ""
        if body != pull_request.body:
            pull_request.body = body
            changed.add("body")
    if "status" in data:
        status = data.get("status")
        if status not in PULL_REQUEST_STATUSES:
            raise ValueError(f"Status must be one of: {', '.join(sorted(PULL_REQUEST_STATUSES))}.")
        if status != pull_request.status:
            pull_request.status = status
            changed.add("status")
    return changed


def add_comment(parent: Issue | PullRequest, author: User, body: Any) -> Comment:
    text = _clean_text(body)
    if not text:
        raise ValueError("Comment body is required.")
    if isinstance(parent, Issue):
        comment = Comment(issue_id=parent.id, author_id=author.id, body=text)
    else:
        comment = Comment(pull_request_id=parent.id, author_id=author.id, body=text)
    db.session.add(comment)
    return comment


def _remote_fields(record) -> dict:
    return {
        "remote_id": record.remote_id,
        "remote_url": record.remote_url,
        "last_synced_at": _isoformat(record.last_synced_at),
    }


def serialize_comment(comment: Comment) -> dict:
    return {
        "id": comment.id,
        "body": comment.body,
        "author_id": comment.author_id,
        "issue_id": comment.issue_id,
        "pull_request_id": comment.pull_request_id,
        "created_at": _isoformat(comment.created_at),
        **_remote_fields(comment),
    }


def serialize_issue(issue: Issue, *, include_comments: bool = False) -> dict:
    payload = {
        "id": issue.id,
        "repository_id": issue.repository_id,
        "title": issue.title,
        "body": issue.body,
        "status": issue.status,
        "priority": issue.priority,
        "author_id": issue.author_id,
        "assignee_id": issue.assignee_id,
        "labels": list(issue.labels or []),
        "created_at": _isoformat(issue.created_at),
        "updated_at": _isoformat(issue.updated_at),
        **_remote_fields(issue),
    }
    if include_comments:
        payload["comments"] = [serialize_comment(comment) for comment in issue.comments]
    return payload


def serialize_pull_request(pull_request: PullRequest, *, include_comments: bool = False) -> dict:
    payload = {
        "id": pull_request.id,
        "repository_id": pull_request.repository_id,
        "title": pull_request.title,
        "body": pull_request.body,
        "status": pull_request.status,
        "source_branch": pull_request.source_branch,
        "target_branch": pull_request.target_branch,
        "author_id": pull_request.author_id,
        "issue_id": pull_request.issue_id,
        "created_at": _isoformat(pull_request.created_at),
        "updated_at": _isoformat(pull_request.updated_at),
        **_remote_fields(pull_request),
    }
    if include_comments:
        payload["comments"] = [serialize_comment(comment) for comment in pull_request.comments]
    return payload
