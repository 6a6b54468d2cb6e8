"""Utilities for interacting with the GitHub API."""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from dataclasses import dataclass
from http.client import RemoteDisconnected
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from urllib import request as urllib_request, error as urllib_error
from urllib.parse import quote, urlencode

from cryptography.fernet import Fernet, InvalidToken
from flask import current_app, has_app_context

GITHUB_API_BASE = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
DEFAULT_TIMEOUT = 20
MISSING_STATUS_CODES = {404, 410}
WEBHOOK_EVENTS = ("issues", "issue_comment", "pull_request", "push")


class GitHubError(RuntimeError):
    """Raised when a GitHub API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(GitHubError):
    """Raised when GitHub rejects a call because a rate limit is exhausted."""

    def __init__(self, message: str, status_code: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message, status_code)
        self.retry_after = retry_after


@dataclass
class GitHubRepository:
    """Simple representation of a GitHub repository."""

    id: int
    node_id: str
    name: str
    owner: str
    full_name: str
    html_url: str
    default_branch: str
    private: bool
    description: Optional[str] = None


@dataclass
class GitHubIssue:
    """Simplified issue payload returned from GitHub."""

    number: int
    node_id: str
    title: str
    body: str
    state: str
    url: str


@dataclass
class GitHubPullRequest:
    number: int
    node_id: str
    title: str
    body: str
    state: str
    merged: bool
    url: str
    source_branch: str
    target_branch: str


@dataclass
class GitHubComment:
    id: int
    node_id: str
    body: str
    url: str


@dataclass
class GitHubContent:
    """A file or directory entry from the contents API."""

    path: str
    name: str
    type: str
    sha: str
    size: int


def _get_fernet() -> Fernet:
    secret_key = current_app.config.get("SECRET_KEY")
    if not secret_key:
        raise RuntimeError("SECRET_KEY is required to encrypt GitHub tokens")
    if isinstance(secret_key, str):
        secret_bytes = secret_key.encode("utf-8")
    else:
        secret_bytes = secret_key
    digest = hashlib.sha256(secret_bytes).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_token(token: str) -> bytes:
    if not token:
        raise ValueError("Token must not be empty")
    return _get_fernet().encrypt(token.encode("utf-8"))


def decrypt_token(token_encrypted: Optional[bytes]) -> Optional[str]:
    if not token_encrypted:
        return None
    try:
        return _get_fernet().decrypt(token_encrypted).decode("utf-8")
    except InvalidToken:  # pragma: no cover - shouldn't happen unless SECRET_KEY rotated
        logging.error("Unable to decrypt GitHub token due to invalid token or key.")
        return None


# Payload parsing
# ------------------------------


def is_pull_request_payload(entry: Dict[str, Any]) -> bool:
    """True when an issues-endpoint entry is really a pull request.

    The issues API (and ``issue_comment`` webhooks) return pull requests as
    issue-shaped objects carrying a ``pull_request`` marker.
    """
    return isinstance(entry, dict) and bool(entry.get("pull_request"))


def repository_from_payload(data: Dict[str, Any]) -> GitHubRepository:
    owner = (data.get("owner") or {}).get("login", "")
    return GitHubRepository(
        id=data["id"],
        node_id=data.get("node_id", ""),
        name=data.get("name", ""),
        owner=owner,
        full_name=data.get("full_name") or f"{owner}/{data.get('name', '')}",
        html_url=data.get("html_url", ""),
        default_branch=data.get("default_branch") or "main",
        private=bool(data.get("private")),
        description=data.get("description"),
    )


def issue_from_payload(data: Dict[str, Any]) -> GitHubIssue:
    return GitHubIssue(
        number=data["number"],
        node_id=data.get("node_id", ""),
        title=data.get("title") or "",
        body=data.get("body") or "",
        state=data.get("state") or "open",
        url=data.get("html_url", ""),
    )


def pull_request_from_payload(data: Dict[str, Any]) -> GitHubPullRequest:
    # The list endpoint omits ``merged``; ``merged_at`` is present on both shapes.
    merged = bool(data.get("merged")) or bool(data.get("merged_at"))
    return GitHubPullRequest(
        number=data["number"],
        node_id=data.get("node_id", ""),
        title=data.get("title") or "",
        body=data.get("body") or "",
        state=data.get("state") or "open",
        merged=merged,
        url=data.get("html_url", ""),
        source_branch=(data.get("head") or {}).get("ref", ""),
        target_branch=(data.get("base") or {}).get("ref", ""),
    )


def comment_from_payload(data: Dict[str, Any]) -> GitHubComment:
    return GitHubComment(
        id=data["id"],
        node_id=data.get("node_id", ""),
        body=data.get("body") or "",
        url=data.get("html_url", ""),
    )


def content_from_payload(data: Dict[str, Any]) -> GitHubContent:
    return GitHubContent(
        path=data.get("path", ""),
        name=data.get("name", ""),
        type=data.get("type", "file"),
        sha=data.get("sha", ""),
        size=int(data.get("size") or 0),
    )


# HTTP plumbing
# ------------------------------


def _api_base() -> str:
    if has_app_context():
        return current_app.config.get("GITHUB_API_BASE") or GITHUB_API_BASE
    return GITHUB_API_BASE


def _timeout() -> float:
    if has_app_context():
        return current_app.config.get("GITHUB_TIMEOUT") or DEFAULT_TIMEOUT
    return DEFAULT_TIMEOUT


def _headers(token: str, *, accept: Optional[str] = None) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": accept or "application/vnd.github+json",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
        "User-Agent": "RepoMirror-Sync",
        "Content-Type": "application/json",
    }


def _rate_limit_error(status: int, headers) -> Optional[RateLimitError]:
    """Return a RateLimitError when the response signals an exhausted limit."""
    if headers is None:
        return None
    retry_after_raw = headers.get("Retry-After")
    retry_after = None
    if retry_after_raw:
        try:
            retry_after = float(retry_after_raw)
        except ValueError:
            retry_after = None
    if status == 429:
        return RateLimitError("GitHub secondary rate limit exceeded", status, retry_after)
    if status == 403 and (headers.get("X-RateLimit-Remaining") == "0" or retry_after is not None):
        return RateLimitError("GitHub rate limit exceeded", status, retry_after)
    return None


def _request(
    method: str,
    endpoint: str,
    token: str,
    payload: Optional[dict] = None,
    *,
    params: Optional[Dict[str, Any]] = None,
    accept: Optional[str] = None,
) -> Tuple[int, Any]:
    url = endpoint if endpoint.startswith("http") else f"{_api_base()}{endpoint}"
    if params:
        url = f"{url}?{urlencode(params)}"
    data = None
    if payload is not None:
        data = json.dumps(payload).encode("utf-8")

    request = urllib_request.Request(
        url,
        data=data,
        headers=_headers(token, accept=accept),
        method=method,
    )
    try:
        with urllib_request.urlopen(request, timeout=_timeout()) as response:
            status = response.getcode()
            headers = response.headers
            raw = response.read()
    except urllib_error.HTTPError as error:
        status = error.code
        headers = error.headers
        raw = error.read()
    except RemoteDisconnected as error:
        raise GitHubError("GitHub closed the connection unexpectedly.") from error
    except TimeoutError as error:
        raise GitHubError("GitHub did not respond in time.") from error
    except urllib_error.URLError as error:
        raise GitHubError("Unable to reach GitHub.") from error

    text = raw.decode("utf-8") if raw else ""
    if status >= 400:
        logging.warning(
            "GitHub API call failed",
            extra={"method": method, "url": url, "status": status, "body": text[:500]},
        )
        rate_limited = _rate_limit_error(status, headers)
        if rate_limited is not None:
            raise rate_limited
    try:
        body = json.loads(text) if text else {}
    except json.JSONDecodeError:
        body = {}
    return status, body


def _raise_for_status(status: int, message: str) -> None:
    if status in (401, 403):
        raise GitHubError("Unauthorized", status)
    if status in MISSING_STATUS_CODES:
        raise GitHubError("Not found", status)
    if status >= 400:
        raise GitHubError(message, status)


def _repo_path(owner: str, repo: str) -> str:
    return f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"


# Users and repositories
# ------------------------------


def get_current_user(token: str) -> Dict[str, Any]:
    status, payload = _request("GET", "/user", token)
    _raise_for_status(status, "Unable to load the authenticated user")
    return payload


def test_connection(token: str) -> bool:
    status, _ = _request("GET", "/user", token)
    return 200 <= status < 300


def list_repositories(token: str) -> List[GitHubRepository]:
    repos: List[GitHubRepository] = []
    page = 1
    while True:
        status, payload = _request(
            "GET",
            "/user/repos",
            token,
            params={"type": "all", "sort": "updated", "per_page": 100, "page": page},
        )
        _raise_for_status(status, "Unable to list repositories")
        if not isinstance(payload, list) or not payload:
            break
        repos.extend(repository_from_payload(repo) for repo in payload)
        if len(payload) < 100:
            break
        page += 1
    return repos


def get_repository(token: str, owner: str, repo: str) -> GitHubRepository:
    status, payload = _request("GET", _repo_path(owner, repo), token)
    _raise_for_status(status, "Unable to load repository")
    return repository_from_payload(payload)


def get_permission(token: str, owner: str, repo: str, username: str) -> str:
    """Return the user's permission level: admin, write, read or none."""
    status, payload = _request(
        "GET",
        f"{_repo_path(owner, repo)}/collaborators/{quote(username, safe='')}/permission",
        token,
    )
    if status == 404:
        return "none"
    _raise_for_status(status, "Unable to check repository permission")
    return payload.get("permission") or "none"


# Issues, pull requests and comments
# ------------------------------


def list_issues(
    token: str, owner: str, repo: str, *, state: str = "all", per_page: int = 100, page: int = 1
) -> List[Dict[str, Any]]:
    """Return one raw page of issues. Entries may be pull requests."""
    status, payload = _request(
        "GET",
        f"{_repo_path(owner, repo)}/issues",
        token,
        params={"state": state, "per_page": per_page, "page": page},
    )
    _raise_for_status(status, "Unable to list issues")
    return payload if isinstance(payload, list) else []


def list_pull_requests(
    token: str, owner: str, repo: str, *, state: str = "all", per_page: int = 100, page: int = 1
) -> List[Dict[str, Any]]:
    status, payload = _request(
        "GET",
        f"{_repo_path(owner, repo)}/pulls",
        token,
        params={"state": state, "per_page": per_page, "page": page},
    )
    _raise_for_status(status, "Unable to list pull requests")
    return payload if isinstance(payload, list) else []


def create_issue(token: str, owner: str, repo: str, title: str, body: str) -> GitHubIssue:
    status, payload = _request(
        "POST",
        f"{_repo_path(owner, repo)}/issues",
        token,
        payload={"title": title, "body": body},
    )
    _raise_for_status(status, "Unable to create issue")
    return issue_from_payload(payload)


def update_issue(
    token: str,
    owner: str,
    repo: str,
    issue_number: int,
    *,
    title: Optional[str] = None,
    body: Optional[str] = None,
    state: Optional[str] = None,
) -> GitHubIssue:
    """Patch an issue. Pull requests share this endpoint for title/body/state."""
    payload: Dict[str, object] = {}
    if title is not None:
        payload["title"] = title
    if body is not None:
        payload["body"] = body
    if state is not None:
        payload["state"] = state

    status, data = _request(
        "PATCH", f"{_repo_path(owner, repo)}/issues/{issue_number}", token, payload=payload
    )
    _raise_for_status(status, "Unable to update issue")
    return issue_from_payload(data)


def create_pull_request(
    token: str, owner: str, repo: str, title: str, body: str, head: str, base: str
) -> GitHubPullRequest:
    status, payload = _request(
        "POST",
        f"{_repo_path(owner, repo)}/pulls",
        token,
        payload={"title": title, "body": body, "head": head, "base": base},
    )
    _raise_for_status(status, "Unable to create pull request")
    return pull_request_from_payload(payload)


def create_issue_comment(token: str, owner: str, repo: str, issue_number: int, body: str) -> GitHubComment:
    status, payload = _request(
        "POST",
        f"{_repo_path(owner, repo)}/issues/{issue_number}/comments",
        token,
        payload={"body": body},
    )
    _raise_for_status(status, "Unable to comment on issue")
    return comment_from_payload(payload)


def create_webhook(
    token: str,
    owner: str,
    repo: str,
    url: str,
    secret: str,
    events: Iterable[str] = WEBHOOK_EVENTS,
) -> Dict[str, Any]:
    status, payload = _request(
        "POST",
        f"{_repo_path(owner, repo)}/hooks",
        token,
        payload={
            "name": "web",
            "active": True,
            "events": list(events),
            "config": {"url": url, "content_type": "json", "secret": secret, "insecure_ssl": "0"},
        },
    )
    _raise_for_status(status, "Unable to create webhook")
    return payload


# Contents
# ------------------------------


def get_contents(
    token: str, owner: str, repo: str, path: str = "", ref: Optional[str] = None
) -> Union[GitHubContent, List[GitHubContent]]:
    """Return file metadata for a file path, or the entries of a directory."""
    endpoint = f"{_repo_path(owner, repo)}/contents"
    if path:
        endpoint = f"{endpoint}/{quote(path.strip('/'), safe='/')}"
    status, payload = _request("GET", endpoint, token, params={"ref": ref} if ref else None)
    _raise_for_status(status, "Unable to load repository contents")
    if isinstance(payload, list):
        return [content_from_payload(entry) for entry in payload if isinstance(entry, dict)]
    return content_from_payload(payload)


def get_blob(token: str, owner: str, repo: str, sha: str) -> bytes:
    status, payload = _request("GET", f"{_repo_path(owner, repo)}/git/blobs/{sha}", token)
    _raise_for_status(status, "Unable to load file blob")
    content = payload.get("content") or ""
    if payload.get("encoding", "base64") == "base64":
        return base64.b64decode(content)
    return content.encode("utf-8")


def get_readme(token: str, owner: str, repo: str, ref: Optional[str] = None) -> Optional[GitHubContent]:
    status, payload = _request(
        "GET", f"{_repo_path(owner, repo)}/readme", token, params={"ref": ref} if ref else None
    )
    if status == 404:
        return None
    _raise_for_status(status, "Unable to load README")
    return content_from_payload(payload)


def get_languages(token: str, owner: str, repo: str) -> Dict[str, int]:
    status, payload = _request("GET", f"{_repo_path(owner, repo)}/languages", token)
    _raise_for_status(status, "Unable to load repository languages")
    return payload if isinstance(payload, dict) else {}


def list_branches(token: str, owner: str, repo: str, *, per_page: int = 100, page: int = 1) -> List[Dict[str, Any]]:
    status, payload = _request(
        "GET",
        f"{_repo_path(owner, repo)}/branches",
        token,
        params={"per_page": per_page, "page": page},
    )
    _raise_for_status(status, "Unable to list branches")
    if not isinstance(payload, list):
        return []
    return [
        {"name": branch.get("name"), "sha": (branch.get("commit") or {}).get("sha")}
        for branch in payload
        if isinstance(branch, dict)
    ]


def list_commits(
    token: str,
    owner: str,
    repo: str,
    *,
    sha: Optional[str] = None,
    path: Optional[str] = None,
    per_page: int = 30,
    page: int = 1,
) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {"per_page": per_page, "page": page}
    if sha:
        params["sha"] = sha
    if path:
        params["path"] = path
    status, payload = _request("GET", f"{_repo_path(owner, repo)}/commits", token, params=params)
    _raise_for_status(status, "Unable to list commits")
    return payload if isinstance(payload, list) else []
