"""Inbound webhook handling: verification, dedup ledger and event dispatch."""
from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from database import db
from models.issue import Issue
from models.pull_request import PullRequest
from models.repository import Repository
from models.sync_log import SyncDirection
from models.webhook_delivery import WebhookDelivery
from services.cache_service import delete_cached_paths
from services.github_service import is_pull_request_payload
from services.sync_errors import VerificationError
from services.sync_state import record_failure_in_new_transaction, record_sync_event
from services.upsert_service import upsert_comment, upsert_issue, upsert_pull_request

SIGNATURE_PREFIX = "sha256="

ISSUE_ACTIONS = {"opened", "edited", "reopened", "closed"}
PULL_REQUEST_ACTIONS = {"opened", "edited", "reopened", "closed", "synchronize"}
COMMENT_ACTIONS = {"created", "edited"}

APPLIED = "applied"
RECORDED = "recorded"
IGNORED = "ignored"
PARENT_MISSING = "parent_missing"
ACKNOWLEDGED = "acknowledged"


class InvalidPayloadError(ValueError):
    """The payload is missing fields its event kind requires."""


def compute_signature(raw_body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Check an HMAC-SHA256 signature over the exact request bytes.

    A missing secret or signature never verifies.
    """
    if not secret or not signature:
        return False
    if not signature.startswith(SIGNATURE_PREFIX):
        return False
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))


def require_valid_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    if not verify_signature(raw_body, signature, secret):
        raise VerificationError("Webhook signature did not verify")


def extract_repository_id(payload: Any) -> Optional[int]:
    if not isinstance(payload, dict):
        return None
    repository = payload.get("repository")
    if not isinstance(repository, dict):
        return None
    remote_id = repository.get("id")
    if isinstance(remote_id, bool) or not isinstance(remote_id, int):
        return None
    return remote_id


def record_delivery(repository_id: int, delivery_id: str, event: str, action: Optional[str]) -> bool:
    """Insert the delivery into the ledger unless it is already there.

    Flushes inside the current transaction so the ledger row commits or rolls
    back together with the event's effects. Returns False for a replay.
    """
    if WebhookDelivery.query.filter_by(delivery_id=delivery_id).first() is not None:
        return False
    db.session.add(
        WebhookDelivery(
            repository_id=repository_id,
            delivery_id=delivery_id,
            event=event,
            action=action,
        )
    )
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        return False
    return True


def _require_object(payload: Dict[str, Any], key: str, id_field: str) -> None:
    value = payload.get(key)
    if not isinstance(value, dict) or value.get(id_field) is None:
        raise InvalidPayloadError(f"Payload is missing {key}.{id_field}")


def validate_payload(event: str, payload: Dict[str, Any]) -> None:
    """Raise InvalidPayloadError when a handled event lacks required fields."""
    action = payload.get("action")
    if event == "issues" and action in ISSUE_ACTIONS:
        _require_object(payload, "issue", "number")
    elif event == "pull_request" and action in PULL_REQUEST_ACTIONS:
        _require_object(payload, "pull_request", "number")
    elif event == "issue_comment" and action in COMMENT_ACTIONS:
        _require_object(payload, "issue", "number")
        _require_object(payload, "comment", "id")
    elif event == "push":
        commits = payload.get("commits")
        if commits is not None and not isinstance(commits, list):
            raise InvalidPayloadError("Payload commits must be a list")


def _process_issues(repository: Repository, payload: Dict[str, Any]) -> str:
    action = payload.get("action")
    if action == "deleted":
        # The local mirror is kept; the deletion is only recorded.
        return RECORDED
    if action not in ISSUE_ACTIONS:
        return IGNORED
    upsert_issue(repository, payload["issue"])
    return APPLIED


def _process_pull_request(repository: Repository, payload: Dict[str, Any]) -> str:
    if payload.get("action") not in PULL_REQUEST_ACTIONS:
        return IGNORED
    upsert_pull_request(repository, payload["pull_request"])
    return APPLIED


def _process_issue_comment(repository: Repository, payload: Dict[str, Any]) -> str:
    action = payload.get("action")
    if action == "deleted":
        return RECORDED
    if action not in COMMENT_ACTIONS:
        return IGNORED

    remote_parent = payload["issue"]
    model = PullRequest if is_pull_request_payload(remote_parent) else Issue
    parent = model.query.filter_by(repository_id=repository.id, remote_id=remote_parent["number"]).first()
    if parent is None:
        logging.info(
            "Comment for unknown %s #%s in %s ignored",
            model.__tablename__,
            remote_parent["number"],
            repository.full_name,
        )
        return PARENT_MISSING
    upsert_comment(parent, payload["comment"], repository.owner_id)
    return APPLIED


def _process_push(repository: Repository, payload: Dict[str, Any]) -> str:
    if payload.get("ref") != f"refs/heads/{repository.default_branch}":
        return IGNORED
    removed: set[str] = set()
    for commit in payload.get("commits") or []:
        if not isinstance(commit, dict):
            continue
        removed.update(commit.get("removed") or [])
        removed.difference_update(commit.get("added") or [])
    if not removed:
        return IGNORED
    delete_cached_paths(repository.id, removed)
    return APPLIED


_PROCESSORS = {
    "issues": _process_issues,
    "pull_request": _process_pull_request,
    "issue_comment": _process_issue_comment,
    "push": _process_push,
}


def process_event(repository: Repository, event: str, payload: Dict[str, Any]) -> str:
    """Apply one verified event to the local store without committing."""
    if event == "ping":
        return ACKNOWLEDGED
    processor = _PROCESSORS.get(event)
    if processor is None:
        logging.info("Ignoring unsupported webhook event %s for %s", event, repository.full_name)
        return IGNORED
    return processor(repository, payload)


def handle_delivery(
    repository: Repository, delivery_id: str, event: str, payload: Dict[str, Any]
) -> Tuple[str, int]:
    """Dedup, apply and log one verified delivery. Returns (message, status)."""
    action = payload.get("action")
    event_type = f"webhook.{event}.{action}" if action else f"webhook.{event}"
    log_payload = {"delivery_id": delivery_id, "event": event, "action": action}

    if not record_delivery(repository.id, delivery_id, event, action):
        return "Delivery already processed", 200

    try:
        outcome = process_event(repository, event, payload)
        db.session.commit()
    except Exception as error:
        logging.error("Failed to process webhook delivery %s", delivery_id, exc_info=True)
        record_failure_in_new_transaction(
            repository.id, event_type, SyncDirection.INBOUND, str(error) or error.__class__.__name__, log_payload
        )
        return "Processing failed", 500

    if outcome in (APPLIED, RECORDED, PARENT_MISSING):
        try:
            record_sync_event(
                repository.id, event_type, SyncDirection.INBOUND, True, payload={**log_payload, "outcome": outcome}
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logging.error("Failed to log webhook delivery %s", delivery_id, exc_info=True)
    return outcome, 200
