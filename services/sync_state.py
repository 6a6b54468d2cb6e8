"""Sync status transitions and the sync event log."""
from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any, List, Optional

from sqlalchemy import or_, update

from database import db, utcnow
from models.repository import Repository, SyncStatus
from models.sync_log import SyncDirection, SyncLog


def record_sync_event(
    repository_id: int,
    event_type: str,
    direction: SyncDirection | str,
    success: bool,
    *,
    error: Optional[str] = None,
    payload: Any = None,
) -> SyncLog:
    """Add a SyncLog row to the current session. The caller commits."""
    entry = SyncLog(
        repository_id=repository_id,
        event_type=event_type,
        direction=str(direction),
        success=success,
        error=error,
        payload=json.dumps(payload, default=str) if payload is not None else None,
    )
    db.session.add(entry)
    return entry


def record_failure_in_new_transaction(
    repository_id: int,
    event_type: str,
    direction: SyncDirection | str,
    error: str,
    payload: Any = None,
) -> None:
    """Roll back whatever is pending and persist a failure log on its own."""
    db.session.rollback()
    try:
        record_sync_event(repository_id, event_type, direction, False, error=error, payload=payload)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logging.error("Failed to record sync failure for repository %s", repository_id, exc_info=True)


def claim_sync(repository_id: int, timeout_seconds: int) -> bool:
    """Atomically move a repository into ``syncing``.

    Succeeds when the repository is not syncing, or when the running sync
    started more than ``timeout_seconds`` ago. Commits on success.
    """
    now = utcnow()
    stale_before = now - timedelta(seconds=timeout_seconds)
    result = db.session.execute(
        update(Repository)
        .where(Repository.id == repository_id)
        .where(
            or_(
                Repository.sync_status != SyncStatus.SYNCING.value,
                Repository.sync_started_at.is_(None),
                Repository.sync_started_at < stale_before,
            )
        )
        .values(sync_status=SyncStatus.SYNCING.value, sync_started_at=now)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount == 1


def mark_sync_idle(repository: Repository) -> None:
    now = utcnow()
    repository.sync_status = SyncStatus.IDLE.value
    repository.sync_started_at = None
    repository.last_synced_at = now


def mark_sync_error(repository: Repository) -> None:
    repository.sync_status = SyncStatus.ERROR.value
    repository.sync_started_at = None


def list_sync_events(repository_id: int, limit: int = 50) -> List[SyncLog]:
    return (
        SyncLog.query.filter_by(repository_id=repository_id)
        .order_by(SyncLog.created_at.desc(), SyncLog.id.desc())
        .limit(limit)
        .all()
    )


def serialize_sync_event(entry: SyncLog) -> dict:
    return {
        "id": entry.id,
        "event_type": entry.event_type,
        "direction": entry.direction,
        "success": entry.success,
        "error": entry.error,
        "payload": entry.payload_data,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
