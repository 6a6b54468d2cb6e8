"""Persistence for synchronisation events.

Append-only audit trail of every inbound and outbound sync attempt.
"""
from __future__ import annotations

import json
from enum import StrEnum

from database import db, utcnow


class SyncDirection(StrEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class SyncLog(db.Model):
    __tablename__ = "sync_log"

    id = db.Column(db.Integer, primary_key=True)
    repository_id = db.Column(db.Integer, db.ForeignKey("repository.id"), nullable=False, index=True)
    event_type = db.Column(db.String(120), nullable=False)
    direction = db.Column(db.String(16), nullable=False)
    success = db.Column(db.Boolean, nullable=False)
    error = db.Column(db.Text, nullable=True)
    payload = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    repository = db.relationship("Repository", back_populates="sync_logs")

    @property
    def payload_data(self):
        if not self.payload:
            return None
        try:
            return json.loads(self.payload)
        except ValueError:
            return None

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<SyncLog repo={self.repository_id} event={self.event_type} success={self.success}>"
