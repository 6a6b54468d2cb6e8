"""Ledger of processed webhook deliveries.

Rows are never updated. The unique ``delivery_id`` is what makes inbound
processing idempotent: a second insert for the same id is rejected.
"""
from __future__ import annotations

from database import db, utcnow


class WebhookDelivery(db.Model):
    __tablename__ = "webhook_delivery"

    id = db.Column(db.Integer, primary_key=True)
    repository_id = db.Column(db.Integer, db.ForeignKey("repository.id"), nullable=False, index=True)
    delivery_id = db.Column(db.String(100), nullable=False, unique=True)
    event = db.Column(db.String(80), nullable=False)
    action = db.Column(db.String(80), nullable=True)
    received_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<WebhookDelivery {self.delivery_id} {self.event}.{self.action}>"
