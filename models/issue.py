"""An issue tracked locally, optionally mirrored from the provider.

Invariant: at most one Issue per (repository_id, remote_id). Sync code looks
the record up before inserting; the unique constraint backs that up.
"""
from __future__ import annotations

from enum import StrEnum

from database import db, utcnow
from models.remote_identity import RemoteIdentityMixin


class IssueStatus(StrEnum):
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    CLOSED = "closed"


class IssuePriority(StrEnum):
    """Local-only priority. The provider has no such field."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Issue(RemoteIdentityMixin, db.Model):
    __tablename__ = "issue"

    id = db.Column(db.Integer, primary_key=True)
    repository_id = db.Column(db.Integer, db.ForeignKey("repository.id"), nullable=False, index=True)
    title = db.Column(db.Text, nullable=False)
    body = db.Column(db.Text, nullable=False, default="")
    status = db.Column(db.String(20), nullable=False, default=IssueStatus.BACKLOG.value)
    priority = db.Column(db.String(20), nullable=True)
    author_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    assignee_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    labels = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    repository = db.relationship("Repository", back_populates="issues")
    comments = db.relationship("Comment", back_populates="issue", lazy="selectin")

    __table_args__ = (
        db.UniqueConstraint("repository_id", "remote_id", name="uq_issue_repository_remote"),
    )

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<Issue {self.id} remote={self.remote_id} status={self.status}>"
