"""A pull request tracked locally, optionally mirrored from the provider."""
from __future__ import annotations

from enum import StrEnum

from database import db, utcnow
from models.remote_identity import RemoteIdentityMixin


class PullRequestStatus(StrEnum):
    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"


class PullRequest(RemoteIdentityMixin, db.Model):
    __tablename__ = "pull_request"

    id = db.Column(db.Integer, primary_key=True)
    repository_id = db.Column(db.Integer, db.ForeignKey("repository.id"), nullable=False, index=True)
    title = db.Column(db.Text, nullable=False)
    body = db.Column(db.Text, nullable=False, default="")
    status = db.Column(db.String(20), nullable=False, default=PullRequestStatus.OPEN.value)
    source_branch = db.Column(db.String(255), nullable=False)
    target_branch = db.Column(db.String(255), nullable=False)
    author_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    issue_id = db.Column(db.Integer, db.ForeignKey("issue.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    repository = db.relationship("Repository", back_populates="pull_requests")
    comments = db.relationship("Comment", back_populates="pull_request", lazy="selectin")

    __table_args__ = (
        db.UniqueConstraint("repository_id", "remote_id", name="uq_pull_request_repository_remote"),
    )

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<PullRequest {self.id} remote={self.remote_id} status={self.status}>"
