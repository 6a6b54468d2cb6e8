"""A repository mirrored from the provider.

A Repository is imported by a User, who becomes its owner. The owner's
credential is used for background sync work started on its behalf.
The sync components mutate the sync fields; the engine never deletes a
Repository (that is a user action).
"""
from __future__ import annotations

from enum import StrEnum

from database import db, utcnow


class SyncStatus(StrEnum):
    """Visible sync state of a repository."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class Repository(db.Model):
    __tablename__ = "repository"

    id = db.Column(db.Integer, primary_key=True)
    remote_id = db.Column(db.BigInteger, nullable=True, unique=True)
    remote_node_id = db.Column(db.String(100), nullable=True)
    owner = db.Column(db.String(200), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    full_name = db.Column(db.String(400), nullable=True)
    description = db.Column(db.Text, nullable=True)
    html_url = db.Column(db.String(255), nullable=True)
    default_branch = db.Column(db.String(200), nullable=False, default="main")
    is_private = db.Column(db.Boolean, nullable=False, default=False)
    owner_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)

    sync_enabled = db.Column(db.Boolean, nullable=False, default=True)
    sync_status = db.Column(db.String(16), nullable=False, default=SyncStatus.IDLE.value)
    sync_started_at = db.Column(db.DateTime, nullable=True)
    last_synced_at = db.Column(db.DateTime, nullable=True)
    webhook_id = db.Column(db.BigInteger, nullable=True)
    webhook_secret = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    owner_user = db.relationship("User", back_populates="repositories")
    issues = db.relationship("Issue", back_populates="repository", lazy="dynamic")
    pull_requests = db.relationship("PullRequest", back_populates="repository", lazy="dynamic")
    cached_files = db.relationship("CachedFile", back_populates="repository", lazy="dynamic")
    sync_logs = db.relationship("SyncLog", back_populates="repository", lazy="dynamic")

    @property
    def is_linked(self) -> bool:
        """True when the repository is tied to a repository on the provider."""
        return bool(self.full_name and "/" in self.full_name)

    def owner_and_name(self) -> tuple[str, str]:
        owner, _, name = (self.full_name or "").partition("/")
        return owner or self.owner, name or self.name

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<Repository {self.full_name or self.name} status={self.sync_status}>"
