"""Content-addressed cache of repository files.

One row per (repository_id, path). ``content_hash`` is the provider's blob
sha; the content is only replaced when that hash changes.
"""
from __future__ import annotations

from database import db, utcnow


class CachedFile(db.Model):
    __tablename__ = "cached_file"

    id = db.Column(db.Integer, primary_key=True)
    repository_id = db.Column(db.Integer, db.ForeignKey("repository.id"), nullable=False)
    path = db.Column(db.String(1024), nullable=False)
    content_hash = db.Column(db.String(64), nullable=False)
    content = db.Column(db.LargeBinary, nullable=False)
    size = db.Column(db.Integer, nullable=False)
    last_synced_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    repository = db.relationship("Repository", back_populates="cached_files")

    __table_args__ = (
        db.UniqueConstraint("repository_id", "path", name="uq_cached_file_repository_path"),
        db.Index("ix_cached_file_repository", "repository_id"),
    )

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<CachedFile {self.path} {self.content_hash[:7]}>"
