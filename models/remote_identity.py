"""Columns shared by every record mirrored from the provider."""
from __future__ import annotations

from database import db, utcnow


class RemoteIdentityMixin:
    """Optional remote identity triple plus the time of the last sync.

    ``remote_id`` holds the provider's number for issues and pull requests and
    the provider's comment id for comments. Records without one are local-only.
    """

    remote_id = db.Column(db.BigInteger, nullable=True)
    remote_node_id = db.Column(db.String(100), nullable=True)
    remote_url = db.Column(db.String(255), nullable=True)
    last_synced_at = db.Column(db.DateTime, nullable=True)

    @property
    def has_remote_link(self) -> bool:
        return self.remote_id is not None

    def link_remote(self, remote_id: int, node_id: str | None, url: str | None) -> None:
        """Store the identity returned by the provider for this record."""
        self.remote_id = remote_id
        self.remote_node_id = node_id or None
        self.remote_url = url or None
        self.last_synced_at = utcnow()
