"""Errors raised by the sync engine."""
from __future__ import annotations


class SyncError(RuntimeError):
    """Base class for sync engine failures."""


class AuthenticationError(SyncError):
    """No usable provider credential for the acting user or repository owner."""


class VerificationError(SyncError):
    """A webhook delivery failed signature verification."""


class SyncInProgressError(SyncError):
    """A full sync is already running for the repository."""

    def __init__(self, repository_id: int):
        super().__init__(f"A full sync is already running for repository {repository_id}")
        self.repository_id = repository_id


class SyncTimeoutError(SyncError):
    """A full sync ran past its deadline."""
