"""Resolve provider credentials for remote calls.

Tokens are read from the database for every call. Nothing is cached in the
process, so revoking a token takes effect on the next call.
"""
from __future__ import annotations

from typing import Optional

from database import db
from models.repository import Repository
from models.user import User
from services.sync_errors import AuthenticationError


def get_user_github_token(user: Optional[User]) -> Optional[str]:
    if user is None or not user.github_integration_enabled:
        return None
    return user.get_github_token()


def resolve_token(repository: Repository, acting_user: Optional[User] = None) -> str:
    """Return the acting user's token, falling back to the repository owner's."""
    token = get_user_github_token(acting_user)
    if token:
        return token
    owner = repository.owner_user or db.session.get(User, repository.owner_id)
    token = get_user_github_token(owner)
    if token:
        return token
    raise AuthenticationError("Connect your GitHub account to sync changes.")
