"""Shared setup for tests that need an application and a database."""

from __future__ import annotations

import unittest

from app import create_app
from database import db
from models.repository import Repository
from models.user import User
from tests.utils.db import cleanup_test_database, provision_test_database
from tests.utils.fake_github import FakeGitHub

REMOTE_REPOSITORY_ID = 1296269
WEBHOOK_SECRET = "It's a Secret to Everybody"


class SyncTestCase(unittest.TestCase):
    """Creates an app with inline background jobs, an owner and a linked repository."""

    config_overrides: dict = {}
    use_fake_github = True

    def setUp(self):
        self._test_db_name, test_database_uri, self._managed_test_db = provision_test_database()
        self.app = create_app(
            {
                "TESTING": True,
                "SECRET_KEY": "test-secret-key",
                "SQLALCHEMY_DATABASE_URI": test_database_uri,
                "SYNC_RUN_INLINE": True,
                "WEBHOOK_BASE_URL": "https://mirror.example.com",
                "RATE_LIMIT_BACKOFF_BASE": 0.0,
                "RATE_LIMIT_BACKOFF_CAP": 0.0,
                **self.config_overrides,
            }
        )
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.create_all()

        owner = User(username="octocat", name="The Octocat", email="octocat@example.com")
        owner.github_integration_enabled = True
        owner.set_github_token("token-123")
        db.session.add(owner)
        db.session.commit()
        self.owner_id = owner.id

        repository = Repository(
            remote_id=REMOTE_REPOSITORY_ID,
            owner="octocat",
            name="hello-world",
            full_name="octocat/hello-world",
            default_branch="main",
            owner_id=owner.id,
            webhook_secret=WEBHOOK_SECRET,
        )
        db.session.add(repository)
        db.session.commit()
        self.repository_id = repository.id

        self.github = FakeGitHub()
        if self.use_fake_github:
            patcher = self.github.patch()
            patcher.start()
            self.addCleanup(patcher.stop)

        self.client = self.app.test_client()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
        self.app.extensions["sync_tasks"].shutdown()
        self.ctx.pop()
        if self._managed_test_db:
            cleanup_test_database(self._test_db_name)

    @property
    def repository(self) -> Repository:
        return db.session.get(Repository, self.repository_id)

    @property
    def owner(self) -> User:
        return db.session.get(User, self.owner_id)

    def login(self, user_id: int | None = None):
        with self.client.session_transaction() as client_session:
            client_session["user_id"] = user_id or self.owner_id

    def add_user(self, username: str, token: str | None = None) -> User:
        user = User(username=username, name=username.title(), email=f"{username}@example.com")
        if token:
            user.github_integration_enabled = True
            user.set_github_token(token)
        db.session.add(user)
        db.session.commit()
        return user
