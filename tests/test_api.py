from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError

from database import db, utcnow
from models.cached_file import CachedFile
from models.comment import Comment
from models.issue import Issue, IssueStatus
from models.pull_request import PullRequest
from models.repository import Repository, SyncStatus
from models.sync_log import SyncLog
from models.user import User
from services.github_service import GitHubError, GitHubRepository
from tests.utils.base import SyncTestCase
from tests.utils.fake_github import blob_sha, issue_payload


class ApiAuthTestCase(SyncTestCase):
    def test_api_requires_login(self):
        response = self.client.get(f"/api/repositories/{self.repository_id}/sync-log")

        self.assertEqual(response.status_code, 401)
        self.assertFalse(response.get_json()["success"])

    def test_health_is_public(self):
        self.assertEqual(self.client.get("/health").status_code, 200)


class RepositoryApiTestCase(SyncTestCase):
    def setUp(self):
        super().setUp()
        self.login()

    def _remote_repository(self):
        return GitHubRepository(
            id=555,
            node_id="R_555",
            name="spoon-knife",
            owner="octocat",
            full_name="octocat/spoon-knife",
            html_url="https://github.com/octocat/spoon-knife",
            default_branch="main",
            private=False,
            description="Fork me",
        )

    def test_import_links_repository_and_runs_initial_sync(self):
        self.github.issues = [issue_payload(1), issue_payload(2)]
        self.github.files = {"README.md": b"# Spoon\n"}

        with patch("services.github_service.get_repository", return_value=self._remote_repository()), patch(
            "services.github_service.get_current_user", return_value={"login": "octocat"}
        ), patch("services.github_service.get_permission", return_value="admin"):
            response = self.client.post("/api/repositories/import", json={"full_name": "octocat/spoon-knife"})

        self.assertEqual(response.status_code, 201)
        payload = response.get_json()
        self.assertTrue(payload["webhook_configured"])
        repository = Repository.query.filter_by(remote_id=555).one()
        self.assertEqual(repository.full_name, "octocat/spoon-knife")
        self.assertEqual(repository.owner_id, self.owner_id)
        self.assertEqual(repository.webhook_id, 777)
        self.assertIsNotNone(repository.webhook_secret)
        self.assertEqual(self.github.calls["create_webhook"][0][0], "https://mirror.example.com/provider/webhook")
        self.assertEqual(Issue.query.filter_by(repository_id=repository.id).count(), 2)
        self.assertEqual(CachedFile.query.filter_by(repository_id=repository.id).count(), 1)
        self.assertEqual(repository.sync_status, SyncStatus.IDLE.value)

    def test_import_rejects_invalid_name(self):
        response = self.client.post("/api/repositories/import", json={"full_name": "not a repo"})

        self.assertEqual(response.status_code, 400)

    def test_import_without_access(self):
        with patch("services.github_service.get_repository", return_value=self._remote_repository()), patch(
            "services.github_service.get_current_user", return_value={"login": "octocat"}
        ), patch("services.github_service.get_permission", return_value="none"):
            response = self.client.post("/api/repositories/import", json={"full_name": "octocat/spoon-knife"})

        self.assertEqual(response.status_code, 403)
        self.assertEqual(Repository.query.filter_by(remote_id=555).count(), 0)

    def test_import_missing_remote_repository(self):
        with patch("services.github_service.get_repository", side_effect=GitHubError("Not found", 404)):
            response = self.client.post("/api/repositories/import", json={"full_name": "octocat/nope"})

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()["message"], "Requested GitHub resource was not found.")

    def test_sync_endpoint_returns_counts(self):
        self.github.issues = [issue_payload(1)]

        response = self.client.post(f"/api/repositories/{self.repository_id}/sync")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["issues_synced"], 1)

    def test_sync_endpoint_conflict(self):
        repository = self.repository
        repository.sync_status = SyncStatus.SYNCING.value
        repository.sync_started_at = utcnow()
        db.session.commit()

        response = self.client.post(f"/api/repositories/{self.repository_id}/sync")

        self.assertEqual(response.status_code, 409)

    def test_sync_endpoint_remote_failure(self):
        self.github.fail_next("list_issues", GitHubError("Server error", 500))

        response = self.client.post(f"/api/repositories/{self.repository_id}/sync")

        self.assertEqual(response.status_code, 502)
        self.assertEqual(self.repository.sync_status, SyncStatus.ERROR.value)

    def test_sync_endpoint_database_failure(self):
        self.github.issues = [issue_payload(1)]

        with patch("services.sync_service.upsert_issue", side_effect=SQLAlchemyError("disk full")):
            response = self.client.post(f"/api/repositories/{self.repository_id}/sync")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json(), {"success": False, "message": "Unable to save synced records."})
        self.assertEqual(self.repository.sync_status, SyncStatus.ERROR.value)

    def test_sync_enabled_toggle(self):
        response = self.client.post(f"/api/repositories/{self.repository_id}/sync-enabled", json={"enabled": False})

        self.assertEqual(response.status_code, 200)
        self.assertFalse(self.repository.sync_enabled)
        bad = self.client.post(f"/api/repositories/{self.repository_id}/sync-enabled", json={"enabled": "no"})
        self.assertEqual(bad.status_code, 400)

    def test_sync_log_lists_recent_events(self):
        self.github.issues = [issue_payload(1)]
        self.client.post(f"/api/repositories/{self.repository_id}/sync")

        response = self.client.get(f"/api/repositories/{self.repository_id}/sync-log?limit=5")

        payload = response.get_json()
        self.assertEqual(payload["sync_status"], "idle")
        self.assertEqual(payload["events"][0]["event_type"], "sync.full")
        self.assertEqual(payload["events"][0]["payload"]["issues_synced"], 1)

    def test_read_file_through_cache(self):
        self.github.files = {"docs/guide.md": b"Guide\n"}

        first = self.client.get(f"/api/repositories/{self.repository_id}/files?path=docs/guide.md")
        second = self.client.get(f"/api/repositories/{self.repository_id}/files?path=docs/guide.md")

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.get_json()["content"], "Guide\n")
        self.assertFalse(first.get_json()["from_cache"])
        self.assertTrue(second.get_json()["from_cache"])
        self.assertEqual(len(self.github.calls["get_blob"]), 1)

    def test_read_missing_file(self):
        response = self.client.get(f"/api/repositories/{self.repository_id}/files?path=nope.txt")

        self.assertEqual(response.status_code, 404)

    def test_warm_search_and_clear_cache(self):
        self.github.files = {"src/main.py": b"import flask\n", "README.md": b"Read me\n"}

        warm = self.client.post(f"/api/repositories/{self.repository_id}/cache/warm")
        search = self.client.get(f"/api/repositories/{self.repository_id}/files/search?q=flask")
        clear = self.client.delete(f"/api/repositories/{self.repository_id}/cache")

        self.assertEqual(warm.status_code, 202)
        self.assertEqual([match["path"] for match in search.get_json()["results"]], ["src/main.py"])
        self.assertEqual(clear.get_json()["removed"], 2)
        self.assertEqual(CachedFile.query.count(), 0)
        self.assertEqual(SyncLog.query.filter_by(event_type="cache.cleared").count(), 1)

    def test_list_cached_files(self):
        self.github.files = {"src/main.py": b"import flask\n", "README.md": b"Read me\n"}
        self.client.post(f"/api/repositories/{self.repository_id}/cache/warm")

        response = self.client.get(f"/api/repositories/{self.repository_id}/cache")

        files = response.get_json()["files"]
        self.assertEqual([entry["path"] for entry in files], ["README.md", "src/main.py"])
        self.assertEqual(files[0]["size"], len(b"Read me\n"))
        self.assertEqual(files[0]["content_hash"], blob_sha(b"Read me\n"))

    def test_webhook_setup_failure(self):
        self.github.fail_next("create_webhook", GitHubError("Forbidden", 403))

        response = self.client.post(f"/api/repositories/{self.repository_id}/webhook")

        self.assertEqual(response.status_code, 502)
        self.assertEqual(SyncLog.query.filter_by(event_type="webhook.setup_failed").count(), 1)

    def test_overview(self):
        self.github.files = {"README.md": b"# Hello\n"}
        readme = self.github._content("README.md")

        with patch("services.github_service.get_readme", return_value=readme), patch(
            "services.github_service.get_languages", return_value={"Python": 1200}
        ), patch(
            "services.github_service.list_branches", return_value=[{"name": "main", "sha": "abc"}]
        ), patch(
            "services.github_service.list_commits",
            return_value=[
                {
                    "sha": "abc",
                    "html_url": "https://github.com/octocat/hello-world/commit/abc",
                    "commit": {"message": "Initial commit\n\nDetails", "author": {"name": "Mona", "date": "2024-01-01"}},
                }
            ],
        ):
            response = self.client.get(f"/api/repositories/{self.repository_id}/overview")

        payload = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(payload["readme"], "# Hello\n")
        self.assertEqual(payload["languages"], {"Python": 1200})
        self.assertEqual(payload["last_commit"]["message"], "Initial commit")
        self.assertEqual(payload["cached_files"], 1)


class ItemApiTestCase(SyncTestCase):
    def setUp(self):
        super().setUp()
        self.login()

    def test_create_issue_pushes_and_links(self):
        response = self.client.post(
            f"/api/repositories/{self.repository_id}/issues",
            json={"title": "New bug", "body": "Steps", "priority": "high"},
        )

        self.assertEqual(response.status_code, 201)
        payload = response.get_json()
        self.assertNotIn("warning", payload)
        issue = db.session.get(Issue, payload["issue"]["id"])
        self.assertEqual(issue.remote_id, 100)
        self.assertEqual(issue.priority, "high")
        self.assertEqual(self.github.calls["create_issue"], [("token-123", "New bug", "Steps")])

    def test_create_issue_without_credentials_warns_and_keeps_local_record(self):
        self.owner.set_github_token(None)
        db.session.commit()

        response = self.client.post(f"/api/repositories/{self.repository_id}/issues", json={"title": "Offline"})

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.get_json()["warning"], "Connect your GitHub account to sync changes.")
        self.assertIsNone(Issue.query.one().remote_id)

    def test_create_issue_validation(self):
        response = self.client.post(f"/api/repositories/{self.repository_id}/issues", json={"title": " "})

        self.assertEqual(response.status_code, 400)

    def test_priority_change_is_not_pushed(self):
        issue = Issue(
            repository_id=self.repository_id, title="T", body="", author_id=self.owner_id, labels=[], remote_id=9
        )
        db.session.add(issue)
        db.session.commit()

        response = self.client.patch(f"/api/issues/{issue.id}", json={"priority": "urgent"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.github.calls["update_issue"], [])

        self.client.patch(f"/api/issues/{issue.id}", json={"title": "Renamed"})
        self.assertEqual(self.github.calls["update_issue"][0][0], 9)

    def test_status_change_pushes_only_when_open_state_flips(self):
        issue = Issue(
            repository_id=self.repository_id, title="T", body="", author_id=self.owner_id, labels=[], remote_id=9
        )
        db.session.add(issue)
        db.session.commit()

        self.client.post(f"/api/issues/{issue.id}/status", json={"status": "in_progress"})
        self.assertEqual(self.github.calls["update_issue"], [])

        response = self.client.post(f"/api/issues/{issue.id}/status", json={"status": "closed"})

        self.assertEqual(response.get_json()["issue"]["status"], IssueStatus.CLOSED.value)
        self.assertEqual(self.github.calls["update_issue"], [(9, {"title": None, "body": None, "state": "closed"})])

        invalid = self.client.post(f"/api/issues/{issue.id}/status", json={"status": "archived"})
        self.assertEqual(invalid.status_code, 400)

    def test_comment_on_linked_issue(self):
        issue = Issue(
            repository_id=self.repository_id, title="T", body="", author_id=self.owner_id, labels=[], remote_id=9
        )
        db.session.add(issue)
        db.session.commit()

        response = self.client.post(f"/api/issues/{issue.id}/comments", json={"body": "Thanks!"})

        self.assertEqual(response.status_code, 201)
        comment = Comment.query.one()
        self.assertEqual(comment.remote_id, 5000)
        self.assertEqual(self.github.calls["create_issue_comment"], [(9, "Thanks!")])

    def test_pull_request_routes(self):
        response = self.client.post(
            f"/api/repositories/{self.repository_id}/pull-requests",
            json={"title": "Add feature", "source_branch": "feature"},
        )

        self.assertEqual(response.status_code, 201)
        pull_request = PullRequest.query.one()
        self.assertEqual(pull_request.target_branch, "main")
        self.assertEqual(pull_request.remote_id, 100)

        merged = self.client.patch(f"/api/pull-requests/{pull_request.id}", json={"status": "merged"})
        self.assertEqual(merged.status_code, 200)
        self.assertEqual(self.github.calls["update_issue"], [])

        self.client.post(f"/api/pull-requests/{pull_request.id}/comments", json={"body": "Ship it"})
        self.assertEqual(self.github.calls["create_issue_comment"], [(100, "Ship it")])

    def test_missing_records_return_404(self):
        self.assertEqual(self.client.patch("/api/issues/999", json={"title": "x"}).status_code, 404)
        self.assertEqual(self.client.post("/api/pull-requests/999/comments", json={"body": "x"}).status_code, 404)
        self.assertEqual(self.client.post("/api/repositories/999/issues", json={"title": "x"}).status_code, 404)


class GitHubConnectApiTestCase(SyncTestCase):
    def setUp(self):
        super().setUp()
        self.user = self.add_user("newcomer")
        self.login(self.user.id)

    def test_connect_stores_encrypted_token(self):
        with patch("routes.github.test_connection", return_value=True):
            response = self.client.post("/api/github/connect", json={"token": "fresh-token"})

        self.assertEqual(response.status_code, 200)
        db.session.expire_all()
        user = User.query.filter_by(username="newcomer").one()
        self.assertTrue(user.github_integration_enabled)
        self.assertEqual(user.get_github_token(), "fresh-token")
        self.assertNotEqual(user.github_token_encrypted, b"fresh-token")

    def test_connect_rejects_bad_token(self):
        with patch("routes.github.test_connection", return_value=False):
            response = self.client.post("/api/github/connect", json={"token": "bad"})

        self.assertEqual(response.status_code, 403)

    def test_repos_invalidates_token_on_auth_failure(self):
        self.user.github_integration_enabled = True
        self.user.set_github_token("stale")
        db.session.commit()

        with patch("routes.github.list_repositories", side_effect=GitHubError("Unauthorized", 401)):
            response = self.client.post("/api/github/repos", json={})

        self.assertEqual(response.status_code, 401)
        db.session.expire_all()
        self.assertIsNone(db.session.get(User, self.user.id).get_github_token())
