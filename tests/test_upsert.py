import pytest

from database import db
from models.comment import Comment
from models.issue import Issue, IssueStatus
from models.pull_request import PullRequest
from models.repository import Repository
from services.github_service import pull_request_from_payload
from services.upsert_service import (
    issue_status_from_remote,
    pull_request_status_from_remote,
    upsert_comment,
    upsert_issue,
    upsert_pull_request,
)
from tests.utils.base import SyncTestCase
from tests.utils.fake_github import issue_payload, pull_request_payload


class TestIssueStatusMapping:
    def test_remote_closed_always_closes(self):
        assert issue_status_from_remote("closed", None) == "closed"
        assert issue_status_from_remote("closed", "in_progress") == "closed"

    def test_new_open_issue_lands_in_backlog(self):
        assert issue_status_from_remote("open", None) == "backlog"

    def test_reopened_issue_returns_to_backlog(self):
        assert issue_status_from_remote("open", "closed") == "backlog"

    @pytest.mark.parametrize("status", ["backlog", "todo", "in_progress", "done"])
    def test_open_issue_keeps_local_status(self, status):
        assert issue_status_from_remote("open", status) == status


class TestPullRequestStatusMapping:
    def test_merged_wins_over_closed(self):
        remote = pull_request_from_payload(pull_request_payload(1, state="closed", merged=True))
        assert pull_request_status_from_remote(remote) == "merged"

    def test_merged_at_marks_list_entries_as_merged(self):
        remote = pull_request_from_payload(pull_request_payload(1, state="closed", merged_at="2024-05-01T10:00:00Z"))
        assert pull_request_status_from_remote(remote) == "merged"

    def test_closed_and_open(self):
        closed = pull_request_from_payload(pull_request_payload(1, state="closed"))
        opened = pull_request_from_payload(pull_request_payload(2))
        assert pull_request_status_from_remote(closed) == "closed"
        assert pull_request_status_from_remote(opened) == "open"


class UpsertTestCase(SyncTestCase):
    def test_upsert_issue_twice_yields_one_record(self):
        issue, created = upsert_issue(self.repository, issue_payload(42, "First"))
        db.session.commit()
        again, created_again = upsert_issue(self.repository, issue_payload(42, "First"))
        db.session.commit()

        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(issue.id, again.id)
        self.assertEqual(Issue.query.count(), 1)

    def test_changed_title_updates_in_place(self):
        issue, _ = upsert_issue(self.repository, issue_payload(42, "First"))
        db.session.commit()
        issue_id = issue.id

        upsert_issue(self.repository, issue_payload(42, "Second", body="More detail"))
        db.session.commit()

        stored = Issue.query.one()
        self.assertEqual(stored.id, issue_id)
        self.assertEqual(stored.title, "Second")
        self.assertEqual(stored.body, "More detail")
        self.assertEqual(stored.remote_node_id, "I_42")
        self.assertTrue(stored.remote_url.endswith("/issues/42"))

    def test_priority_and_labels_survive_remote_update(self):
        issue, _ = upsert_issue(self.repository, issue_payload(42))
        issue.priority = "urgent"
        issue.labels = ["triage"]
        db.session.commit()

        upsert_issue(self.repository, issue_payload(42, "Renamed"))
        db.session.commit()

        stored = Issue.query.one()
        self.assertEqual(stored.priority, "urgent")
        self.assertEqual(stored.labels, ["triage"])

    def test_same_number_in_other_repository_is_separate(self):
        other = Repository(
            remote_id=1,
            owner="octocat",
            name="other",
            full_name="octocat/other",
            owner_id=self.owner_id,
        )
        db.session.add(other)
        db.session.commit()

        upsert_issue(self.repository, issue_payload(1))
        upsert_issue(other, issue_payload(1))
        db.session.commit()

        self.assertEqual(Issue.query.count(), 2)

    def test_upsert_pull_request_and_comment(self):
        pull_request, created = upsert_pull_request(self.repository, pull_request_payload(8, head="fix", base="develop"))
        db.session.commit()
        comment, comment_created = upsert_comment(pull_request, {"id": 77, "body": "LGTM"}, self.owner_id)
        db.session.commit()

        self.assertTrue(created)
        self.assertTrue(comment_created)
        self.assertEqual(PullRequest.query.one().source_branch, "fix")
        self.assertEqual(Comment.query.one().pull_request_id, pull_request.id)

        upsert_comment(pull_request, {"id": 77, "body": "LGTM!"}, self.owner_id)
        db.session.commit()
        self.assertEqual(Comment.query.count(), 1)
        self.assertEqual(Comment.query.one().body, "LGTM!")

    def test_comment_requires_exactly_one_parent(self):
        issue, _ = upsert_issue(self.repository, issue_payload(1))
        pull_request, _ = upsert_pull_request(self.repository, pull_request_payload(2))
        db.session.commit()

        with self.assertRaises(ValueError):
            Comment(author_id=self.owner_id, body="nowhere")
        with self.assertRaises(ValueError):
            Comment(author_id=self.owner_id, body="both", issue_id=issue.id, pull_request_id=pull_request.id)

    def test_new_issue_status_defaults(self):
        issue, _ = upsert_issue(self.repository, issue_payload(3))
        db.session.commit()
        self.assertEqual(issue.status, IssueStatus.BACKLOG.value)
