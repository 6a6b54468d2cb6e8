"""A comment attached to exactly one issue or pull request."""
from __future__ import annotations

from database import db, utcnow
from models.remote_identity import RemoteIdentityMixin


class Comment(RemoteIdentityMixin, db.Model):
    __tablename__ = "comment"

    id = db.Column(db.Integer, primary_key=True)
    body = db.Column(db.Text, nullable=False, default="")
    author_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    issue_id = db.Column(db.Integer, db.ForeignKey("issue.id"), nullable=True, index=True)
    pull_request_id = db.Column(db.Integer, db.ForeignKey("pull_request.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    issue = db.relationship("Issue", back_populates="comments")
    pull_request = db.relationship("PullRequest", back_populates="comments")

    __table_args__ = (
        db.CheckConstraint(
            "(issue_id IS NULL) <> (pull_request_id IS NULL)",
            name="ck_comment_single_parent",
        ),
        db.UniqueConstraint("issue_id", "remote_id", name="uq_comment_issue_remote"),
        db.UniqueConstraint("pull_request_id", "remote_id", name="uq_comment_pull_request_remote"),
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        on_issue = self.issue_id is not None or self.issue is not None
        on_pull_request = self.pull_request_id is not None or self.pull_request is not None
        if on_issue == on_pull_request:
            raise ValueError("Comment must be linked to exactly one issue or pull request")

    @property
    def parent(self):
        return self.issue if self.issue is not None else self.pull_request

    @property
    def repository(self):
        parent = self.parent
        return parent.repository if parent is not None else None
