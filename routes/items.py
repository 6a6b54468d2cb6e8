"""Local issue, pull request and comment routes.

Every write commits locally first; the GitHub push is then queued.
"""
from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify
from sqlalchemy.exc import SQLAlchemyError

from database import db
from models.issue import Issue
from models.pull_request import PullRequest
from models.repository import Repository
from routes import json_error, json_payload
from services.item_service import (
    add_comment,
    create_issue,
    create_pull_request,
    serialize_comment,
    serialize_issue,
    serialize_pull_request,
    update_issue,
    update_pull_request,
    validate_issue_status,
)
from services.push_service import remote_issue_state, remote_pull_request_state, schedule_push

items_bp = Blueprint("items", __name__, url_prefix="/api")

PUSHED_FIELDS = {"title", "body"}


def _commit(action: str):
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logging.error("Error saving %s: %s", action, exc, exc_info=True)
        return json_error(f"Unable to save {action}.", status=500)
    return None


def _respond(payload: dict, warning: str | None, status: int = 200):
    body = {"success": True, **payload}
    if warning:
        body["warning"] = warning
    return jsonify(body), status


# Issues
# ------------------------------


@items_bp.route("/repositories/<int:repository_id>/issues", methods=["GET"])
def list_issues(repository_id: int):
    repository = db.session.get(Repository, repository_id)
    if repository is None:
        return json_error("Repository not found.", status=404)
    issues = repository.issues.order_by(Issue.created_at.desc(), Issue.id.desc()).all()
    return jsonify({"success": True, "issues": [serialize_issue(issue) for issue in issues]})


@items_bp.route("/repositories/<int:repository_id>/issues", methods=["POST"])
def create_issue_route(repository_id: int):
    repository = db.session.get(Repository, repository_id)
    if repository is None:
        return json_error("Repository not found.", status=404)
    try:
        issue = create_issue(repository, g.user, json_payload())
    except ValueError as error:
        return json_error(str(error), status=400)
    failure = _commit("issue")
    if failure is not None:
        return failure

    warning = schedule_push("issue.create", issue, g.user)
    return _respond({"issue": serialize_issue(issue)}, warning, 201)


@items_bp.route("/issues/<int:issue_id>", methods=["GET"])
def get_issue(issue_id: int):
    issue = db.session.get(Issue, issue_id)
    if issue is None:
        return json_error("Issue not found.", status=404)
    return jsonify({"success": True, "issue": serialize_issue(issue, include_comments=True)})


@items_bp.route("/issues/<int:issue_id>", methods=["PATCH"])
def update_issue_route(issue_id: int):
    issue = db.session.get(Issue, issue_id)
    if issue is None:
        return json_error("Issue not found.", status=404)
    try:
        changed = update_issue(issue, json_payload())
    except ValueError as error:
        db.session.rollback()
        return json_error(str(error), status=400)
    failure = _commit("issue")
    if failure is not None:
        return failure

    warning = None
    if changed & PUSHED_FIELDS:
        warning = schedule_push("issue.update", issue, g.user)
    return _respond({"issue": serialize_issue(issue), "changed": sorted(changed)}, warning)


@items_bp.route("/issues/<int:issue_id>/status", methods=["POST"])
def update_issue_status(issue_id: int):
    issue = db.session.get(Issue, issue_id)
    if issue is None:
        return json_error("Issue not found.", status=404)
    try:
        status = validate_issue_status(json_payload().get("status"))
    except ValueError as error:
        return json_error(str(error), status=400)

    previous_state = remote_issue_state(issue.status)
    issue.status = status
    failure = _commit("issue status")
    if failure is not None:
        return failure

    warning = None
    if remote_issue_state(status) != previous_state:
        warning = schedule_push("issue.status", issue, g.user)
    return _respond({"issue": serialize_issue(issue)}, warning)


@items_bp.route("/issues/<int:issue_id>/comments", methods=["POST"])
def comment_on_issue(issue_id: int):
    issue = db.session.get(Issue, issue_id)
    if issue is None:
        return json_error("Issue not found.", status=404)
    try:
        comment = add_comment(issue, g.user, json_payload().get("body"))
    except ValueError as error:
        return json_error(str(error), status=400)
    failure = _commit("comment")
    if failure is not None:
        return failure

    warning = schedule_push("comment.create", comment, g.user) if issue.has_remote_link else None
    return _respond({"comment": serialize_comment(comment)}, warning, 201)


# Pull requests
# ------------------------------


@items_bp.route("/repositories/<int:repository_id>/pull-requests", methods=["GET"])
def list_pull_requests(repository_id: int):
    repository = db.session.get(Repository, repository_id)
    if repository is None:
        return json_error("Repository not found.", status=404)
    pull_requests = repository.pull_requests.order_by(PullRequest.created_at.desc(), PullRequest.id.desc()).all()
    return jsonify(
        {"success": True, "pull_requests": [serialize_pull_request(pr) for pr in pull_requests]}
    )


@items_bp.route("/repositories/<int:repository_id>/pull-requests", methods=["POST"])
def create_pull_request_route(repository_id: int):
    repository = db.session.get(Repository, repository_id)
    if repository is None:
        return json_error("Repository not found.", status=404)
    try:
        pull_request = create_pull_request(repository, g.user, json_payload())
    except ValueError as error:
        return json_error(str(error), status=400)
    failure = _commit("pull request")
    if failure is not None:
        return failure

    warning = schedule_push("pull_request.create", pull_request, g.user)
    return _respond({"pull_request": serialize_pull_request(pull_request)}, warning, 201)


@items_bp.route("/pull-requests/<int:pull_request_id>", methods=["GET"])
def get_pull_request(pull_request_id: int):
    pull_request = db.session.get(PullRequest, pull_request_id)
    if pull_request is None:
        return json_error("Pull request not found.", status=404)
    return jsonify(
        {"success": True, "pull_request": serialize_pull_request(pull_request, include_comments=True)}
    )


@items_bp.route("/pull-requests/<int:pull_request_id>", methods=["PATCH"])
def update_pull_request_route(pull_request_id: int):
    pull_request = db.session.get(PullRequest, pull_request_id)
    if pull_request is None:
        return json_error("Pull request not found.", status=404)
    previous_state = remote_pull_request_state(pull_request.status)
    try:
        changed = update_pull_request(pull_request, json_payload())
    except ValueError as error:
        db.session.rollback()
        return json_error(str(error), status=400)
    failure = _commit("pull request")
    if failure is not None:
        return failure

    new_state = remote_pull_request_state(pull_request.status)
    state_changed = "status" in changed and new_state is not None and new_state != previous_state
    warning = None
    if changed & PUSHED_FIELDS or state_changed:
        warning = schedule_push("pull_request.update", pull_request, g.user)
    return _respond({"pull_request": serialize_pull_request(pull_request), "changed": sorted(changed)}, warning)


@items_bp.route("/pull-requests/<int:pull_request_id>/comments", methods=["POST"])
def comment_on_pull_request(pull_request_id: int):
    pull_request = db.session.get(PullRequest, pull_request_id)
    if pull_request is None:
        return json_error("Pull request not found.", status=404)
    try:
        comment = add_comment(pull_request, g.user, json_payload().get("body"))
    except ValueError as error:
        return json_error(str(error), status=400)
    failure = _commit("comment")
    if failure is not None:
        return failure

    warning = schedule_push("comment.create", comment, g.user) if pull_request.has_remote_link else None
    return _respond({"comment": serialize_comment(comment)}, warning, 201)
