"""Inbound GitHub webhook endpoint."""
from __future__ import annotations

import json
import logging

from flask import Blueprint, jsonify, request

from models.repository import Repository
from routes import json_error
from services.sync_errors import VerificationError
from services.webhook_service import (
    InvalidPayloadError,
    extract_repository_id,
    handle_delivery,
    require_valid_signature,
    validate_payload,
)

webhook_bp = Blueprint("webhook", __name__, url_prefix="/provider")


def _header(name: str, fallback: str) -> str | None:
    value = request.headers.get(name) or request.headers.get(fallback)
    return value.strip() if value else None


@webhook_bp.route("/webhook", methods=["POST"])
def receive_webhook():
    """Verify, dedup and apply one delivery.

    Only ``repository.id`` is read from the body before the signature has
    been checked; it selects the secret to verify with.
    """
    signature = _header("X-Signature-256", "X-Hub-Signature-256")
    event = _header("X-Event", "X-GitHub-Event")
    delivery_id = _header("X-Delivery", "X-GitHub-Delivery")
    if not event or not delivery_id:
        return json_error("Missing webhook headers.", status=400)

    raw_body = request.get_data(cache=True)
    try:
        payload = json.loads(raw_body)
    except ValueError:
        return json_error("Invalid JSON payload.", status=400)

    remote_id = extract_repository_id(payload)
    if remote_id is None:
        return json_error("Missing repository id.", status=400)

    repository = Repository.query.filter_by(remote_id=remote_id).first()
    if repository is None:
        return json_error("Repository not found.", status=404)

    try:
        require_valid_signature(raw_body, signature, repository.webhook_secret)
    except VerificationError:
        logging.warning("Rejected webhook delivery %s for %s: invalid signature", delivery_id, repository.full_name)
        return json_error("Invalid signature.", status=401)

    if not repository.sync_enabled:
        return jsonify({"success": True, "message": "Sync disabled for this repository."})

    try:
        validate_payload(event, payload)
    except InvalidPayloadError as error:
        return json_error(str(error), status=400)

    message, status = handle_delivery(repository, delivery_id, event, payload)
    return jsonify({"success": status < 400, "message": message}), status
