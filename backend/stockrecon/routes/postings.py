# Overview: Flask API routes for posting receiving lines into the warehouse ledger.

"""
Posting Routes

The actor is taken from the request body; authentication is handled in front
of this service.

IN-FLIGHT GUARD:
A second POST for a receiving line that is still being posted by this
process is rejected with 409 before reaching the coordinator. The
coordinator's duplicate check remains the authoritative guard.
"""

import threading
from contextlib import contextmanager

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..services import consistency_service, posting_service
from ..services.posting_service import (
    DuplicatePostingError,
    PostingError,
    PostingLookupError,
    PostingValidationError,
)
from ..validation import ConflictError, ValidationError, parse_int


postings_bp = Blueprint("postings", __name__, url_prefix="/api/postings")

_in_flight_lock = threading.Lock()
_in_flight_lines: set[int] = set()


@contextmanager
def submission_guard(receiving_line_id: int):
    """Hold the in-flight slot for a receiving line; ConflictError if taken."""
    with _in_flight_lock:
        if receiving_line_id in _in_flight_lines:
            raise ConflictError(f"Receiving line {receiving_line_id} is already being posted")
        _in_flight_lines.add(receiving_line_id)
    try:
        yield
    finally:
        with _in_flight_lock:
            _in_flight_lines.discard(receiving_line_id)


def _posting_status(e: PostingError) -> int:
    if isinstance(e, PostingValidationError):
        return 400
    if isinstance(e, PostingLookupError):
        return 404
    if isinstance(e, DuplicatePostingError):
        return 409
    return 500


@postings_bp.post("")
def post_receiving_line_route():
    """
    Post a receiving line into the warehouse ledger.

    Body:
        {receiving_line_id: int, actor_id: int}

    Returns:
        200 {posted, order_status_changed, warehouse_entry_id, new_balance, steps}
        400/404/409/500 {error, step, kind, steps}
    """
    data = request.get_json(silent=True) or {}
    try:
        receiving_line_id = parse_int(data.get("receiving_line_id"), "receiving_line_id", required=True)
        actor_id = parse_int(data.get("actor_id"), "actor_id")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        with submission_guard(receiving_line_id):
            result = posting_service.post_receiving_line(receiving_line_id, actor_id)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except PostingError as e:
        return jsonify(e.to_dict()), _posting_status(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to post receiving line %s", receiving_line_id)
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result.to_dict()), 200


@postings_bp.get("/consistency")
def order_consistency_route():
    """
    Purchase orders whose status contradicts receiving lines or the ledger.

    Returns:
        {items: OrderConsistencyIssue[], count: int}
    """
    try:
        issues = consistency_service.scan_order_consistency()
    except Exception:
        current_app.logger.exception("Order consistency scan failed")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"items": [i.to_dict() for i in issues], "count": len(issues)}), 200
