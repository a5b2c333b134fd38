# Overview: Flask API routes for warehouse ledger balances and maintenance.

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..services import ledger_service
from ..services.ledger_service import LedgerValidationError
from ..validation import ValidationError, parse_int
from stockrecon.time_utils import parse_iso_date, to_iso_date

"""
Date semantics:
- Dates are calendar days (YYYY-MM-DD).
- as_of filtering is inclusive: entry_date <= as_of.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


def _parse_date(value, field: str):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be YYYY-MM-DD")


@ledger_bp.get("/balance")
def balance_route():
    """
    Warehouse balance of a product in a branch.

    Query parameters:
    - product_id (required)
    - branch_code (required)
    - as_of: inclusive cutoff date (optional)

    Returns:
        {product_id, branch_code, as_of, balance, entries}
    """
    try:
        product_id = parse_int(request.args.get("product_id"), "product_id", required=True)
        branch_code = (request.args.get("branch_code") or "").strip()
        if not branch_code:
            raise ValidationError("branch_code is required")
        as_of = _parse_date(request.args.get("as_of"), "as_of")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    balance = ledger_service.get_balance(product_id, branch_code, as_of=as_of)
    entries = ledger_service.list_entries(product_id, branch_code, limit=20)

    return jsonify({
        "product_id": product_id,
        "branch_code": branch_code,
        "as_of": to_iso_date(as_of),
        "balance": float(balance),
        "entries": [e.to_dict() for e in entries],
    }), 200


@ledger_bp.post("/recalculate")
def recalculate_route():
    """
    Rewrite running balances of one product/branch ledger.

    Body:
        {product_id: int, branch_code: str, from_date?: YYYY-MM-DD, actor_id?: int}

    Returns:
        {updated: int}
    """
    data = request.get_json(silent=True) or {}
    try:
        product_id = parse_int(data.get("product_id"), "product_id", required=True)
        actor_id = parse_int(data.get("actor_id"), "actor_id")
        from_date = _parse_date(data.get("from_date"), "from_date")
        updated = ledger_service.recalculate_running_balances(
            product_id=product_id,
            branch_code=(data.get("branch_code") or "").strip(),
            from_date=from_date,
            actor_user_id=actor_id,
        )
    except (ValidationError, LedgerValidationError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to recalculate warehouse ledger")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"updated": updated}), 200
