# Overview: Flask API routes for stock reconciliation; parses input and returns JSON responses.

"""
Reconciliation Routes

Query parameters shared by both endpoints:
- start_date: YYYY-MM-DD (required)
- end_date: YYYY-MM-DD (required, inclusive)
- branch: Branch code; repeatable or comma-separated (optional)
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import reconciliation_service
from ..services.reconciliation_service import (
    NoReconciliationDataError,
    ReconciliationValidationError,
    StoreUnavailableError,
)
from ..validation import parse_branch_filter, parse_paging, ValidationError


reconciliation_bp = Blueprint("reconciliation", __name__, url_prefix="/api/reconciliation")


def _run_from_request():
    return reconciliation_service.run_reconciliation(
        request.args.get("start_date"),
        request.args.get("end_date"),
        parse_branch_filter(request.args.getlist("branch")),
    )


@reconciliation_bp.get("")
def reconciliation_route():
    """
    Reconcile stock for a date range.

    Additional query parameters:
    - limit: Page size (default/max: RECON_MAX_PAGE_SIZE)
    - offset: Pagination offset (default: 0)

    Returns:
        {items: ReconciliationResult[], total, limit, offset, summary}
    """
    try:
        limit, offset = parse_paging(
            request.args.get("limit"),
            request.args.get("offset"),
            max_limit=current_app.config["RECON_MAX_PAGE_SIZE"],
        )
        results = _run_from_request()
    except (ValidationError, ReconciliationValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except NoReconciliationDataError as e:
        return jsonify({"error": str(e)}), 404
    except StoreUnavailableError as e:
        return jsonify({"error": str(e)}), 503
    except Exception:
        current_app.logger.exception("Failed to run reconciliation")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(reconciliation_service.paginate(results, limit=limit, offset=offset).to_dict()), 200


@reconciliation_bp.get("/pivot")
def reconciliation_pivot_route():
    """
    Selisih pivoted by sub-category, product and date.

    Returns:
        {dates, groups, totals}
    """
    try:
        results = _run_from_request()
    except (ValidationError, ReconciliationValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except NoReconciliationDataError as e:
        return jsonify({"error": str(e)}), 404
    except StoreUnavailableError as e:
        return jsonify({"error": str(e)}), 503
    except Exception:
        current_app.logger.exception("Failed to build reconciliation pivot")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(reconciliation_service.build_variance_pivot(results)), 200
