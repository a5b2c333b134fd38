# Overview: Service-layer operations for stock reconciliation; derives keluar form, selisih and tolerance status.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from flask import current_app

from ..time_utils import parse_iso_date, previous_day, to_iso_date
from .fetch_service import StoreUnavailableError, fetch_reconciliation_rows
from .lookup_index import LookupIndex, NameLookup, SnapshotRow, build_lookup_index
"""
Reconciliation Invariants (authoritative)

For a snapshot of product p at branch b on day d:

    gudang(d)        = running_balance of the latest ledger entry dated <= d
    stock_yesterday  = ready(d-1) + gudang(d-1)
    stock_today      = ready(d) + gudang(d)
    keluar_form      = (stock_yesterday + inbound_today) - (stock_today + waste) + total_konversi
    selisih          = hasil_esb - keluar_form + total_production
    tolerance_value  = |hasil_esb| * pct / 100
    status           = OK     if |selisih| <= tolerance_value
                       Kurang if selisih < 0
                       Lebih  otherwise

- Absent source rows contribute 0.
- Every read includes the buffer day (start_date - 1); buffer-day snapshots
  never appear in the output.
- Results are recomputed per query; nothing is cached or stored.
"""


STATUS_OK = "OK"
STATUS_SHORTAGE = "Kurang"
STATUS_SURPLUS = "Lebih"

ZERO = Decimal("0")
ONE_DECIMAL = Decimal("0.1")
HUNDRED = Decimal("100")


class ReconciliationValidationError(Exception):
    """Raised when a reconciliation query is malformed."""
    pass


class NoReconciliationDataError(Exception):
    """Raised when no stock snapshot falls inside the requested range."""
    pass


# =============================================================================
# QUERY / RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class ReconciliationQuery:
    start_date: date
    end_date: date
    branch_codes: Optional[frozenset[str]] = None

    @property
    def buffer_date(self) -> date:
        return previous_day(self.start_date)

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class ReconciliationResult:
    product_id: int
    branch_id: int
    branch_code: Optional[str]
    snapshot_date: date

    product: NameLookup
    branch: NameLookup
    unit: Optional[str]
    sub_category: Optional[str]

    # Sources
    ready: Decimal
    waste: Decimal
    gudang: Decimal
    inbound_today: Decimal
    hasil_esb: Decimal
    total_production: Decimal
    total_konversi: Decimal

    # Derived
    stock_yesterday: Decimal
    stock_today: Decimal
    keluar_form: Decimal
    selisih: Decimal

    tolerance_percentage: Decimal
    tolerance_min: Decimal
    tolerance_max: Decimal
    tolerance_range: str
    status: str

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "branch_code": self.branch_code,
            "date": to_iso_date(self.snapshot_date),
            "product": self.product.display,
            "product_resolved": self.product.resolved,
            "branch": self.branch.display,
            "branch_resolved": self.branch.resolved,
            "unit": self.unit,
            "sub_category": self.sub_category,
            "ready": float(self.ready),
            "waste": float(self.waste),
            "gudang": float(self.gudang),
            "barang_masuk": float(self.inbound_today),
            "hasil_esb": float(self.hasil_esb),
            "total_production": float(self.total_production),
            "total_konversi": float(self.total_konversi),
            "stock_yesterday": float(self.stock_yesterday),
            "stock_today": float(self.stock_today),
            "keluar_form": float(self.keluar_form),
            "selisih": float(self.selisih),
            "tolerance_percentage": float(self.tolerance_percentage),
            "tolerance_min": float(self.tolerance_min),
            "tolerance_max": float(self.tolerance_max),
            "tolerance_range": self.tolerance_range,
            "status": self.status,
        }


@dataclass(frozen=True)
class ReconciliationPage:
    items: list[ReconciliationResult]
    total: int
    limit: Optional[int]
    offset: int

    def to_dict(self) -> dict:
        return {
            "items": [r.to_dict() for r in self.items],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "summary": summarize_statuses(self.items),
        }


# =============================================================================
# FORMULAS
# =============================================================================

def calculate_keluar_form(
    *,
    stock_yesterday: Decimal,
    inbound_today: Decimal,
    stock_today: Decimal,
    waste: Decimal,
    total_konversi: Decimal,
) -> Decimal:
    """Goods that left the shelf: (opening + inbound) - (closing + waste) + conversion."""
    return (stock_yesterday + inbound_today) - (stock_today + waste) + total_konversi


def calculate_selisih(*, hasil_esb: Decimal, keluar_form: Decimal, total_production: Decimal) -> Decimal:
    return hasil_esb - keluar_form + total_production


def classify_variance(selisih: Decimal, hasil_esb: Decimal, tolerance_pct: Decimal) -> tuple[str, Decimal]:
    """
    Classify a variance against a band anchored to sales volume.

    Returns:
        (status, tolerance_value)
    """
    tolerance_value = abs(hasil_esb) * Decimal(tolerance_pct) / HUNDRED
    if abs(selisih) <= tolerance_value:
        return STATUS_OK, tolerance_value
    if selisih < 0:
        return STATUS_SHORTAGE, tolerance_value
    return STATUS_SURPLUS, tolerance_value


def format_tolerance_range(tolerance_value: Decimal) -> tuple[Decimal, Decimal, str]:
    """
    Band edges rounded to one decimal.

    Returns:
        (tolerance_min, tolerance_max, "min ~ max")
    """
    upper = abs(tolerance_value).quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)
    # Decimal keeps the sign of zero; a zero band must print "0.0", not "-0.0"
    lower = -upper if upper else upper
    return lower, upper, f"{lower} ~ {upper}"


# =============================================================================
# CALCULATOR
# =============================================================================

def reconcile_snapshot(snapshot: SnapshotRow, index: LookupIndex, *, default_tolerance_pct: Decimal) -> ReconciliationResult:
    """
    Compute one reconciliation record.

    Lookup misses are never errors: quantities fall back to 0, names to
    UnresolvedId, tolerance to default_tolerance_pct.
    """
    p = snapshot.product_id
    d = snapshot.snapshot_date
    yesterday = previous_day(d)

    branch_code = index.branch_code(snapshot.branch_id)
    branch_name = index.branch_name(snapshot.branch_id)
    product = index.products.get(p)

    ready = snapshot.on_hand_qty or ZERO
    waste = snapshot.waste_qty or ZERO

    gudang_today = index.warehouse_on_hand(p, branch_code, d)
    gudang_yesterday = index.warehouse_on_hand(p, branch_code, yesterday)
    inbound_today = index.inbound_on(p, branch_code, d)

    sales_branch = branch_name.value if branch_name.resolved else ""
    hasil_esb = index.sold(d, p, sales_branch)
    total_production = index.production_used(p, d, index.production_branch_name(snapshot.branch_id))
    total_konversi = index.production_conversion(p, d)

    stock_yesterday = index.ready_on(p, snapshot.branch_id, yesterday) + gudang_yesterday
    stock_today = ready + gudang_today

    keluar_form = calculate_keluar_form(
        stock_yesterday=stock_yesterday,
        inbound_today=inbound_today,
        stock_today=stock_today,
        waste=waste,
        total_konversi=total_konversi,
    )
    selisih = calculate_selisih(hasil_esb=hasil_esb, keluar_form=keluar_form, total_production=total_production)

    tolerance_pct = index.tolerance_for(p, snapshot.branch_id, Decimal(default_tolerance_pct))
    status, tolerance_value = classify_variance(selisih, hasil_esb, tolerance_pct)
    tolerance_min, tolerance_max, tolerance_range = format_tolerance_range(tolerance_value)

    return ReconciliationResult(
        product_id=p,
        branch_id=snapshot.branch_id,
        branch_code=branch_code,
        snapshot_date=d,
        product=index.product_name(p),
        branch=branch_name,
        unit=product.unit if product else None,
        sub_category=product.sub_category if product else None,
        ready=ready,
        waste=waste,
        gudang=gudang_today,
        inbound_today=inbound_today,
        hasil_esb=hasil_esb,
        total_production=total_production,
        total_konversi=total_konversi,
        stock_yesterday=stock_yesterday,
        stock_today=stock_today,
        keluar_form=keluar_form,
        selisih=selisih,
        tolerance_percentage=tolerance_pct,
        tolerance_min=tolerance_min,
        tolerance_max=tolerance_max,
        tolerance_range=tolerance_range,
        status=status,
    )


def _result_sort_key(result: ReconciliationResult):
    # Date descending, then branch code, then product
    return (-result.snapshot_date.toordinal(), result.branch_code or "", result.product_id)


def compute_reconciliation(
    query: ReconciliationQuery,
    index: LookupIndex,
    snapshots: Iterable[SnapshotRow],
    *,
    default_tolerance_pct: Decimal,
) -> list[ReconciliationResult]:
    """
    Reconcile every in-range snapshot.

    Buffer-day snapshots (and anything else outside the query range) feed the
    index as "yesterday" but are dropped here.
    """
    results = []
    for snapshot in snapshots:
        if not query.covers(snapshot.snapshot_date):
            continue
        if query.branch_codes and index.branch_code(snapshot.branch_id) not in query.branch_codes:
            continue
        results.append(reconcile_snapshot(snapshot, index, default_tolerance_pct=default_tolerance_pct))
    results.sort(key=_result_sort_key)
    return results


# =============================================================================
# QUERY ENTRY POINT
# =============================================================================

def build_query(start_date, end_date, branch_codes: Optional[Iterable[str]] = None) -> ReconciliationQuery:
    """
    Validate raw query input.

    Raises:
        ReconciliationValidationError: Missing/unparseable dates or start > end
    """
    if not start_date or not end_date:
        raise ReconciliationValidationError("start_date and end_date are required")
    try:
        start = parse_iso_date(start_date)
        end = parse_iso_date(end_date)
    except ValueError:
        raise ReconciliationValidationError("Dates must be YYYY-MM-DD")
    if start > end:
        raise ReconciliationValidationError("start_date must be on or before end_date")

    codes = frozenset(c.strip() for c in (branch_codes or ()) if c and c.strip())
    return ReconciliationQuery(start_date=start, end_date=end, branch_codes=codes or None)


def run_reconciliation(start_date, end_date, branch_codes: Optional[Iterable[str]] = None) -> list[ReconciliationResult]:
    """
    Reconcile stock for a date range.

    Args:
        start_date: First day (date or "YYYY-MM-DD")
        end_date: Last day, inclusive
        branch_codes: Optional branch filter

    Returns:
        Ordered list of ReconciliationResult (date desc, branch code, product)

    Raises:
        ReconciliationValidationError: Bad input, raised before any read
        NoReconciliationDataError: No snapshot inside the range
        StoreUnavailableError: Backing store unreachable
    """
    query = build_query(start_date, end_date, branch_codes)

    rows = fetch_reconciliation_rows(
        buffer_date=query.buffer_date,
        end_date=query.end_date,
        branch_codes=query.branch_codes,
    )
    index = build_lookup_index(
        products=rows.products,
        branches=rows.branches,
        tolerances=rows.tolerances,
        warehouse_entries=rows.warehouse_entries,
        sales=rows.sales,
        conversions=rows.conversions,
        consumptions=rows.consumptions,
        snapshots=rows.snapshots,
    )

    default_pct = Decimal(str(current_app.config.get("RECON_DEFAULT_TOLERANCE_PCT", 5.0)))
    results = compute_reconciliation(query, index, rows.snapshots, default_tolerance_pct=default_pct)
    if not results:
        raise NoReconciliationDataError(
            f"No stock snapshots between {query.start_date.isoformat()} and {query.end_date.isoformat()}"
        )

    current_app.logger.info(
        "Reconciled %d rows for %s..%s (branches=%s)",
        len(results), query.start_date, query.end_date,
        ",".join(sorted(query.branch_codes)) if query.branch_codes else "all",
    )
    return results


def paginate(results: list[ReconciliationResult], limit: Optional[int] = None, offset: int = 0) -> ReconciliationPage:
    offset = max(int(offset or 0), 0)
    if limit is None:
        items = results[offset:]
    else:
        items = results[offset:offset + max(int(limit), 0)]
    return ReconciliationPage(items=items, total=len(results), limit=limit, offset=offset)


def summarize_statuses(results: Iterable[ReconciliationResult]) -> dict[str, int]:
    summary = {STATUS_OK: 0, STATUS_SHORTAGE: 0, STATUS_SURPLUS: 0}
    for r in results:
        summary[r.status] += 1
    return summary


# =============================================================================
# PIVOT
# =============================================================================

def build_variance_pivot(results: Iterable[ReconciliationResult]) -> dict:
    """
    Pivot selisih by sub-category, product and date.

    Rows of the same product on the same date (several branches) are summed.

    Returns:
        {
            "dates": [...ascending ISO dates...],
            "groups": {sub_category: {product: {date: selisih}}},
            "totals": {sub_category: {date: selisih}},
        }
    """
    groups: dict[str, dict[str, dict[str, float]]] = {}
    totals: dict[str, dict[str, float]] = {}
    dates = set()

    for r in results:
        day = to_iso_date(r.snapshot_date)
        category = r.sub_category or "Uncategorized"
        product = r.product.display
        dates.add(day)

        by_date = groups.setdefault(category, {}).setdefault(product, {})
        by_date[day] = by_date.get(day, 0.0) + float(r.selisih)

        cat_totals = totals.setdefault(category, {})
        cat_totals[day] = cat_totals.get(day, 0.0) + float(r.selisih)

    return {
        "dates": sorted(dates),
        "groups": groups,
        "totals": totals,
    }
