# Overview: Bulk reads for one reconciliation query; fans the independent reads out over a thread pool.

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from flask import current_app
from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import OperationalError

from ..extensions import db
from ..models import (
    Branch,
    Product,
    ProductionConsumption,
    ProductionConversion,
    SalesRecord,
    StockSnapshot,
    ToleranceSetting,
    WarehouseEntry,
)
from .lookup_index import (
    BranchRow,
    ConsumptionRow,
    ConversionRow,
    ProductRow,
    SalesRow,
    SnapshotRow,
    ToleranceRow,
    WarehouseRow,
)


class StoreUnavailableError(Exception):
    """Raised when the backing store cannot be reached during a bulk read."""
    pass


@dataclass(frozen=True)
class ReconciliationRows:
    """Everything one reconciliation query reads, as plain rows."""
    products: list[ProductRow]
    branches: list[BranchRow]
    tolerances: list[ToleranceRow]
    snapshots: list[SnapshotRow]
    warehouse_entries: list[WarehouseRow]
    sales: list[SalesRow]
    conversions: list[ConversionRow]
    consumptions: list[ConsumptionRow]


# =============================================================================
# READERS
# =============================================================================
# Each reader runs its own query and returns detached plain rows, so readers
# can run on separate sessions.

def _read_products() -> list[ProductRow]:
    rows = db.session.query(Product.id, Product.name, Product.unit, Product.sub_category).all()
    return [ProductRow(id=r.id, name=r.name, unit=r.unit, sub_category=r.sub_category) for r in rows]


def _read_branches() -> list[BranchRow]:
    rows = db.session.query(Branch.id, Branch.code, Branch.name).all()
    return [BranchRow(id=r.id, code=r.code, name=r.name) for r in rows]


def _read_tolerances() -> list[ToleranceRow]:
    rows = db.session.query(
        ToleranceSetting.product_id,
        ToleranceSetting.branch_id,
        ToleranceSetting.tolerance_percentage,
    ).all()
    return [
        ToleranceRow(product_id=r.product_id, branch_id=r.branch_id, tolerance_percentage=r.tolerance_percentage)
        for r in rows
    ]


def _read_snapshots(start: date, end: date, branch_codes: Optional[frozenset[str]]) -> list[SnapshotRow]:
    q = db.session.query(
        StockSnapshot.product_id,
        StockSnapshot.branch_id,
        StockSnapshot.snapshot_date,
        StockSnapshot.on_hand_qty,
        StockSnapshot.waste_qty,
    ).filter(StockSnapshot.snapshot_date >= start, StockSnapshot.snapshot_date <= end)
    if branch_codes:
        q = q.join(Branch, Branch.id == StockSnapshot.branch_id).filter(func.trim(Branch.code).in_(branch_codes))
    return [
        SnapshotRow(
            product_id=r.product_id,
            branch_id=r.branch_id,
            snapshot_date=r.snapshot_date,
            on_hand_qty=r.on_hand_qty,
            waste_qty=r.waste_qty,
        )
        for r in q.all()
    ]


def _read_warehouse_entries(start: date, end: date, branch_codes: Optional[frozenset[str]]) -> list[WarehouseRow]:
    """
    Ledger rows dated in [start, end], plus the latest row before start for
    every (product, branch_code), which carries the opening balance.
    """
    latest_before = func.row_number().over(
        partition_by=(WarehouseEntry.product_id, func.trim(WarehouseEntry.branch_code)),
        order_by=(
            WarehouseEntry.entry_date.desc(),
            WarehouseEntry.created_at.desc(),
            WarehouseEntry.id.desc(),
        ),
    ).label("rn")
    ranked = select(WarehouseEntry.id.label("id"), latest_before).where(WarehouseEntry.entry_date < start)
    if branch_codes:
        ranked = ranked.where(func.trim(WarehouseEntry.branch_code).in_(branch_codes))
    ranked = ranked.subquery()
    opening_ids = select(ranked.c.id).where(ranked.c.rn == 1)

    q = db.session.query(
        WarehouseEntry.id,
        WarehouseEntry.product_id,
        WarehouseEntry.branch_code,
        WarehouseEntry.entry_date,
        WarehouseEntry.qty_in,
        WarehouseEntry.qty_out,
        WarehouseEntry.running_balance,
        WarehouseEntry.created_at,
    ).filter(
        or_(
            and_(WarehouseEntry.entry_date >= start, WarehouseEntry.entry_date <= end),
            WarehouseEntry.id.in_(opening_ids),
        )
    )
    if branch_codes:
        q = q.filter(func.trim(WarehouseEntry.branch_code).in_(branch_codes))
    return [
        WarehouseRow(
            id=r.id,
            product_id=r.product_id,
            branch_code=r.branch_code,
            entry_date=r.entry_date,
            qty_in=r.qty_in,
            qty_out=r.qty_out,
            running_balance=r.running_balance,
            created_at=r.created_at,
        )
        for r in q.all()
    ]


def _read_sales(start: date, end: date) -> list[SalesRow]:
    rows = db.session.query(
        SalesRecord.sales_date,
        SalesRecord.product_id,
        SalesRecord.branch_name,
        SalesRecord.qty_sold,
    ).filter(SalesRecord.sales_date >= start, SalesRecord.sales_date <= end).all()
    return [
        SalesRow(sales_date=r.sales_date, product_id=r.product_id, branch_name=r.branch_name, qty_sold=r.qty_sold)
        for r in rows
    ]


def _read_conversions(start: date, end: date) -> list[ConversionRow]:
    rows = db.session.query(
        ProductionConversion.product_id,
        ProductionConversion.production_date,
        ProductionConversion.total_konversi,
    ).filter(
        ProductionConversion.production_date >= start,
        ProductionConversion.production_date <= end,
    ).all()
    return [
        ConversionRow(product_id=r.product_id, production_date=r.production_date, total_konversi=r.total_konversi)
        for r in rows
    ]


def _read_consumptions(start: date, end: date) -> list[ConsumptionRow]:
    rows = db.session.query(
        ProductionConsumption.product_id,
        ProductionConsumption.consumed_on,
        ProductionConsumption.branch_name,
        ProductionConsumption.qty_used,
    ).filter(
        ProductionConsumption.consumed_on >= start,
        ProductionConsumption.consumed_on <= end,
    ).all()
    return [
        ConsumptionRow(product_id=r.product_id, consumed_on=r.consumed_on, branch_name=r.branch_name, qty_used=r.qty_used)
        for r in rows
    ]


# =============================================================================
# FAN-OUT
# =============================================================================

def _run_readers(readers: dict[str, Callable[[], list]]) -> dict[str, list]:
    """
    Run independent readers, in parallel when RECON_FETCH_WORKERS > 1.

    Each worker pushes its own app context, so it gets its own scoped
    session and connection. Any reader failure fails the whole fetch.
    """
    workers = int(current_app.config.get("RECON_FETCH_WORKERS", 1) or 1)
    if workers <= 1:
        return {name: reader() for name, reader in readers.items()}

    app = current_app._get_current_object()

    def _in_app_context(reader):
        with app.app_context():
            return reader()

    with ThreadPoolExecutor(max_workers=min(workers, len(readers))) as pool:
        futures = {name: pool.submit(_in_app_context, reader) for name, reader in readers.items()}
        return {name: future.result() for name, future in futures.items()}


def fetch_reconciliation_rows(
    *,
    buffer_date: date,
    end_date: date,
    branch_codes: Optional[frozenset[str]] = None,
) -> ReconciliationRows:
    """
    Read every row set a reconciliation over [buffer_date, end_date] needs.

    Args:
        buffer_date: First date read (the day before the requested start)
        end_date: Last date read, inclusive
        branch_codes: Restrict snapshots and ledger rows to these branches

    Returns:
        ReconciliationRows

    Raises:
        StoreUnavailableError: If any read fails at the connection level
    """
    readers = {
        "products": _read_products,
        "branches": _read_branches,
        "tolerances": _read_tolerances,
        "snapshots": lambda: _read_snapshots(buffer_date, end_date, branch_codes),
        "warehouse_entries": lambda: _read_warehouse_entries(buffer_date, end_date, branch_codes),
        "sales": lambda: _read_sales(buffer_date, end_date),
        "conversions": lambda: _read_conversions(buffer_date, end_date),
        "consumptions": lambda: _read_consumptions(buffer_date, end_date),
    }
    try:
        results = _run_readers(readers)
    except OperationalError as e:
        current_app.logger.error("Reconciliation fetch failed: %s", e)
        raise StoreUnavailableError("Data store unavailable, please retry") from e

    current_app.logger.debug(
        "Fetched reconciliation rows %s..%s: %s",
        buffer_date, end_date,
        ", ".join(f"{name}={len(rows)}" for name, rows in results.items()),
    )
    return ReconciliationRows(**results)
