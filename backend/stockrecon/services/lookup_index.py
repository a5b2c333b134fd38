# Overview: Builds the in-memory cross-reference maps used by the reconciliation calculator.

"""
Lookup Index Builder

Turns the bulk-fetched row sets of one reconciliation query into keyed maps.
Pure transform: no database access, no side effects.

JOIN KEYS:
- Warehouse ledger:   (product_id, branch_code)
- Sales feed:         (sales_date, product_id, trimmed branch name)
- Production (coarse): (product_id, production_date)
- Production detail:  (product_id, consumed_on, trimmed branch name)
- Snapshots:          (product_id, branch_id, snapshot_date)

MISSING LOOKUPS:
Unknown product/branch ids resolve to UnresolvedId (displayed as
"Product {id}" / "Branch {id}"). Missing quantities resolve to 0. Neither is
an error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, NamedTuple, Optional, Union


ZERO = Decimal("0")


# =============================================================================
# INPUT ROWS
# =============================================================================

@dataclass(frozen=True)
class ProductRow:
    id: int
    name: str
    unit: Optional[str] = None
    sub_category: Optional[str] = None


@dataclass(frozen=True)
class BranchRow:
    id: int
    code: Optional[str]
    name: Optional[str]


@dataclass(frozen=True)
class ToleranceRow:
    product_id: int
    branch_id: Optional[int]
    tolerance_percentage: Decimal


@dataclass(frozen=True)
class SnapshotRow:
    product_id: int
    branch_id: int
    snapshot_date: date
    on_hand_qty: Decimal = ZERO
    waste_qty: Decimal = ZERO


@dataclass(frozen=True)
class WarehouseRow:
    id: int
    product_id: int
    branch_code: str
    entry_date: date
    qty_in: Decimal
    qty_out: Decimal
    running_balance: Decimal
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class SalesRow:
    sales_date: date
    product_id: int
    branch_name: Optional[str]
    qty_sold: Decimal


@dataclass(frozen=True)
class ConsumptionRow:
    product_id: int
    consumed_on: date
    branch_name: Optional[str]
    qty_used: Decimal


@dataclass(frozen=True)
class ConversionRow:
    product_id: int
    production_date: date
    total_konversi: Decimal


# =============================================================================
# COMPOSITE KEYS
# =============================================================================

class WarehouseKey(NamedTuple):
    product_id: int
    branch_code: str


class SalesKey(NamedTuple):
    sales_date: date
    product_id: int
    branch_name: str


class ProductionKey(NamedTuple):
    product_id: int
    production_date: date


class ProductionDetailKey(NamedTuple):
    product_id: int
    consumed_on: date
    branch_name: str


class SnapshotKey(NamedTuple):
    product_id: int
    branch_id: int
    snapshot_date: date


class ToleranceKey(NamedTuple):
    product_id: int
    branch_id: Optional[int]


# =============================================================================
# NAME RESOLUTION
# =============================================================================

@dataclass(frozen=True)
class ResolvedName:
    value: str
    resolved: bool = field(default=True, init=False)

    @property
    def display(self) -> str:
        return self.value


@dataclass(frozen=True)
class UnresolvedId:
    """Placeholder for a foreign key with no matching master row."""
    kind: str
    id: int
    resolved: bool = field(default=False, init=False)

    @property
    def display(self) -> str:
        return f"{self.kind} {self.id}"


NameLookup = Union[ResolvedName, UnresolvedId]


def normalize_branch_name(name: Optional[str]) -> str:
    """Branch names from the feeds are compared trimmed."""
    return (name or "").strip()


def normalize_branch_code(code: Optional[str]) -> Optional[str]:
    """Branch codes key the warehouse ledger trimmed; blank means no code."""
    return (code or "").strip() or None


def _warehouse_sort_key(row: WarehouseRow):
    return (row.entry_date, row.created_at or datetime.min, row.id)


# =============================================================================
# INDEX
# =============================================================================

@dataclass
class LookupIndex:
    products: dict[int, ProductRow]
    branches: dict[int, BranchRow]
    branch_code_to_name: dict[str, str]
    branch_name_to_code: dict[str, str]
    tolerances: dict[ToleranceKey, Decimal]
    warehouse: dict[WarehouseKey, list[WarehouseRow]]
    sales: dict[SalesKey, Decimal]
    production: dict[ProductionKey, Decimal]
    production_detail: dict[ProductionDetailKey, Decimal]
    snapshots: dict[SnapshotKey, SnapshotRow]

    # -- master data ---------------------------------------------------------

    def product_name(self, product_id: int) -> NameLookup:
        product = self.products.get(product_id)
        if product is None or not product.name:
            return UnresolvedId("Product", product_id)
        return ResolvedName(product.name)

    def branch_name(self, branch_id: int) -> NameLookup:
        branch = self.branches.get(branch_id)
        if branch is None or not branch.name:
            return UnresolvedId("Branch", branch_id)
        return ResolvedName(branch.name)

    def branch_code(self, branch_id: int) -> Optional[str]:
        branch = self.branches.get(branch_id)
        return normalize_branch_code(branch.code) if branch else None

    def production_branch_name(self, branch_id: int) -> str:
        """
        Branch name as recorded by the production feed.

        Snapshots carry the numeric branch id, the production feed the display
        name; the id goes through its code and back to a name.
        """
        branch = self.branches.get(branch_id)
        if branch is None:
            return ""
        name = self.branch_code_to_name.get(normalize_branch_code(branch.code) or "") or branch.name
        return normalize_branch_name(name)

    def tolerance_for(self, product_id: int, branch_id: Optional[int], default: Decimal) -> Decimal:
        pct = self.tolerances.get(ToleranceKey(product_id, branch_id))
        if pct is None:
            pct = self.tolerances.get(ToleranceKey(product_id, None))
        return default if pct is None else pct

    # -- quantities ----------------------------------------------------------

    def warehouse_on_hand(self, product_id: int, branch_code: Optional[str], cutoff: date) -> Decimal:
        """
        Running balance of the latest ledger entry dated on or before cutoff.

        Latest is the maximum (entry_date, created_at, id). No entry -> 0.
        """
        if not branch_code:
            return ZERO
        for row in self.warehouse.get(WarehouseKey(product_id, branch_code), ()):
            if row.entry_date <= cutoff:
                return row.running_balance
        return ZERO

    def inbound_on(self, product_id: int, branch_code: Optional[str], day: date) -> Decimal:
        if not branch_code:
            return ZERO
        rows = self.warehouse.get(WarehouseKey(product_id, branch_code), ())
        return sum((row.qty_in for row in rows if row.entry_date == day), ZERO)

    def sold(self, day: date, product_id: int, branch_name: Optional[str]) -> Decimal:
        return self.sales.get(SalesKey(day, product_id, normalize_branch_name(branch_name)), ZERO)

    def production_conversion(self, product_id: int, day: date) -> Decimal:
        return self.production.get(ProductionKey(product_id, day), ZERO)

    def production_used(self, product_id: int, day: date, branch_name: str) -> Decimal:
        return self.production_detail.get(
            ProductionDetailKey(product_id, day, normalize_branch_name(branch_name)), ZERO
        )

    def ready_on(self, product_id: int, branch_id: int, day: date) -> Decimal:
        snapshot = self.snapshots.get(SnapshotKey(product_id, branch_id, day))
        return snapshot.on_hand_qty if snapshot else ZERO


def _accumulate(target: dict, key, value: Decimal) -> None:
    target[key] = target.get(key, ZERO) + (value or ZERO)


def build_lookup_index(
    *,
    products: Iterable[ProductRow] = (),
    branches: Iterable[BranchRow] = (),
    tolerances: Iterable[ToleranceRow] = (),
    warehouse_entries: Iterable[WarehouseRow] = (),
    sales: Iterable[SalesRow] = (),
    conversions: Iterable[ConversionRow] = (),
    consumptions: Iterable[ConsumptionRow] = (),
    snapshots: Iterable[SnapshotRow] = (),
) -> LookupIndex:
    """
    Build every keyed map a reconciliation query needs.

    Args:
        products: Product master rows
        branches: Branch registry rows
        tolerances: Tolerance settings (branch_id None = product-wide)
        warehouse_entries: Ledger rows for the query window
        sales: Sales feed rows
        conversions: Coarse production rows (product + date)
        consumptions: Branch-level production usage rows
        snapshots: Stock snapshots, including the buffer day

    Returns:
        LookupIndex
    """
    product_map = {p.id: p for p in products}
    branch_map = {b.id: b for b in branches}

    code_to_name: dict[str, str] = {}
    name_to_code: dict[str, str] = {}
    for branch in branch_map.values():
        code = normalize_branch_code(branch.code)
        if code:
            code_to_name[code] = branch.name or ""
            if branch.name:
                name_to_code[normalize_branch_name(branch.name)] = code

    tolerance_map = {
        ToleranceKey(t.product_id, t.branch_id): Decimal(t.tolerance_percentage)
        for t in tolerances
    }

    warehouse_map: dict[WarehouseKey, list[WarehouseRow]] = {}
    for row in warehouse_entries:
        warehouse_map.setdefault(WarehouseKey(row.product_id, normalize_branch_code(row.branch_code)), []).append(row)
    for rows in warehouse_map.values():
        # Latest first
        rows.sort(key=_warehouse_sort_key, reverse=True)

    sales_map: dict[SalesKey, Decimal] = {}
    for row in sales:
        _accumulate(sales_map, SalesKey(row.sales_date, row.product_id, normalize_branch_name(row.branch_name)), row.qty_sold)

    production_map: dict[ProductionKey, Decimal] = {}
    for row in conversions:
        _accumulate(production_map, ProductionKey(row.product_id, row.production_date), row.total_konversi)

    detail_map: dict[ProductionDetailKey, Decimal] = {}
    for row in consumptions:
        _accumulate(
            detail_map,
            ProductionDetailKey(row.product_id, row.consumed_on, normalize_branch_name(row.branch_name)),
            row.qty_used,
        )

    snapshot_map = {
        SnapshotKey(s.product_id, s.branch_id, s.snapshot_date): s
        for s in snapshots
    }

    return LookupIndex(
        products=product_map,
        branches=branch_map,
        branch_code_to_name=code_to_name,
        branch_name_to_code=name_to_code,
        tolerances=tolerance_map,
        warehouse=warehouse_map,
        sales=sales_map,
        production=production_map,
        production_detail=detail_map,
        snapshots=snapshot_map,
    )
