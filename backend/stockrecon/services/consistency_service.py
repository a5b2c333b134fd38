# Overview: Read-only scan for purchase orders whose status contradicts receiving lines or the warehouse ledger.

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import PurchaseOrder, WarehouseEntry
from ..models.ledger import SOURCE_PO
from ..models.purchasing import PO_STATUS_ARRIVED, PO_STATUS_IN_WAREHOUSE, PO_STATUS_PARTIAL
from .posting_service import order_lines


SCANNED_STATUSES = (PO_STATUS_ARRIVED, PO_STATUS_PARTIAL, PO_STATUS_IN_WAREHOUSE)

ISSUE_MISSING_RECEIVING = "missing_receiving_lines"
ISSUE_MISSING_WAREHOUSE = "missing_warehouse_entries"


@dataclass(frozen=True)
class OrderConsistencyIssue:
    purchase_order_id: int
    po_number: str
    status: str
    branch_code: Optional[str]
    issues: tuple[str, ...]
    receiving_line_count: int
    warehouse_entry_count: int

    def to_dict(self) -> dict:
        return {
            "purchase_order_id": self.purchase_order_id,
            "po_number": self.po_number,
            "status": self.status,
            "branch_code": self.branch_code,
            "issues": list(self.issues),
            "receiving_line_count": self.receiving_line_count,
            "warehouse_entry_count": self.warehouse_entry_count,
        }


def scan_order_consistency() -> list[OrderConsistencyIssue]:
    """
    List purchase orders whose status is not backed by data.

    - "Di Gudang" requires receiving lines and PO warehouse entries.
    - "Barang sampai" / "Sampai Sebagian" require receiving lines.

    Returns:
        One OrderConsistencyIssue per inconsistent order, oldest order first
    """
    orders = (
        db.session.query(PurchaseOrder)
        .filter(PurchaseOrder.status.in_(SCANNED_STATUSES))
        .order_by(PurchaseOrder.id.asc())
        .all()
    )

    found: list[OrderConsistencyIssue] = []
    for order in orders:
        line_count = len(order_lines(order))
        entry_count = (
            db.session.query(WarehouseEntry)
            .filter(
                WarehouseEntry.source_type == SOURCE_PO,
                WarehouseEntry.source_reference == order.po_number,
            )
            .count()
        )

        issues = []
        if line_count == 0:
            issues.append(ISSUE_MISSING_RECEIVING)
        if order.status == PO_STATUS_IN_WAREHOUSE and entry_count == 0:
            issues.append(ISSUE_MISSING_WAREHOUSE)
        if not issues:
            continue

        found.append(OrderConsistencyIssue(
            purchase_order_id=order.id,
            po_number=order.po_number,
            status=order.status,
            branch_code=order.branch.code if order.branch else None,
            issues=tuple(issues),
            receiving_line_count=line_count,
            warehouse_entry_count=entry_count,
        ))

    current_app.logger.info("Order consistency scan: %d of %d orders inconsistent", len(found), len(orders))
    return found
