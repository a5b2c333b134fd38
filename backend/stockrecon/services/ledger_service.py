# Overview: Service-layer operations for the warehouse ledger; balance reads, audit events, recalculation.

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import WarehouseEntry, WarehouseLedgerEvent
from .lookup_index import normalize_branch_code
"""
Warehouse Ledger Invariants (authoritative)

- Latest entry for (product_id, branch_code) = greatest (entry_date, created_at, id).
- That entry's running_balance is the on-hand quantity as of its entry_date.
- Audit events are written inside the same DB transaction as the mutation they record.
- Locked entries (stock opname counts) are never rewritten by recalculation;
  their running_balance is taken as the new baseline.
"""


ZERO = Decimal("0")


class LedgerValidationError(Exception):
    """Raised when ledger maintenance input is invalid."""
    pass


def append_ledger_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int | None = None,
    product_id: int | None = None,
    branch_code: str | None = None,
    receiving_line_id: int | None = None,
    purchase_order_id: int | None = None,
    actor_user_id: int | None = None,
    note: Optional[str] = None,
) -> WarehouseLedgerEvent:
    """
    Append-only warehouse ledger event.

    - No domain logic here.
    - Flushes but does not commit; the caller owns the transaction.
    """
    ev = WarehouseLedgerEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        product_id=product_id,
        branch_code=branch_code,
        receiving_line_id=receiving_line_id,
        purchase_order_id=purchase_order_id,
        actor_user_id=actor_user_id,
        note=note,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def _latest_first(query):
    return query.order_by(
        WarehouseEntry.entry_date.desc(),
        WarehouseEntry.created_at.desc(),
        WarehouseEntry.id.desc(),
    )


def _ledger_rows(product_id: int, branch_code: str):
    return db.session.query(WarehouseEntry).filter(
        WarehouseEntry.product_id == product_id,
        func.trim(WarehouseEntry.branch_code) == normalize_branch_code(branch_code),
    )


def get_latest_entry(product_id: int, branch_code: str, as_of: date | None = None) -> WarehouseEntry | None:
    """
    Most recent ledger entry for a product in a branch warehouse.

    Args:
        product_id: Product ID
        branch_code: Branch code the ledger is keyed by
        as_of: Inclusive cutoff date (None = no cutoff)

    Returns:
        WarehouseEntry or None when the product never moved in that branch
    """
    q = _ledger_rows(product_id, branch_code)
    if as_of is not None:
        q = q.filter(WarehouseEntry.entry_date <= as_of)
    return _latest_first(q).first()


def get_balance(product_id: int, branch_code: str, as_of: date | None = None) -> Decimal:
    """On-hand warehouse quantity; 0 when there is no entry."""
    entry = get_latest_entry(product_id, branch_code, as_of=as_of)
    if entry is None:
        return ZERO
    return Decimal(entry.running_balance)


def list_entries(product_id: int, branch_code: str, limit: int = 50) -> list[WarehouseEntry]:
    q = _ledger_rows(product_id, branch_code)
    return _latest_first(q).limit(limit).all()


def recalculate_running_balances(
    *,
    product_id: int,
    branch_code: str,
    from_date: date | None = None,
    actor_user_id: int | None = None,
) -> int:
    """
    Rewrite running_balance for every entry dated on or after from_date.

    Entries are walked oldest first starting from the balance of the last
    entry before from_date. A locked entry keeps its stored balance and the
    walk continues from it.

    Args:
        product_id: Product ID
        branch_code: Branch code
        from_date: First date to rewrite (None = whole history from 0)
        actor_user_id: User requesting the recalculation (audit)

    Returns:
        Number of entries whose running_balance changed

    Raises:
        LedgerValidationError: If product or branch is missing
    """
    if not product_id:
        raise LedgerValidationError("product_id is required")
    if not branch_code:
        raise LedgerValidationError("branch_code is required")

    balance = ZERO
    q = _ledger_rows(product_id, branch_code)
    if from_date is not None:
        baseline = _latest_first(q.filter(WarehouseEntry.entry_date < from_date)).first()
        if baseline is not None:
            balance = Decimal(baseline.running_balance)
        q = q.filter(WarehouseEntry.entry_date >= from_date)

    entries = q.order_by(
        WarehouseEntry.entry_date.asc(),
        WarehouseEntry.created_at.asc(),
        WarehouseEntry.id.asc(),
    ).all()

    changed = 0
    for entry in entries:
        if entry.is_locked:
            balance = Decimal(entry.running_balance)
            continue
        balance = balance + Decimal(entry.qty_in or 0) - Decimal(entry.qty_out or 0)
        if Decimal(entry.running_balance) != balance:
            entry.running_balance = balance
            changed += 1

    append_ledger_event(
        event_type="warehouse_ledger.recalculated",
        entity_type="warehouse_ledger",
        product_id=product_id,
        branch_code=branch_code,
        actor_user_id=actor_user_id,
        note=f"from={from_date.isoformat() if from_date else 'start'} entries={len(entries)} changed={changed}",
    )
    db.session.commit()

    current_app.logger.info(
        "Recalculated ledger product=%s branch=%s from=%s: %d of %d entries changed",
        product_id, branch_code, from_date, changed, len(entries),
    )
    return changed
