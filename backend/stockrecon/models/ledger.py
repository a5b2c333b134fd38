from __future__ import annotations

from ..extensions import db
from stockrecon.time_utils import utcnow, to_utc_z, to_iso_date


# Warehouse entry sources
SOURCE_PO = "PO"
SOURCE_PETTY_CASH = "PETTY_CASH"
SOURCE_MANUAL = "manual"
SOURCE_STOCK_OPNAME = "stock_opname"

SOURCE_TYPES = {SOURCE_PO, SOURCE_PETTY_CASH, SOURCE_MANUAL, SOURCE_STOCK_OPNAME}


class WarehouseEntry(db.Model):
    """
    Warehouse ("gudang") movement ledger.

    One row per physical movement of a product in or out of a branch
    warehouse. Rows are append-only; the only mutations are the compensating
    delete of a failed posting and running-balance recalculation.

    BALANCE INVARIANT:
    For a (product_id, branch_code), the entry with the greatest
    (entry_date, created_at, id) carries the authoritative running_balance as
    of entry_date.

    created_at must carry sub-second precision: it orders same-day entries.
    """
    __tablename__ = "warehouse_entries"
    __table_args__ = (
        db.Index("ix_whentry_product_branch_date", "product_id", "branch_code", "entry_date"),
        db.Index("ix_whentry_source", "source_type", "source_reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Ledger is keyed by branch code, not branch id
    branch_code = db.Column(db.String(32), nullable=False, index=True)

    entry_date = db.Column(db.Date, nullable=False, index=True)

    qty_in = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    qty_out = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    running_balance = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    # PO, PETTY_CASH, manual, stock_opname
    source_type = db.Column(db.String(32), nullable=False, default=SOURCE_MANUAL)
    # PO number, petty-cash expense id, stock-opname id
    source_reference = db.Column(db.String(128), nullable=True)

    # Locked rows (stock opname counts) are balance checkpoints for recalculation
    is_locked = db.Column(db.Boolean, nullable=False, default=False)

    note = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    product = db.relationship("Product")

    def __repr__(self) -> str:
        return (
            f"<WarehouseEntry id={self.id} product_id={self.product_id} "
            f"branch={self.branch_code!r} date={self.entry_date} balance={self.running_balance}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_code": self.branch_code,
            "entry_date": to_iso_date(self.entry_date),
            "qty_in": float(self.qty_in),
            "qty_out": float(self.qty_out),
            "running_balance": float(self.running_balance),
            "source_type": self.source_type,
            "source_reference": self.source_reference,
            "is_locked": self.is_locked,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class WarehouseLedgerEvent(db.Model):
    """
    Append-only audit trail for warehouse ledger mutations.

    Each event is written in the same DB transaction as the mutation it
    records, so a committed mutation always has its event and a failed one
    never does.
    """
    __tablename__ = "warehouse_ledger_events"
    __table_args__ = (
        db.Index("ix_whevent_type_created", "event_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # e.g. "warehouse_entry.posted", "warehouse_entry.compensated"
    event_type = db.Column(db.String(64), nullable=False, index=True)

    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True, index=True)

    product_id = db.Column(db.Integer, nullable=True)
    branch_code = db.Column(db.String(32), nullable=True)
    receiving_line_id = db.Column(db.Integer, nullable=True, index=True)
    purchase_order_id = db.Column(db.Integer, nullable=True, index=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "product_id": self.product_id,
            "branch_code": self.branch_code,
            "receiving_line_id": self.receiving_line_id,
            "purchase_order_id": self.purchase_order_id,
            "actor_user_id": self.actor_user_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
