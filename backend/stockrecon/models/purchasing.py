from __future__ import annotations

from ..extensions import db
from stockrecon.time_utils import to_utc_z, to_iso_date


# Purchase order statuses
PO_STATUS_PENDING = "Pending"
PO_STATUS_PROCESSING = "Sedang diproses"
PO_STATUS_ARRIVED = "Barang sampai"
PO_STATUS_PARTIAL = "Sampai Sebagian"
PO_STATUS_IN_WAREHOUSE = "Di Gudang"


class PurchaseOrder(db.Model):
    """
    Purchase order header.

    Only the fields the posting engine reads or writes are modelled here; the
    rest of the purchase-order screens are plain CRUD outside this service.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.Index("ix_po_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    po_number = db.Column(db.String(64), nullable=False, unique=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False, default=PO_STATUS_PENDING)
    status_changed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    branch = db.relationship("Branch")

    def __repr__(self) -> str:
        return f"<PurchaseOrder id={self.id} po_number={self.po_number!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "po_number": self.po_number,
            "branch_id": self.branch_id,
            "status": self.status,
            "status_changed_at": to_utc_z(self.status_changed_at),
            "created_at": to_utc_z(self.created_at),
        }


class ReceivingLine(db.Model):
    """
    One physically received line ("barang masuk"), waiting to be posted into
    the warehouse ledger.

    source_type/source_reference are copied onto the WarehouseEntry created by
    posting. For purchase-order lines they are ("PO", po_number).
    """
    __tablename__ = "receiving_lines"
    __table_args__ = (
        db.Index("ix_rcvline_source", "source_type", "source_reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    received_on = db.Column(db.Date, nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    quantity = db.Column(db.Numeric(14, 3), nullable=True)

    source_type = db.Column(db.String(32), nullable=False, default="PO")
    source_reference = db.Column(db.String(128), nullable=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True, index=True)

    invoice_number = db.Column(db.String(128), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    purchase_order = db.relationship("PurchaseOrder", backref=db.backref("receiving_lines", lazy=True))
    branch = db.relationship("Branch")

    def __repr__(self) -> str:
        return f"<ReceivingLine id={self.id} product_id={self.product_id} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "received_on": to_iso_date(self.received_on),
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "quantity": float(self.quantity) if self.quantity is not None else None,
            "source_type": self.source_type,
            "source_reference": self.source_reference,
            "purchase_order_id": self.purchase_order_id,
            "invoice_number": self.invoice_number,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
