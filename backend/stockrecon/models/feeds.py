from __future__ import annotations

from ..extensions import db
from stockrecon.time_utils import to_iso_date


class StockSnapshot(db.Model):
    """
    Daily shelf count ("ready") per product and branch.

    Created by the daily stock-count process; immutable once created.
    """
    __tablename__ = "stock_snapshots"
    __table_args__ = (
        db.UniqueConstraint("product_id", "branch_id", "snapshot_date", name="uq_snapshot_product_branch_date"),
        db.Index("ix_snapshot_date_branch", "snapshot_date", "branch_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    snapshot_date = db.Column(db.Date, nullable=False, index=True)

    on_hand_qty = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    waste_qty = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "snapshot_date": to_iso_date(self.snapshot_date),
            "on_hand_qty": float(self.on_hand_qty),
            "waste_qty": float(self.waste_qty),
        }


class SalesRecord(db.Model):
    """
    Point-of-sale output per day, product and branch.

    Read-only external feed. The feed carries the branch display name, which
    drifts in whitespace from the branch registry; joins trim both sides.
    """
    __tablename__ = "sales_records"
    __table_args__ = (
        db.Index("ix_sales_date_product", "sales_date", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sales_date = db.Column(db.Date, nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=False, index=True)
    branch_name = db.Column(db.String(120), nullable=False)
    qty_sold = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sales_date": to_iso_date(self.sales_date),
            "product_id": self.product_id,
            "branch_name": self.branch_name,
            "qty_sold": float(self.qty_sold),
        }


class ProductionConsumption(db.Model):
    """Branch-level usage of a product by internal production (read-only feed)."""
    __tablename__ = "production_consumptions"
    __table_args__ = (
        db.Index("ix_prodcons_product_date", "product_id", "consumed_on"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, nullable=False, index=True)
    consumed_on = db.Column(db.Date, nullable=False, index=True)
    branch_name = db.Column(db.String(120), nullable=False)
    qty_used = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "consumed_on": to_iso_date(self.consumed_on),
            "branch_name": self.branch_name,
            "qty_used": float(self.qty_used),
        }


class ProductionConversion(db.Model):
    """
    Production output converted into the product's counting unit.

    Coarser than ProductionConsumption: keyed by product and date only, summed
    across branches.
    """
    __tablename__ = "production_conversions"
    __table_args__ = (
        db.Index("ix_prodconv_product_date", "product_id", "production_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, nullable=False, index=True)
    production_date = db.Column(db.Date, nullable=False, index=True)
    total_konversi = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "production_date": to_iso_date(self.production_date),
            "total_konversi": float(self.total_konversi),
        }
