from __future__ import annotations

from ..extensions import db
from stockrecon.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    Products are shared by every branch; branch-specific quantities live in
    the snapshot, ledger and feed tables keyed by product_id.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_sub_category", "sub_category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    # Smallest counting unit (pcs, gr, ml); all quantities are in this unit
    unit = db.Column(db.String(32), nullable=True)
    sub_category = db.Column(db.String(128), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "unit": self.unit,
            "sub_category": self.sub_category,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Branch(db.Model):
    """
    Branch registry.

    KEYS: snapshots reference branches by numeric id, the warehouse ledger by
    `code`, and the sales/production feeds by display `name`. All three must
    stay resolvable from this table.
    """
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Branch id={self.id} code={self.code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class ToleranceSetting(db.Model):
    """
    Allowed variance band for a product, as a percentage of recorded sales.

    RESOLUTION ORDER:
    1. Row for (product_id, branch_id)
    2. Product-wide row (branch_id IS NULL)
    3. RECON_DEFAULT_TOLERANCE_PCT

    Written by the configuration screens; read-only to the engine.
    """
    __tablename__ = "tolerance_settings"
    __table_args__ = (
        db.UniqueConstraint("product_id", "branch_id", name="uq_tolerance_product_branch"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    tolerance_percentage = db.Column(db.Numeric(6, 2), nullable=False, default=5)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    branch = db.relationship("Branch")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "tolerance_percentage": float(self.tolerance_percentage),
            "updated_at": to_utc_z(self.updated_at),
        }
