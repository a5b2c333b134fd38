"""
Pytest fixtures for stockrecon backend tests.

Provides test database setup, catalog fixtures, row factories and test client.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest
from stockrecon import create_app
from stockrecon.config import TestConfig
from stockrecon.extensions import db
from stockrecon.models import (
    Branch,
    Product,
    ProductionConsumption,
    ProductionConversion,
    PurchaseOrder,
    ReceivingLine,
    SalesRecord,
    StockSnapshot,
    ToleranceSetting,
    WarehouseEntry,
)
from stockrecon.models.purchasing import PO_STATUS_ARRIVED


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def branch(db_session):
    """Branch 1, code BR01."""
    b = Branch(id=1, code="BR01", name="Kemang")
    db_session.add(b)
    db_session.commit()
    return b


@pytest.fixture(scope='function')
def other_branch(db_session):
    """Branch 2, code BR02."""
    b = Branch(id=2, code="BR02", name="Senopati")
    db_session.add(b)
    db_session.commit()
    return b


@pytest.fixture(scope='function')
def product(db_session):
    """Product 7."""
    p = Product(id=7, name="Croissant", unit="pcs", sub_category="Pastry")
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def add_snapshot(db_session):
    def _add(product_id, branch_id, day, on_hand, waste=0):
        s = StockSnapshot(
            product_id=product_id,
            branch_id=branch_id,
            snapshot_date=day,
            on_hand_qty=Decimal(str(on_hand)),
            waste_qty=Decimal(str(waste)),
        )
        db_session.add(s)
        db_session.commit()
        return s
    return _add


@pytest.fixture(scope='function')
def add_entry(db_session):
    def _add(product_id, branch_code, day, balance, qty_in=0, qty_out=0,
             created_at=None, source_type="manual", source_reference=None, is_locked=False):
        e = WarehouseEntry(
            product_id=product_id,
            branch_code=branch_code,
            entry_date=day,
            qty_in=Decimal(str(qty_in)),
            qty_out=Decimal(str(qty_out)),
            running_balance=Decimal(str(balance)),
            source_type=source_type,
            source_reference=source_reference,
            is_locked=is_locked,
            created_at=created_at or datetime(day.year, day.month, day.day, 8, 0, 0),
        )
        db_session.add(e)
        db_session.commit()
        return e
    return _add


@pytest.fixture(scope='function')
def add_sales(db_session):
    def _add(day, product_id, branch_name, qty):
        r = SalesRecord(sales_date=day, product_id=product_id, branch_name=branch_name, qty_sold=Decimal(str(qty)))
        db_session.add(r)
        db_session.commit()
        return r
    return _add


@pytest.fixture(scope='function')
def add_consumption(db_session):
    def _add(product_id, day, branch_name, qty):
        r = ProductionConsumption(product_id=product_id, consumed_on=day, branch_name=branch_name, qty_used=Decimal(str(qty)))
        db_session.add(r)
        db_session.commit()
        return r
    return _add


@pytest.fixture(scope='function')
def add_conversion(db_session):
    def _add(product_id, day, qty):
        r = ProductionConversion(product_id=product_id, production_date=day, total_konversi=Decimal(str(qty)))
        db_session.add(r)
        db_session.commit()
        return r
    return _add


@pytest.fixture(scope='function')
def add_tolerance(db_session):
    def _add(product_id, branch_id, pct):
        t = ToleranceSetting(product_id=product_id, branch_id=branch_id, tolerance_percentage=Decimal(str(pct)))
        db_session.add(t)
        db_session.commit()
        return t
    return _add


@pytest.fixture(scope='function')
def worked_example(db_session, branch, product, add_snapshot, add_entry, add_sales, add_consumption, add_conversion):
    """
    Product 7 at branch 1 on 2024-03-10.

    ready=50, waste=2, yesterday ready=40, warehouse 100 -> 120 (+20 today),
    konversi=5, sales=60 (branch name with stray whitespace), production use=3.
    """
    d = date(2024, 3, 10)
    y = date(2024, 3, 9)
    add_snapshot(7, 1, y, 40)
    add_snapshot(7, 1, d, 50, waste=2)
    add_entry(7, "BR01", y, 100, qty_in=100)
    add_entry(7, "BR01", d, 120, qty_in=20)
    add_sales(d, 7, "  Kemang ", 60)
    add_consumption(7, d, "Kemang", 3)
    add_conversion(7, d, 5)
    return d


@pytest.fixture(scope='function')
def purchase_order(db_session, branch, product):
    """PO-001 with two receiving lines (10 and 5 units) on 2024-03-10."""
    po = PurchaseOrder(po_number="PO-001", branch_id=branch.id, status=PO_STATUS_ARRIVED)
    db_session.add(po)
    db_session.flush()

    lines = [
        ReceivingLine(
            received_on=date(2024, 3, 10),
            product_id=product.id,
            branch_id=branch.id,
            quantity=Decimal(qty),
            source_type="PO",
            source_reference=po.po_number,
            purchase_order_id=po.id,
        )
        for qty in ("10", "5")
    ]
    db_session.add_all(lines)
    db_session.commit()
    return po, lines
