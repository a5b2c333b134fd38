from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from stockrecon import create_app
from stockrecon.config import TestConfig
from stockrecon.extensions import db
from stockrecon.models import Branch, Product, SalesRecord, StockSnapshot, WarehouseEntry
from stockrecon.services import fetch_service, reconciliation_service
from stockrecon.services.reconciliation_service import (
    NoReconciliationDataError,
    ReconciliationValidationError,
    StoreUnavailableError,
    STATUS_OK,
    STATUS_SHORTAGE,
    STATUS_SURPLUS,
    calculate_keluar_form,
    classify_variance,
    format_tolerance_range,
)


def test_worked_example(worked_example):
    results = reconciliation_service.run_reconciliation("2024-03-10", "2024-03-10")

    assert len(results) == 1
    r = results[0]
    assert r.snapshot_date == date(2024, 3, 10)
    assert r.product.display == "Croissant"
    assert r.branch.display == "Kemang"
    assert r.gudang == Decimal("120")
    assert r.inbound_today == Decimal("20")
    assert r.stock_yesterday == Decimal("140")
    assert r.stock_today == Decimal("170")
    assert r.total_konversi == Decimal("5")
    assert r.keluar_form == Decimal("-7")
    assert r.hasil_esb == Decimal("60")
    assert r.total_production == Decimal("3")
    assert r.selisih == Decimal("70")
    assert r.tolerance_range == "-3.0 ~ 3.0"
    assert r.status == STATUS_SURPLUS


def test_buffer_day_snapshots_are_excluded(worked_example):
    results = reconciliation_service.run_reconciliation("2024-03-10", "2024-03-10")
    assert {r.snapshot_date for r in results} == {date(2024, 3, 10)}

    # Widening the range brings the 9th back as a regular row
    results = reconciliation_service.run_reconciliation("2024-03-09", "2024-03-10")
    assert [r.snapshot_date for r in results] == [date(2024, 3, 10), date(2024, 3, 9)]


def test_within_band_is_ok(db_session, branch, product, add_snapshot, add_sales):
    d = date(2024, 3, 10)
    add_snapshot(7, 1, date(2024, 3, 9), 100)
    add_snapshot(7, 1, d, 40)
    add_sales(d, 7, "Kemang", 58)

    r = reconciliation_service.run_reconciliation(d, d)[0]

    # keluar = 100 - 40 = 60; selisih = 58 - 60 = -2; band = 2.9
    assert r.keluar_form == Decimal("60")
    assert r.selisih == Decimal("-2")
    assert r.status == STATUS_OK
    assert r.tolerance_range == "-2.9 ~ 2.9"


def test_shortage_outside_band(db_session, branch, product, add_snapshot, add_sales):
    d = date(2024, 3, 10)
    add_snapshot(7, 1, date(2024, 3, 9), 100)
    add_snapshot(7, 1, d, 40)
    add_sales(d, 7, "Kemang", 50)

    r = reconciliation_service.run_reconciliation(d, d)[0]

    assert r.selisih == Decimal("-10")
    assert r.status == STATUS_SHORTAGE


def test_no_warehouse_entries_gives_zero_gudang(db_session, branch, product, add_snapshot):
    d = date(2024, 3, 10)
    add_snapshot(7, 1, d, 12)

    r = reconciliation_service.run_reconciliation(d, d)[0]

    assert r.gudang == Decimal("0")
    assert r.inbound_today == Decimal("0")
    assert r.stock_yesterday == Decimal("0")
    assert r.hasil_esb == Decimal("0")


def test_warehouse_balance_from_before_the_window(db_session, branch, product, add_snapshot, add_entry):
    d = date(2024, 3, 10)
    add_entry(7, "BR01", date(2024, 2, 1), 80, qty_in=80)
    add_snapshot(7, 1, d, 10)

    r = reconciliation_service.run_reconciliation(d, d)[0]

    assert r.gudang == Decimal("80")
    assert r.stock_yesterday == Decimal("80")
    assert r.inbound_today == Decimal("0")


def test_same_day_entries_break_ties_on_created_at(db_session, branch, product, add_snapshot, add_entry):
    d = date(2024, 3, 10)
    add_snapshot(7, 1, d, 0)
    add_entry(7, "BR01", d, 45, qty_in=5, created_at=datetime(2024, 3, 10, 11, 0, 0))
    add_entry(7, "BR01", d, 30, qty_in=5, created_at=datetime(2024, 3, 10, 9, 0, 0))

    r = reconciliation_service.run_reconciliation(d, d)[0]

    assert r.gudang == Decimal("45")
    assert r.inbound_today == Decimal("10")


def test_branch_tolerance_overrides_default(db_session, branch, other_branch, product, add_snapshot, add_sales, add_tolerance):
    d = date(2024, 3, 10)
    add_snapshot(7, 1, d, 0)
    add_snapshot(7, 2, d, 0)
    add_sales(d, 7, "Kemang", 10)
    add_sales(d, 7, "Senopati", 10)
    add_tolerance(7, 1, 0)
    add_tolerance(7, None, 50)

    by_branch = {r.branch_code: r for r in reconciliation_service.run_reconciliation(d, d)}

    assert by_branch["BR01"].tolerance_percentage == Decimal("0")
    assert by_branch["BR01"].tolerance_range == "0.0 ~ 0.0"
    assert by_branch["BR01"].status == STATUS_SURPLUS

    assert by_branch["BR02"].tolerance_percentage == Decimal("50")
    assert by_branch["BR02"].tolerance_range == "-5.0 ~ 5.0"
    assert by_branch["BR02"].status == STATUS_SURPLUS


def test_branch_filter_and_ordering(db_session, branch, other_branch, product, add_snapshot):
    db_session.add(Product(id=3, name="Baguette", sub_category="Bread"))
    db_session.commit()
    for day in (date(2024, 3, 9), date(2024, 3, 10)):
        add_snapshot(7, 2, day, 1)
        add_snapshot(7, 1, day, 1)
        add_snapshot(3, 1, day, 1)

    results = reconciliation_service.run_reconciliation("2024-03-09", "2024-03-10")
    assert [(r.snapshot_date.day, r.branch_code, r.product_id) for r in results] == [
        (10, "BR01", 3), (10, "BR01", 7), (10, "BR02", 7),
        (9, "BR01", 3), (9, "BR01", 7), (9, "BR02", 7),
    ]

    results = reconciliation_service.run_reconciliation("2024-03-09", "2024-03-10", ["BR02"])
    assert {r.branch_code for r in results} == {"BR02"}
    assert len(results) == 2


def test_unknown_product_gets_placeholder_name(db_session, branch, add_snapshot):
    d = date(2024, 3, 10)
    add_snapshot(99, 1, d, 5)

    r = reconciliation_service.run_reconciliation(d, d)[0]

    assert r.product.resolved is False
    assert r.product.display == "Product 99"
    assert r.to_dict()["product_resolved"] is False


def test_no_snapshots_is_reported_as_no_data(db_session, branch, product):
    with pytest.raises(NoReconciliationDataError):
        reconciliation_service.run_reconciliation("2024-03-10", "2024-03-11")


@pytest.mark.parametrize("start,end", [
    (None, "2024-03-10"),
    ("2024-03-10", ""),
    ("2024-03-11", "2024-03-10"),
    ("10/03/2024", "2024-03-10"),
])
def test_invalid_date_range_is_rejected(db_session, start, end):
    with pytest.raises(ReconciliationValidationError):
        reconciliation_service.run_reconciliation(start, end)


def test_store_unavailable_is_surfaced(db_session, monkeypatch):
    def broken():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(fetch_service, "_read_products", broken)

    with pytest.raises(StoreUnavailableError):
        reconciliation_service.run_reconciliation("2024-03-10", "2024-03-10")


def test_paginate_reports_total(worked_example, add_snapshot):
    add_snapshot(7, 1, date(2024, 3, 11), 45)
    results = reconciliation_service.run_reconciliation("2024-03-10", "2024-03-11")

    page = reconciliation_service.paginate(results, limit=1, offset=1)

    assert page.total == 2
    assert [r.snapshot_date for r in page.items] == [date(2024, 3, 10)]
    assert page.to_dict()["summary"][STATUS_SURPLUS] >= 1


def test_variance_pivot_groups_by_sub_category(worked_example):
    results = reconciliation_service.run_reconciliation("2024-03-09", "2024-03-10")

    pivot = reconciliation_service.build_variance_pivot(results)

    assert pivot["dates"] == ["2024-03-09", "2024-03-10"]
    assert pivot["groups"]["Pastry"]["Croissant"]["2024-03-10"] == 70.0
    assert pivot["totals"]["Pastry"]["2024-03-10"] == 70.0


# -----------------------------------------------------------------------------
# Formulas
# -----------------------------------------------------------------------------

@pytest.mark.parametrize("shift", [Decimal("-50"), Decimal("0"), Decimal("12.5"), Decimal("1000")])
def test_keluar_form_is_translation_invariant(shift):
    base = calculate_keluar_form(
        stock_yesterday=Decimal("140"),
        inbound_today=Decimal("20"),
        stock_today=Decimal("170"),
        waste=Decimal("2"),
        total_konversi=Decimal("5"),
    )
    shifted = calculate_keluar_form(
        stock_yesterday=Decimal("140") + shift,
        inbound_today=Decimal("20"),
        stock_today=Decimal("170") + shift,
        waste=Decimal("2"),
        total_konversi=Decimal("5"),
    )
    assert base == shifted == Decimal("-7")


@pytest.mark.parametrize("selisih,hasil_esb,pct", [
    ("3", "60", "5"),
    ("-3", "60", "5"),
    ("3.01", "60", "5"),
    ("-3.01", "60", "5"),
    ("0", "0", "5"),
    ("0.5", "0", "5"),
    ("4", "-80", "5"),
    ("-1", "10", "0"),
])
def test_status_ok_iff_within_sales_band(selisih, hasil_esb, pct):
    selisih, hasil_esb, pct = Decimal(selisih), Decimal(hasil_esb), Decimal(pct)

    status, band = classify_variance(selisih, hasil_esb, pct)

    assert band == abs(hasil_esb) * pct / 100
    assert (status == STATUS_OK) == (abs(selisih) <= band)
    if status != STATUS_OK:
        assert status == (STATUS_SHORTAGE if selisih < 0 else STATUS_SURPLUS)


def test_tolerance_range_rounds_to_one_decimal():
    assert format_tolerance_range(Decimal("2.95"))[2] == "-3.0 ~ 3.0"
    assert format_tolerance_range(Decimal("0.04"))[2] == "0.0 ~ 0.0"
    assert format_tolerance_range(Decimal("0"))[:2] == (Decimal("0.0"), Decimal("0.0"))


# -----------------------------------------------------------------------------
# Parallel fetch
# -----------------------------------------------------------------------------

def test_parallel_fetch_matches_inline(tmp_path):
    db_path = tmp_path / "recon.sqlite3"

    class ParallelConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{db_path}"
        RECON_FETCH_WORKERS = 4

    parallel_app = create_app(ParallelConfig)
    with parallel_app.app_context():
        db.create_all()
        db.session.add_all([
            Branch(id=1, code="BR01", name="Kemang"),
            Product(id=7, name="Croissant", sub_category="Pastry"),
            StockSnapshot(product_id=7, branch_id=1, snapshot_date=date(2024, 3, 9), on_hand_qty=40, waste_qty=0),
            StockSnapshot(product_id=7, branch_id=1, snapshot_date=date(2024, 3, 10), on_hand_qty=50, waste_qty=2),
            WarehouseEntry(product_id=7, branch_code="BR01", entry_date=date(2024, 3, 9),
                           qty_in=100, qty_out=0, running_balance=100),
            WarehouseEntry(product_id=7, branch_code="BR01", entry_date=date(2024, 3, 10),
                           qty_in=20, qty_out=0, running_balance=120),
            SalesRecord(sales_date=date(2024, 3, 10), product_id=7, branch_name="Kemang", qty_sold=60),
        ])
        db.session.commit()

        parallel = reconciliation_service.run_reconciliation("2024-03-10", "2024-03-10")

        parallel_app.config["RECON_FETCH_WORKERS"] = 1
        inline = reconciliation_service.run_reconciliation("2024-03-10", "2024-03-10")

        assert [r.to_dict() for r in parallel] == [r.to_dict() for r in inline]
        assert parallel[0].gudang == Decimal("120")
        assert parallel[0].stock_yesterday == Decimal("140")

        db.session.remove()
        db.drop_all()
