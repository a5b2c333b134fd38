from datetime import date
from decimal import Decimal

import pytest

from stockrecon.extensions import db
from stockrecon.models import Branch, PurchaseOrder, ReceivingLine, WarehouseEntry, WarehouseLedgerEvent
from stockrecon.models.purchasing import PO_STATUS_ARRIVED, PO_STATUS_IN_WAREHOUSE
from stockrecon.services import posting_service, reconciliation_service
from stockrecon.services.posting_service import (
    DuplicatePostingError,
    PostingCompensationError,
    PostingLookupError,
    PostingValidationError,
    PostingWriteError,
    STATE_PENDING,
    STATE_ROLLED_BACK,
    STEP_CHECK_BARRIER,
    STEP_CHECK_DUPLICATE,
    STEP_COMPENSATE,
    STEP_FLIP_STATUS,
    STEP_INSERT_ENTRY,
    STEP_RESOLVE_BRANCH,
    STEP_VALIDATE,
)

ACTOR = 3


def _entry_count():
    return db.session.query(WarehouseEntry).count()


def _order_status(po_id):
    return db.session.get(PurchaseOrder, po_id).status


def test_first_line_posts_without_flipping_order(purchase_order):
    po, lines = purchase_order

    result = posting_service.post_receiving_line(lines[0].id, ACTOR)

    assert result.posted is True
    assert result.order_status_changed is False
    assert result.new_balance == Decimal("10")
    assert _entry_count() == 1
    assert _order_status(po.id) == PO_STATUS_ARRIVED

    entry = db.session.get(WarehouseEntry, result.warehouse_entry_id)
    assert entry.branch_code == "BR01"
    assert entry.source_type == "PO"
    assert entry.source_reference == "PO-001"
    assert entry.entry_date == date(2024, 3, 10)
    assert entry.created_by_user_id == ACTOR

    events = db.session.query(WarehouseLedgerEvent).filter_by(event_type="warehouse_entry.posted").all()
    assert [e.entity_id for e in events] == [entry.id]


def test_last_line_flips_order_to_in_warehouse(purchase_order):
    po, lines = purchase_order

    posting_service.post_receiving_line(lines[0].id, ACTOR)
    result = posting_service.post_receiving_line(lines[1].id, ACTOR)

    assert result.order_status_changed is True
    assert result.new_balance == Decimal("15")
    order = db.session.get(PurchaseOrder, po.id)
    assert order.status == PO_STATUS_IN_WAREHOUSE
    assert order.status_changed_at is not None
    assert db.session.query(WarehouseLedgerEvent).filter_by(event_type="purchase_order.in_warehouse").count() == 1


def test_posting_lines_in_reverse_order_flips_on_the_last_one(purchase_order):
    po, lines = purchase_order

    first = posting_service.post_receiving_line(lines[1].id, ACTOR)
    assert first.order_status_changed is False
    assert _order_status(po.id) == PO_STATUS_ARRIVED

    second = posting_service.post_receiving_line(lines[0].id, ACTOR)
    assert second.order_status_changed is True


def test_new_balance_builds_on_previous_entry(purchase_order, add_entry):
    po, lines = purchase_order
    add_entry(7, "BR01", date(2024, 3, 1), 100, qty_in=100)

    result = posting_service.post_receiving_line(lines[0].id, ACTOR)

    assert result.new_balance == Decimal("110")


def test_posting_same_line_twice_is_rejected_as_duplicate(purchase_order):
    po, lines = purchase_order
    posting_service.post_receiving_line(lines[0].id, ACTOR)

    with pytest.raises(DuplicatePostingError) as exc_info:
        posting_service.post_receiving_line(lines[0].id, ACTOR)

    err = exc_info.value
    assert "already posted" in str(err)
    assert err.step == STEP_CHECK_DUPLICATE
    assert err.transaction.state == STATE_ROLLED_BACK
    assert err.to_dict()["kind"] == "duplicate"
    matching = db.session.query(WarehouseEntry).filter_by(
        product_id=7, branch_code="BR01", source_type="PO", source_reference="PO-001",
        entry_date=date(2024, 3, 10),
    ).count()
    assert matching == 1


def test_missing_actor_is_rejected_before_any_read(purchase_order):
    po, lines = purchase_order

    with pytest.raises(PostingValidationError) as exc_info:
        posting_service.post_receiving_line(lines[0].id, None)

    assert exc_info.value.step == STEP_VALIDATE
    assert _entry_count() == 0


@pytest.mark.parametrize("field,value,message", [
    ("quantity", Decimal("0"), "Quantity must be positive"),
    ("quantity", None, "Quantity must be positive"),
    ("product_id", None, "no product"),
])
def test_invalid_line_is_rejected(db_session, purchase_order, field, value, message):
    po, lines = purchase_order
    setattr(lines[0], field, value)
    db_session.commit()

    with pytest.raises(PostingValidationError) as exc_info:
        posting_service.post_receiving_line(lines[0].id, ACTOR)

    assert message in str(exc_info.value)
    assert _entry_count() == 0


def test_unknown_line_is_a_lookup_failure(db_session):
    with pytest.raises(PostingLookupError):
        posting_service.post_receiving_line(12345, ACTOR)


def test_branch_without_code_is_a_lookup_failure(db_session, product):
    branch = Branch(id=5, code="   ", name="Pop-up")
    db_session.add(branch)
    db_session.flush()
    line = ReceivingLine(received_on=date(2024, 3, 10), product_id=7, branch_id=5,
                         quantity=Decimal("4"), source_type="manual")
    db_session.add(line)
    db_session.commit()

    with pytest.raises(PostingLookupError) as exc_info:
        posting_service.post_receiving_line(line.id, ACTOR)

    assert exc_info.value.step == STEP_RESOLVE_BRANCH


def test_line_without_order_skips_the_barrier(db_session, branch, product):
    line = ReceivingLine(received_on=date(2024, 3, 10), product_id=7, branch_id=1,
                         quantity=Decimal("2"), source_type="PETTY_CASH")
    db_session.add(line)
    db_session.commit()

    result = posting_service.post_receiving_line(line.id, ACTOR)

    assert result.order_status_changed is False
    entry = db.session.get(WarehouseEntry, result.warehouse_entry_id)
    assert entry.source_type == "PETTY_CASH"
    assert entry.source_reference == f"PETTY-CASH-{line.id}"


def test_status_flip_failure_compensates_the_ledger_insert(purchase_order, monkeypatch):
    po, lines = purchase_order
    posting_service.post_receiving_line(lines[0].id, ACTOR)
    before = _entry_count()

    def failing_flip(order, **kwargs):
        raise RuntimeError("status update failed")

    monkeypatch.setattr(posting_service, "_flip_order_status", failing_flip)

    with pytest.raises(PostingWriteError) as exc_info:
        posting_service.post_receiving_line(lines[1].id, ACTOR)

    err = exc_info.value
    assert _entry_count() == before
    assert "status update failed" in str(err)
    assert "compensated" in str(err)
    assert err.step == STEP_FLIP_STATUS
    assert err.transaction.state == STATE_ROLLED_BACK
    outcomes = [(s.name, s.outcome) for s in err.steps]
    assert (STEP_FLIP_STATUS, "failed") in outcomes
    assert (STEP_COMPENSATE, "attempted") in outcomes
    assert (STEP_INSERT_ENTRY, "compensated") in outcomes
    assert _order_status(po.id) == PO_STATUS_ARRIVED
    assert db.session.query(WarehouseLedgerEvent).filter_by(event_type="warehouse_entry.compensated").count() == 1

    # The line is not posted, so it can be retried
    monkeypatch.undo()
    result = posting_service.post_receiving_line(lines[1].id, ACTOR)
    assert result.order_status_changed is True


def test_failed_compensation_surfaces_both_errors(purchase_order, monkeypatch):
    po, lines = purchase_order
    posting_service.post_receiving_line(lines[0].id, ACTOR)
    before = _entry_count()

    def failing_flip(order, **kwargs):
        raise RuntimeError("status update failed")

    def failing_delete(entry_id, **kwargs):
        raise RuntimeError("delete failed")

    monkeypatch.setattr(posting_service, "_flip_order_status", failing_flip)
    monkeypatch.setattr(posting_service, "_delete_warehouse_entry", failing_delete)

    with pytest.raises(PostingCompensationError) as exc_info:
        posting_service.post_receiving_line(lines[1].id, ACTOR)

    err = exc_info.value
    assert "status update failed" in str(err)
    assert "delete failed" in str(err)
    assert str(err.original_error) == "status update failed"
    assert str(err.compensation_error) == "delete failed"
    assert err.transaction.state == STATE_PENDING
    assert (STEP_COMPENSATE, "failed") in [(s.name, s.outcome) for s in err.steps]
    assert _entry_count() == before + 1
    body = err.to_dict()
    assert body["kind"] == "compensation_failed"
    assert body["compensation_error"] == "delete failed"


def test_insert_failure_needs_no_compensation(purchase_order, monkeypatch):
    from sqlalchemy.exc import IntegrityError

    po, lines = purchase_order

    def failing_insert(line, **kwargs):
        raise IntegrityError("INSERT", {}, Exception("constraint failed"))

    monkeypatch.setattr(posting_service, "_insert_warehouse_entry", failing_insert)

    with pytest.raises(PostingWriteError) as exc_info:
        posting_service.post_receiving_line(lines[0].id, ACTOR)

    assert exc_info.value.step == STEP_INSERT_ENTRY
    assert STEP_COMPENSATE not in [s.name for s in exc_info.value.steps]
    assert _entry_count() == 0


@pytest.fixture
def identical_lines(db_session, branch, product):
    """PO-002 with two receiving lines of 10 units each, same product and date."""
    po = PurchaseOrder(po_number="PO-002", branch_id=branch.id, status=PO_STATUS_ARRIVED)
    db_session.add(po)
    db_session.flush()
    lines = [
        ReceivingLine(received_on=date(2024, 3, 10), product_id=product.id, branch_id=branch.id,
                      quantity=Decimal("10"), source_type="PO", source_reference=po.po_number,
                      purchase_order_id=po.id)
        for _ in range(2)
    ]
    db_session.add_all(lines)
    db_session.commit()
    return po, lines


def test_identical_lines_each_need_their_own_entry(identical_lines):
    po, lines = identical_lines

    first = posting_service.post_receiving_line(lines[0].id, ACTOR)
    assert first.order_status_changed is False
    assert _entry_count() == 1
    assert _order_status(po.id) == PO_STATUS_ARRIVED

    second = posting_service.post_receiving_line(lines[1].id, ACTOR)
    assert second.order_status_changed is True
    assert second.new_balance == Decimal("20")
    assert _entry_count() == 2
    assert _order_status(po.id) == PO_STATUS_IN_WAREHOUSE

    with pytest.raises(DuplicatePostingError) as exc_info:
        posting_service.post_receiving_line(lines[1].id, ACTOR)
    assert f"warehouse entry {second.warehouse_entry_id}" in str(exc_info.value)
    assert _entry_count() == 2


def test_barrier_failure_compensates_the_ledger_insert(purchase_order, monkeypatch):
    po, lines = purchase_order
    posting_service.post_receiving_line(lines[0].id, ACTOR)
    before = _entry_count()

    def failing_lines(order):
        raise RuntimeError("order lines unavailable")

    monkeypatch.setattr(posting_service, "order_lines", failing_lines)

    with pytest.raises(PostingWriteError) as exc_info:
        posting_service.post_receiving_line(lines[1].id, ACTOR)

    err = exc_info.value
    assert _entry_count() == before
    assert err.step == STEP_CHECK_BARRIER
    assert err.transaction.state == STATE_ROLLED_BACK
    outcomes = [(s.name, s.outcome) for s in err.steps]
    assert (STEP_CHECK_BARRIER, "failed") in outcomes
    assert (STEP_INSERT_ENTRY, "compensated") in outcomes
    assert STEP_FLIP_STATUS not in [s.name for s in err.steps]
    assert _order_status(po.id) == PO_STATUS_ARRIVED


def test_padded_branch_code_posts_and_reconciles_under_one_key(db_session, product, add_snapshot):
    db_session.add(Branch(id=4, code=" BR04 ", name="Kemang Raya"))
    db_session.flush()
    line = ReceivingLine(received_on=date(2024, 3, 10), product_id=7, branch_id=4,
                         quantity=Decimal("6"), source_type="PETTY_CASH")
    db_session.add(line)
    db_session.commit()

    result = posting_service.post_receiving_line(line.id, ACTOR)
    assert db.session.get(WarehouseEntry, result.warehouse_entry_id).branch_code == "BR04"

    add_snapshot(7, 4, date(2024, 3, 10), 0)
    r = reconciliation_service.run_reconciliation("2024-03-10", "2024-03-10", ["BR04"])[0]

    assert r.branch_code == "BR04"
    assert r.gudang == Decimal("6")
    assert r.inbound_today == Decimal("6")
