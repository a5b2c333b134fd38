# Overview: Service-layer posting of receiving lines into the warehouse ledger; saga with compensating delete.

"""
Posting Transaction Coordinator

WHY: A received line becomes stock only once it is in the warehouse ledger,
and a purchase order is "in warehouse" only once every one of its lines is.
The ledger insert and the order-status flip are separate commits, so the
sequence runs as an explicit saga with a compensating delete.

LIFECYCLE:
1. PENDING: preconditions being checked, nothing written yet
2. COMMITTED: ledger entry inserted (and order status flipped if the
   order's last line was just posted)
3. ROLLED_BACK: rejected before any write, or the inserted entry was
   deleted again after a later step failed

A transaction whose compensating delete also fails stays PENDING; the error
carries both failures for manual reconciliation.

PRECONDITIONS (checked before any write):
- actor present
- receiving line exists, has a product and a positive quantity
- branch resolves to a branch code
- the line is not yet accounted for by a WarehouseEntry matching (product,
  branch_code, source_type, source_reference, qty_in, date); identical lines
  are ranked by id and line k needs k matching entries; advisory
  check-then-act, no locks

COMMIT SEQUENCE:
1. read latest entry for (product, branch_code) -> previous balance
2. insert WarehouseEntry (+ audit event), commit
3. if the line belongs to a purchase order, check every line of the order
   is accounted for by a matching entry (fan-in barrier)
4. barrier satisfied -> flip order status to "Di Gudang" (+ audit event), commit

The status flip is the last step; only the ledger insert ever needs
compensation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Branch, PurchaseOrder, ReceivingLine, WarehouseEntry
from ..models.ledger import SOURCE_PETTY_CASH, SOURCE_PO
from ..models.purchasing import PO_STATUS_IN_WAREHOUSE
from ..time_utils import utcnow
from .ledger_service import append_ledger_event, get_latest_entry
from .lookup_index import normalize_branch_code


# Transaction states
STATE_PENDING = "PENDING"
STATE_COMMITTED = "COMMITTED"
STATE_ROLLED_BACK = "ROLLED_BACK"

# Step names
STEP_VALIDATE = "validate"
STEP_RESOLVE_BRANCH = "resolve_branch"
STEP_CHECK_DUPLICATE = "check_duplicate"
STEP_READ_BALANCE = "read_previous_balance"
STEP_INSERT_ENTRY = "insert_warehouse_entry"
STEP_CHECK_BARRIER = "check_order_barrier"
STEP_FLIP_STATUS = "flip_order_status"
STEP_COMPENSATE = "compensate"

# Step outcomes
OUTCOME_ATTEMPTED = "attempted"
OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"
OUTCOME_COMPENSATED = "compensated"


# =============================================================================
# ERRORS
# =============================================================================

class PostingError(Exception):
    """Base class for posting failures; carries the failing step."""
    kind = "posting"

    def __init__(self, message: str, *, step: str, transaction: Optional["PostingTransaction"] = None):
        super().__init__(message)
        self.message = message
        self.step = step
        self.transaction = transaction

    @property
    def steps(self) -> list["PostingStep"]:
        return list(self.transaction.steps) if self.transaction else []

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "step": self.step,
            "kind": self.kind,
            "steps": [s.to_dict() for s in self.steps],
        }


class PostingValidationError(PostingError):
    """Raised when the actor, product or quantity is missing or invalid."""
    kind = "validation"


class PostingLookupError(PostingError):
    """Raised when the receiving line or its branch cannot be resolved."""
    kind = "lookup"


class DuplicatePostingError(PostingError):
    """Raised when a matching warehouse entry already exists."""
    kind = "duplicate"


class PostingWriteError(PostingError):
    """Raised when a write fails; any inserted entry has been compensated."""
    kind = "write"


class PostingCompensationError(PostingError):
    """Raised when a write failed and the compensating delete failed too."""
    kind = "compensation_failed"

    def __init__(
        self,
        message: str,
        *,
        step: str,
        original_error: BaseException,
        compensation_error: BaseException,
        transaction: Optional["PostingTransaction"] = None,
    ):
        super().__init__(message, step=step, transaction=transaction)
        self.original_error = original_error
        self.compensation_error = compensation_error

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["original_error"] = str(self.original_error)
        data["compensation_error"] = str(self.compensation_error)
        return data


# =============================================================================
# TRANSACTION STATE
# =============================================================================

@dataclass(frozen=True)
class PostingStep:
    name: str
    outcome: str
    detail: Optional[str] = None

    def to_dict(self) -> dict:
        return {"name": self.name, "outcome": self.outcome, "detail": self.detail}


@dataclass
class PostingTransaction:
    """In-flight state of one posting; never persisted."""
    receiving_line_id: int
    actor_id: Optional[int]
    state: str = STATE_PENDING
    warehouse_entry_id: Optional[int] = None
    purchase_order_id: Optional[int] = None
    flip_order_status: bool = False
    steps: list[PostingStep] = field(default_factory=list)

    def record(self, name: str, outcome: str, detail: Optional[str] = None) -> None:
        self.steps.append(PostingStep(name=name, outcome=outcome, detail=detail))
        current_app.logger.debug(
            "Posting line %s: %s %s%s",
            self.receiving_line_id, name, outcome, f" ({detail})" if detail else "",
        )

    def commit(self) -> None:
        self._finish(STATE_COMMITTED)

    def roll_back(self) -> None:
        self._finish(STATE_ROLLED_BACK)

    def _finish(self, state: str) -> None:
        if self.state != STATE_PENDING:
            raise RuntimeError(f"Posting transaction already {self.state}")
        self.state = state


@dataclass(frozen=True)
class PostingResult:
    posted: bool
    order_status_changed: bool
    warehouse_entry_id: int
    new_balance: Decimal
    steps: list[PostingStep]

    def to_dict(self) -> dict:
        return {
            "posted": self.posted,
            "order_status_changed": self.order_status_changed,
            "warehouse_entry_id": self.warehouse_entry_id,
            "new_balance": float(self.new_balance),
            "steps": [s.to_dict() for s in self.steps],
        }


# =============================================================================
# HELPERS
# =============================================================================

def _ledger_source(line: ReceivingLine) -> tuple[str, Optional[str]]:
    """(source_type, source_reference) the line is posted under."""
    source_type = line.source_type or SOURCE_PO
    source_reference = line.source_reference
    if not source_reference:
        if source_type == SOURCE_PO and line.purchase_order is not None:
            source_reference = line.purchase_order.po_number
        elif source_type == SOURCE_PETTY_CASH:
            source_reference = f"PETTY-CASH-{line.id}"
    return source_type, source_reference


def _branch_code_for(line: ReceivingLine) -> Optional[str]:
    branch = line.branch or db.session.get(Branch, line.branch_id)
    if branch is None:
        return None
    return normalize_branch_code(branch.code)


def _posting_rank(line: ReceivingLine, branch_code: str) -> int:
    """
    1-based position of the line among lines sharing its ledger tuple.

    Identical lines are interchangeable in the ledger: the first N matching
    entries account for the N identical lines with the lowest ids.
    """
    source = _ledger_source(line)
    siblings = (
        db.session.query(ReceivingLine)
        .filter(
            ReceivingLine.id < line.id,
            ReceivingLine.product_id == line.product_id,
            ReceivingLine.quantity == line.quantity,
            ReceivingLine.received_on == line.received_on,
        )
        .all()
    )
    return 1 + sum(
        1 for s in siblings
        if _ledger_source(s) == source and _branch_code_for(s) == branch_code
    )


def find_posted_entry(line: ReceivingLine, branch_code: str) -> Optional[WarehouseEntry]:
    """Warehouse entry accounting for the line, if its (product, branch, source, qty, date) tuple is posted."""
    if line.product_id is None or line.quantity is None:
        return None
    source_type, source_reference = _ledger_source(line)
    entries = (
        db.session.query(WarehouseEntry)
        .filter(
            WarehouseEntry.product_id == line.product_id,
            WarehouseEntry.branch_code == branch_code,
            WarehouseEntry.source_type == source_type,
            WarehouseEntry.source_reference == source_reference,
            WarehouseEntry.qty_in == line.quantity,
            WarehouseEntry.entry_date == line.received_on,
        )
        .order_by(WarehouseEntry.id.asc())
        .all()
    )
    if not entries:
        return None
    rank = _posting_rank(line, branch_code)
    return entries[rank - 1] if len(entries) >= rank else None


def _owning_order(line: ReceivingLine) -> Optional[PurchaseOrder]:
    if line.purchase_order is not None:
        return line.purchase_order
    if line.source_type == SOURCE_PO and line.source_reference:
        return db.session.query(PurchaseOrder).filter_by(po_number=line.source_reference).first()
    return None


def order_lines(order: PurchaseOrder) -> list[ReceivingLine]:
    """Every receiving line belonging to a purchase order."""
    return (
        db.session.query(ReceivingLine)
        .filter(
            or_(
                ReceivingLine.purchase_order_id == order.id,
                and_(
                    ReceivingLine.source_type == SOURCE_PO,
                    ReceivingLine.source_reference == order.po_number,
                ),
            )
        )
        .order_by(ReceivingLine.id.asc())
        .all()
    )


def _all_lines_posted(order: PurchaseOrder) -> tuple[bool, int, int]:
    """
    Fan-in barrier across the order's lines.

    Returns:
        (all_posted, posted_count, line_count)
    """
    lines = order_lines(order)
    posted = 0
    for line in lines:
        branch_code = _branch_code_for(line)
        if branch_code and find_posted_entry(line, branch_code) is not None:
            posted += 1
    return bool(lines) and posted == len(lines), posted, len(lines)


def _insert_warehouse_entry(
    line: ReceivingLine,
    *,
    branch_code: str,
    new_balance: Decimal,
    actor_id: int,
) -> WarehouseEntry:
    source_type, source_reference = _ledger_source(line)
    entry = WarehouseEntry(
        product_id=line.product_id,
        branch_code=branch_code,
        entry_date=line.received_on,
        qty_in=line.quantity,
        qty_out=0,
        running_balance=new_balance,
        source_type=source_type,
        source_reference=source_reference,
        note=f"Receiving line {line.id}",
        created_by_user_id=actor_id,
    )
    db.session.add(entry)
    db.session.flush()

    append_ledger_event(
        event_type="warehouse_entry.posted",
        entity_type="warehouse_entry",
        entity_id=entry.id,
        product_id=line.product_id,
        branch_code=branch_code,
        receiving_line_id=line.id,
        purchase_order_id=line.purchase_order_id,
        actor_user_id=actor_id,
        note=f"qty_in={line.quantity} balance={new_balance}",
    )
    db.session.commit()
    return entry


def _flip_order_status(order: PurchaseOrder, *, actor_id: int, receiving_line_id: int) -> None:
    previous = order.status
    order.status = PO_STATUS_IN_WAREHOUSE
    order.status_changed_at = utcnow()

    append_ledger_event(
        event_type="purchase_order.in_warehouse",
        entity_type="purchase_order",
        entity_id=order.id,
        receiving_line_id=receiving_line_id,
        purchase_order_id=order.id,
        actor_user_id=actor_id,
        note=f"{previous} -> {PO_STATUS_IN_WAREHOUSE}",
    )
    db.session.commit()


def _delete_warehouse_entry(entry_id: int, *, actor_id: int, receiving_line_id: int, reason: str) -> None:
    entry = db.session.get(WarehouseEntry, entry_id)
    if entry is None:
        raise LookupError(f"Warehouse entry {entry_id} no longer exists")

    append_ledger_event(
        event_type="warehouse_entry.compensated",
        entity_type="warehouse_entry",
        entity_id=entry_id,
        product_id=entry.product_id,
        branch_code=entry.branch_code,
        receiving_line_id=receiving_line_id,
        actor_user_id=actor_id,
        note=reason[:255],
    )
    db.session.delete(entry)
    db.session.commit()


def _reject(txn: PostingTransaction, error_cls: type[PostingError], step: str, message: str) -> PostingError:
    txn.record(step, OUTCOME_FAILED, message)
    txn.roll_back()
    current_app.logger.warning("Posting line %s rejected at %s: %s", txn.receiving_line_id, step, message)
    return error_cls(message, step=step, transaction=txn)


def _compensate(txn: PostingTransaction, failed_step: str, error: Exception) -> PostingError:
    """
    Delete the entry inserted by this transaction.

    Returns the error to raise: PostingWriteError when the delete succeeded,
    PostingCompensationError when it failed too.
    """
    entry_id = txn.warehouse_entry_id
    txn.record(STEP_COMPENSATE, OUTCOME_ATTEMPTED, f"delete warehouse entry {entry_id}")
    try:
        _delete_warehouse_entry(
            entry_id,
            actor_id=txn.actor_id,
            receiving_line_id=txn.receiving_line_id,
            reason=f"Compensating {failed_step} failure: {error}",
        )
    except Exception as comp_error:
        db.session.rollback()
        txn.record(STEP_COMPENSATE, OUTCOME_FAILED, str(comp_error))
        current_app.logger.error(
            "Posting line %s: %s failed (%s) and compensation failed (%s); warehouse entry %s needs manual reconciliation",
            txn.receiving_line_id, failed_step, error, comp_error, entry_id,
        )
        return PostingCompensationError(
            f"{failed_step} failed: {error}; compensating delete of warehouse entry {entry_id} "
            f"also failed: {comp_error}",
            step=failed_step,
            original_error=error,
            compensation_error=comp_error,
            transaction=txn,
        )

    txn.record(STEP_INSERT_ENTRY, OUTCOME_COMPENSATED, f"warehouse entry {entry_id} deleted")
    txn.roll_back()
    current_app.logger.warning(
        "Posting line %s: %s failed (%s); warehouse entry %s compensated",
        txn.receiving_line_id, failed_step, error, entry_id,
    )
    return PostingWriteError(
        f"{failed_step} failed: {error}; warehouse entry {entry_id} was compensated",
        step=failed_step,
        transaction=txn,
    )


# =============================================================================
# COORDINATOR
# =============================================================================

def post_receiving_line(receiving_line_id: int, actor_id: int) -> PostingResult:
    """
    Post one receiving line into the warehouse ledger.

    Args:
        receiving_line_id: ReceivingLine ID
        actor_id: User performing the posting (explicit, never read from a session)

    Returns:
        PostingResult

    Raises:
        PostingValidationError: Missing actor, product or positive quantity
        PostingLookupError: Unknown line or branch without a code
        DuplicatePostingError: Line already posted
        PostingWriteError: A write failed (inserted entry compensated)
        PostingCompensationError: A write failed and compensation failed
    """
    txn = PostingTransaction(receiving_line_id=receiving_line_id, actor_id=actor_id)

    # -- preconditions -------------------------------------------------------

    if actor_id is None or actor_id == "":
        raise _reject(txn, PostingValidationError, STEP_VALIDATE, "Actor is required")

    line = db.session.get(ReceivingLine, receiving_line_id)
    if line is None:
        raise _reject(txn, PostingLookupError, STEP_VALIDATE, f"Receiving line {receiving_line_id} not found")
    if line.product_id is None:
        raise _reject(txn, PostingValidationError, STEP_VALIDATE, "Receiving line has no product")
    if line.quantity is None or Decimal(line.quantity) <= 0:
        raise _reject(txn, PostingValidationError, STEP_VALIDATE, "Quantity must be positive")
    txn.record(STEP_VALIDATE, OUTCOME_SUCCEEDED)

    branch_code = _branch_code_for(line)
    if branch_code is None:
        raise _reject(
            txn, PostingLookupError, STEP_RESOLVE_BRANCH,
            f"Branch {line.branch_id} has no branch code",
        )
    txn.record(STEP_RESOLVE_BRANCH, OUTCOME_SUCCEEDED, branch_code)

    existing = find_posted_entry(line, branch_code)
    if existing is not None:
        raise _reject(
            txn, DuplicatePostingError, STEP_CHECK_DUPLICATE,
            f"Receiving line {line.id} already posted (warehouse entry {existing.id})",
        )
    txn.record(STEP_CHECK_DUPLICATE, OUTCOME_SUCCEEDED)

    # -- step 1: previous balance --------------------------------------------

    qty_in = Decimal(line.quantity)
    try:
        previous = get_latest_entry(line.product_id, branch_code)
    except SQLAlchemyError as e:
        db.session.rollback()
        raise _reject(txn, PostingWriteError, STEP_READ_BALANCE, f"Could not read previous balance: {e}")
    previous_balance = Decimal(previous.running_balance) if previous is not None else Decimal("0")
    new_balance = previous_balance + qty_in
    txn.record(STEP_READ_BALANCE, OUTCOME_SUCCEEDED, f"{previous_balance} -> {new_balance}")

    # -- step 2: ledger insert (nothing to compensate if it fails) -----------

    line_id = line.id
    txn.record(STEP_INSERT_ENTRY, OUTCOME_ATTEMPTED)
    try:
        entry = _insert_warehouse_entry(line, branch_code=branch_code, new_balance=new_balance, actor_id=actor_id)
    except SQLAlchemyError as e:
        db.session.rollback()
        raise _reject(txn, PostingWriteError, STEP_INSERT_ENTRY, f"Warehouse entry insert failed: {e}")
    txn.warehouse_entry_id = entry.id
    txn.record(STEP_INSERT_ENTRY, OUTCOME_SUCCEEDED, f"warehouse entry {entry.id}")

    # -- steps 3-4: order barrier and status flip ----------------------------

    order_status_changed = False
    current_step = STEP_CHECK_BARRIER
    try:
        line = db.session.get(ReceivingLine, line_id)
        order = _owning_order(line)
        if order is None:
            txn.record(STEP_CHECK_BARRIER, OUTCOME_SKIPPED, "line has no purchase order")
        else:
            txn.purchase_order_id = order.id
            all_posted, posted_count, line_count = _all_lines_posted(order)
            txn.flip_order_status = all_posted and order.status != PO_STATUS_IN_WAREHOUSE
            txn.record(STEP_CHECK_BARRIER, OUTCOME_SUCCEEDED, f"{posted_count}/{line_count} lines posted")

            if txn.flip_order_status:
                current_step = STEP_FLIP_STATUS
                txn.record(STEP_FLIP_STATUS, OUTCOME_ATTEMPTED)
                _flip_order_status(order, actor_id=actor_id, receiving_line_id=line_id)
                txn.record(STEP_FLIP_STATUS, OUTCOME_SUCCEEDED, PO_STATUS_IN_WAREHOUSE)
                order_status_changed = True
            else:
                txn.record(STEP_FLIP_STATUS, OUTCOME_SKIPPED)
    except Exception as e:
        db.session.rollback()
        txn.record(current_step, OUTCOME_FAILED, str(e))
        raise _compensate(txn, current_step, e) from e

    txn.commit()
    current_app.logger.info(
        "Posted receiving line %s as warehouse entry %s (branch=%s balance=%s order_status_changed=%s)",
        line_id, txn.warehouse_entry_id, branch_code, new_balance, order_status_changed,
    )
    return PostingResult(
        posted=True,
        order_status_changed=order_status_changed,
        warehouse_entry_id=txn.warehouse_entry_id,
        new_balance=new_balance,
        steps=list(txn.steps),
    )
