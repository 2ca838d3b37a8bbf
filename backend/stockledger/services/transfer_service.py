# Overview: Service-layer operations for transfers; state machine that moves one unit between locations.

"""
Location-to-location transfer service.

LIFECYCLE:
1. PENDING: Transfer requested for one unit; blocks other transfers of it
2. IN_TRANSIT: Approved; movement reserved, no ledger effect yet
3. COMPLETED: Received at destination (writes TRANSFER_OUT + TRANSFER_IN)
4. REJECTED: Refused from PENDING or IN_TRANSIT; reason required
5. CANCELLED: Withdrawn from PENDING or IN_TRANSIT

Completion is the only transition that touches the ledger, so a rejected or
cancelled transfer leaves zero residual effect on stock.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..errors import (
    ConflictingTransferExists,
    InvalidLocation,
    InvalidStateTransition,
    LocationMismatch,
    MissingRejectionReason,
    StockLedgerError,
    TransferNotFound,
    ValidationError,
)
from ..extensions import db
from ..models import StockTransfer
from ..models.documents import (
    OPEN_TRANSFER_STATUSES,
    TRANSFER_STATUS_CANCELLED,
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_IN_TRANSIT,
    TRANSFER_STATUS_PENDING,
    TRANSFER_STATUS_REJECTED,
    TRANSFER_TYPE_BOX,
    TRANSFER_TYPE_BRANCH,
    TRANSFER_TYPE_COUNTER,
)
from ..models.inventory import MOVEMENT_TRANSFER_IN, MOVEMENT_TRANSFER_OUT
from ..time_utils import utcnow
from ..validation import Location, optional_str, parse_datetime_field
from .balance_service import refresh_product_balances_locked
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_transfer_number
from .ledger_service import MovementDraft, append_movement, current_location, resolve_product


TRANSFER_REFERENCE_KIND = "Transfer"


@dataclass
class TransferDraft:
    """One requested transfer (used directly and by bulk creation)."""
    product_id: int
    source: Location
    destination: Location
    reason: Optional[str] = None
    remarks: Optional[str] = None
    tag_label: Optional[str] = None


def determine_transfer_type(source: Location, destination: Location) -> str:
    """
    Classify by the widest level that changes: branch, then counter, then box.

    There is no catch-all "mixed" type. A transfer that changes none of the
    three is not a transfer and raises InvalidLocation.
    """
    if source.branch_id != destination.branch_id:
        return TRANSFER_TYPE_BRANCH
    if source.counter_id != destination.counter_id:
        return TRANSFER_TYPE_COUNTER
    if source.box_id != destination.box_id:
        return TRANSFER_TYPE_BOX
    raise InvalidLocation("Source and destination locations are the same")


def _open_transfer(tenant_code: str, product_id: int) -> Optional[StockTransfer]:
    return (
        db.session.query(StockTransfer)
        .filter(
            StockTransfer.tenant_code == tenant_code,
            StockTransfer.product_id == product_id,
            StockTransfer.status.in_(OPEN_TRANSFER_STATUSES),
        )
        .first()
    )


def _load_transfer(tenant_code: str, transfer_id: int, *, lock: bool = False) -> StockTransfer:
    query = db.session.query(StockTransfer).filter_by(id=transfer_id, tenant_code=tenant_code)
    if lock:
        query = lock_for_update(query)
    transfer = query.first()
    if transfer is None:
        raise TransferNotFound(f"Transfer {transfer_id} not found", transfer_id=transfer_id)
    return transfer


def _require_status(transfer: StockTransfer, allowed: tuple, action: str) -> None:
    if transfer.status not in allowed:
        raise InvalidStateTransition(
            f"Cannot {action} transfer in {transfer.status} status",
            transfer_id=transfer.id,
            status=transfer.status,
        )


def _create(tenant_code: str, draft: TransferDraft, actor: Optional[str]) -> StockTransfer:
    if draft.source is None or draft.destination is None:
        raise InvalidLocation("Source and destination locations are required")
    transfer_type = determine_transfer_type(draft.source, draft.destination)

    # Lock the product so concurrent creates for it serialize
    product = resolve_product(tenant_code, draft.product_id, lock=True)

    existing = _open_transfer(tenant_code, product.id)
    if existing is not None:
        raise ConflictingTransferExists(
            f"Product {product.id} already has an open transfer",
            product_id=product.id,
            transfer_id=existing.id,
            transfer_number=existing.transfer_number,
        )

    actual = current_location(tenant_code, product)
    if actual != draft.source:
        raise LocationMismatch(
            f"Product {product.id} is not at the declared source location",
            product_id=product.id,
            declared=draft.source.to_dict(),
            actual=actual.to_dict(),
        )

    now = utcnow()
    transfer = StockTransfer(
        tenant_code=tenant_code,
        transfer_number=next_transfer_number(tenant_code, now.date()),
        product_id=product.id,
        tag_label=optional_str("tag_label", draft.tag_label, 50),
        transfer_type=transfer_type,
        source_branch_id=draft.source.branch_id,
        source_counter_id=draft.source.counter_id,
        source_box_id=draft.source.box_id,
        destination_branch_id=draft.destination.branch_id,
        destination_counter_id=draft.destination.counter_id,
        destination_box_id=draft.destination.box_id,
        status=TRANSFER_STATUS_PENDING,
        reason=optional_str("reason", draft.reason, 500),
        remarks=optional_str("remarks", draft.remarks, 500),
        created_by=optional_str("actor", actor, 100),
        created_at=now,
    )

    try:
        with db.session.begin_nested():
            db.session.add(transfer)
    except IntegrityError:
        # Only the open-transfer index maps to a conflict
        winner = _open_transfer(tenant_code, product.id)
        if winner is None:
            raise
        raise ConflictingTransferExists(
            f"Product {product.id} already has an open transfer",
            product_id=product.id,
            transfer_id=winner.id,
            transfer_number=winner.transfer_number,
        )

    current_app.logger.info(
        "Transfer %s created for product %s (%s)", transfer.transfer_number, product.id, transfer_type
    )
    return transfer


def create_transfer(tenant_code: str, draft: TransferDraft, *, actor: str | None = None) -> StockTransfer:
    """
    Create a transfer request (status: PENDING).

    Raises:
        UnknownProduct: product missing or inactive
        InvalidLocation: malformed locations, or source == destination
        LocationMismatch: declared source is not the product's current location
        ConflictingTransferExists: product already has an open transfer
    """
    def _op():
        return _create(tenant_code, draft, actor)

    return run_with_retry(_op)


def create_bulk_transfers(
    tenant_code: str,
    drafts: list[TransferDraft],
    *,
    common_reason: str | None = None,
    common_remarks: str | None = None,
    actor: str | None = None,
) -> dict:
    """
    Create many transfers; each item succeeds or fails on its own.

    Returns {"created": [StockTransfer], "errors": [{"index", "product_id", ...}]}.
    """
    if not drafts:
        raise ValidationError("At least one transfer is required")

    def _op():
        created = []
        errors = []
        for index, draft in enumerate(drafts):
            if draft.reason is None:
                draft.reason = common_reason
            if draft.remarks is None:
                draft.remarks = common_remarks
            try:
                with db.session.begin_nested():
                    created.append(_create(tenant_code, draft, actor))
            except StockLedgerError as exc:
                errors.append({"index": index, "product_id": draft.product_id, **exc.to_dict()})
        return {"created": created, "errors": errors}

    result = run_with_retry(_op)
    current_app.logger.info(
        "Bulk transfer: %d created, %d failed", len(result["created"]), len(result["errors"])
    )
    return result


def approve_transfer(
    tenant_code: str,
    transfer_id: int,
    *,
    actor: str | None = None,
    remarks: str | None = None,
) -> StockTransfer:
    """PENDING -> IN_TRANSIT. No ledger effect."""
    def _op():
        transfer = _load_transfer(tenant_code, transfer_id, lock=True)
        _require_status(transfer, (TRANSFER_STATUS_PENDING,), "approve")

        transfer.status = TRANSFER_STATUS_IN_TRANSIT
        transfer.approved_by = optional_str("actor", actor, 100)
        transfer.approved_at = utcnow()
        if remarks:
            transfer.remarks = optional_str("remarks", remarks, 500)
        db.session.flush()

        current_app.logger.info("Transfer %s approved by %s", transfer.transfer_number, actor)
        return transfer

    return run_with_retry(_op)


def reject_transfer(
    tenant_code: str,
    transfer_id: int,
    reason: str | None,
    *,
    actor: str | None = None,
    remarks: str | None = None,
) -> StockTransfer:
    """PENDING|IN_TRANSIT -> REJECTED. Requires a reason; no ledger effect."""
    rejection_reason = optional_str("rejection_reason", reason, 500)
    if not rejection_reason:
        raise MissingRejectionReason("Rejection reason is required")

    def _op():
        transfer = _load_transfer(tenant_code, transfer_id, lock=True)
        _require_status(transfer, OPEN_TRANSFER_STATUSES, "reject")

        transfer.status = TRANSFER_STATUS_REJECTED
        transfer.rejection_reason = rejection_reason
        transfer.rejected_by = optional_str("actor", actor, 100)
        transfer.rejected_at = utcnow()
        if remarks:
            transfer.remarks = optional_str("remarks", remarks, 500)
        db.session.flush()

        current_app.logger.info("Transfer %s rejected: %s", transfer.transfer_number, rejection_reason)
        return transfer

    return run_with_retry(_op)


def cancel_transfer(
    tenant_code: str,
    transfer_id: int,
    *,
    reason: str | None = None,
    actor: str | None = None,
) -> StockTransfer:
    """PENDING|IN_TRANSIT -> CANCELLED. Releases the product's open-transfer slot."""
    def _op():
        transfer = _load_transfer(tenant_code, transfer_id, lock=True)
        _require_status(transfer, OPEN_TRANSFER_STATUSES, "cancel")

        transfer.status = TRANSFER_STATUS_CANCELLED
        transfer.cancellation_reason = optional_str("reason", reason, 500)
        transfer.cancelled_by = optional_str("actor", actor, 100)
        transfer.cancelled_at = utcnow()
        db.session.flush()

        current_app.logger.info("Transfer %s cancelled", transfer.transfer_number)
        return transfer

    return run_with_retry(_op)


def complete_transfer(
    tenant_code: str,
    transfer_id: int,
    *,
    actor: str | None = None,
    remarks: str | None = None,
    occurred_at=None,
) -> StockTransfer:
    """
    IN_TRANSIT -> COMPLETED.

    The status change is flushed first so a concurrent transition loses on
    version_id before any ledger row exists. Then exactly two events are
    appended (TRANSFER_OUT at source, TRANSFER_IN at destination, quantity 1,
    same reference number) and the product's balances are refreshed from the
    business date onward. All in the caller's transaction.
    """
    business_time = parse_datetime_field("occurred_at", occurred_at)

    def _op():
        transfer = _load_transfer(tenant_code, transfer_id, lock=True)
        _require_status(transfer, (TRANSFER_STATUS_IN_TRANSIT,), "complete")
        product = resolve_product(tenant_code, transfer.product_id, lock=True)

        now = utcnow()
        when = business_time or now
        transfer.status = TRANSFER_STATUS_COMPLETED
        transfer.completed_by = optional_str("actor", actor, 100)
        transfer.completed_at = now
        if remarks:
            transfer.remarks = optional_str("remarks", remarks, 500)
        db.session.flush()

        source = Location(transfer.source_branch_id, transfer.source_counter_id, transfer.source_box_id)
        destination = Location(
            transfer.destination_branch_id, transfer.destination_counter_id, transfer.destination_box_id
        )
        for kind, location in ((MOVEMENT_TRANSFER_OUT, source), (MOVEMENT_TRANSFER_IN, destination)):
            append_movement(
                tenant_code,
                MovementDraft(
                    product_id=product.id,
                    kind=kind,
                    quantity=1,
                    location=location,
                    occurred_at=when,
                    reference_number=transfer.transfer_number,
                    reference_kind=TRANSFER_REFERENCE_KIND,
                    tag_label=transfer.tag_label,
                    remarks=transfer.reason,
                    actor=actor,
                ),
            )

        refresh_product_balances_locked(tenant_code, product, when.date())

        current_app.logger.info(
            "Transfer %s completed: product %s moved to branch %s counter %s",
            transfer.transfer_number, product.id, destination.branch_id, destination.counter_id,
        )
        return transfer

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_transfer(tenant_code: str, transfer_id: int) -> StockTransfer:
    return _load_transfer(tenant_code, transfer_id)


def _created_between(query, from_date: date | None, to_date: date | None):
    if from_date is not None:
        query = query.filter(StockTransfer.created_at >= datetime(from_date.year, from_date.month, from_date.day))
    if to_date is not None:
        end = to_date + timedelta(days=1)
        query = query.filter(StockTransfer.created_at < datetime(end.year, end.month, end.day))
    return query


def list_transfers(
    tenant_code: str,
    *,
    status: str | None = None,
    product_id: int | None = None,
    branch_id: int | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[StockTransfer]:
    """Newest first. branch_id matches either end of the transfer."""
    q = db.session.query(StockTransfer).filter(StockTransfer.tenant_code == tenant_code)
    if status:
        q = q.filter(StockTransfer.status == status.upper())
    if product_id is not None:
        q = q.filter(StockTransfer.product_id == product_id)
    if branch_id is not None:
        q = q.filter(
            or_(StockTransfer.source_branch_id == branch_id, StockTransfer.destination_branch_id == branch_id)
        )
    q = _created_between(q, from_date, to_date)
    q = q.order_by(StockTransfer.created_at.desc(), StockTransfer.id.desc())
    if offset:
        q = q.offset(offset)
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def pending_by_location(tenant_code: str, branch_id: int, counter_id: int | None = None) -> dict:
    """Open transfers leaving and arriving at a branch (optionally one counter)."""
    base = db.session.query(StockTransfer).filter(
        StockTransfer.tenant_code == tenant_code,
        StockTransfer.status.in_(OPEN_TRANSFER_STATUSES),
    )
    outgoing = base.filter(StockTransfer.source_branch_id == branch_id)
    incoming = base.filter(StockTransfer.destination_branch_id == branch_id)
    if counter_id is not None:
        outgoing = outgoing.filter(StockTransfer.source_counter_id == counter_id)
        incoming = incoming.filter(StockTransfer.destination_counter_id == counter_id)
    return {
        "outgoing": outgoing.order_by(StockTransfer.id.asc()).all(),
        "incoming": incoming.order_by(StockTransfer.id.asc()).all(),
    }


def product_transfer_history(tenant_code: str, product_id: int) -> list[StockTransfer]:
    resolve_product(tenant_code, product_id, require_active=False)
    return (
        db.session.query(StockTransfer)
        .filter_by(tenant_code=tenant_code, product_id=product_id)
        .order_by(StockTransfer.created_at.asc(), StockTransfer.id.asc())
        .all()
    )


def transfer_summary(tenant_code: str, *, from_date: date | None = None, to_date: date | None = None) -> dict:
    """Counts per status and type, plus outgoing/incoming per branch."""
    def _grouped(column):
        q = db.session.query(column, func.count(StockTransfer.id)).filter(StockTransfer.tenant_code == tenant_code)
        q = _created_between(q, from_date, to_date)
        return q.group_by(column).all()

    by_status = {status: count for status, count in _grouped(StockTransfer.status)}
    by_type = {transfer_type: count for transfer_type, count in _grouped(StockTransfer.transfer_type)}

    by_branch: dict[int, dict] = {}
    for branch, count in _grouped(StockTransfer.source_branch_id):
        by_branch.setdefault(branch, {"outgoing": 0, "incoming": 0})["outgoing"] = count
    for branch, count in _grouped(StockTransfer.destination_branch_id):
        by_branch.setdefault(branch, {"outgoing": 0, "incoming": 0})["incoming"] = count

    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_type": by_type,
        "by_branch": [{"branch_id": b, **counts} for b, counts in sorted(by_branch.items())],
    }
