# Overview: Service-layer operations for the movement ledger; append-only stock events.

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from ..errors import InvalidKind, MovementNotFound, UnknownProduct, ValidationError
from ..extensions import db
from ..models import MovementEvent, Product, StockTransfer
from ..models.documents import TRANSFER_STATUS_COMPLETED
from ..models.inventory import MOVEMENT_KINDS
from ..time_utils import normalize_datetime
from ..validation import Location, coerce_cents, optional_str
from .concurrency import lock_for_update
"""
Movement Ledger Invariants (authoritative)

- Append-only: rows are never updated or deleted. Corrections are new
  compensating events.
- Structural validation only (product resolvable, kind known, quantity > 0).
  The ledger never checks stock sufficiency; balances are derived later.
- Appending does NOT trigger aggregation. balance_service is invoked
  explicitly (or by the caller) so bulk backfills can append many rows and
  recompute once.
- occurred_at is business time; business_date is its date; recorded_at is
  system time.
- Rows are written inside the caller's DB transaction (flush, not commit);
  the HTTP boundary commits before responding.
"""


_KIND_LOOKUP = {k.replace("_", ""): k for k in MOVEMENT_KINDS}


@dataclass
class MovementDraft:
    """Input for append_movement(); quantity is a positive magnitude."""
    product_id: int
    kind: str
    quantity: int = 1
    unit_value_cents: Optional[int] = None
    total_value_cents: Optional[int] = None
    location: Optional[Location] = None
    occurred_at: Optional[datetime | date | str] = None
    reference_number: Optional[str] = None
    reference_kind: Optional[str] = None
    tag_label: Optional[str] = None
    remarks: Optional[str] = None
    actor: Optional[str] = None


@dataclass
class BulkAppendResult:
    events: list[MovementEvent] = field(default_factory=list)
    # product_id -> earliest business date appended for it
    earliest_dates: dict[int, date] = field(default_factory=dict)


def normalize_kind(kind) -> str:
    """
    Map loose kind spellings to the canonical constant.

    "TransferOut", "transfer_out" and "TRANSFER_OUT" are the same kind.
    """
    if not isinstance(kind, str) or not kind.strip():
        raise InvalidKind("Movement kind is required")
    key = re.sub(r"[^A-Za-z]", "", kind).upper()
    canonical = _KIND_LOOKUP.get(key)
    if canonical is None:
        raise InvalidKind(f"Unknown movement kind: {kind}", allowed=list(MOVEMENT_KINDS))
    return canonical


def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidKind("Quantity must be a positive integer")
    if quantity <= 0:
        raise InvalidKind("Quantity must be positive; direction is implied by kind")
    return quantity


def resolve_product(
    tenant_code: str,
    product_id: int,
    *,
    require_active: bool = True,
    lock: bool = False,
) -> Product:
    """
    Explicit product lookup scoped to the tenant.

    Fails loudly with UnknownProduct instead of handing back None.
    """
    query = db.session.query(Product).filter_by(id=product_id, tenant_code=tenant_code)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise UnknownProduct(f"Product {product_id} not found", product_id=product_id)
    if require_active and not product.is_active:
        raise UnknownProduct(f"Product {product_id} is inactive", product_id=product_id)
    return product


def current_location(tenant_code: str, product: Product) -> Location:
    """
    Last known location: destination of the latest completed transfer,
    else the product's initial placement.
    """
    latest = (
        db.session.query(StockTransfer)
        .filter_by(
            tenant_code=tenant_code,
            product_id=product.id,
            status=TRANSFER_STATUS_COMPLETED,
        )
        .order_by(StockTransfer.completed_at.desc(), StockTransfer.id.desc())
        .first()
    )
    if latest is not None:
        return Location(
            branch_id=latest.destination_branch_id,
            counter_id=latest.destination_counter_id,
            box_id=latest.destination_box_id,
        )
    return Location(branch_id=product.branch_id, counter_id=product.counter_id, box_id=product.box_id)


def _derive_values(quantity: int, unit_value_cents, total_value_cents) -> tuple[Optional[int], Optional[int]]:
    unit = coerce_cents("unit_value_cents", unit_value_cents)
    total = coerce_cents("total_value_cents", total_value_cents)
    if unit is not None and total is None:
        total = unit * quantity
    return unit, total


def append_movement(tenant_code: str, draft: MovementDraft) -> MovementEvent:
    """
    Append one stock movement.

    Raises:
        UnknownProduct: product not resolvable (or inactive) for the tenant
        InvalidKind: unknown kind or quantity <= 0
        ValidationError: malformed values / datetime
    """
    if not tenant_code:
        raise ValidationError("tenant_code is required")

    kind = normalize_kind(draft.kind)
    quantity = _validate_quantity(draft.quantity)
    product = resolve_product(tenant_code, draft.product_id)

    try:
        occurred_at = normalize_datetime(draft.occurred_at)
    except ValueError:
        raise ValidationError("occurred_at must be an ISO-8601 datetime")

    location = draft.location or current_location(tenant_code, product)
    unit, total = _derive_values(quantity, draft.unit_value_cents, draft.total_value_cents)

    ev = MovementEvent(
        tenant_code=tenant_code,
        product_id=product.id,
        tag_label=optional_str("tag_label", draft.tag_label, 50),
        kind=kind,
        quantity=quantity,
        unit_value_cents=unit,
        total_value_cents=total,
        branch_id=location.branch_id,
        counter_id=location.counter_id,
        box_id=location.box_id,
        category_id=product.category_id,
        reference_number=optional_str("reference_number", draft.reference_number, 100),
        reference_kind=optional_str("reference_kind", draft.reference_kind, 50),
        remarks=optional_str("remarks", draft.remarks, 500),
        actor=optional_str("actor", draft.actor, 100),
        occurred_at=occurred_at,
        business_date=occurred_at.date(),
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def append_movements(tenant_code: str, drafts: list[MovementDraft]) -> BulkAppendResult:
    """
    Append a batch in ascending business-time order (input order breaks ties).

    All-or-nothing: the first failing draft raises and the caller rolls back.
    The result carries the earliest business date per product so the caller
    can refresh balances oldest-first.
    """
    if not drafts:
        raise ValidationError("At least one movement is required")

    keyed = []
    for index, draft in enumerate(drafts):
        try:
            occurred_at = normalize_datetime(draft.occurred_at)
        except ValueError:
            raise ValidationError(f"movements[{index}].occurred_at must be an ISO-8601 datetime")
        draft.occurred_at = occurred_at
        keyed.append((occurred_at, index, draft))
    keyed.sort(key=lambda item: (item[0], item[1]))

    result = BulkAppendResult()
    for _, _, draft in keyed:
        ev = append_movement(tenant_code, draft)
        result.events.append(ev)
        earliest = result.earliest_dates.get(ev.product_id)
        if earliest is None or ev.business_date < earliest:
            result.earliest_dates[ev.product_id] = ev.business_date
    return result


def get_movement(tenant_code: str, movement_id: int) -> MovementEvent:
    ev = db.session.query(MovementEvent).filter_by(id=movement_id, tenant_code=tenant_code).first()
    if ev is None:
        raise MovementNotFound(f"Movement {movement_id} not found")
    return ev


def movements_query(
    tenant_code: str,
    *,
    product_id: int | None = None,
    branch_id: int | None = None,
    counter_id: int | None = None,
    box_id: int | None = None,
    kind: str | None = None,
    reference_number: str | None = None,
    reference_kind: str | None = None,
    tag_label: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
):
    """Filtered ledger query ordered for deterministic replay."""
    q = db.session.query(MovementEvent).filter(MovementEvent.tenant_code == tenant_code)
    if product_id is not None:
        q = q.filter(MovementEvent.product_id == product_id)
    if branch_id is not None:
        q = q.filter(MovementEvent.branch_id == branch_id)
    if counter_id is not None:
        q = q.filter(MovementEvent.counter_id == counter_id)
    if box_id is not None:
        q = q.filter(MovementEvent.box_id == box_id)
    if kind:
        q = q.filter(MovementEvent.kind == normalize_kind(kind))
    if reference_number:
        q = q.filter(MovementEvent.reference_number == reference_number)
    if reference_kind:
        q = q.filter(MovementEvent.reference_kind == reference_kind)
    if tag_label:
        q = q.filter(MovementEvent.tag_label == tag_label)
    # Date range is inclusive on both ends
    if from_date is not None:
        q = q.filter(MovementEvent.business_date >= from_date)
    if to_date is not None:
        q = q.filter(MovementEvent.business_date <= to_date)
    return q.order_by(
        MovementEvent.business_date.asc(),
        MovementEvent.recorded_at.asc(),
        MovementEvent.id.asc(),
    )


def list_movements(tenant_code: str, *, limit: int | None = None, offset: int = 0, **filters) -> list[MovementEvent]:
    q = movements_query(tenant_code, **filters)
    if offset:
        q = q.offset(offset)
    if limit is not None:
        q = q.limit(limit)
    return q.all()
