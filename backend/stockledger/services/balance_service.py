# Overview: Service-layer operations for daily balances; derives opening/closing stock from the ledger.

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import BalanceIntegrityError, StockLedgerError, ValidationError
from ..extensions import db
from ..models import DailyBalance, MovementEvent, Product
from ..models.balances import QUANTITY_FIELDS, VALUE_FIELDS, zero_balance_dict
from ..models.inventory import (
    INBOUND_KINDS,
    MOVEMENT_ADDITION,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN,
    MOVEMENT_SALE,
    MOVEMENT_TRANSFER_IN,
    MOVEMENT_TRANSFER_OUT,
)
from ..time_utils import iter_days, to_iso_date, utcnow
from .concurrency import commit_with_retry, run_with_retry
from .ledger_service import resolve_product
"""
Balance Aggregator Invariants & Semantics (authoritative)

Row invariants (every DailyBalance):
- closing = opening + added + returned + transfer_in - sold - transfer_out,
  for quantities and for values.
- opening(d) = closing(d - 1) for the same (tenant, product); a missing
  previous row means zero ONLY when the product has no earlier history.
- One row per (tenant_code, product_id, balance_date). Recompute overwrites.

Event value (cents) inside the day's fold, in order of preference:
1. unit_value_cents * quantity
2. total_value_cents
3. running average carrying value * quantity, where the running average is
   running closing value / running closing quantity (half-up to the cent);
   zero when the running quantity is not positive.
Transfer legs are emitted without a value. TRANSFER_OUT takes the running
average; an unvalued TRANSFER_IN later in the same day takes back the value
its outgoing leg removed (in-transit pool), so the two legs of one unit
cancel at product level.

ADJUSTMENT rows are counted in event_count but feed no bucket.

Ordering:
- A product's dates are always computed in ascending order, one at a time.
  Different products are independent.
- recompute() serializes on the product row (SELECT ... FOR UPDATE) and,
  before computing day N, walks forward from the earliest day needing a row
  so opening(N) never silently drops real history. A stored row computed
  before a later-recorded event of its day counts as needing a row.
- Stored rows after N are recomputed in the same pass, so a late event
  never leaves a later opening stale.
"""


# =============================================================================
# PURE FOLD
# =============================================================================

def _div_round_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounded to nearest, halves away from zero."""
    sign = -1 if (numerator < 0) != (denominator < 0) else 1
    n, d = abs(numerator), abs(denominator)
    return sign * ((n + d // 2) // d)


@dataclass
class BalanceTotals:
    opening_qty: int = 0
    added_qty: int = 0
    sold_qty: int = 0
    returned_qty: int = 0
    transfer_in_qty: int = 0
    transfer_out_qty: int = 0

    opening_value_cents: int = 0
    added_value_cents: int = 0
    sold_value_cents: int = 0
    returned_value_cents: int = 0
    transfer_in_value_cents: int = 0
    transfer_out_value_cents: int = 0

    event_count: int = 0
    last_location: Optional[tuple] = None

    @property
    def closing_qty(self) -> int:
        return (
            self.opening_qty + self.added_qty + self.returned_qty + self.transfer_in_qty
            - self.sold_qty - self.transfer_out_qty
        )

    @property
    def closing_value_cents(self) -> int:
        return (
            self.opening_value_cents + self.added_value_cents + self.returned_value_cents
            + self.transfer_in_value_cents
            - self.sold_value_cents - self.transfer_out_value_cents
        )

    def as_fields(self) -> dict:
        return {f: getattr(self, f) for f in QUANTITY_FIELDS + VALUE_FIELDS}


_BUCKETS = {
    MOVEMENT_ADDITION: ("added_qty", "added_value_cents"),
    MOVEMENT_SALE: ("sold_qty", "sold_value_cents"),
    MOVEMENT_RETURN: ("returned_qty", "returned_value_cents"),
    MOVEMENT_TRANSFER_IN: ("transfer_in_qty", "transfer_in_value_cents"),
    MOVEMENT_TRANSFER_OUT: ("transfer_out_qty", "transfer_out_value_cents"),
}


def _average_value(running_qty: int, running_value_cents: int, quantity: int) -> int:
    if running_qty <= 0 or quantity <= 0:
        return 0
    return _div_round_half_up(running_value_cents * quantity, running_qty)


def event_value_cents(event: MovementEvent, running_qty: int, running_value_cents: int) -> int:
    if event.unit_value_cents is not None:
        return event.unit_value_cents * event.quantity
    if event.total_value_cents is not None:
        return event.total_value_cents
    return _average_value(running_qty, running_value_cents, event.quantity)


def fold_movements(
    events: Iterable[MovementEvent],
    opening_qty: int = 0,
    opening_value_cents: int = 0,
) -> BalanceTotals:
    """
    Fold one day's events (already in replay order) into bucket totals.

    Pure: no database access, so the same fold serves product rows and
    location views.
    """
    totals = BalanceTotals(opening_qty=opening_qty, opening_value_cents=opening_value_cents)
    running_qty = opening_qty
    running_value = opening_value_cents
    transit_qty = 0
    transit_value = 0

    for ev in events:
        totals.event_count += 1
        if ev.kind == MOVEMENT_ADJUSTMENT:
            continue

        qty_field, value_field = _BUCKETS[ev.kind]
        unvalued = ev.unit_value_cents is None and ev.total_value_cents is None
        if ev.kind == MOVEMENT_TRANSFER_IN and unvalued and transit_qty > 0:
            # Arriving leg carries the value its outgoing leg removed
            moved = min(ev.quantity, transit_qty)
            carried = _div_round_half_up(transit_value * moved, transit_qty)
            value = carried + _average_value(running_qty, running_value, ev.quantity - moved)
            transit_qty -= moved
            transit_value -= carried
        else:
            value = event_value_cents(ev, running_qty, running_value)
            if ev.kind == MOVEMENT_TRANSFER_OUT:
                transit_qty += ev.quantity
                transit_value += value

        setattr(totals, qty_field, getattr(totals, qty_field) + ev.quantity)
        setattr(totals, value_field, getattr(totals, value_field) + value)

        if ev.kind in INBOUND_KINDS:
            running_qty += ev.quantity
            running_value += value
        else:
            running_qty -= ev.quantity
            running_value -= value

        # In transit until the matching TRANSFER_IN lands
        if ev.kind != MOVEMENT_TRANSFER_OUT:
            totals.last_location = ev.location_key()

    return totals


# =============================================================================
# ROW ACCESS
# =============================================================================

def _get_row(tenant_code: str, product_id: int, balance_date: date) -> Optional[DailyBalance]:
    return (
        db.session.query(DailyBalance)
        .filter_by(tenant_code=tenant_code, product_id=product_id, balance_date=balance_date)
        .first()
    )


def _day_events(tenant_code: str, product_id: int, balance_date: date) -> list[MovementEvent]:
    return (
        db.session.query(MovementEvent)
        .filter_by(tenant_code=tenant_code, product_id=product_id, business_date=balance_date)
        .order_by(MovementEvent.occurred_at.asc(), MovementEvent.id.asc())
        .all()
    )


def _latest_row_date(tenant_code: str, product_id: int, before: date | None = None) -> Optional[date]:
    q = db.session.query(func.max(DailyBalance.balance_date)).filter(
        DailyBalance.tenant_code == tenant_code,
        DailyBalance.product_id == product_id,
    )
    if before is not None:
        q = q.filter(DailyBalance.balance_date < before)
    return q.scalar()


def _apply_fields(row: DailyBalance, fields: dict) -> None:
    for key, value in fields.items():
        setattr(row, key, value)
    row.computed_at = utcnow()


def _upsert_row(tenant_code: str, product_id: int, balance_date: date, fields: dict) -> DailyBalance:
    """
    Insert-or-update keyed on (tenant_code, product_id, balance_date).

    A concurrent insert of the same key surfaces as IntegrityError inside the
    savepoint; the winner's row is then updated instead. Bounded attempts.
    """
    attempts = current_app.config.get("CONCURRENCY_RETRY_ATTEMPTS", 3)
    for _ in range(attempts):
        row = _get_row(tenant_code, product_id, balance_date)
        if row is not None:
            _apply_fields(row, fields)
            db.session.flush()
            return row

        row = DailyBalance(tenant_code=tenant_code, product_id=product_id, balance_date=balance_date)
        _apply_fields(row, fields)
        try:
            with db.session.begin_nested():
                db.session.add(row)
            return row
        except IntegrityError:
            current_app.logger.info(
                "Concurrent insert for balance product=%s date=%s; retrying as update",
                product_id, balance_date,
            )

    current_app.logger.error(
        "Balance upsert kept violating uniqueness: tenant=%s product=%s date=%s",
        tenant_code, product_id, balance_date,
    )
    raise BalanceIntegrityError(
        "Could not upsert daily balance",
        product_id=product_id,
        balance_date=to_iso_date(balance_date),
    )


def _compute_day(tenant_code: str, product: Product, balance_date: date) -> DailyBalance:
    """Compute and upsert one day from the stored previous day. Caller holds the product lock."""
    prior = _get_row(tenant_code, product.id, balance_date - timedelta(days=1))
    opening_qty = prior.closing_qty if prior else 0
    opening_value = prior.closing_value_cents if prior else 0

    events = _day_events(tenant_code, product.id, balance_date)
    totals = fold_movements(events, opening_qty, opening_value)

    if totals.last_location is not None:
        branch_id, counter_id, box_id = totals.last_location
    elif prior is not None:
        branch_id, counter_id, box_id = prior.branch_id, prior.counter_id, prior.box_id
    else:
        branch_id, counter_id, box_id = product.branch_id, product.counter_id, product.box_id

    fields = totals.as_fields()
    fields.update(
        branch_id=branch_id,
        counter_id=counter_id,
        box_id=box_id,
        category_id=product.category_id,
        event_count=totals.event_count,
    )
    row = _upsert_row(tenant_code, product.id, balance_date, fields)

    if row.closing_qty < 0:
        current_app.logger.warning(
            "Negative closing stock: tenant=%s product=%s date=%s closing=%s",
            tenant_code, product.id, balance_date, row.closing_qty,
        )
    return row


def _gap_start(tenant_code: str, product_id: int, balance_date: date) -> Optional[date]:
    """
    Earliest day before balance_date that must be (re)computed first.

    Candidates: the day after the latest stored row, the earliest day that
    has ledger events but no row, and the earliest stored row that is stale
    (an event for its day was recorded after it was computed). None means
    opening is already established (or the product has no history at all).
    """
    prev_day = balance_date - timedelta(days=1)
    candidates = []

    last_row_date = _latest_row_date(tenant_code, product_id, before=balance_date)
    if last_row_date is not None and last_row_date < prev_day:
        candidates.append(last_row_date + timedelta(days=1))

    rowed_dates = select(DailyBalance.balance_date).where(
        DailyBalance.tenant_code == tenant_code,
        DailyBalance.product_id == product_id,
        DailyBalance.balance_date < balance_date,
    )
    earliest_unrowed = (
        db.session.query(func.min(MovementEvent.business_date))
        .filter(
            MovementEvent.tenant_code == tenant_code,
            MovementEvent.product_id == product_id,
            MovementEvent.business_date < balance_date,
            MovementEvent.business_date.notin_(rowed_dates),
        )
        .scalar()
    )
    if earliest_unrowed is not None:
        candidates.append(earliest_unrowed)

    earliest_stale = (
        db.session.query(func.min(MovementEvent.business_date))
        .join(
            DailyBalance,
            and_(
                DailyBalance.tenant_code == MovementEvent.tenant_code,
                DailyBalance.product_id == MovementEvent.product_id,
                DailyBalance.balance_date == MovementEvent.business_date,
            ),
        )
        .filter(
            MovementEvent.tenant_code == tenant_code,
            MovementEvent.product_id == product_id,
            MovementEvent.business_date < balance_date,
            MovementEvent.recorded_at > DailyBalance.computed_at,
        )
        .scalar()
    )
    if earliest_stale is not None:
        candidates.append(earliest_stale)

    return min(candidates) if candidates else None


def _fill_gap(tenant_code: str, product: Product, balance_date: date) -> int:
    """
    Ensure every day from the gap start through balance_date - 1 has a row.

    Iterative forward walk, bounded by BALANCE_MAX_GAP_DAYS. Returns the
    number of days computed.
    """
    start = _gap_start(tenant_code, product.id, balance_date)
    if start is None:
        return 0

    prev_day = balance_date - timedelta(days=1)
    span = (prev_day - start).days + 1
    max_gap = current_app.config.get("BALANCE_MAX_GAP_DAYS", 3660)
    if span > max_gap:
        current_app.logger.error(
            "Cannot establish prior-day balance: gap of %d days exceeds %d (tenant=%s product=%s date=%s)",
            span, max_gap, tenant_code, product.id, balance_date,
        )
        raise BalanceIntegrityError(
            "Gap before requested date exceeds BALANCE_MAX_GAP_DAYS; run a range recompute",
            product_id=product.id,
            gap_start=to_iso_date(start),
            gap_days=span,
        )

    current_app.logger.info(
        "Filling %d-day balance gap for product %s (%s..%s) before %s",
        span, product.id, start, prev_day, balance_date,
    )
    for day in iter_days(start, prev_day):
        _compute_day(tenant_code, product, day)
    return span


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def recompute(tenant_code: str, product_id: int, balance_date: date) -> DailyBalance:
    """
    Recompute (upsert) the balance for one product-day.

    Idempotent: the same events always yield the same row. Stored rows after
    balance_date are recomputed too, so their openings keep chaining. Runs
    inside the caller's transaction; the caller commits.
    """
    def _op():
        product = resolve_product(tenant_code, product_id, require_active=False, lock=True)
        return refresh_product_balances_locked(tenant_code, product, balance_date)[0]

    return run_with_retry(_op)


def refresh_product_balances_locked(tenant_code: str, product: Product, from_date: date) -> list[DailyBalance]:
    """
    Recompute from from_date through the later of from_date and the latest
    stored row, keeping the chain consistent after a late event.

    The caller holds the product lock and owns retry/commit.
    """
    latest = _latest_row_date(tenant_code, product.id)
    end = max(from_date, latest) if latest is not None else from_date
    _fill_gap(tenant_code, product, from_date)
    return [_compute_day(tenant_code, product, day) for day in iter_days(from_date, end)]


def refresh_product_balances(tenant_code: str, product_id: int, from_date: date) -> list[DailyBalance]:
    def _op():
        product = resolve_product(tenant_code, product_id, require_active=False, lock=True)
        return refresh_product_balances_locked(tenant_code, product, from_date)

    return run_with_retry(_op)


@dataclass
class RangeRecomputeResult:
    tenant_code: str
    product_id: int
    from_date: date
    to_date: date
    rows: list = field(default_factory=list)
    completed_through: Optional[date] = None
    cancelled: bool = False

    @property
    def days_processed(self) -> int:
        return len(self.rows)

    def to_dict(self) -> dict:
        return {
            "tenant_code": self.tenant_code,
            "product_id": self.product_id,
            "from_date": to_iso_date(self.from_date),
            "to_date": to_iso_date(self.to_date),
            "days_processed": self.days_processed,
            "completed_through": to_iso_date(self.completed_through),
            "cancelled": self.cancelled,
            "balances": [row.to_dict() for row in self.rows],
        }


def recompute_range(
    tenant_code: str,
    product_id: int,
    from_date: date,
    to_date: date,
    *,
    cancel_event: threading.Event | None = None,
    commit: bool = False,
) -> RangeRecomputeResult:
    """
    Recompute every day in [from_date, to_date] in ascending order.

    Days are processed in chunks of BALANCE_RECOMPUTE_CHUNK_DAYS. With
    commit=True each chunk is committed, so a large backfill is resumable
    from result.completed_through + 1. cancel_event is checked between days;
    a cancelled run never leaves a half-written day. Rows stored after
    to_date are re-chained once the range completes.
    """
    if from_date > to_date:
        raise ValidationError("from_date must be on or before to_date")

    result = RangeRecomputeResult(tenant_code, product_id, from_date, to_date)
    chunk_days = max(1, current_app.config.get("BALANCE_RECOMPUTE_CHUNK_DAYS", 31))
    days = list(iter_days(from_date, to_date))

    current_app.logger.info(
        "Range recompute product=%s %s..%s (%d days, chunk=%d)",
        product_id, from_date, to_date, len(days), chunk_days,
    )

    for offset in range(0, len(days), chunk_days):
        chunk = days[offset:offset + chunk_days]
        is_first = offset == 0

        def _op(chunk=chunk, is_first=is_first):
            product = resolve_product(tenant_code, product_id, require_active=False, lock=True)
            if is_first:
                _fill_gap(tenant_code, product, from_date)
            rows = []
            for day in chunk:
                if cancel_event is not None and cancel_event.is_set():
                    break
                rows.append(_compute_day(tenant_code, product, day))
            return rows

        rows = run_with_retry(_op)
        if commit:
            commit_with_retry()

        result.rows.extend(rows)
        if rows:
            result.completed_through = rows[-1].balance_date
        if len(rows) < len(chunk):
            result.cancelled = True
            current_app.logger.info(
                "Range recompute cancelled for product %s after %s", product_id, result.completed_through
            )
            break

    if not result.cancelled:
        _refresh_after(tenant_code, product_id, to_date, commit)
    return result


def _refresh_after(tenant_code: str, product_id: int, last_date: date, commit: bool) -> None:
    """Re-chain rows already stored after last_date onto the fresh closing."""
    def _op():
        latest = _latest_row_date(tenant_code, product_id)
        if latest is None or latest <= last_date:
            return []
        product = resolve_product(tenant_code, product_id, require_active=False, lock=True)
        return refresh_product_balances_locked(tenant_code, product, last_date + timedelta(days=1))

    rows = run_with_retry(_op)
    if rows and commit:
        commit_with_retry()


@dataclass
class RecomputeAllResult:
    balance_date: date
    succeeded: list = field(default_factory=list)
    failed: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "balance_date": to_iso_date(self.balance_date),
            "succeeded": sorted(self.succeeded),
            "failed": {str(k): v for k, v in sorted(self.failed.items())},
        }


def _recompute_and_commit(tenant_code: str, product_id: int, balance_date: date) -> None:
    recompute(tenant_code, product_id, balance_date)
    commit_with_retry()


def recompute_all(tenant_code: str, balance_date: date, *, max_workers: int = 1) -> RecomputeAllResult:
    """
    Recompute one date for every active product of a tenant.

    Products are independent, so with max_workers > 1 they run on a thread
    pool, each worker in its own app context and session. A single product
    never runs on two workers. Each product commits on its own; failures are
    logged and reported per product.
    """
    product_ids = [
        pid for (pid,) in db.session.query(Product.id)
        .filter_by(tenant_code=tenant_code, is_active=True)
        .order_by(Product.id)
        .all()
    ]
    result = RecomputeAllResult(balance_date=balance_date)

    if max_workers <= 1:
        for pid in product_ids:
            try:
                _recompute_and_commit(tenant_code, pid, balance_date)
                result.succeeded.append(pid)
            except (StockLedgerError, SQLAlchemyError) as exc:
                db.session.rollback()
                current_app.logger.exception("Balance recompute failed for product %s", pid)
                result.failed[pid] = str(exc)
        return result

    app = current_app._get_current_object()

    def _worker(pid: int):
        with app.app_context():
            try:
                _recompute_and_commit(tenant_code, pid, balance_date)
                return pid, None
            except (StockLedgerError, SQLAlchemyError) as exc:
                db.session.rollback()
                app.logger.exception("Balance recompute failed for product %s", pid)
                return pid, str(exc)
            finally:
                db.session.remove()

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        for pid, error in pool.map(_worker, product_ids):
            if error is None:
                result.succeeded.append(pid)
            else:
                result.failed[pid] = error
    return result


# =============================================================================
# READ PATHS (never recompute)
# =============================================================================

def get_balance(tenant_code: str, product_id: int, balance_date: date) -> dict:
    """Stored row, or a synthesized all-zero row when never computed."""
    resolve_product(tenant_code, product_id, require_active=False)
    row = _get_row(tenant_code, product_id, balance_date)
    if row is None:
        return zero_balance_dict(tenant_code, product_id, balance_date)
    return row.to_dict()


def list_balances(
    tenant_code: str,
    *,
    product_id: int | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    branch_id: int | None = None,
    counter_id: int | None = None,
    category_id: int | None = None,
    limit: int | None = None,
) -> list[DailyBalance]:
    q = db.session.query(DailyBalance).filter(DailyBalance.tenant_code == tenant_code)
    if product_id is not None:
        q = q.filter(DailyBalance.product_id == product_id)
    if from_date is not None:
        q = q.filter(DailyBalance.balance_date >= from_date)
    if to_date is not None:
        q = q.filter(DailyBalance.balance_date <= to_date)
    if branch_id is not None:
        q = q.filter(DailyBalance.branch_id == branch_id)
    if counter_id is not None:
        q = q.filter(DailyBalance.counter_id == counter_id)
    if category_id is not None:
        q = q.filter(DailyBalance.category_id == category_id)
    q = q.order_by(DailyBalance.balance_date.asc(), DailyBalance.product_id.asc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def current_stock(tenant_code: str, product_id: int) -> dict:
    """Closing stock from the latest computed day."""
    resolve_product(tenant_code, product_id, require_active=False)
    row = (
        db.session.query(DailyBalance)
        .filter_by(tenant_code=tenant_code, product_id=product_id)
        .order_by(DailyBalance.balance_date.desc())
        .first()
    )
    return {
        "product_id": product_id,
        "as_of_date": to_iso_date(row.balance_date) if row else None,
        "closing_qty": row.closing_qty if row else 0,
        "closing_value_cents": row.closing_value_cents if row else 0,
    }


_ROLLUP_GROUPS = {
    "branch": ("branch_id",),
    "counter": ("branch_id", "counter_id"),
    "category": ("category_id",),
}


def rollup_balances(tenant_code: str, balance_date: date, group_by: str) -> list[dict]:
    """Branch / counter / category totals: pure group-by over product rows."""
    keys = _ROLLUP_GROUPS.get(group_by)
    if keys is None:
        raise ValidationError(
            f"group_by must be one of: {', '.join(sorted(_ROLLUP_GROUPS))}"
        )

    group_cols = [getattr(DailyBalance, k) for k in keys]
    sum_fields = QUANTITY_FIELDS + VALUE_FIELDS
    rows = (
        db.session.query(
            *group_cols,
            func.count(DailyBalance.id).label("product_count"),
            *[func.coalesce(func.sum(getattr(DailyBalance, f)), 0).label(f) for f in sum_fields],
        )
        .filter(DailyBalance.tenant_code == tenant_code, DailyBalance.balance_date == balance_date)
        .group_by(*group_cols)
        .order_by(*group_cols)
        .all()
    )

    out = []
    for row in rows:
        item = {k: getattr(row, k) for k in keys}
        item["balance_date"] = to_iso_date(balance_date)
        item["product_count"] = int(row.product_count)
        for f in sum_fields:
            item[f] = int(getattr(row, f) or 0)
        out.append(item)
    return out


def location_activity(
    tenant_code: str,
    balance_date: date,
    branch_id: int,
    counter_id: int | None = None,
    box_id: int | None = None,
) -> dict:
    """
    One location's movement activity for a day, straight from the ledger.

    A completed transfer shows as transfer_out at its source and transfer_in
    at its destination.
    """
    q = db.session.query(MovementEvent).filter(
        MovementEvent.tenant_code == tenant_code,
        MovementEvent.business_date == balance_date,
        MovementEvent.branch_id == branch_id,
    )
    if counter_id is not None:
        q = q.filter(MovementEvent.counter_id == counter_id)
    if box_id is not None:
        q = q.filter(MovementEvent.box_id == box_id)
    events = q.order_by(MovementEvent.occurred_at.asc(), MovementEvent.id.asc()).all()

    totals = fold_movements(events)
    return {
        "balance_date": to_iso_date(balance_date),
        "branch_id": branch_id,
        "counter_id": counter_id,
        "box_id": box_id,
        "added_qty": totals.added_qty,
        "sold_qty": totals.sold_qty,
        "returned_qty": totals.returned_qty,
        "transfer_in_qty": totals.transfer_in_qty,
        "transfer_out_qty": totals.transfer_out_qty,
        "net_qty": totals.closing_qty,
        "event_count": totals.event_count,
        "product_ids": sorted({ev.product_id for ev in events}),
    }


def verify_chain(tenant_code: str, product_id: int) -> list[dict]:
    """
    Check reconciliation and chaining over the stored rows of a product.

    Returns a list of violations (empty when consistent).
    """
    rows = (
        db.session.query(DailyBalance)
        .filter_by(tenant_code=tenant_code, product_id=product_id)
        .order_by(DailyBalance.balance_date.asc())
        .all()
    )
    violations = []
    previous = None
    for row in rows:
        expected_qty = (
            row.opening_qty + row.added_qty + row.returned_qty + row.transfer_in_qty
            - row.sold_qty - row.transfer_out_qty
        )
        if expected_qty != row.closing_qty:
            violations.append({
                "balance_date": to_iso_date(row.balance_date),
                "rule": "reconciliation_qty",
                "expected": expected_qty,
                "actual": row.closing_qty,
            })
        expected_value = (
            row.opening_value_cents + row.added_value_cents + row.returned_value_cents
            + row.transfer_in_value_cents
            - row.sold_value_cents - row.transfer_out_value_cents
        )
        if expected_value != row.closing_value_cents:
            violations.append({
                "balance_date": to_iso_date(row.balance_date),
                "rule": "reconciliation_value",
                "expected": expected_value,
                "actual": row.closing_value_cents,
            })
        if previous is not None:
            if row.balance_date - previous.balance_date != timedelta(days=1):
                violations.append({
                    "balance_date": to_iso_date(row.balance_date),
                    "rule": "gap",
                    "expected": to_iso_date(previous.balance_date + timedelta(days=1)),
                    "actual": to_iso_date(row.balance_date),
                })
            elif (row.opening_qty, row.opening_value_cents) != (previous.closing_qty, previous.closing_value_cents):
                violations.append({
                    "balance_date": to_iso_date(row.balance_date),
                    "rule": "chaining",
                    "expected": previous.closing_qty,
                    "actual": row.opening_qty,
                })
        previous = row
    return violations
