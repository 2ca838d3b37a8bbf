# Overview: Service-layer operations for stock verification; scan reconciliation per location.

from __future__ import annotations

from datetime import date
from typing import Iterable, Optional

from flask import current_app

from ..errors import InvalidStateTransition, VerificationError
from ..extensions import db
from ..models import Product, VerificationLine, VerificationSession
from ..models.documents import (
    LINE_STATUS_MATCHED,
    LINE_STATUS_MISSING,
    LINE_STATUS_UNMATCHED,
    VERIFICATION_STATUS_CANCELLED,
    VERIFICATION_STATUS_COMPLETED,
    VERIFICATION_STATUS_IN_PROGRESS,
)
from ..time_utils import utcnow
from ..validation import build_location, coerce_int, optional_str
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import current_location


def _load_session(tenant_code: str, session_id: int, *, lock: bool = False) -> VerificationSession:
    query = db.session.query(VerificationSession).filter_by(id=session_id, tenant_code=tenant_code)
    if lock:
        query = lock_for_update(query)
    session = query.first()
    if session is None:
        raise VerificationError(f"Verification session {session_id} not found", session_id=session_id)
    return session


def _require_in_progress(session: VerificationSession, action: str) -> None:
    if session.status != VERIFICATION_STATUS_IN_PROGRESS:
        raise InvalidStateTransition(
            f"Cannot {action} verification session in {session.status} status",
            session_id=session.id,
            status=session.status,
        )


def _is_expected(tenant_code: str, session: VerificationSession, product: Product) -> bool:
    if not product.is_active or product.category_id != session.category_id:
        return False
    location = current_location(tenant_code, product)
    return location.branch_id == session.branch_id and location.counter_id == session.counter_id


def expected_products(tenant_code: str, session: VerificationSession) -> list[Product]:
    """Active products of the session's category currently at its branch/counter."""
    candidates = (
        db.session.query(Product)
        .filter_by(tenant_code=tenant_code, category_id=session.category_id, is_active=True)
        .order_by(Product.id)
        .all()
    )
    return [p for p in candidates if _is_expected(tenant_code, session, p)]


def create_session(
    tenant_code: str,
    *,
    session_name: str,
    branch_id,
    counter_id,
    category_id,
    verification_date: Optional[date] = None,
    description: str | None = None,
    actor: str | None = None,
) -> VerificationSession:
    name = optional_str("session_name", session_name, 100)
    if not name:
        raise VerificationError("session_name is required")
    location = build_location(branch_id, counter_id)

    session = VerificationSession(
        tenant_code=tenant_code,
        session_name=name,
        description=optional_str("description", description, 500),
        verification_date=verification_date or utcnow().date(),
        branch_id=location.branch_id,
        counter_id=location.counter_id,
        category_id=coerce_int("category_id", category_id),
        status=VERIFICATION_STATUS_IN_PROGRESS,
        verified_by=optional_str("actor", actor, 100),
        created_at=utcnow(),
    )
    db.session.add(session)
    db.session.flush()
    current_app.logger.info("Verification session %s started (%s)", session.id, name)
    return session


def _tally(session: VerificationSession, status: str, value_cents: int) -> None:
    if status == LINE_STATUS_MATCHED:
        session.matched_count += 1
        session.matched_value_cents += value_cents
    elif status == LINE_STATUS_UNMATCHED:
        session.unmatched_count += 1
        session.unmatched_value_cents += value_cents
    else:
        session.missing_count += 1
        session.missing_value_cents += value_cents


def submit_scans(tenant_code: str, session_id: int, item_codes: Iterable[str]) -> list[VerificationLine]:
    """
    Record scanned item codes.

    MATCHED when the product is expected at the session's location, UNMATCHED
    otherwise (unknown code, other category, other location). Re-scanning a
    code already in the session is a no-op that returns the existing line.
    """
    codes = [optional_str("item_code", c, 64) for c in (item_codes or [])]
    codes = [c for c in codes if c]
    if not codes:
        raise VerificationError("At least one item code is required")

    def _op():
        session = _load_session(tenant_code, session_id, lock=True)
        _require_in_progress(session, "scan into")

        existing = {line.item_code: line for line in session.lines}
        lines = []
        for code in codes:
            if code in existing:
                lines.append(existing[code])
                continue

            product = (
                db.session.query(Product)
                .filter_by(tenant_code=tenant_code, item_code=code)
                .first()
            )
            matched = product is not None and _is_expected(tenant_code, session, product)
            status = LINE_STATUS_MATCHED if matched else LINE_STATUS_UNMATCHED
            value = (product.mrp_cents or 0) if product is not None else 0

            line = VerificationLine(
                session=session,
                item_code=code,
                product_id=product.id if product is not None else None,
                line_status=status,
                value_cents=value,
                scanned_at=utcnow(),
            )
            db.session.add(line)
            session.total_scanned += 1
            _tally(session, status, value)
            existing[code] = line
            lines.append(line)

        db.session.flush()
        return lines

    return run_with_retry(_op)


def complete_session(
    tenant_code: str,
    session_id: int,
    *,
    actor: str | None = None,
    remarks: str | None = None,
) -> VerificationSession:
    """Close the session, adding a MISSING line for every expected item never scanned."""
    def _op():
        session = _load_session(tenant_code, session_id, lock=True)
        _require_in_progress(session, "complete")

        scanned_ids = {line.product_id for line in session.lines if line.product_id is not None}
        for product in expected_products(tenant_code, session):
            if product.id in scanned_ids:
                continue
            db.session.add(VerificationLine(
                session=session,
                item_code=product.item_code,
                product_id=product.id,
                line_status=LINE_STATUS_MISSING,
                value_cents=product.mrp_cents or 0,
            ))
            _tally(session, LINE_STATUS_MISSING, product.mrp_cents or 0)

        session.status = VERIFICATION_STATUS_COMPLETED
        session.completed_at = utcnow()
        if actor:
            session.verified_by = optional_str("actor", actor, 100)
        if remarks:
            session.remarks = optional_str("remarks", remarks, 500)
        db.session.flush()

        current_app.logger.info(
            "Verification session %s completed: matched=%d unmatched=%d missing=%d",
            session.id, session.matched_count, session.unmatched_count, session.missing_count,
        )
        return session

    return run_with_retry(_op)


def cancel_session(tenant_code: str, session_id: int, *, remarks: str | None = None) -> VerificationSession:
    def _op():
        session = _load_session(tenant_code, session_id, lock=True)
        _require_in_progress(session, "cancel")
        session.status = VERIFICATION_STATUS_CANCELLED
        session.cancelled_at = utcnow()
        if remarks:
            session.remarks = optional_str("remarks", remarks, 500)
        db.session.flush()
        return session

    return run_with_retry(_op)


def get_session(tenant_code: str, session_id: int) -> VerificationSession:
    return _load_session(tenant_code, session_id)


def session_detail(session: VerificationSession) -> dict:
    data = session.to_dict()
    data["lines"] = [line.to_dict() for line in sorted(session.lines, key=lambda l: l.id)]
    return data
