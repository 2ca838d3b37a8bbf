# Overview: Service-layer operations for document numbering; per-tenant monotonic sequences.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence


def _bump(tenant_code: str, document_type: str):
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.tenant_code == tenant_code,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )
    return db.session.execute(stmt)


def _allocated_number(tenant_code: str, document_type: str) -> int:
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(tenant_code=tenant_code, document_type=document_type)
        .scalar()
    )
    return current - 1


def next_sequence_value(tenant_code: str, document_type: str) -> int:
    """
    Atomically allocate the next number for a tenant/document type.

    The UPDATE takes a row lock on (tenant_code, document_type) so concurrent
    callers serialize. The first allocation inserts inside a savepoint; losing
    that insert race falls back to the UPDATE path. Runs in the caller's
    transaction (callers already wrap their work in run_with_retry).
    """
    if not tenant_code:
        raise ValidationError("tenant_code is required")
    if not document_type:
        raise ValidationError("document_type is required")

    if _bump(tenant_code, document_type).rowcount:
        db.session.flush()
        return _allocated_number(tenant_code, document_type)

    try:
        with db.session.begin_nested():
            db.session.add(
                DocumentSequence(tenant_code=tenant_code, document_type=document_type, next_number=2)
            )
        return 1
    except IntegrityError:
        if not _bump(tenant_code, document_type).rowcount:
            raise
        db.session.flush()
        return _allocated_number(tenant_code, document_type)


def next_transfer_number(tenant_code: str, business_date: date, pad: int = 4) -> str:
    """TRF-{TENANT}-{YYYYMMDD}-{NNNN}; the counter restarts every day."""
    stamp = business_date.strftime("%Y%m%d")
    seq = next_sequence_value(tenant_code, f"TRANSFER-{stamp}")
    return f"TRF-{tenant_code.upper()}-{stamp}-{seq:0{pad}d}"
