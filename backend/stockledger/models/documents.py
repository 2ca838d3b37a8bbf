from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


# Transfer status constants
TRANSFER_STATUS_PENDING = "PENDING"
TRANSFER_STATUS_IN_TRANSIT = "IN_TRANSIT"
TRANSFER_STATUS_COMPLETED = "COMPLETED"
TRANSFER_STATUS_REJECTED = "REJECTED"
TRANSFER_STATUS_CANCELLED = "CANCELLED"

OPEN_TRANSFER_STATUSES = (TRANSFER_STATUS_PENDING, TRANSFER_STATUS_IN_TRANSIT)

TRANSFER_TYPE_BRANCH = "BRANCH"
TRANSFER_TYPE_COUNTER = "COUNTER"
TRANSFER_TYPE_BOX = "BOX"

_OPEN_STATUS_SQL = "status IN ('PENDING', 'IN_TRANSIT')"


class StockTransfer(db.Model):
    """
    Movement of one jewelry unit between two locations.

    LIFECYCLE:
    1. PENDING: Transfer created, awaiting approval
    2. IN_TRANSIT: Approved; movement reserved, not yet executed
    3. COMPLETED: Received at destination. The ONLY transition that writes
       ledger rows (TRANSFER_OUT at source, TRANSFER_IN at destination).
    4. REJECTED: Refused from PENDING or IN_TRANSIT (reason required)
    5. CANCELLED: Withdrawn from PENDING or IN_TRANSIT

    A product has at most one open (PENDING / IN_TRANSIT) transfer per tenant.
    The partial unique index below enforces it at the database level.
    version_id gives optimistic concurrency on every transition.
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.UniqueConstraint("tenant_code", "transfer_number", name="uq_stock_transfers_tenant_number"),
        db.Index(
            "uq_stock_transfers_open_product",
            "tenant_code",
            "product_id",
            unique=True,
            sqlite_where=db.text(_OPEN_STATUS_SQL),
            postgresql_where=db.text(_OPEN_STATUS_SQL),
        ),
        db.Index("ix_stock_transfers_tenant_status", "tenant_code", "status"),
        db.Index("ix_stock_transfers_source", "tenant_code", "source_branch_id", "source_counter_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_code = db.Column(db.String(50), nullable=False, index=True)

    # e.g. "TRF-ACME-20240116-0001" - unique per tenant
    transfer_number = db.Column(db.String(64), nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    tag_label = db.Column(db.String(50), nullable=True)

    # BRANCH, COUNTER, BOX
    transfer_type = db.Column(db.String(20), nullable=False)

    source_branch_id = db.Column(db.Integer, nullable=False)
    source_counter_id = db.Column(db.Integer, nullable=False)
    source_box_id = db.Column(db.Integer, nullable=True)

    destination_branch_id = db.Column(db.Integer, nullable=False)
    destination_counter_id = db.Column(db.Integer, nullable=False)
    destination_box_id = db.Column(db.Integer, nullable=True)

    # PENDING, IN_TRANSIT, COMPLETED, REJECTED, CANCELLED
    status = db.Column(db.String(16), nullable=False, default=TRANSFER_STATUS_PENDING, index=True)

    reason = db.Column(db.String(500), nullable=True)
    remarks = db.Column(db.String(500), nullable=True)

    # Actor attribution (identifiers supplied by the auth collaborator)
    created_by = db.Column(db.String(100), nullable=True)
    approved_by = db.Column(db.String(100), nullable=True)
    rejected_by = db.Column(db.String(100), nullable=True)
    completed_by = db.Column(db.String(100), nullable=True)
    cancelled_by = db.Column(db.String(100), nullable=True)

    # Timestamps for each lifecycle stage
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    rejection_reason = db.Column(db.String(500), nullable=True)
    cancellation_reason = db.Column(db.String(500), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_TRANSFER_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_code": self.tenant_code,
            "transfer_number": self.transfer_number,
            "product_id": self.product_id,
            "tag_label": self.tag_label,
            "transfer_type": self.transfer_type,
            "source": {
                "branch_id": self.source_branch_id,
                "counter_id": self.source_counter_id,
                "box_id": self.source_box_id,
            },
            "destination": {
                "branch_id": self.destination_branch_id,
                "counter_id": self.destination_counter_id,
                "box_id": self.destination_box_id,
            },
            "status": self.status,
            "reason": self.reason,
            "remarks": self.remarks,
            "created_by": self.created_by,
            "approved_by": self.approved_by,
            "rejected_by": self.rejected_by,
            "completed_by": self.completed_by,
            "cancelled_by": self.cancelled_by,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "rejected_at": to_utc_z(self.rejected_at) if self.rejected_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "rejection_reason": self.rejection_reason,
            "cancellation_reason": self.cancellation_reason,
            "version_id": self.version_id,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-tenant document sequences.

    WHY: Prevent race conditions when generating document numbers
    (transfers). document_type may embed a period (e.g. TRANSFER-20240116)
    so numbering restarts each day.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("tenant_code", "document_type", name="uq_doc_sequences_tenant_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_code = db.Column(db.String(50), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_code": self.tenant_code,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


# Verification session constants
VERIFICATION_STATUS_IN_PROGRESS = "IN_PROGRESS"
VERIFICATION_STATUS_COMPLETED = "COMPLETED"
VERIFICATION_STATUS_CANCELLED = "CANCELLED"

LINE_STATUS_MATCHED = "MATCHED"
LINE_STATUS_UNMATCHED = "UNMATCHED"
LINE_STATUS_MISSING = "MISSING"


class VerificationSession(db.Model):
    """
    Physical stock verification for one branch/counter/category.

    Scanned item codes are reconciled against the products expected at that
    location. Verification reads product/location keys only; it never writes
    ledger rows.
    """
    __tablename__ = "verification_sessions"
    __table_args__ = (
        db.Index("ix_verification_sessions_tenant_date", "tenant_code", "verification_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_code = db.Column(db.String(50), nullable=False, index=True)

    session_name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    verification_date = db.Column(db.Date, nullable=False)

    branch_id = db.Column(db.Integer, nullable=False)
    counter_id = db.Column(db.Integer, nullable=False)
    category_id = db.Column(db.Integer, nullable=False)

    # IN_PROGRESS, COMPLETED, CANCELLED
    status = db.Column(db.String(16), nullable=False, default=VERIFICATION_STATUS_IN_PROGRESS, index=True)

    total_scanned = db.Column(db.Integer, nullable=False, default=0)
    matched_count = db.Column(db.Integer, nullable=False, default=0)
    unmatched_count = db.Column(db.Integer, nullable=False, default=0)
    missing_count = db.Column(db.Integer, nullable=False, default=0)

    matched_value_cents = db.Column(db.BigInteger, nullable=False, default=0)
    unmatched_value_cents = db.Column(db.BigInteger, nullable=False, default=0)
    missing_value_cents = db.Column(db.BigInteger, nullable=False, default=0)

    verified_by = db.Column(db.String(100), nullable=True)
    remarks = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_code": self.tenant_code,
            "session_name": self.session_name,
            "description": self.description,
            "verification_date": to_iso_date(self.verification_date),
            "branch_id": self.branch_id,
            "counter_id": self.counter_id,
            "category_id": self.category_id,
            "status": self.status,
            "total_scanned": self.total_scanned,
            "matched_count": self.matched_count,
            "unmatched_count": self.unmatched_count,
            "missing_count": self.missing_count,
            "matched_value_cents": self.matched_value_cents,
            "unmatched_value_cents": self.unmatched_value_cents,
            "missing_value_cents": self.missing_value_cents,
            "verified_by": self.verified_by,
            "remarks": self.remarks,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
        }


class VerificationLine(db.Model):
    """One scanned (or missing) item within a verification session."""
    __tablename__ = "verification_lines"
    __table_args__ = (
        db.UniqueConstraint("session_id", "item_code", name="uq_verification_lines_session_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("verification_sessions.id"), nullable=False, index=True)

    item_code = db.Column(db.String(64), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    # MATCHED, UNMATCHED, MISSING
    line_status = db.Column(db.String(16), nullable=False)
    value_cents = db.Column(db.BigInteger, nullable=False, default=0)

    scanned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    session = db.relationship("VerificationSession", backref=db.backref("lines", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "item_code": self.item_code,
            "product_id": self.product_id,
            "line_status": self.line_status,
            "value_cents": self.value_cents,
            "scanned_at": to_utc_z(self.scanned_at) if self.scanned_at else None,
        }
