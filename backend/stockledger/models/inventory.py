from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z, utcnow


# Movement kinds. Quantity is always a positive magnitude; the kind implies direction.
MOVEMENT_ADDITION = "ADDITION"
MOVEMENT_SALE = "SALE"
MOVEMENT_RETURN = "RETURN"
MOVEMENT_TRANSFER_OUT = "TRANSFER_OUT"
MOVEMENT_TRANSFER_IN = "TRANSFER_IN"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"

MOVEMENT_KINDS = (
    MOVEMENT_ADDITION,
    MOVEMENT_SALE,
    MOVEMENT_RETURN,
    MOVEMENT_TRANSFER_OUT,
    MOVEMENT_TRANSFER_IN,
    MOVEMENT_ADJUSTMENT,
)

INBOUND_KINDS = frozenset({MOVEMENT_ADDITION, MOVEMENT_RETURN, MOVEMENT_TRANSFER_IN})
OUTBOUND_KINDS = frozenset({MOVEMENT_SALE, MOVEMENT_TRANSFER_OUT})


class Product(db.Model):
    """
    Jewelry unit master data, as resolved by the master-data collaborator.

    MULTI-TENANT: every product row carries tenant_code; lookups are always
    (tenant_code, id). The core never creates or edits products; it only reads
    them through ledger_service.resolve_product().

    LOCATION:
    branch_id/counter_id/box_id are the INITIAL placement. The current
    location is derived from the latest completed transfer
    (ledger_service.current_location), never written back here.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_code", "item_code", name="uq_products_tenant_item_code"),
        db.Index("ix_products_tenant_active", "tenant_code", "is_active"),
        db.Index("ix_products_tenant_category", "tenant_code", "category_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_code = db.Column(db.String(50), nullable=False, index=True)

    item_code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=True)

    category_id = db.Column(db.Integer, nullable=False)

    # Initial placement
    branch_id = db.Column(db.Integer, nullable=False)
    counter_id = db.Column(db.Integer, nullable=False)
    box_id = db.Column(db.Integer, nullable=True)

    mrp_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} item_code={self.item_code!r} tenant={self.tenant_code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_code": self.tenant_code,
            "item_code": self.item_code,
            "name": self.name,
            "category_id": self.category_id,
            "branch_id": self.branch_id,
            "counter_id": self.counter_id,
            "box_id": self.box_id,
            "mrp_cents": self.mrp_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class MovementEvent(db.Model):
    """
    Append-only stock movement ledger row.

    INVARIANTS:
    - Never updated or deleted. Corrections are new compensating events.
    - quantity > 0; direction comes from kind (see INBOUND_KINDS / OUTBOUND_KINDS).
    - id is autoincrement and therefore monotonic per database, which gives
      a deterministic replay order within a tenant.
    - occurred_at is business time; business_date is its date part;
      recorded_at is system time.
    """
    __tablename__ = "movement_events"
    __table_args__ = (
        db.Index("ix_movements_tenant_product_date", "tenant_code", "product_id", "business_date"),
        db.Index("ix_movements_tenant_date_branch", "tenant_code", "business_date", "branch_id", "counter_id"),
        db.Index("ix_movements_tenant_reference", "tenant_code", "reference_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_code = db.Column(db.String(50), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    tag_label = db.Column(db.String(50), nullable=True, index=True)

    # ADDITION, SALE, RETURN, TRANSFER_OUT, TRANSFER_IN, ADJUSTMENT
    kind = db.Column(db.String(20), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)

    unit_value_cents = db.Column(db.BigInteger, nullable=True)
    total_value_cents = db.Column(db.BigInteger, nullable=True)

    branch_id = db.Column(db.Integer, nullable=False)
    counter_id = db.Column(db.Integer, nullable=False)
    box_id = db.Column(db.Integer, nullable=True)
    category_id = db.Column(db.Integer, nullable=False)

    reference_number = db.Column(db.String(100), nullable=True)
    reference_kind = db.Column(db.String(50), nullable=True)  # Invoice, Transfer, Adjustment
    remarks = db.Column(db.String(500), nullable=True)
    actor = db.Column(db.String(100), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    business_date = db.Column(db.Date, nullable=False)
    recorded_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<MovementEvent id={self.id} kind={self.kind} product_id={self.product_id} "
            f"qty={self.quantity} date={self.business_date}>"
        )

    def location_key(self) -> tuple:
        return (self.branch_id, self.counter_id, self.box_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_code": self.tenant_code,
            "product_id": self.product_id,
            "tag_label": self.tag_label,
            "kind": self.kind,
            "quantity": self.quantity,
            "unit_value_cents": self.unit_value_cents,
            "total_value_cents": self.total_value_cents,
            "location": {
                "branch_id": self.branch_id,
                "counter_id": self.counter_id,
                "box_id": self.box_id,
            },
            "category_id": self.category_id,
            "reference_number": self.reference_number,
            "reference_kind": self.reference_kind,
            "remarks": self.remarks,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
            "business_date": to_iso_date(self.business_date),
            "recorded_at": to_utc_z(self.recorded_at),
        }
