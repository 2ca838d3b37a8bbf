from __future__ import annotations

from datetime import date

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


QUANTITY_FIELDS = (
    "opening_qty",
    "added_qty",
    "sold_qty",
    "returned_qty",
    "transfer_in_qty",
    "transfer_out_qty",
    "closing_qty",
)

VALUE_FIELDS = (
    "opening_value_cents",
    "added_value_cents",
    "sold_value_cents",
    "returned_value_cents",
    "transfer_in_value_cents",
    "transfer_out_value_cents",
    "closing_value_cents",
)


class DailyBalance(db.Model):
    """
    Derived opening/closing stock for one product on one business date.

    INVARIANTS (checked by balance_service.verify_chain):
    1. closing = opening + added + returned + transfer_in - sold - transfer_out
       (quantities and values alike)
    2. opening(d) = closing(d - 1) for the same (tenant, product)
    3. Exactly one row per (tenant_code, product_id, balance_date)

    Rows are written ONLY by balance_service (upsert). The location/category
    columns snapshot where the product stood at the end of the day so that
    branch/counter/category rollups are pure group-bys over these rows.
    """
    __tablename__ = "daily_balances"
    __table_args__ = (
        db.UniqueConstraint("tenant_code", "product_id", "balance_date", name="uq_daily_balances_tenant_product_date"),
        db.Index("ix_daily_balances_tenant_date", "tenant_code", "balance_date"),
        db.Index("ix_daily_balances_tenant_date_branch", "tenant_code", "balance_date", "branch_id", "counter_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_code = db.Column(db.String(50), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    balance_date = db.Column(db.Date, nullable=False)

    # End-of-day placement snapshot
    branch_id = db.Column(db.Integer, nullable=False)
    counter_id = db.Column(db.Integer, nullable=False)
    box_id = db.Column(db.Integer, nullable=True)
    category_id = db.Column(db.Integer, nullable=False)

    opening_qty = db.Column(db.Integer, nullable=False, default=0)
    added_qty = db.Column(db.Integer, nullable=False, default=0)
    sold_qty = db.Column(db.Integer, nullable=False, default=0)
    returned_qty = db.Column(db.Integer, nullable=False, default=0)
    transfer_in_qty = db.Column(db.Integer, nullable=False, default=0)
    transfer_out_qty = db.Column(db.Integer, nullable=False, default=0)
    closing_qty = db.Column(db.Integer, nullable=False, default=0)

    opening_value_cents = db.Column(db.BigInteger, nullable=False, default=0)
    added_value_cents = db.Column(db.BigInteger, nullable=False, default=0)
    sold_value_cents = db.Column(db.BigInteger, nullable=False, default=0)
    returned_value_cents = db.Column(db.BigInteger, nullable=False, default=0)
    transfer_in_value_cents = db.Column(db.BigInteger, nullable=False, default=0)
    transfer_out_value_cents = db.Column(db.BigInteger, nullable=False, default=0)
    closing_value_cents = db.Column(db.BigInteger, nullable=False, default=0)

    # Number of ledger rows folded into this day (adjustments included)
    event_count = db.Column(db.Integer, nullable=False, default=0)

    computed_at = db.Column(db.DateTime(timezone=True), nullable=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<DailyBalance product_id={self.product_id} date={self.balance_date} "
            f"opening={self.opening_qty} closing={self.closing_qty}>"
        )

    def quantities(self) -> dict:
        return {f: getattr(self, f) for f in QUANTITY_FIELDS}

    def values(self) -> dict:
        return {f: getattr(self, f) for f in VALUE_FIELDS}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_code": self.tenant_code,
            "product_id": self.product_id,
            "balance_date": to_iso_date(self.balance_date),
            "location": {
                "branch_id": self.branch_id,
                "counter_id": self.counter_id,
                "box_id": self.box_id,
            },
            "category_id": self.category_id,
            **self.quantities(),
            **self.values(),
            "event_count": self.event_count,
            "computed_at": to_utc_z(self.computed_at),
            "synthesized": False,
        }


def zero_balance_dict(tenant_code: str, product_id: int, balance_date: date) -> dict:
    """All-zero balance for a (product, date) that was never computed."""
    return {
        "id": None,
        "tenant_code": tenant_code,
        "product_id": product_id,
        "balance_date": to_iso_date(balance_date),
        "location": None,
        "category_id": None,
        **{f: 0 for f in QUANTITY_FIELDS},
        **{f: 0 for f in VALUE_FIELDS},
        "event_count": 0,
        "computed_at": None,
        "synthesized": True,
    }
