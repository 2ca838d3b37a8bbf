# Overview: Flask API routes for the movement ledger; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from ..decorators import error_response, require_tenant, resolve_actor
from ..errors import StockLedgerError, ValidationError
from ..extensions import db
from ..services import balance_service, ledger_service
from ..services.concurrency import commit_with_retry
from ..services.ledger_service import MovementDraft
from ..validation import (
    coerce_int,
    optional_int,
    parse_date_field,
    parse_location,
    require_fields,
    require_json_object,
)

"""
Time semantics:
- occurred_at (alias movement_date) is business time; ISO-8601 with Z/offset
  is normalized to UTC-naive. Omitted means now.
- from_date / to_date filters are inclusive business dates.
"""

movements_bp = Blueprint("movements", __name__, url_prefix="/api/movements")


def _draft_from_payload(data: dict, actor) -> MovementDraft:
    require_fields(data, "product_id", "kind")
    location = parse_location(data.get("location"), required=False)
    if location is None:
        location = parse_location(
            {k: data.get(k) for k in ("branch_id", "counter_id", "box_id")},
            required=False,
        )
    return MovementDraft(
        product_id=coerce_int("product_id", data["product_id"]),
        kind=data["kind"],
        quantity=coerce_int("quantity", data.get("quantity", 1)),
        unit_value_cents=data.get("unit_value_cents", data.get("unit_price_cents")),
        total_value_cents=data.get("total_value_cents", data.get("total_amount_cents")),
        location=location,
        occurred_at=data.get("occurred_at", data.get("movement_date")),
        reference_number=data.get("reference_number"),
        reference_kind=data.get("reference_kind", data.get("reference_type")),
        tag_label=data.get("tag_label"),
        remarks=data.get("remarks"),
        actor=actor,
    )


def _refresh_if_configured(earliest_dates: dict):
    """
    Optional synchronous recompute; the ledger append itself never aggregates.

    Runs after the append is committed. A failure is returned as an error
    dict (sent as balance_refresh_error on the 201), never raised.
    """
    if not current_app.config.get("BALANCE_RECOMPUTE_ON_APPEND"):
        return None
    try:
        for product_id, from_date in sorted(earliest_dates.items()):
            balance_service.refresh_product_balances(g.tenant_code, product_id, from_date)
        commit_with_retry()
    except StockLedgerError as e:
        db.session.rollback()
        current_app.logger.error("Balance refresh after append failed: %s", e.message)
        return e.to_dict()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Balance refresh after append failed")
        return {"error": "Balance refresh failed"}
    return None


@movements_bp.post("")
@require_tenant
def create_movement():
    """
    Append one movement.

    Request body:
    {
        "product_id": int,
        "kind": "ADDITION" | "SALE" | "RETURN" | "TRANSFER_OUT" | "TRANSFER_IN" | "ADJUSTMENT",
        "quantity": int (default 1),
        "unit_value_cents": int (optional),
        "total_value_cents": int (optional),
        "location": {"branch_id", "counter_id", "box_id"?} (optional),
        "occurred_at": ISO-8601 (optional),
        "reference_number": str, "reference_kind": str (optional)
    }

    Returns:
        201: Movement appended
             (balance_refresh_error set when the optional refresh failed)
        400: Invalid request
        404: Unknown product
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        draft = _draft_from_payload(data, resolve_actor(data))
        event = ledger_service.append_movement(g.tenant_code, draft)
        commit_with_retry()

        body = event.to_dict()
        refresh_error = _refresh_if_configured({event.product_id: event.business_date})
        if refresh_error is not None:
            body["balance_refresh_error"] = refresh_error
        return jsonify(body), 201

    except StockLedgerError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to append movement")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.post("/bulk")
@require_tenant
def create_movements_bulk():
    """
    Append a batch (all-or-nothing), ordered by business time.

    Request body: {"movements": [<movement>, ...]} or a bare list.
    Returns the events plus the earliest business date touched per product.
    """
    try:
        payload = request.get_json(silent=True)
        if isinstance(payload, dict):
            actor = resolve_actor(payload)
            items = payload.get("movements")
        else:
            actor = resolve_actor()
            items = payload
        if not isinstance(items, list) or not items:
            raise ValidationError("movements must be a non-empty list")

        drafts = []
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                raise ValidationError(f"movements[{index}] must be an object")
            drafts.append(_draft_from_payload(item, resolve_actor(item) or actor))

        result = ledger_service.append_movements(g.tenant_code, drafts)
        commit_with_retry()

        body = {
            "items": [ev.to_dict() for ev in result.events],
            "count": len(result.events),
            "earliest_dates": {str(pid): d.isoformat() for pid, d in result.earliest_dates.items()},
        }
        refresh_error = _refresh_if_configured(result.earliest_dates)
        if refresh_error is not None:
            body["balance_refresh_error"] = refresh_error
        return jsonify(body), 201

    except StockLedgerError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to append movement batch")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.get("")
@require_tenant
def list_movements():
    """
    Query params: product_id, branch_id, counter_id, box_id, kind,
    reference_number, reference_kind, tag_label, from_date, to_date,
    limit (1-500, default 100), offset.
    """
    try:
        args = request.args
        limit = max(1, min(args.get("limit", default=100, type=int), 500))
        offset = max(0, args.get("offset", default=0, type=int))
        from_raw, to_raw = args.get("from_date"), args.get("to_date")

        events = ledger_service.list_movements(
            g.tenant_code,
            limit=limit,
            offset=offset,
            product_id=optional_int("product_id", args.get("product_id")),
            branch_id=optional_int("branch_id", args.get("branch_id")),
            counter_id=optional_int("counter_id", args.get("counter_id")),
            box_id=optional_int("box_id", args.get("box_id")),
            kind=args.get("kind"),
            reference_number=args.get("reference_number"),
            reference_kind=args.get("reference_kind"),
            tag_label=args.get("tag_label"),
            from_date=parse_date_field("from_date", from_raw) if from_raw else None,
            to_date=parse_date_field("to_date", to_raw) if to_raw else None,
        )
        return jsonify({"items": [ev.to_dict() for ev in events], "limit": limit, "offset": offset}), 200

    except StockLedgerError as e:
        return error_response(e)


@movements_bp.get("/<int:movement_id>")
@require_tenant
def get_movement(movement_id: int):
    try:
        event = ledger_service.get_movement(g.tenant_code, movement_id)
        return jsonify(event.to_dict()), 200
    except StockLedgerError as e:
        return error_response(e)
