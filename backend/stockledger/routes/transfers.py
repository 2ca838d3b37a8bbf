# backend/stockledger/routes/transfers.py
"""
Location-to-location transfer API routes.

Every transition accepts the actor (X-Actor header or "actor" in the body)
and optional remarks, and returns the transfer with its current status.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_tenant, resolve_actor
from ..errors import StockLedgerError, ValidationError
from ..extensions import db
from ..services import transfer_service
from ..services.concurrency import commit_with_retry
from ..services.transfer_service import TransferDraft
from ..validation import coerce_int, optional_int, parse_date_field, parse_location, require_fields, require_json_object


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


def _draft_from_payload(data: dict) -> TransferDraft:
    require_fields(data, "product_id", "source", "destination")
    return TransferDraft(
        product_id=coerce_int("product_id", data["product_id"]),
        source=parse_location(data["source"]),
        destination=parse_location(data["destination"]),
        reason=data.get("reason"),
        remarks=data.get("remarks"),
        tag_label=data.get("tag_label"),
    )


def _transition_failed(e: Exception, action: str):
    db.session.rollback()
    if isinstance(e, StockLedgerError):
        return error_response(e)
    current_app.logger.exception("Failed to %s transfer", action)
    return jsonify({"error": "Internal server error"}), 500


@transfers_bp.route("", methods=["POST"])
@require_tenant
def create_transfer():
    """
    Create a transfer request.

    Request body:
    {
        "product_id": int,
        "source": {"branch_id", "counter_id", "box_id"?},
        "destination": {"branch_id", "counter_id", "box_id"?},
        "reason": str (optional), "remarks": str (optional)
    }

    Returns:
        201: Transfer created (PENDING)
        400: Invalid request
        404: Unknown product
        409: Open transfer exists / source location mismatch
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        transfer = transfer_service.create_transfer(
            g.tenant_code, _draft_from_payload(data), actor=resolve_actor(data)
        )
        commit_with_retry()
        return jsonify(transfer.to_dict()), 201
    except Exception as e:
        return _transition_failed(e, "create")


@transfers_bp.route("/bulk", methods=["POST"])
@require_tenant
def create_bulk_transfers():
    """
    Request body:
    {
        "transfers": [<transfer>, ...],
        "reason": str (optional, applied where an item has none),
        "remarks": str (optional)
    }

    Items fail independently; 201 when all succeed, 207 otherwise.
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        items = data.get("transfers")
        if not isinstance(items, list) or not items:
            raise ValidationError("transfers must be a non-empty list")

        drafts = []
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                raise ValidationError(f"transfers[{index}] must be an object")
            drafts.append(_draft_from_payload(item))

        result = transfer_service.create_bulk_transfers(
            g.tenant_code,
            drafts,
            common_reason=data.get("reason"),
            common_remarks=data.get("remarks"),
            actor=resolve_actor(data),
        )
        commit_with_retry()

        status = 201 if not result["errors"] else 207
        return jsonify({
            "created": [t.to_dict() for t in result["created"]],
            "errors": result["errors"],
        }), status
    except Exception as e:
        return _transition_failed(e, "bulk create")


@transfers_bp.route("", methods=["GET"])
@require_tenant
def list_transfers():
    """Query params: status, product_id, branch_id, from_date, to_date, limit, offset."""
    try:
        args = request.args
        limit = max(1, min(args.get("limit", default=100, type=int), 500))
        offset = max(0, args.get("offset", default=0, type=int))
        from_raw, to_raw = args.get("from_date"), args.get("to_date")
        transfers = transfer_service.list_transfers(
            g.tenant_code,
            status=args.get("status"),
            product_id=optional_int("product_id", args.get("product_id")),
            branch_id=optional_int("branch_id", args.get("branch_id")),
            from_date=parse_date_field("from_date", from_raw) if from_raw else None,
            to_date=parse_date_field("to_date", to_raw) if to_raw else None,
            limit=limit,
            offset=offset,
        )
        return jsonify({"items": [t.to_dict() for t in transfers], "limit": limit, "offset": offset}), 200
    except StockLedgerError as e:
        return error_response(e)


@transfers_bp.route("/summary", methods=["GET"])
@require_tenant
def transfer_summary():
    try:
        from_raw, to_raw = request.args.get("from_date"), request.args.get("to_date")
        summary = transfer_service.transfer_summary(
            g.tenant_code,
            from_date=parse_date_field("from_date", from_raw) if from_raw else None,
            to_date=parse_date_field("to_date", to_raw) if to_raw else None,
        )
        return jsonify(summary), 200
    except StockLedgerError as e:
        return error_response(e)


@transfers_bp.route("/pending", methods=["GET"])
@require_tenant
def pending_by_location():
    """Query params: branch_id (required), counter_id."""
    try:
        require_fields(dict(request.args), "branch_id")
        pending = transfer_service.pending_by_location(
            g.tenant_code,
            coerce_int("branch_id", request.args.get("branch_id")),
            optional_int("counter_id", request.args.get("counter_id")),
        )
        return jsonify({
            "outgoing": [t.to_dict() for t in pending["outgoing"]],
            "incoming": [t.to_dict() for t in pending["incoming"]],
        }), 200
    except StockLedgerError as e:
        return error_response(e)


@transfers_bp.route("/product/<int:product_id>", methods=["GET"])
@require_tenant
def product_history(product_id: int):
    try:
        history = transfer_service.product_transfer_history(g.tenant_code, product_id)
        return jsonify({"items": [t.to_dict() for t in history]}), 200
    except StockLedgerError as e:
        return error_response(e)


@transfers_bp.route("/<int:transfer_id>", methods=["GET"])
@require_tenant
def get_transfer(transfer_id: int):
    try:
        return jsonify(transfer_service.get_transfer(g.tenant_code, transfer_id).to_dict()), 200
    except StockLedgerError as e:
        return error_response(e)


@transfers_bp.route("/<int:transfer_id>/approve", methods=["POST"])
@require_tenant
def approve_transfer(transfer_id: int):
    """
    PENDING -> IN_TRANSIT.

    Returns:
        200: Transfer approved
        404: Transfer not found
        409: Invalid state
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        transfer = transfer_service.approve_transfer(
            g.tenant_code, transfer_id, actor=resolve_actor(data), remarks=data.get("remarks")
        )
        commit_with_retry()
        return jsonify(transfer.to_dict()), 200
    except Exception as e:
        return _transition_failed(e, "approve")


@transfers_bp.route("/<int:transfer_id>/reject", methods=["POST"])
@require_tenant
def reject_transfer(transfer_id: int):
    """
    PENDING|IN_TRANSIT -> REJECTED.

    Request body: {"reason": str (required), "remarks": str (optional)}
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        transfer = transfer_service.reject_transfer(
            g.tenant_code,
            transfer_id,
            data.get("reason"),
            actor=resolve_actor(data),
            remarks=data.get("remarks"),
        )
        commit_with_retry()
        return jsonify(transfer.to_dict()), 200
    except Exception as e:
        return _transition_failed(e, "reject")


@transfers_bp.route("/<int:transfer_id>/complete", methods=["POST"])
@require_tenant
def complete_transfer(transfer_id: int):
    """
    IN_TRANSIT -> COMPLETED. Writes TRANSFER_OUT and TRANSFER_IN.

    Request body: {"occurred_at": ISO-8601 (optional), "remarks": str (optional)}
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        transfer = transfer_service.complete_transfer(
            g.tenant_code,
            transfer_id,
            actor=resolve_actor(data),
            remarks=data.get("remarks"),
            occurred_at=data.get("occurred_at"),
        )
        commit_with_retry()
        return jsonify(transfer.to_dict()), 200
    except Exception as e:
        return _transition_failed(e, "complete")


@transfers_bp.route("/<int:transfer_id>/cancel", methods=["POST"])
@require_tenant
def cancel_transfer(transfer_id: int):
    """
    PENDING|IN_TRANSIT -> CANCELLED.

    Request body: {"reason": str (optional)}
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        transfer = transfer_service.cancel_transfer(
            g.tenant_code, transfer_id, reason=data.get("reason"), actor=resolve_actor(data)
        )
        commit_with_retry()
        return jsonify(transfer.to_dict()), 200
    except Exception as e:
        return _transition_failed(e, "cancel")
