# Overview: Flask API routes for daily balances; reads never recompute, recompute is explicit.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_tenant
from ..errors import StockLedgerError
from ..extensions import db
from ..services import balance_service
from ..services.concurrency import commit_with_retry
from ..validation import (
    coerce_int,
    optional_int,
    parse_date_field,
    require_fields,
    require_json_object,
)

balances_bp = Blueprint("balances", __name__, url_prefix="/api/balances")


def _optional_date(name: str):
    raw = request.args.get(name)
    return parse_date_field(name, raw) if raw else None


@balances_bp.get("/<int:product_id>/<balance_date>")
@require_tenant
def get_balance(product_id: int, balance_date: str):
    """Stored DailyBalance, or a synthesized all-zero row ("synthesized": true)."""
    try:
        day = parse_date_field("balance_date", balance_date)
        return jsonify(balance_service.get_balance(g.tenant_code, product_id, day)), 200
    except StockLedgerError as e:
        return error_response(e)


@balances_bp.get("")
@require_tenant
def list_balances():
    """Query params: product_id, from_date, to_date, branch_id, counter_id, category_id, limit."""
    try:
        args = request.args
        limit = max(1, min(args.get("limit", default=500, type=int), 5000))
        rows = balance_service.list_balances(
            g.tenant_code,
            product_id=optional_int("product_id", args.get("product_id")),
            from_date=_optional_date("from_date"),
            to_date=_optional_date("to_date"),
            branch_id=optional_int("branch_id", args.get("branch_id")),
            counter_id=optional_int("counter_id", args.get("counter_id")),
            category_id=optional_int("category_id", args.get("category_id")),
            limit=limit,
        )
        return jsonify({"items": [row.to_dict() for row in rows], "count": len(rows)}), 200
    except StockLedgerError as e:
        return error_response(e)


@balances_bp.get("/current/<int:product_id>")
@require_tenant
def current_stock(product_id: int):
    try:
        return jsonify(balance_service.current_stock(g.tenant_code, product_id)), 200
    except StockLedgerError as e:
        return error_response(e)


@balances_bp.post("/recompute/<int:product_id>/<balance_date>")
@require_tenant
def recompute(product_id: int, balance_date: str):
    try:
        day = parse_date_field("balance_date", balance_date)
        row = balance_service.recompute(g.tenant_code, product_id, day)
        commit_with_retry()
        return jsonify(row.to_dict()), 200

    except StockLedgerError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to recompute balance")
        return jsonify({"error": "Internal server error"}), 500


@balances_bp.post("/recompute-range")
@require_tenant
def recompute_range():
    """
    Request body:
    {
        "product_id": int,
        "from_date": "YYYY-MM-DD",
        "to_date": "YYYY-MM-DD"
    }

    Each chunk is committed as it completes, so a failure part-way keeps
    the days already done; completed_through tells where to resume.
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        require_fields(data, "product_id", "from_date", "to_date")
        result = balance_service.recompute_range(
            g.tenant_code,
            coerce_int("product_id", data["product_id"]),
            parse_date_field("from_date", data["from_date"]),
            parse_date_field("to_date", data["to_date"]),
            commit=True,
        )
        return jsonify(result.to_dict()), 200

    except StockLedgerError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to recompute balance range")
        return jsonify({"error": "Internal server error"}), 500


@balances_bp.post("/recompute-all/<balance_date>")
@require_tenant
def recompute_all(balance_date: str):
    try:
        day = parse_date_field("balance_date", balance_date)
        result = balance_service.recompute_all(g.tenant_code, day)
        status = 200 if not result.failed else 207
        return jsonify(result.to_dict()), status

    except StockLedgerError as e:
        db.session.rollback()
        return error_response(e)


@balances_bp.get("/rollup/<balance_date>")
@require_tenant
def rollup(balance_date: str):
    """Query params: group_by = branch | counter | category (default branch)."""
    try:
        day = parse_date_field("balance_date", balance_date)
        group_by = request.args.get("group_by", "branch")
        items = balance_service.rollup_balances(g.tenant_code, day, group_by)
        return jsonify({"group_by": group_by, "items": items}), 200
    except StockLedgerError as e:
        return error_response(e)


@balances_bp.get("/location/<balance_date>")
@require_tenant
def location_activity(balance_date: str):
    """Query params: branch_id (required), counter_id, box_id."""
    try:
        day = parse_date_field("balance_date", balance_date)
        args = request.args
        require_fields(dict(args), "branch_id")
        activity = balance_service.location_activity(
            g.tenant_code,
            day,
            coerce_int("branch_id", args.get("branch_id")),
            counter_id=optional_int("counter_id", args.get("counter_id")),
            box_id=optional_int("box_id", args.get("box_id")),
        )
        return jsonify(activity), 200
    except StockLedgerError as e:
        return error_response(e)
