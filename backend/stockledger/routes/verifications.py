# Overview: Flask API routes for stock verification sessions.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_tenant, resolve_actor
from ..errors import StockLedgerError, ValidationError
from ..extensions import db
from ..services import verification_service
from ..services.concurrency import commit_with_retry
from ..validation import parse_date_field, require_fields, require_json_object

verifications_bp = Blueprint("verifications", __name__, url_prefix="/api/verifications")


def _failed(e: Exception, action: str):
    db.session.rollback()
    if isinstance(e, StockLedgerError):
        return error_response(e)
    current_app.logger.exception("Failed to %s verification session", action)
    return jsonify({"error": "Internal server error"}), 500


@verifications_bp.post("")
@require_tenant
def create_session():
    """
    Request body:
    {
        "session_name": str,
        "branch_id": int, "counter_id": int, "category_id": int,
        "verification_date": "YYYY-MM-DD" (optional),
        "description": str (optional)
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        require_fields(data, "session_name", "branch_id", "counter_id", "category_id")
        raw_date = data.get("verification_date")
        session = verification_service.create_session(
            g.tenant_code,
            session_name=data["session_name"],
            branch_id=data["branch_id"],
            counter_id=data["counter_id"],
            category_id=data["category_id"],
            verification_date=parse_date_field("verification_date", raw_date) if raw_date else None,
            description=data.get("description"),
            actor=resolve_actor(data),
        )
        commit_with_retry()
        return jsonify(session.to_dict()), 201
    except Exception as e:
        return _failed(e, "create")


@verifications_bp.get("/<int:session_id>")
@require_tenant
def get_session(session_id: int):
    try:
        session = verification_service.get_session(g.tenant_code, session_id)
        return jsonify(verification_service.session_detail(session)), 200
    except StockLedgerError as e:
        return error_response(e)


@verifications_bp.post("/<int:session_id>/scans")
@require_tenant
def submit_scans(session_id: int):
    """Request body: {"item_codes": [str, ...]}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        codes = data.get("item_codes")
        if not isinstance(codes, list):
            raise ValidationError("item_codes must be a list")
        lines = verification_service.submit_scans(g.tenant_code, session_id, codes)
        commit_with_retry()
        return jsonify({"items": [line.to_dict() for line in lines]}), 200
    except Exception as e:
        return _failed(e, "scan into")


@verifications_bp.post("/<int:session_id>/complete")
@require_tenant
def complete_session(session_id: int):
    try:
        data = require_json_object(request.get_json(silent=True))
        session = verification_service.complete_session(
            g.tenant_code, session_id, actor=resolve_actor(data), remarks=data.get("remarks")
        )
        commit_with_retry()
        return jsonify(verification_service.session_detail(session)), 200
    except Exception as e:
        return _failed(e, "complete")


@verifications_bp.post("/<int:session_id>/cancel")
@require_tenant
def cancel_session(session_id: int):
    try:
        data = require_json_object(request.get_json(silent=True))
        session = verification_service.cancel_session(g.tenant_code, session_id, remarks=data.get("remarks"))
        commit_with_retry()
        return jsonify(session.to_dict()), 200
    except Exception as e:
        return _failed(e, "cancel")
