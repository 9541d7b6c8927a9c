# Overview: Flask API routes for petty cash (deliveries, change expenses, balance).

from datetime import date

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role, scoped_branch_id
from ..errors import PosError, ValidationError
from ..models.auth import ROLE_ADMIN
from ..services import petty_cash_service
from ..validation import coerce_int


petty_cash_bp = Blueprint("petty_cash", __name__, url_prefix="/api/petty-cash")


def _parse_day(value):
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError("date must be YYYY-MM-DD", {"value": value})


def _operator_id(value):
    """Admins may look at any operator; everyone else sees their own."""
    if value in (None, "") or g.current_user.role != ROLE_ADMIN:
        return g.current_user.id
    return coerce_int(value, "operator_id")


@petty_cash_bp.get("/balance")
@require_auth
def balance_route():
    branch_id, error = scoped_branch_id(request.args.get("branch_id"))
    if error:
        return error
    try:
        balance = petty_cash_service.get_balance(
            _operator_id(request.args.get("operator_id")),
            branch_id,
            _parse_day(request.args.get("date")),
        )
        return jsonify(balance), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@petty_cash_bp.get("/expenses")
@require_auth
def expenses_route():
    branch_id, error = scoped_branch_id(request.args.get("branch_id"))
    if error:
        return error
    try:
        expenses = petty_cash_service.list_expenses(
            branch_id,
            operator_id=_operator_id(request.args.get("operator_id")),
            day=_parse_day(request.args.get("date")),
        )
        return jsonify({"expenses": [e.to_dict() for e in expenses]}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@petty_cash_bp.get("/deliveries")
@require_auth
def deliveries_route():
    branch_id, error = scoped_branch_id(request.args.get("branch_id"))
    if error:
        return error
    try:
        deliveries = petty_cash_service.list_deliveries(
            branch_id,
            operator_id=_operator_id(request.args.get("operator_id")),
            day=_parse_day(request.args.get("date")),
        )
        return jsonify({"deliveries": [d.to_dict() for d in deliveries]}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@petty_cash_bp.post("/deliveries")
@require_auth
@require_role(ROLE_ADMIN)
def create_delivery_route():
    """
    Hand petty cash to an operator. The caller is recorded as authorizer.

    Request body: {"branch_id", "operator_id", "amount_cents", "reason"?}
    """
    data = request.get_json(silent=True) or {}
    branch_id, error = scoped_branch_id(data.get("branch_id"))
    if error:
        return error
    try:
        delivery = petty_cash_service.record_delivery(
            branch_id,
            coerce_int(data.get("operator_id"), "operator_id"),
            data.get("amount_cents"),
            authorized_by_user_id=g.current_user.id,
            reason=data.get("reason"),
        )
        return jsonify({"delivery": delivery.to_dict()}), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record petty cash delivery")
        return jsonify({"error": "Internal server error"}), 500
