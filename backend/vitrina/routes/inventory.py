# Overview: Flask API routes for stock: manual front refill, movements and branch stock levels.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role, scoped_branch_id
from ..errors import PosError, ValidationError
from ..extensions import db
from ..models import Location
from ..models.auth import ROLE_CASHIER, ROLE_INVENTORY
from ..models.inventory import MOVEMENT_ADJUST, MOVEMENT_IN
from ..services import allocation_service, stock_service
from ..validation import coerce_int


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _optional_int(value, field):
    if value in (None, ""):
        return None
    return coerce_int(value, field)


def _require_branch_locations(branch_id: int, *location_ids) -> None:
    """Every given location must belong to the scoped branch."""
    wanted = {loc for loc in location_ids if loc is not None}
    if not wanted:
        return
    found = {
        loc_id for (loc_id,) in db.session.query(Location.id).filter(
            Location.id.in_(wanted),
            Location.branch_id == branch_id,
        ).all()
    }
    missing = sorted(wanted - found)
    if missing:
        raise ValidationError("Location not found in branch", {"branch_id": branch_id, "location_ids": missing})


@inventory_bp.post("/transfer-to-front")
@require_auth
@require_role(ROLE_INVENTORY, ROLE_CASHIER)
def transfer_to_front_route():
    """
    Manual reserve -> front refill with the allocation rules.

    Request body:
    {
        "branch_id": 1,      (optional)
        "items": [{"product_id": 5, "quantity": 10}],
        "reason": "Morning restock"
    }
    """
    data = request.get_json(silent=True) or {}
    branch_id, error = scoped_branch_id(data.get("branch_id"))
    if error:
        return error
    try:
        transfers = allocation_service.transfer_to_front(
            branch_id,
            data.get("items"),
            g.current_user.id,
            data.get("reason"),
        )
        return jsonify({"transfers": [t.to_dict() for t in transfers]}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Transfer to front failed")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/movements")
@require_auth
@require_role(ROLE_INVENTORY)
def create_movement_route():
    """
    Record a stock movement.

    IN:       {"type": "IN", "product_id", "location_id", "quantity", "unit_cost_cents"?}
    ADJUST:   {"type": "ADJUST", "product_id", "location_id", "delta", "reason"}
    OUT:      {"type": "OUT", "product_id", "source_location_id", "quantity", "reason"?}
    TRANSFER: {"type": "TRANSFER", "product_id", "source_location_id",
               "destination_location_id", "quantity", "reason"?}
    """
    data = request.get_json(silent=True) or {}
    branch_id, error = scoped_branch_id(data.get("branch_id"))
    if error:
        return error
    try:
        movement_type = str(data.get("type") or "").strip().upper()
        product_id = coerce_int(data.get("product_id"), "product_id")
        reason = data.get("reason")
        actor = g.current_user.id

        if movement_type == MOVEMENT_IN:
            location_id = coerce_int(data.get("location_id"), "location_id")
            _require_branch_locations(branch_id, location_id)
            movement = stock_service.receive_stock(
                product_id,
                location_id,
                data.get("quantity"),
                unit_cost_cents=data.get("unit_cost_cents"),
                actor_user_id=actor,
                reason=reason,
                occurred_at=data.get("occurred_at"),
            )
        elif movement_type == MOVEMENT_ADJUST:
            location_id = coerce_int(data.get("location_id"), "location_id")
            _require_branch_locations(branch_id, location_id)
            movement = stock_service.adjust_stock(
                product_id,
                location_id,
                data.get("delta"),
                actor_user_id=actor,
                reason=reason,
                occurred_at=data.get("occurred_at"),
            )
        else:
            source_id = _optional_int(data.get("source_location_id"), "source_location_id")
            destination_id = _optional_int(data.get("destination_location_id"), "destination_location_id")
            _require_branch_locations(branch_id, source_id, destination_id)
            movement = stock_service.post_movement(
                movement_type,
                product_id,
                data.get("quantity"),
                source_location_id=source_id,
                destination_location_id=destination_id,
                actor_user_id=actor,
                reason=reason,
                occurred_at=data.get("occurred_at"),
            )
        return jsonify({"movement": movement.to_dict()}), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record movement")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/movements")
@require_auth
def list_movements_route():
    """Query params: product_id, location_id, type, sale_id, limit."""
    try:
        movements = stock_service.list_movements(
            product_id=_optional_int(request.args.get("product_id"), "product_id"),
            location_id=_optional_int(request.args.get("location_id"), "location_id"),
            movement_type=request.args.get("type"),
            sale_id=_optional_int(request.args.get("sale_id"), "sale_id"),
            limit=_optional_int(request.args.get("limit"), "limit") or 100,
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/stock")
@require_auth
def stock_route():
    branch_id, error = scoped_branch_id(request.args.get("branch_id"))
    if error:
        return error
    try:
        items = stock_service.get_branch_stock(
            branch_id,
            product_id=_optional_int(request.args.get("product_id"), "product_id"),
        )
        return jsonify({"branch_id": branch_id, "items": items}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
