# Overview: Flask API routes for point-of-sale sales; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role, scoped_branch_id
from ..errors import PosError
from ..models.auth import ROLE_ADMIN, ROLE_CASHIER
from ..services import sale_feed_service, sales_service
from ..validation import coerce_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/pos")
@require_auth
@require_role(ROLE_CASHIER)
def pos_sale_route():
    """
    Commit a sale in one step.

    Request body:
    {
        "branch_id": 1,                       (optional)
        "items": [{"product_id": 5, "quantity": 2}],
        "payment_method": "CASH",             (CASH | CARD | TRANSFER, aliases accepted)
        "amount_received_cents": 15000,       (cash only, optional)
        "discount_cents": 0,
        "customer_id": null, "customer_name": null,
        "card_brand": null, "card_last4": null, "auth_code": null, "processor_txn_id": null
    }
    """
    data = request.get_json(silent=True) or {}
    branch_id, error = scoped_branch_id(data.get("branch_id"))
    if error:
        return error
    try:
        customer_id = data.get("customer_id")
        result = sales_service.commit_sale(
            g.current_user.id,
            branch_id,
            data.get("items") or data.get("basket"),
            data.get("payment_method") or data.get("metodo_pago"),
            data.get("amount_received_cents"),
            discount_cents=data.get("discount_cents", 0),
            customer_id=coerce_int(customer_id, "customer_id") if customer_id not in (None, "") else None,
            customer_name=data.get("customer_name"),
            card_brand=data.get("card_brand"),
            card_last4=data.get("card_last4"),
            auth_code=data.get("auth_code"),
            processor_txn_id=data.get("processor_txn_id"),
        )
        return jsonify(result.to_dict()), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to commit sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(sale_id)
    if not sale:
        return jsonify({"error": "Sale not found"}), 404
    if g.current_user.role != ROLE_ADMIN and g.branch_id is not None and sale.branch_id != g.branch_id:
        return jsonify({"error": "Branch access denied"}), 403
    return jsonify({"sale": sale.to_dict(include_lines=True)}), 200


@sales_bp.get("/feed")
@require_auth
def feed_route():
    """
    Confirmed sales after a cursor, oldest first.

    Query params: branch_id, after_id (default 0), limit (default 50, max 200).
    Poll with after_id = next_after_id from the previous response.
    """
    branch_id, error = scoped_branch_id(request.args.get("branch_id"))
    if error:
        return error
    try:
        after_id = coerce_int(request.args.get("after_id", 0), "after_id")
        limit = coerce_int(request.args.get("limit", sale_feed_service.DEFAULT_FEED_LIMIT), "limit")
        sales = sale_feed_service.list_confirmed_sales_since(branch_id, after_id, limit)
        return jsonify({
            "sales": [s.to_dict() for s in sales],
            "next_after_id": sales[-1].id if sales else after_id,
        }), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
