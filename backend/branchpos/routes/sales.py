# Overview: Flask API routes for sales; parses input and returns JSON responses.

# backend/branchpos/routes/sales.py
"""
Sale routes. Amounts are integer cents.

The acting operator comes from the body (`user_id`, `user_name`);
authentication sits in front of this API.
"""
from flask import Blueprint, current_app, jsonify, request

from ..errors import InventoryEngineError, http_status
from ..extensions import db
from ..services import sales_service
from ..services.audit_service import clamp_page
from ..services.engine import build_sale_transaction, build_store
from ..services.sales_service import SaleRequest

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
def create_sale_route():
    """
    Execute a sale.

    Request body:
    {
        "branch_id": int,
        "lines": [{"item_id": int, "quantity": int, "sell_price_cents": int}],
        "user_id": str, "user_name": str,
        "customer_phone": str (optional), "customer_name": str (optional),
        "referred_by_phone": str (optional), "redeem_points_cents": int (optional),
        "payment_method": "cash" | "card" | "mobile", "payment_reference": str
    }

    Returns:
        201: Sale with lines
        400: Validation failure (stock, minimum price, bad input)
        404: Item not found in the branch
    """
    data = request.get_json(silent=True)

    try:
        sale_request = SaleRequest.from_dict(data)
        sale = build_sale_transaction().execute(sale_request)
        return jsonify(sale.to_dict()), 201

    except InventoryEngineError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), http_status(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Sale failed")
        return jsonify({"error": "internal_error", "message": "Unexpected error"}), 500


@sales_bp.get("")
def list_sales_route():
    branch_id = request.args.get("branch_id", type=int)
    limit, offset = clamp_page(
        request.args.get("limit", type=int), request.args.get("offset", type=int)
    )

    sales = sales_service.list_sales(build_store(), branch_id=branch_id, limit=limit, offset=offset)
    return jsonify({
        "items": [s.to_dict(include_lines=False) for s in sales],
        "count": len(sales),
        "limit": limit,
        "offset": offset,
    }), 200


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(build_store(), sale_id)
    except InventoryEngineError as e:
        return jsonify(e.to_dict()), http_status(e)
    return jsonify(sale.to_dict()), 200
