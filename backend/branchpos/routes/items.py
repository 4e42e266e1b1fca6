# Overview: Flask API routes for the item catalog; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..errors import InventoryEngineError, http_status
from ..extensions import db
from ..services import items_service
from ..services.engine import build_audit_log, build_store
from ..values import optional_str

items_bp = Blueprint("items", __name__, url_prefix="/api/items")


def _acting_user(data) -> dict:
    data = data if isinstance(data, dict) else {}
    return {
        "user_id": optional_str(data.get("user_id")),
        "user_name": optional_str(data.get("user_name")),
    }


def _error_response(e: InventoryEngineError):
    db.session.rollback()
    return jsonify(e.to_dict()), http_status(e)


@items_bp.post("")
def create_item_route():
    data = request.get_json(silent=True)
    try:
        patch = items_service.validate_item_patch(data, partial=False)
        store = build_store()
        item = items_service.create_item(store, build_audit_log(store), patch=patch, **_acting_user(data))
        return jsonify(item.to_dict()), 201
    except InventoryEngineError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Item create failed")
        return jsonify({"error": "internal_error", "message": "Unexpected error"}), 500


@items_bp.patch("/<int:item_id>")
def update_item_route(item_id: int):
    data = request.get_json(silent=True)
    try:
        patch = items_service.validate_item_patch(data, partial=True)
        store = build_store()
        item = items_service.update_item(
            store, build_audit_log(store), item_id=item_id, patch=patch, **_acting_user(data)
        )
        return jsonify(item.to_dict()), 200
    except InventoryEngineError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Item update failed")
        return jsonify({"error": "internal_error", "message": "Unexpected error"}), 500


@items_bp.delete("/<int:item_id>")
def delete_item_route(item_id: int):
    # Acting user may come in the body or the query string
    data = request.get_json(silent=True) or request.args.to_dict()
    try:
        store = build_store()
        items_service.delete_item(store, build_audit_log(store), item_id=item_id, **_acting_user(data))
        return jsonify({"deleted": True, "id": item_id}), 200
    except InventoryEngineError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Item delete failed")
        return jsonify({"error": "internal_error", "message": "Unexpected error"}), 500


@items_bp.get("/low-stock")
def low_stock_route():
    branch_id = request.args.get("branch_id", type=int)
    items = items_service.list_low_stock_items(build_store(), branch_id=branch_id)
    return jsonify({"items": [i.to_dict() for i in items], "count": len(items)}), 200
