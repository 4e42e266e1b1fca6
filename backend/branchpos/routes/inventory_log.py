# Overview: Read API for the inventory audit log.

from flask import Blueprint, jsonify, request

from ..errors import InventoryEngineError, http_status
from ..services.audit_service import clamp_page
from ..services.engine import build_audit_log

inventory_log_bp = Blueprint("inventory_log", __name__, url_prefix="/api/inventory-log")


@inventory_log_bp.get("")
def list_inventory_log():
    """
    Inventory log entries, newest first.

    Query params:
    - limit: int (default 50, max 500)
    - offset: int (default 0)
    - item_id: int (optional)
    - action: create | update | delete | sale | transfer (optional)
    """
    limit, offset = clamp_page(
        request.args.get("limit", type=int), request.args.get("offset", type=int)
    )
    item_id = request.args.get("item_id", type=int)
    action = request.args.get("action") or None

    try:
        entries = build_audit_log().list_entries(limit=limit, offset=offset, item_id=item_id, action=action)
    except InventoryEngineError as e:
        return jsonify(e.to_dict()), http_status(e)

    return jsonify({"items": entries, "count": len(entries), "limit": limit, "offset": offset}), 200
