# backend/branchpos/routes/transfers.py
"""
Branch-to-branch stock transfer routes.
"""
from flask import Blueprint, current_app, jsonify, request

from ..errors import InventoryEngineError, http_status
from ..extensions import db
from ..services import transfer_service
from ..services.audit_service import clamp_page
from ..services.engine import build_store, build_transfer_transaction
from ..services.transfer_service import TransferRequest

transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


@transfers_bp.route("", methods=["POST"])
def create_transfer():
    """
    Move stock of one item to another branch.

    Request body:
    {
        "item_id": int,
        "quantity": int,
        "to_branch_id": int,
        "user_id": str, "user_name": str
    }

    Returns:
        201: Transfer created
        400: Invalid request, not enough stock, or same branch
        404: Item or branch not found
        409: SKU conflict in the destination branch
    """
    data = request.get_json(silent=True)

    try:
        transfer = build_transfer_transaction().execute(TransferRequest.from_dict(data))
        return jsonify(transfer.to_dict()), 201

    except InventoryEngineError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), http_status(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Transfer failed")
        return jsonify({"error": "internal_error", "message": "Unexpected error"}), 500


@transfers_bp.route("", methods=["GET"])
def list_transfers():
    """List transfers, newest first. Optional ?branch_id= matches either side."""
    branch_id = request.args.get("branch_id", type=int)
    limit, offset = clamp_page(
        request.args.get("limit", type=int), request.args.get("offset", type=int)
    )

    transfers = transfer_service.list_transfers(build_store(), branch_id=branch_id, limit=limit, offset=offset)
    return jsonify({
        "items": [t.to_dict() for t in transfers],
        "count": len(transfers),
        "limit": limit,
        "offset": offset,
    }), 200
