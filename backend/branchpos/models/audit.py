from __future__ import annotations

from ..extensions import db
from branchpos.time_utils import to_utc_z

LOG_ACTIONS = ("create", "update", "delete", "sale", "transfer")


class InventoryLogEntry(db.Model):
    """
    Append-only inventory audit trail.

    IMMUTABLE: Rows are never updated or deleted. `details` holds a
    self-describing JSON envelope; decode it with
    services.audit_details.parse_details().
    """
    __tablename__ = "inventory_log_entries"
    __table_args__ = (
        db.Index("ix_inventory_log_item_created", "item_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(16), nullable=False, index=True)

    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    item_name = db.Column(db.String(255), nullable=False)

    user_id = db.Column(db.String(64), nullable=True)
    user_name = db.Column(db.String(255), nullable=True)

    # Back-references to the business document that produced the entry
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("stock_transfers.id"), nullable=True, index=True)

    details = db.Column(db.Text, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "sale_id": self.sale_id,
            "transfer_id": self.transfer_id,
            "details": self.details,
            "created_at": to_utc_z(self.created_at),
        }
