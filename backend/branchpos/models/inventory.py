from __future__ import annotations

from ..extensions import db
from branchpos.time_utils import to_utc_z


class Item(db.Model):
    """
    A stocked product record scoped to one branch.

    SKU DESIGN DECISION:
    - SKUs are unique within a branch: UniqueConstraint("branch_id", "sku")
    - The first 3 characters are the category prefix; the rest is a
      per-branch sequence allocated when a transfer materializes the item
      in a new branch.

    Quantity is a stored counter (not ledger-derived). It is only ever
    changed through guarded updates so it cannot go negative; the CHECK
    constraint backs that up at the database.

    Items are soft-deleted so historical sales and transfers keep their
    references.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "sku", name="uq_items_branch_sku"),
        db.CheckConstraint("quantity >= 0", name="ck_items_quantity_non_negative"),
        db.Index("ix_items_branch_name", "branch_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(128), nullable=False)
    origin = db.Column(db.String(128), nullable=True)
    image_url = db.Column(db.String(512), nullable=True)

    # Unit cost (buying price), in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    minimum_sell_price_cents = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    minimum_stock_level = db.Column(db.Integer, nullable=False, default=10)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch", backref=db.backref("items", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Item id={self.id} sku={self.sku!r} name={self.name!r} branch_id={self.branch_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "origin": self.origin,
            "image_url": self.image_url,
            "price_cents": self.price_cents,
            "minimum_sell_price_cents": self.minimum_sell_price_cents,
            "quantity": self.quantity,
            "minimum_stock_level": self.minimum_stock_level,
            "is_deleted": self.is_deleted,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockTransfer(db.Model):
    """Movement of quantity of one item from its branch to another branch."""
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_transfers_quantity_positive"),
        db.Index("ix_stock_transfers_date", "transfer_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    quantity = db.Column(db.Integer, nullable=False)

    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    from_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    to_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    destination_item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    # True when the transfer materialized a new item (and SKU) in the destination branch
    destination_created = db.Column(db.Boolean, nullable=False, default=False)

    user_id = db.Column(db.String(64), nullable=True)
    user_name = db.Column(db.String(255), nullable=True)

    transfer_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship("Item", foreign_keys=[item_id])
    destination_item = db.relationship("Item", foreign_keys=[destination_item_id])
    from_branch = db.relationship("Branch", foreign_keys=[from_branch_id])
    to_branch = db.relationship("Branch", foreign_keys=[to_branch_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quantity": self.quantity,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "from_branch_id": self.from_branch_id,
            "from_branch_name": self.from_branch.name if self.from_branch else None,
            "to_branch_id": self.to_branch_id,
            "to_branch_name": self.to_branch.name if self.to_branch else None,
            "destination_item_id": self.destination_item_id,
            "destination_created": self.destination_created,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "transfer_date": to_utc_z(self.transfer_date),
        }
