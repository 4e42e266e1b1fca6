from __future__ import annotations

from ..extensions import db
from branchpos.time_utils import to_utc_z

PAYMENT_METHODS = ("cash", "card", "mobile")


class Sale(db.Model):
    """
    A committed sale.

    Sales are written once by the sale transaction and never edited. Lines
    snapshot item name, category and cost so later item edits do not
    rewrite history.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_branch_created", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    # Operator attribution (authentication lives outside the engine)
    user_id = db.Column(db.String(64), nullable=True)
    user_name = db.Column(db.String(255), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    # All amounts in cents
    total_amount_cents = db.Column(db.Integer, nullable=False)
    total_profit_cents = db.Column(db.Integer, nullable=False)
    loyalty_points_earned_cents = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_redeemed_cents = db.Column(db.Integer, nullable=False, default=0)

    referrer_customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    referrer_points_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    payment_reference = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    branch = db.relationship("Branch", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer", foreign_keys=[customer_id])
    lines = db.relationship("SaleLine", back_populates="sale", order_by="SaleLine.id", lazy=True)

    @property
    def amount_due_cents(self) -> int:
        return self.total_amount_cents - self.loyalty_points_redeemed_cents

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "branch_id": self.branch_id,
            "branch_name": self.branch.name if self.branch else None,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "total_amount_cents": self.total_amount_cents,
            "total_profit_cents": self.total_profit_cents,
            "loyalty_points_earned_cents": self.loyalty_points_earned_cents,
            "loyalty_points_redeemed_cents": self.loyalty_points_redeemed_cents,
            "amount_due_cents": self.amount_due_cents,
            "referrer_customer_id": self.referrer_customer_id,
            "referrer_points_cents": self.referrer_points_cents,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Individual line items on a sale, snapshotted at sale time."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity_sold > 0", name="ck_sale_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)

    item_name = db.Column(db.String(255), nullable=False)
    item_category = db.Column(db.String(128), nullable=False)
    item_price_cents = db.Column(db.Integer, nullable=False)  # cost at sale time

    sell_price_cents = db.Column(db.Integer, nullable=False)
    quantity_sold = db.Column(db.Integer, nullable=False)
    profit_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="lines")

    @property
    def line_total_cents(self) -> int:
        return self.sell_price_cents * self.quantity_sold

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "item_category": self.item_category,
            "item_price_cents": self.item_price_cents,
            "sell_price_cents": self.sell_price_cents,
            "quantity_sold": self.quantity_sold,
            "line_total_cents": self.line_total_cents,
            "profit_cents": self.profit_cents,
        }
