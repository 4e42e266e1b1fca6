from __future__ import annotations

from ..extensions import db
from branchpos.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data for the loyalty program.

    loyalty_points_cents is a monetary balance: one point is one cent of
    store credit. It is never negative.

    referred_by_id points at the customer who referred this one. Cycles are
    possible in storage; the engine only ever walks one hop.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("phone", name="uq_customers_phone"),
        db.CheckConstraint("loyalty_points_cents >= 0", name="ck_customers_points_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=False)

    loyalty_points_cents = db.Column(db.Integer, nullable=False, default=0)

    referred_by_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    referred_by = db.relationship("Customer", remote_side=[id], backref=db.backref("referrals", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Customer id={self.id} phone={self.phone!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "loyalty_points_cents": self.loyalty_points_cents,
            "referred_by_id": self.referred_by_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
