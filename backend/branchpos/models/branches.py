from __future__ import annotations

from ..extensions import db
from branchpos.time_utils import to_utc_z


class Branch(db.Model):
    """
    A physical retail or warehouse location holding its own inventory.

    Branches are immutable from the engine's point of view; sales and
    transfers only reference them by id.
    """
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    location = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Branch id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "phone": self.phone,
            "created_at": to_utc_z(self.created_at),
        }
