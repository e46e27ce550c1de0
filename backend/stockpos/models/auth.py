from __future__ import annotations

from ..extensions import db
from stockpos.time_utils import to_utc_z


class User(db.Model):
    """
    Staff member recorded as the actor on ledger rows and documents.

    Reference data only: login, password and role enforcement live outside
    the transaction engine.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    role = db.Column(db.String(32), nullable=False, default="cashier")  # admin, manager, cashier
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
