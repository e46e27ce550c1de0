from __future__ import annotations

from ..extensions import db
from stockpos.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data plus loyalty fields.

    loyalty_points and total_purchases are only changed by loyalty_service,
    through server-side increments, during sale settlement.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_customers_email"),
        db.CheckConstraint("loyalty_points >= 0", name="ck_customers_loyalty_points_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    total_purchases = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "loyalty_points": self.loyalty_points,
            "total_purchases": self.total_purchases,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of loyalty point events.

    TRANSACTION TYPES:
    - EARN: Points earned from a sale
    - MILESTONE: 500 points converted into a coupon (negative points)

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_txns_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # EARN, MILESTONE
    points = db.Column(db.Integer, nullable=False)  # Positive for earn, negative for milestone

    sale_id = db.Column(db.Integer, nullable=True, index=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "transaction_type": self.transaction_type,
            "points": self.points,
            "sale_id": self.sale_id,
            "coupon_id": self.coupon_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
