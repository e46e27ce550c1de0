from __future__ import annotations

from ..extensions import db
from stockpos.time_utils import to_utc_z


class Coupon(db.Model):
    """
    Single-use discount coupon.

    - code is stored upper-case; lookups normalize the same way.
    - discount_value is whole percent for "percentage", cents for "fixed".
    - is_used only ever moves False -> True, at sale settlement.
    - source: welcome (registration), manual (staff issued), loyalty (500-point milestone).
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_coupons_code"),
        db.Index("ix_coupons_customer_used", "customer_id", "is_used"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)

    discount_kind = db.Column(db.String(16), nullable=False, default="percentage")
    discount_value = db.Column(db.Integer, nullable=False, default=5)

    expiry_date = db.Column(db.DateTime(timezone=True), nullable=False)
    is_used = db.Column(db.Boolean, nullable=False, default=False, index=True)
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"), nullable=True, index=True)
    source = db.Column(db.String(16), nullable=False, default="manual")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("coupons", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "discount_kind": self.discount_kind,
            "discount_value": self.discount_value,
            "expiry_date": to_utc_z(self.expiry_date),
            "is_used": self.is_used,
            "used_at": to_utc_z(self.used_at) if self.used_at else None,
            "customer_id": self.customer_id,
            "source": self.source,
            "created_at": to_utc_z(self.created_at),
        }
