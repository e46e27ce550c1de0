from __future__ import annotations

from ..extensions import db
from stockpos.time_utils import to_utc_z


product_suppliers = db.Table(
    "product_suppliers",
    db.Column("product_id", db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
    db.Column("supplier_id", db.Integer, db.ForeignKey("suppliers.id", ondelete="CASCADE"), primary_key=True),
)


class Product(db.Model):
    """
    Product master data.

    Owned by reference-data management. The stock ledger reads cost price and
    minimum_stock_level; the only field it writes is cost_price_cents, at
    purchase time (last purchase price wins).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_name", "product_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)

    # Authoritative storage in cents
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)

    minimum_stock_level = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    suppliers = db.relationship("Supplier", secondary=product_suppliers, back_populates="products", lazy="selectin")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.product_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_name": self.product_name,
            "sku": self.sku,
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "minimum_stock_level": self.minimum_stock_level,
            "is_active": self.is_active,
            "supplier_ids": sorted(s.id for s in self.suppliers),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Supplier(db.Model):
    """Supplier master data. Products it has delivered are tracked through product_suppliers."""
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    supplier_name = db.Column(db.String(255), nullable=False)
    contact_person = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    products = db.relationship("Product", secondary=product_suppliers, back_populates="suppliers", lazy="selectin")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supplier_name": self.supplier_name,
            "contact_person": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "product_ids": sorted(p.id for p in self.products),
            "created_at": to_utc_z(self.created_at),
        }


class Inventory(db.Model):
    """
    On-hand quantity per product (1:1).

    Created lazily the first time a product is stocked. current_stock is only
    ever changed by inventory_service.adjust_stock through a conditional
    server-side UPDATE; the CHECK constraint backs up the non-negative rule.
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.UniqueConstraint("product_id", name="uq_inventory_product"),
        db.CheckConstraint("current_stock >= 0", name="ck_inventory_current_stock_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    current_stock = db.Column(db.Integer, nullable=False, default=0)
    last_updated = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("inventory", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "current_stock": self.current_stock,
            "last_updated": to_utc_z(self.last_updated),
        }


class StockTransaction(db.Model):
    """
    Append-only stock movement ledger.

    - direction: stock-in | stock-out; quantity is always positive.
    - reference_kind: sale | purchase | manual, reference_id points at the
      document (no FK so the row outlives a deleted header).
    - reversal_of_id: set on compensating rows appended when a sale or
      purchase is deleted.

    IMMUTABLE: rows are never updated or deleted.
    """
    __tablename__ = "stock_transactions"
    __table_args__ = (
        db.Index("ix_stocktx_product_created", "product_id", "created_at"),
        db.Index("ix_stocktx_reference", "reference_kind", "reference_id"),
        db.CheckConstraint("quantity > 0", name="ck_stocktx_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    direction = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    reference_kind = db.Column(db.String(16), nullable=False, default="manual")
    reference_id = db.Column(db.Integer, nullable=True)
    reversal_of_id = db.Column(db.Integer, db.ForeignKey("stock_transactions.id"), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product")
    created_by = db.relationship("User")

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.direction == "stock-in" else -self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.product_name if self.product else None,
            "sku": self.product.sku if self.product else None,
            "direction": self.direction,
            "quantity": self.quantity,
            "reference_kind": self.reference_kind,
            "reference_id": self.reference_id,
            "reversal_of_id": self.reversal_of_id,
            "created_by_user_id": self.created_by_user_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
