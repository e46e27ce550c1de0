from __future__ import annotations

from dataclasses import dataclass
from typing import Any


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# A line total is price x quantity, so it gets a wider ceiling
MAX_LINE_TOTAL_CENTS = MAX_PRICE_CENTS * 1000


class ServiceError(Exception):
    """Base class for errors raised by the transaction engine."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(ServiceError, ValueError):
    """400-level input problem."""


class NotFoundError(ServiceError, LookupError):
    """Unknown product, customer, supplier, coupon, sale or purchase id."""


class ConflictError(ServiceError, ValueError):
    """409-level business rule conflict (e.g., insufficient stock, used coupon)."""


class InsufficientStockError(ConflictError):
    """A stock-out would drive on-hand quantity below zero."""
    def __init__(self, product_id: int, available: int, requested: int, product_name: str | None = None):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, Requested: {requested}",
            details={
                "product_id": product_id,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class CouponExpiredError(ConflictError):
    """Coupon exists and is unused but its expiry date has passed."""


class PersistenceError(ServiceError):
    """The underlying store was unavailable or rejected a write."""


REFERENCE_KINDS = ("sale", "purchase", "manual")
DIRECTIONS = ("stock-in", "stock-out")
DISCOUNT_KINDS = ("percentage", "fixed")


@dataclass(frozen=True)
class SaleItemInput:
    product_id: int | None
    product_name: str
    quantity: int
    unit_price_cents: int
    cost_price_cents: int | None
    total_cents: int


@dataclass(frozen=True)
class PurchaseItemInput:
    product_id: int
    quantity: int
    cost_price_cents: int


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion.

    Rejects bools, floats, blanks, scientific notation and decimals so that
    "1e3" or 12.5 never silently become quantities.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def require_positive_int(value: Any, field: str) -> int:
    if value is None:
        raise ValidationError(f"{field} is required")
    number = coerce_int(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be > 0")
    return number


def coerce_cents(
    value: Any, field: str, *, required: bool = True, limit: int = MAX_PRICE_CENTS
) -> int | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    cents = coerce_int(value, field)
    if cents < 0:
        raise ValidationError(f"{field} must be >= 0")
    if cents > limit:
        raise ValidationError(f"{field} is out of range")
    return cents


def require_text(value: Any, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    return str(value).strip()


def optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_sale_items(items: Any) -> list[SaleItemInput]:
    """
    Normalize sale line payloads.

    Each item: product_id (optional), product_name, quantity, unit_price_cents,
    cost_price_cents (optional, only used for items without a product), total_cents
    (optional, defaults to quantity * unit_price_cents).
    """
    if not items or not isinstance(items, (list, tuple)):
        raise ValidationError("At least one item is required")

    cleaned: list[SaleItemInput] = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = raw.get("product_id")
        if product_id is not None:
            product_id = require_positive_int(product_id, f"items[{index}].product_id")
        quantity = require_positive_int(raw.get("quantity"), f"items[{index}].quantity")
        unit_price = coerce_cents(raw.get("unit_price_cents"), f"items[{index}].unit_price_cents")
        total = coerce_cents(
            raw.get("total_cents"), f"items[{index}].total_cents", required=False, limit=MAX_LINE_TOTAL_CENTS
        )
        if total is None:
            total = unit_price * quantity
        cleaned.append(
            SaleItemInput(
                product_id=product_id,
                product_name=optional_text(raw.get("product_name")) or "",
                quantity=quantity,
                unit_price_cents=unit_price,
                cost_price_cents=coerce_cents(
                    raw.get("cost_price_cents"), f"items[{index}].cost_price_cents", required=False
                ),
                total_cents=total,
            )
        )
    return cleaned


def validate_purchase_items(items: Any) -> list[PurchaseItemInput]:
    if not items or not isinstance(items, (list, tuple)):
        raise ValidationError("At least one product is required")

    cleaned: list[PurchaseItemInput] = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        cleaned.append(
            PurchaseItemInput(
                product_id=require_positive_int(raw.get("product_id"), f"items[{index}].product_id"),
                quantity=require_positive_int(raw.get("quantity"), f"items[{index}].quantity"),
                cost_price_cents=coerce_cents(raw.get("cost_price_cents"), f"items[{index}].cost_price_cents"),
            )
        )
    return cleaned


def validate_discount(kind: str, value: Any) -> tuple[str, int]:
    if kind not in DISCOUNT_KINDS:
        raise ValidationError(f"discount_kind must be one of: {', '.join(DISCOUNT_KINDS)}")
    amount = require_positive_int(value, "discount_value")
    if kind == "percentage" and amount > 100:
        raise ValidationError("percentage discount_value cannot exceed 100")
    return kind, amount
