# Overview: Service-layer operations for coupons; validation, pricing, issuing and redemption.

"""
Coupon Service

LIFECYCLE:
- Issued: welcome (customer registration), manual (staff), loyalty (500-point milestone)
- Redeemed: is_used False -> True, only inside sale settlement, exactly once

Codes are case-insensitive: stored and looked up upper-case.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..models import Coupon, Customer
from ..time_utils import add_days, add_months, utcnow
from ..validation import (
    ConflictError,
    CouponExpiredError,
    NotFoundError,
    ValidationError,
    require_positive_int,
    validate_discount,
)
from .concurrency import transaction

logger = logging.getLogger(__name__)

COUPON_PREFIX = "CPN"
CODE_LENGTH = 6
DEFAULT_DISCOUNT_KIND = "percentage"
DEFAULT_DISCOUNT_PERCENT = 5
DEFAULT_EXPIRY_DAYS = 30
CODE_ATTEMPTS = 5

_CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class CouponValidation:
    coupon_id: int
    code: str
    discount_kind: str
    discount_value: int
    customer_id: int | None
    customer_name: str | None
    expiry_date: datetime


def normalize_code(code) -> str:
    if code is None or not str(code).strip():
        raise ValidationError("Coupon code is required")
    return str(code).strip().upper()


def generate_code() -> str:
    return f"{COUPON_PREFIX}-{''.join(secrets.choice(_CODE_ALPHABET) for _ in range(CODE_LENGTH))}"


def compute_discount_cents(discount_kind: str, discount_value: int, subtotal_cents: int) -> int:
    """
    percentage: subtotal * value / 100, nearest cent (half-up)
    fixed: flat value in cents, never more than the subtotal
    """
    if subtotal_cents <= 0:
        return 0
    if discount_kind == "percentage":
        return (subtotal_cents * discount_value + 50) // 100
    return min(discount_value, subtotal_cents)


def is_expired(coupon: Coupon, now: datetime | None = None) -> bool:
    return coupon.expiry_date < (now or utcnow())


def find_coupon_by_code(session, code) -> Coupon | None:
    """Any coupon with this code, used or not."""
    return session.query(Coupon).filter(Coupon.code == normalize_code(code)).first()


def _issue_coupon(
    session,
    *,
    customer_id: int | None,
    discount_kind: str,
    discount_value: int,
    expiry_date: datetime,
    source: str,
) -> Coupon:
    for attempt in range(CODE_ATTEMPTS):
        coupon = Coupon(
            code=generate_code(),
            discount_kind=discount_kind,
            discount_value=discount_value,
            expiry_date=expiry_date,
            is_used=False,
            customer_id=customer_id,
            source=source,
            created_at=utcnow(),
        )
        try:
            with session.begin_nested():
                session.add(coupon)
            return coupon
        except IntegrityError:
            logger.debug("coupon code collision on attempt %s", attempt + 1)
    raise ConflictError("Could not allocate a unique coupon code")


def validate_coupon(session, code, *, now: datetime | None = None) -> CouponValidation:
    """
    Look up an unused coupon by code (case-insensitive).

    Raises NotFoundError when no unused coupon matches and CouponExpiredError
    when it matched but has expired. Read-only.
    """
    normalized = normalize_code(code)
    coupon = (
        session.query(Coupon)
        .filter(Coupon.code == normalized, Coupon.is_used.is_(False))
        .first()
    )
    if coupon is None:
        raise NotFoundError("Invalid or already used coupon code", details={"code": normalized})
    if is_expired(coupon, now):
        raise CouponExpiredError("Coupon has expired", details={"code": normalized})

    customer = coupon.customer
    return CouponValidation(
        coupon_id=coupon.id,
        code=coupon.code,
        discount_kind=coupon.discount_kind,
        discount_value=coupon.discount_value,
        customer_id=coupon.customer_id,
        customer_name=customer.full_name if customer else None,
        expiry_date=coupon.expiry_date,
    )


def generate_manual_coupon(
    session,
    *,
    customer_id,
    discount_kind: str | None = None,
    discount_value=None,
    expiry_days=None,
) -> Coupon:
    """Staff-issued coupon for a customer. Defaults: 5% off, valid 30 days."""
    customer_id = require_positive_int(customer_id, "customer_id")
    kind, value = validate_discount(
        discount_kind or DEFAULT_DISCOUNT_KIND,
        DEFAULT_DISCOUNT_PERCENT if discount_value is None else discount_value,
    )
    days = DEFAULT_EXPIRY_DAYS if expiry_days is None else require_positive_int(expiry_days, "expiry_days")

    with transaction(session, label="manual coupon"):
        if session.get(Customer, customer_id) is None:
            raise NotFoundError("Customer not found", details={"customer_id": customer_id})
        coupon = _issue_coupon(
            session,
            customer_id=customer_id,
            discount_kind=kind,
            discount_value=value,
            expiry_date=add_days(utcnow(), days),
            source="manual",
        )
    logger.info("manual coupon %s issued to customer %s", coupon.code, customer_id)
    return coupon


def generate_welcome_coupon(session, customer_id: int) -> Coupon:
    """Issued once at registration: 5% off, valid one calendar month. Caller's transaction."""
    return _issue_coupon(
        session,
        customer_id=customer_id,
        discount_kind="percentage",
        discount_value=DEFAULT_DISCOUNT_PERCENT,
        expiry_date=add_months(utcnow(), 1),
        source="welcome",
    )


def generate_loyalty_milestone_coupon(session, customer_id: int) -> Coupon:
    """Issued by the loyalty account at the 500-point crossing: 5% off, valid 30 days. Caller's transaction."""
    return _issue_coupon(
        session,
        customer_id=customer_id,
        discount_kind="percentage",
        discount_value=DEFAULT_DISCOUNT_PERCENT,
        expiry_date=add_days(utcnow(), DEFAULT_EXPIRY_DAYS),
        source="loyalty",
    )


def mark_coupon_used(session, coupon_id: int) -> None:
    """
    Redeem a coupon: the single False -> True transition.

    Conditional UPDATE so two settlements racing for the same coupon cannot
    both win; the loser gets ConflictError and its settlement rolls back.
    """
    stmt = (
        update(Coupon)
        .where(Coupon.id == coupon_id, Coupon.is_used.is_(False))
        .values(is_used=True, used_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if not result.rowcount:
        raise ConflictError("Coupon has already been used", details={"coupon_id": coupon_id})
    session.query(Coupon).filter_by(id=coupon_id).populate_existing().one()


def list_customer_coupons(session, customer_id: int) -> list[Coupon]:
    return (
        session.query(Coupon)
        .filter(Coupon.customer_id == customer_id)
        .order_by(Coupon.created_at.desc(), Coupon.id.desc())
        .all()
    )
