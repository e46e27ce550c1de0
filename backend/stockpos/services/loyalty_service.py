# Overview: Service-layer operations for customer loyalty points and milestone rewards.

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import update

from ..models import Coupon, Customer, LoyaltyTransaction
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError
from .coupon_service import generate_loyalty_milestone_coupon

logger = logging.getLogger(__name__)

MILESTONE_POINTS = 500
# One point per 100 currency units of discounted subtotal
CENTS_PER_POINT = 10_000


@dataclass(frozen=True)
class MilestoneResult:
    balance: int
    coupon: Coupon | None = None


def points_for_amount(discounted_subtotal_cents: int) -> int:
    if discounted_subtotal_cents <= 0:
        return 0
    return discounted_subtotal_cents // CENTS_PER_POINT


def get_balance(session, customer_id: int) -> int:
    balance = session.query(Customer.loyalty_points).filter_by(id=customer_id).scalar()
    if balance is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    return int(balance)


def accrue_points(session, customer_id: int, points: int, *, sale_id: int | None = None) -> int:
    """
    Add points and count one more purchase. Runs inside the sale's transaction.

    Returns the new balance.
    """
    if points < 0:
        raise ValidationError("points must be >= 0")

    stmt = (
        update(Customer)
        .where(Customer.id == customer_id)
        .values(
            loyalty_points=Customer.loyalty_points + points,
            total_purchases=Customer.total_purchases + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if not result.rowcount:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})

    if points:
        session.add(
            LoyaltyTransaction(
                customer_id=customer_id,
                transaction_type="EARN",
                points=points,
                sale_id=sale_id,
                occurred_at=utcnow(),
            )
        )
        session.flush()
    return get_balance(session, customer_id)


def check_milestone(session, customer_id: int, *, sale_id: int | None = None) -> MilestoneResult:
    """
    Convert 500 points into a 5% coupon when the balance has reached the milestone.

    At most one conversion per call, however far past 500 the balance is.
    Called once per settlement, after accrue_points.
    """
    stmt = (
        update(Customer)
        .where(Customer.id == customer_id, Customer.loyalty_points >= MILESTONE_POINTS)
        .values(loyalty_points=Customer.loyalty_points - MILESTONE_POINTS)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if not result.rowcount:
        return MilestoneResult(balance=get_balance(session, customer_id))

    coupon = generate_loyalty_milestone_coupon(session, customer_id)
    session.add(
        LoyaltyTransaction(
            customer_id=customer_id,
            transaction_type="MILESTONE",
            points=-MILESTONE_POINTS,
            sale_id=sale_id,
            coupon_id=coupon.id,
            occurred_at=utcnow(),
        )
    )
    session.flush()

    balance = get_balance(session, customer_id)
    logger.info("loyalty milestone: customer %s received coupon %s, balance %s", customer_id, coupon.code, balance)
    return MilestoneResult(balance=balance, coupon=coupon)


def list_loyalty_transactions(session, customer_id: int) -> list[LoyaltyTransaction]:
    return (
        session.query(LoyaltyTransaction)
        .filter_by(customer_id=customer_id)
        .order_by(LoyaltyTransaction.occurred_at.asc(), LoyaltyTransaction.id.asc())
        .all()
    )
