# Overview: Customer registration hook that issues the welcome coupon.

from __future__ import annotations

import logging

from ..models import Customer
from ..validation import ConflictError, NotFoundError, optional_text, require_text
from .concurrency import transaction
from .coupon_service import generate_welcome_coupon

logger = logging.getLogger(__name__)


def get_customer(session, customer_id: int) -> Customer:
    customer = session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    return customer


def register_customer(
    session,
    *,
    first_name,
    last_name,
    email=None,
    phone=None,
) -> Customer:
    """Create a customer and its one-off welcome coupon together."""
    first_name = require_text(first_name, "first_name")
    last_name = require_text(last_name, "last_name")
    email = optional_text(email)
    if email:
        email = email.lower()

    with transaction(session, label="customer registration"):
        if email and session.query(Customer.id).filter_by(email=email).first():
            raise ConflictError("Customer already exists", details={"email": email})

        customer = Customer(
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=optional_text(phone),
            loyalty_points=0,
            total_purchases=0,
        )
        session.add(customer)
        session.flush()
        coupon = generate_welcome_coupon(session, customer.id)

    logger.info("customer %s registered with welcome coupon %s", customer.id, coupon.code)
    return customer
