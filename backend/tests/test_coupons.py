"""
Coupon engine tests: issuing, validation, discount math and single use.
"""

import re
from datetime import timedelta

import pytest

from stockpos.models import Coupon
from stockpos.services import coupon_service, customer_service
from stockpos.services.concurrency import transaction
from stockpos.time_utils import utcnow
from stockpos.validation import (
    ConflictError,
    CouponExpiredError,
    NotFoundError,
    ValidationError,
)


def _coupon(db_session, code="CPN-TEST01", *, kind="percentage", value=5, expires_in_days=30, used=False, customer=None):
    coupon = Coupon(
        code=code,
        discount_kind=kind,
        discount_value=value,
        expiry_date=utcnow() + timedelta(days=expires_in_days),
        is_used=used,
        customer_id=customer.id if customer else None,
        source="manual",
    )
    db_session.add(coupon)
    db_session.commit()
    return coupon


def test_generated_code_format():
    code = coupon_service.generate_code()
    assert re.fullmatch(r"CPN-[A-Z0-9]{6}", code)


@pytest.mark.parametrize(
    "kind,value,subtotal,expected",
    [
        ("percentage", 5, 100000, 5000),
        ("percentage", 5, 1010, 51),     # 50.5 rounds half-up
        ("percentage", 100, 4321, 4321),
        ("fixed", 500, 2000, 500),
        ("fixed", 5000, 2000, 2000),     # never more than the subtotal
        ("fixed", 500, 0, 0),
    ],
)
def test_compute_discount_cents(kind, value, subtotal, expected):
    assert coupon_service.compute_discount_cents(kind, value, subtotal) == expected


def test_validate_coupon_is_case_insensitive_and_reports_customer(db_session, customer):
    _coupon(db_session, "CPN-ABC123", customer=customer)

    result = coupon_service.validate_coupon(db_session, "  cpn-abc123 ")

    assert result.code == "CPN-ABC123"
    assert result.discount_kind == "percentage"
    assert result.discount_value == 5
    assert result.customer_id == customer.id
    assert result.customer_name == "Dana Diaz"


def test_validate_unknown_or_used_coupon_is_not_found(db_session):
    _coupon(db_session, "CPN-USED01", used=True)

    with pytest.raises(NotFoundError):
        coupon_service.validate_coupon(db_session, "CPN-NOPE00")
    with pytest.raises(NotFoundError):
        coupon_service.validate_coupon(db_session, "CPN-USED01")


def test_validate_expired_coupon(db_session):
    _coupon(db_session, "CPN-OLD001", expires_in_days=-1)

    with pytest.raises(CouponExpiredError) as exc_info:
        coupon_service.validate_coupon(db_session, "CPN-OLD001")
    assert isinstance(exc_info.value, ConflictError)


def test_validate_requires_code(db_session):
    with pytest.raises(ValidationError):
        coupon_service.validate_coupon(db_session, "   ")


def test_mark_coupon_used_only_once(db_session):
    coupon = _coupon(db_session)

    with transaction(db_session):
        coupon_service.mark_coupon_used(db_session, coupon.id)

    db_session.refresh(coupon)
    assert coupon.is_used is True
    assert coupon.used_at is not None

    with pytest.raises(ConflictError):
        with transaction(db_session):
            coupon_service.mark_coupon_used(db_session, coupon.id)


def test_manual_coupon_defaults(db_session, customer):
    before = utcnow()
    coupon = coupon_service.generate_manual_coupon(db_session, customer_id=customer.id)

    assert coupon.source == "manual"
    assert coupon.discount_kind == "percentage"
    assert coupon.discount_value == 5
    assert coupon.is_used is False
    assert before + timedelta(days=29) < coupon.expiry_date <= utcnow() + timedelta(days=30)


def test_manual_fixed_coupon(db_session, customer):
    coupon = coupon_service.generate_manual_coupon(
        db_session, customer_id=customer.id, discount_kind="fixed", discount_value=1500, expiry_days=7
    )
    assert (coupon.discount_kind, coupon.discount_value) == ("fixed", 1500)


def test_manual_coupon_validation(db_session, customer):
    with pytest.raises(ValidationError):
        coupon_service.generate_manual_coupon(
            db_session, customer_id=customer.id, discount_kind="percentage", discount_value=150
        )
    with pytest.raises(ValidationError):
        coupon_service.generate_manual_coupon(db_session, customer_id=customer.id, discount_kind="bogus")
    with pytest.raises(NotFoundError):
        coupon_service.generate_manual_coupon(db_session, customer_id=424242)
    assert db_session.query(Coupon).count() == 0


def test_registration_issues_welcome_coupon(db_session):
    customer = customer_service.register_customer(
        db_session, first_name="Eve", last_name="Evans", email="EVE@Example.test"
    )

    assert customer.email == "eve@example.test"
    coupons = coupon_service.list_customer_coupons(db_session, customer.id)
    assert len(coupons) == 1
    assert coupons[0].source == "welcome"
    assert coupons[0].discount_value == 5
    assert coupons[0].expiry_date > utcnow() + timedelta(days=27)


def test_registration_rejects_duplicate_email(db_session, customer):
    with pytest.raises(ConflictError):
        customer_service.register_customer(
            db_session, first_name="Dup", last_name="Licate", email="Dana@Example.test"
        )
    assert db_session.query(Coupon).count() == 0


def test_get_customer(db_session, customer):
    assert customer_service.get_customer(db_session, customer.id).email == customer.email
    with pytest.raises(NotFoundError) as excinfo:
        customer_service.get_customer(db_session, 424242)
    assert excinfo.value.details == {"customer_id": 424242}
