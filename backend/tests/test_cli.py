"""
CLI command tests (Flask CliRunner).
"""

from datetime import timedelta

import pytest

from stockpos.models import Coupon, User
from stockpos.services import inventory_service
from stockpos.time_utils import utcnow


@pytest.fixture(scope='function')
def runner(app, db_session):
    return app.test_cli_runner()


def test_system_init_is_idempotent(runner, db_session):
    first = runner.invoke(args=["system", "init"])
    second = runner.invoke(args=["system", "init"])

    assert first.exit_code == 0
    assert "PASS Created admin" in first.output
    assert "PASS Using existing admin" in second.output
    assert db_session.query(User).filter_by(role="admin").count() == 1


def test_stock_in_and_out(runner, db_session, widget):
    result = runner.invoke(args=["stock", "in", "--product-id", str(widget.id), "--quantity", "6"])
    assert result.exit_code == 0
    assert "-> 6" in result.output

    result = runner.invoke(args=["stock", "out", "--product-id", str(widget.id), "--quantity", "2"])
    assert "-> 4" in result.output
    assert inventory_service.get_quantity_on_hand(db_session, widget.id) == 4


def test_stock_out_failure_is_reported(runner, db_session, widget):
    result = runner.invoke(args=["stock", "out", "--product-id", str(widget.id), "--quantity", "2"])

    assert result.exit_code == 0
    assert "FAIL Error: Insufficient stock for Widget" in result.output


def test_stock_history_and_low(runner, db_session, widget, stock):
    stock(widget, 3)

    history = runner.invoke(args=["stock", "history", "--product-id", str(widget.id)])
    assert "stock-in" in history.output
    assert "Showing 1 of 1 entries" in history.output

    low = runner.invoke(args=["stock", "low"])
    assert "WID-001" in low.output


def test_stock_history_rejects_reference_without_kind(runner, db_session):
    result = runner.invoke(args=["stock", "history", "--reference-id", "4"])
    assert "FAIL Error: reference_id requires reference_kind" in result.output


def test_ledger_verify(runner, db_session, widget, stock):
    stock(widget, 3)

    all_products = runner.invoke(args=["ledger", "verify"])
    one_product = runner.invoke(args=["ledger", "verify", "--product-id", str(widget.id)])

    assert "PASS Ledger consistent" in all_products.output
    assert "PASS product" in one_product.output


def test_coupons_generate_and_validate(runner, db_session, customer):
    result = runner.invoke(args=["coupons", "generate", "--customer-id", str(customer.id), "--value", "10"])
    assert "PASS Created coupon CPN-" in result.output

    code = db_session.query(Coupon).one().code
    result = runner.invoke(args=["coupons", "validate", code.lower()])
    assert f"PASS {code}: percentage 10 for Dana Diaz" in result.output


def test_coupons_validate_expired(runner, db_session):
    db_session.add(Coupon(code="CPN-EXP999", discount_kind="fixed", discount_value=100,
                          expiry_date=utcnow() - timedelta(days=1), source="manual"))
    db_session.commit()

    result = runner.invoke(args=["coupons", "validate", "CPN-EXP999"])
    assert "FAIL Coupon has expired" in result.output


def test_sequences_peek(runner, db_session):
    result = runner.invoke(args=["sequences", "peek", "invoice"])
    assert result.output.strip() == "INV-000001"
