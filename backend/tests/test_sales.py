"""
Sale settlement tests.

Covers pricing (discount, tax, profit), coupon redemption, loyalty accrual,
stock posting, all-or-nothing rollback and append-only reversal.
"""

from datetime import timedelta

import pytest

from conftest import sale_item
from stockpos.models import Coupon, Customer, DocumentSequence, Sale, SaleLine, StockTransaction
from stockpos.services import coupon_service, inventory_service, sales_service
from stockpos.services.filters import LedgerQuery, SaleQuery
from stockpos.time_utils import utcnow
from stockpos.validation import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)


def _coupon(db_session, code, *, kind="percentage", value=5, expires_in_days=30, used=False):
    coupon = Coupon(
        code=code,
        discount_kind=kind,
        discount_value=value,
        expiry_date=utcnow() + timedelta(days=expires_in_days),
        is_used=used,
        source="manual",
    )
    db_session.add(coupon)
    db_session.commit()
    return coupon


def test_sale_prices_discount_tax_and_profit(db_session, gadget, stock):
    stock(gadget, 5)
    _coupon(db_session, "CPN-FIVE05")

    sale = sales_service.create_sale(
        db_session,
        customer_name="Walk-in",
        items=[sale_item(gadget, 1)],
        payment_method="cash",
        coupon_code="cpn-five05",
    )

    assert sale.subtotal_cents == 100000
    assert sale.discount_cents == 5000
    assert sale.discounted_subtotal_cents == 95000
    assert sale.tax_cents == 9500
    assert sale.grand_total_cents == 104500
    assert sale.total_cost_cents == 40000
    assert sale.profit_cents == 95000 - 40000
    assert sale.coupon.code == "CPN-FIVE05"


def test_tax_rounds_half_up():
    totals = sales_service.compute_totals(1005, 0, 0)
    assert totals.tax_cents == 101  # 100.5
    assert totals.grand_total_cents == 1106


def test_sale_posts_stock_out_per_line_and_numbers_invoice(db_session, widget, gadget, stock, cashier):
    stock(widget, 50)
    stock(gadget, 3)

    sale = sales_service.create_sale(
        db_session,
        customer_name="Walk-in",
        items=[sale_item(widget, 10), sale_item(gadget, 2)],
        payment_method="card",
        actor_id=cashier.id,
    )

    assert sale.invoice_number == "INV-000001"
    assert inventory_service.get_quantity_on_hand(db_session, widget.id) == 40
    assert inventory_service.get_quantity_on_hand(db_session, gadget.id) == 1

    entries = inventory_service.list_stock_transactions(
        db_session, LedgerQuery(reference_kind="sale", reference_id=sale.id)
    ).items
    assert sorted((e.product_id, e.direction, e.quantity) for e in entries) == sorted(
        [(widget.id, "stock-out", 10), (gadget.id, "stock-out", 2)]
    )
    assert all(e.notes == "Sale: INV-000001" for e in entries)
    assert all(e.created_by_user_id == cashier.id for e in entries)


def test_invoice_numbers_are_contiguous(db_session, widget, stock):
    stock(widget, 10)
    numbers = [
        sales_service.create_sale(
            db_session, customer_name="Walk-in", items=[sale_item(widget, 1)], payment_method="cash"
        ).invoice_number
        for _ in range(3)
    ]
    assert numbers == ["INV-000001", "INV-000002", "INV-000003"]


def test_cost_snapshot_is_taken_from_product(db_session, widget, stock):
    stock(widget, 5)
    item = sale_item(widget, 2)
    item["cost_price_cents"] = 1  # ignored for stocked products

    sale = sales_service.create_sale(db_session, customer_name="Walk-in", items=[item], payment_method="cash")

    assert sale.lines[0].cost_price_cents == 600
    assert sale.total_cost_cents == 1200


def test_unstocked_line_uses_supplied_cost_and_posts_no_ledger_row(db_session):
    sale = sales_service.create_sale(
        db_session,
        customer_name="Walk-in",
        items=[{
            "product_name": "Gift wrapping",
            "quantity": 1,
            "unit_price_cents": 300,
            "cost_price_cents": 50,
        }],
        payment_method="cash",
    )

    assert sale.lines[0].product_id is None
    assert sale.total_cost_cents == 50
    assert db_session.query(StockTransaction).count() == 0


def test_insufficient_stock_rejects_whole_sale(db_session, widget, stock):
    stock(widget, 5)

    with pytest.raises(InsufficientStockError) as exc_info:
        sales_service.create_sale(
            db_session, customer_name="Walk-in", items=[sale_item(widget, 10)], payment_method="cash"
        )

    assert isinstance(exc_info.value, ConflictError)
    assert inventory_service.get_quantity_on_hand(db_session, widget.id) == 5
    assert db_session.query(Sale).count() == 0
    assert db_session.query(SaleLine).count() == 0


def test_repeated_product_lines_are_checked_together(db_session, widget, stock):
    stock(widget, 5)

    with pytest.raises(InsufficientStockError) as exc_info:
        sales_service.create_sale(
            db_session,
            customer_name="Walk-in",
            items=[sale_item(widget, 3), sale_item(widget, 3)],
            payment_method="cash",
        )

    assert exc_info.value.requested == 6
    assert inventory_service.get_quantity_on_hand(db_session, widget.id) == 5


def test_failure_after_header_rolls_back_everything(db_session, widget, gadget, stock, customer, monkeypatch):
    stock(widget, 5)
    stock(gadget, 5)
    coupon = _coupon(db_session, "CPN-ROLL01")

    calls = []
    real_adjust = sales_service.adjust_stock

    def failing_adjust(session, **kwargs):
        calls.append(kwargs["product_id"])
        if len(calls) == 2:
            raise InsufficientStockError(product_id=kwargs["product_id"], available=0, requested=1)
        return real_adjust(session, **kwargs)

    monkeypatch.setattr(sales_service, "adjust_stock", failing_adjust)

    with pytest.raises(InsufficientStockError):
        sales_service.create_sale(
            db_session,
            customer_name="Dana Diaz",
            customer_id=customer.id,
            items=[sale_item(widget, 1), sale_item(gadget, 1)],
            payment_method="cash",
            coupon_code="CPN-ROLL01",
        )

    assert db_session.query(Sale).count() == 0
    assert inventory_service.get_quantity_on_hand(db_session, widget.id) == 5
    db_session.refresh(coupon)
    assert coupon.is_used is False
    db_session.refresh(customer)
    assert customer.loyalty_points == 0
    assert customer.total_purchases == 0
    assert inventory_service.find_ledger_drift(db_session) == []


def test_store_rejection_mid_sale_rolls_back_and_reports_persistence_error(db_session, widget, stock):
    stock(widget, 5)
    sales_service.create_sale(db_session, customer_name="A", items=[sale_item(widget, 1)], payment_method="cash")
    coupon = _coupon(db_session, "CPN-STORE1")

    # Rewind the counter so the next header collides with INV-000001
    db_session.query(DocumentSequence).filter_by(series="invoice").update({"next_number": 1})
    db_session.commit()

    with pytest.raises(PersistenceError) as excinfo:
        sales_service.create_sale(
            db_session, customer_name="B", items=[sale_item(widget, 1)], payment_method="cash", coupon_code="CPN-STORE1"
        )

    assert "invoice_number" in excinfo.value.details["error"]
    assert db_session.query(Sale).count() == 1
    assert inventory_service.get_quantity_on_hand(db_session, widget.id) == 4
    assert inventory_service.find_ledger_drift(db_session) == []
    db_session.refresh(coupon)
    assert coupon.is_used is False


def test_coupon_cannot_be_used_twice(db_session, widget, stock):
    stock(widget, 10)
    _coupon(db_session, "CPN-ONCE01")

    sales_service.create_sale(
        db_session, customer_name="A", items=[sale_item(widget, 1)], payment_method="cash", coupon_code="CPN-ONCE01"
    )

    with pytest.raises(ConflictError):
        sales_service.create_sale(
            db_session, customer_name="B", items=[sale_item(widget, 1)], payment_method="cash", coupon_code="CPN-ONCE01"
        )
    with pytest.raises(NotFoundError):
        coupon_service.validate_coupon(db_session, "CPN-ONCE01")

    assert db_session.query(Sale).count() == 1
    assert inventory_service.get_quantity_on_hand(db_session, widget.id) == 9


def test_unknown_coupon_rejects_sale(db_session, widget, stock):
    stock(widget, 2)
    with pytest.raises(NotFoundError):
        sales_service.create_sale(
            db_session, customer_name="A", items=[sale_item(widget, 1)], payment_method="cash", coupon_code="CPN-XXXXXX"
        )
    assert db_session.query(Sale).count() == 0


def test_expired_coupon_is_ignored(db_session, widget, stock):
    stock(widget, 2)
    coupon = _coupon(db_session, "CPN-OLD002", expires_in_days=-2)

    sale = sales_service.create_sale(
        db_session, customer_name="A", items=[sale_item(widget, 1)], payment_method="cash", coupon_code="CPN-OLD002"
    )

    assert sale.discount_cents == 0
    assert sale.coupon_id is None
    db_session.refresh(coupon)
    assert coupon.is_used is False


def test_fixed_coupon_is_capped_at_subtotal(db_session, widget, stock):
    stock(widget, 2)
    _coupon(db_session, "CPN-BIG001", kind="fixed", value=5000)

    sale = sales_service.create_sale(
        db_session, customer_name="A", items=[sale_item(widget, 1)], payment_method="cash", coupon_code="CPN-BIG001"
    )

    assert sale.discount_cents == 1000
    assert sale.tax_cents == 0
    assert sale.grand_total_cents == 0


def test_loyalty_milestone_through_sale(db_session, customer, stock, widget):
    customer.loyalty_points = 495
    db_session.commit()
    stock(widget, 1)

    sale = sales_service.create_sale(
        db_session,
        customer_name="Dana Diaz",
        customer_id=customer.id,
        items=[sale_item(widget, 1, unit_price_cents=80000)],
        payment_method="cash",
    )

    assert sale.points_earned == 8
    db_session.refresh(customer)
    assert customer.loyalty_points == 3
    assert customer.total_purchases == 1
    coupons = coupon_service.list_customer_coupons(db_session, customer.id)
    assert [c.source for c in coupons] == ["loyalty"]


def test_walk_in_sale_earns_no_points(db_session, gadget, stock):
    stock(gadget, 1)
    sale = sales_service.create_sale(
        db_session, customer_name="Walk-in", items=[sale_item(gadget, 1)], payment_method="cash"
    )
    assert sale.points_earned == 0


def test_unknown_customer_rejects_sale(db_session, widget, stock):
    stock(widget, 1)
    with pytest.raises(NotFoundError) as excinfo:
        sales_service.create_sale(
            db_session, customer_name="Ghost", customer_id=999, items=[sale_item(widget, 1)], payment_method="cash"
        )
    assert excinfo.value.details == {"customer_id": 999}
    assert inventory_service.get_quantity_on_hand(db_session, widget.id) == 1


@pytest.mark.parametrize(
    "kwargs",
    [
        {"customer_name": "", "items": [{"product_name": "x", "quantity": 1, "unit_price_cents": 1}], "payment_method": "cash"},
        {"customer_name": "A", "items": [], "payment_method": "cash"},
        {"customer_name": "A", "items": [{"product_name": "x", "quantity": 0, "unit_price_cents": 1}], "payment_method": "cash"},
        {"customer_name": "A", "items": [{"product_name": "x", "quantity": 1, "unit_price_cents": 1}], "payment_method": " "},
    ],
)
def test_invalid_sale_input(db_session, kwargs):
    with pytest.raises(ValidationError):
        sales_service.create_sale(db_session, **kwargs)
    assert db_session.query(Sale).count() == 0


def test_delete_sale_restores_stock_append_only(db_session, widget, stock):
    stock(widget, 50)
    sale = sales_service.create_sale(
        db_session, customer_name="A", items=[sale_item(widget, 10)], payment_method="cash"
    )
    assert inventory_service.get_quantity_on_hand(db_session, widget.id) == 40
    original = db_session.query(StockTransaction).filter_by(reference_kind="sale").one()

    sale_id = sale.id

    reversal = sales_service.delete_sale(db_session, sale_id)

    assert reversal.document_id == sale_id
    assert reversal.document_number == "INV-000001"
    assert inventory_service.get_quantity_on_hand(db_session, widget.id) == 50
    assert db_session.get(Sale, sale_id) is None
    assert db_session.query(SaleLine).count() == 0

    compensating = reversal.adjustments[0].entry
    assert compensating.direction == "stock-in"
    assert compensating.quantity == 10
    assert compensating.reference_kind == "manual"
    assert compensating.reference_id is None
    assert compensating.reversal_of_id == original.id
    assert compensating.notes == "Sale deleted: INV-000001"

    # history is kept
    assert db_session.query(StockTransaction).count() == 3
    assert inventory_service.verify_conservation(db_session, widget.id).consistent


def test_delete_sale_does_not_undo_coupon_or_loyalty(db_session, customer, widget, stock):
    stock(widget, 1)
    _coupon(db_session, "CPN-KEEP01")
    sale = sales_service.create_sale(
        db_session,
        customer_name="Dana Diaz",
        customer_id=customer.id,
        items=[sale_item(widget, 1, unit_price_cents=30000)],
        payment_method="cash",
        coupon_code="CPN-KEEP01",
    )

    sales_service.delete_sale(db_session, sale.id)

    assert db_session.query(Coupon).filter_by(code="CPN-KEEP01").one().is_used is True
    assert db_session.get(Customer, customer.id).loyalty_points == 2


def test_delete_unknown_sale(db_session):
    with pytest.raises(NotFoundError):
        sales_service.delete_sale(db_session, 12345)


def test_update_sale_reprices_but_keeps_discount(db_session, widget, gadget, stock):
    stock(widget, 10)
    stock(gadget, 10)
    _coupon(db_session, "CPN-UPD001")
    sale = sales_service.create_sale(
        db_session, customer_name="A", items=[sale_item(gadget, 1)], payment_method="cash", coupon_code="CPN-UPD001"
    )
    assert sale.discount_cents == 5000

    updated = sales_service.update_sale(
        db_session, sale.id, items=[sale_item(widget, 3)], customer_name="Alex", payment_method="card"
    )

    assert updated.customer_name == "Alex"
    assert updated.payment_method == "card"
    assert updated.subtotal_cents == 3000
    assert updated.discount_cents == 3000  # clamped to the new subtotal
    assert updated.tax_cents == 0
    assert updated.total_cost_cents == 1800
    assert updated.profit_cents == -1800
    assert [line.product_id for line in updated.lines] == [widget.id]
    # stock untouched by edits
    assert inventory_service.get_quantity_on_hand(db_session, gadget.id) == 9
    assert inventory_service.get_quantity_on_hand(db_session, widget.id) == 10


def test_delete_after_update_reverses_what_was_posted(db_session, widget, gadget, stock):
    stock(widget, 10)
    stock(gadget, 10)
    sale = sales_service.create_sale(
        db_session, customer_name="A", items=[sale_item(gadget, 4)], payment_method="cash"
    )
    sales_service.update_sale(db_session, sale.id, items=[sale_item(widget, 1)])

    sales_service.delete_sale(db_session, sale.id)

    assert inventory_service.get_quantity_on_hand(db_session, gadget.id) == 10
    assert inventory_service.get_quantity_on_hand(db_session, widget.id) == 10


def test_list_sales_and_stats(db_session, widget, customer, stock):
    stock(widget, 10)
    first = sales_service.create_sale(
        db_session, customer_name="A", items=[sale_item(widget, 1)], payment_method="cash"
    )
    second = sales_service.create_sale(
        db_session, customer_name="Dana Diaz", customer_id=customer.id, items=[sale_item(widget, 2)], payment_method="cash"
    )

    page = sales_service.list_sales(db_session, SaleQuery(limit=1))
    assert page.total == 2
    assert page.total_pages == 2
    assert [s.id for s in page.items] == [second.id]

    by_customer = sales_service.list_sales(db_session, SaleQuery(customer_id=customer.id))
    assert [s.id for s in by_customer.items] == [second.id]

    by_invoice = sales_service.list_sales(db_session, SaleQuery(invoice_search="000001"))
    assert [s.id for s in by_invoice.items] == [first.id]

    stats = sales_service.sales_stats(db_session)
    assert stats["total_sales"] == 2
    assert stats["today_sales"] == 2
    assert stats["total_revenue_cents"] == first.grand_total_cents + second.grand_total_cents
    assert stats["total_profit_cents"] == (1000 - 600) + (2000 - 1200)
