"""
Sales Service - point-of-sale settlement and reversal

WHY: A sale touches four things that must change together: the sale document,
coupon redemption, the customer's loyalty balance and the stock ledger. All of
it happens inside one transaction(); any failure (insufficient stock at write
time, a coupon redeemed by a concurrent sale, a store error) rolls back every
row written by the settlement.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import func

from ..models import Sale, SaleLine, StockTransaction
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
    optional_text,
    require_positive_int,
    require_text,
    validate_sale_items,
)
from .concurrency import lock_for_update, transaction
from .coupon_service import compute_discount_cents, find_coupon_by_code, is_expired, mark_coupon_used
from .customer_service import get_customer
from .document_service import next_document_number
from .filters import Page, SaleQuery
from .inventory_service import StockAdjustment, adjust_stock, get_product, get_quantity_on_hand
from .loyalty_service import accrue_points, check_milestone, points_for_amount

logger = logging.getLogger(__name__)

# 10% tax on the discounted subtotal, in basis points
TAX_RATE_BPS = 1000


@dataclass(frozen=True)
class SaleTotals:
    subtotal_cents: int
    discount_cents: int
    discounted_subtotal_cents: int
    tax_cents: int
    grand_total_cents: int
    total_cost_cents: int
    profit_cents: int


@dataclass(frozen=True)
class Reversal:
    document_id: int
    document_number: str
    adjustments: tuple[StockAdjustment, ...]


def compute_totals(subtotal_cents: int, discount_cents: int, total_cost_cents: int) -> SaleTotals:
    discounted = subtotal_cents - discount_cents
    # nearest-cent rounding (half-up)
    tax = (discounted * TAX_RATE_BPS + 5000) // 10000
    return SaleTotals(
        subtotal_cents=subtotal_cents,
        discount_cents=discount_cents,
        discounted_subtotal_cents=discounted,
        tax_cents=tax,
        grand_total_cents=discounted + tax,
        total_cost_cents=total_cost_cents,
        profit_cents=discounted - total_cost_cents,
    )


def _build_lines(session, items) -> tuple[list[SaleLine], int]:
    """Sale lines with cost snapshots, plus the total cost."""
    lines = []
    total_cost = 0
    for item in items:
        if item.product_id is not None:
            product = get_product(session, item.product_id)
            cost = product.cost_price_cents
            name = item.product_name or product.product_name
        else:
            cost = item.cost_price_cents or 0
            name = item.product_name
            if not name:
                raise ValidationError("product_name is required for items without a product")
        total_cost += cost * item.quantity
        lines.append(
            SaleLine(
                product_id=item.product_id,
                product_name=name,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                cost_price_cents=cost,
                line_total_cents=item.total_cents,
            )
        )
    return lines, total_cost


def _check_availability(session, lines: list[SaleLine]) -> None:
    """Advisory pre-check; adjust_stock re-verifies at write time."""
    requested: dict[int, int] = {}
    names: dict[int, str] = {}
    for line in lines:
        if line.product_id is None:
            continue
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity
        names[line.product_id] = line.product_name

    for product_id, qty in requested.items():
        available = get_quantity_on_hand(session, product_id)
        if available < qty:
            raise InsufficientStockError(
                product_id=product_id,
                available=available,
                requested=qty,
                product_name=names[product_id],
            )


def create_sale(
    session,
    *,
    customer_name,
    items,
    payment_method,
    customer_id=None,
    coupon_code=None,
    actor_id: int | None = None,
) -> Sale:
    """
    Settle a point-of-sale transaction.

    Order inside the transaction: availability check, cost snapshot, coupon
    pricing, invoice number, sale document, coupon redemption, loyalty
    accrual + milestone, then one stock-out ledger row per stocked line.
    An expired coupon is ignored (no discount); an unknown code is NotFound
    and an already-used one is a conflict.
    """
    customer_name = require_text(customer_name, "customer_name")
    payment_method = require_text(payment_method, "payment_method")
    items = validate_sale_items(items)
    if customer_id is not None:
        customer_id = require_positive_int(customer_id, "customer_id")
    coupon_code = optional_text(coupon_code)

    with transaction(session, label="sale settlement"):
        if customer_id is not None:
            get_customer(session, customer_id)

        lines, total_cost = _build_lines(session, items)
        _check_availability(session, lines)

        subtotal = sum(line.line_total_cents for line in lines)

        coupon = None
        discount = 0
        if coupon_code:
            candidate = find_coupon_by_code(session, coupon_code)
            # Unknown and already-used codes fail the sale; only an expired code falls back to no discount
            if candidate is None:
                raise NotFoundError("Invalid coupon code", details={"code": coupon_code.upper()})
            if candidate.is_used:
                raise ConflictError("Coupon has already been used", details={"code": candidate.code})
            if not is_expired(candidate):
                coupon = candidate
                discount = compute_discount_cents(coupon.discount_kind, coupon.discount_value, subtotal)
            else:
                logger.info("coupon %s expired; sale priced without discount", candidate.code)

        totals = compute_totals(subtotal, discount, total_cost)

        invoice_number = next_document_number(session, "invoice")

        points_earned = points_for_amount(totals.discounted_subtotal_cents) if customer_id is not None else 0

        sale = Sale(
            invoice_number=invoice_number,
            customer_name=customer_name,
            customer_id=customer_id,
            subtotal_cents=totals.subtotal_cents,
            discount_cents=totals.discount_cents,
            tax_cents=totals.tax_cents,
            grand_total_cents=totals.grand_total_cents,
            total_cost_cents=totals.total_cost_cents,
            profit_cents=totals.profit_cents,
            payment_method=payment_method,
            coupon_id=coupon.id if coupon else None,
            points_earned=points_earned,
            created_by_user_id=actor_id,
            created_at=utcnow(),
            lines=lines,
        )
        session.add(sale)
        session.flush()

        if coupon is not None:
            mark_coupon_used(session, coupon.id)

        if customer_id is not None:
            accrue_points(session, customer_id, points_earned, sale_id=sale.id)
            check_milestone(session, customer_id, sale_id=sale.id)

        for line in lines:
            if line.product_id is None:
                continue
            adjust_stock(
                session,
                product_id=line.product_id,
                quantity_delta=-line.quantity,
                reference_kind="sale",
                reference_id=sale.id,
                actor_id=actor_id,
                note=f"Sale: {invoice_number}",
            )

    logger.info(
        "sale %s settled: grand_total=%s discount=%s points=%s",
        invoice_number, totals.grand_total_cents, totals.discount_cents, points_earned,
    )
    return sale


def get_sale(session, sale_id: int) -> Sale:
    sale = session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def update_sale(
    session,
    sale_id,
    *,
    items=None,
    customer_name=None,
    payment_method=None,
) -> Sale:
    """
    Edit a settled sale's lines, customer name or payment method.

    Re-prices the sale (subtotal, tax, grand total, cost, profit) keeping the
    discount amount fixed at settlement. Stock, coupon and loyalty state are
    not touched.
    """
    sale_id = require_positive_int(sale_id, "sale_id")
    new_items = validate_sale_items(items) if items is not None else None

    with transaction(session, label="sale update"):
        sale = lock_for_update(session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFoundError("Sale not found", details={"sale_id": sale_id})

        if new_items is not None:
            lines, total_cost = _build_lines(session, new_items)
            sale.lines = lines
        else:
            total_cost = sum(line.cost_price_cents * line.quantity for line in sale.lines)

        subtotal = sum(line.line_total_cents for line in sale.lines)
        totals = compute_totals(subtotal, min(sale.discount_cents, subtotal), total_cost)

        sale.subtotal_cents = totals.subtotal_cents
        sale.discount_cents = totals.discount_cents
        sale.tax_cents = totals.tax_cents
        sale.grand_total_cents = totals.grand_total_cents
        sale.total_cost_cents = totals.total_cost_cents
        sale.profit_cents = totals.profit_cents
        if optional_text(customer_name):
            sale.customer_name = optional_text(customer_name)
        if optional_text(payment_method):
            sale.payment_method = optional_text(payment_method)
        session.flush()

    return sale


def delete_sale(session, sale_id, *, actor_id: int | None = None) -> Reversal:
    """
    Delete a sale and put its stock back.

    Append-only: every stock-out row the sale posted gets a compensating
    stock-in row (reference kind "manual", reversal_of_id -> original). The
    quantities come from the ledger, so they match what was actually deducted
    even if the lines were edited later. Coupon and loyalty effects stay.
    """
    sale_id = require_positive_int(sale_id, "sale_id")

    with transaction(session, label="sale reversal"):
        sale = lock_for_update(session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFoundError("Sale not found", details={"sale_id": sale_id})

        posted = (
            session.query(StockTransaction)
            .filter_by(reference_kind="sale", reference_id=sale.id, direction="stock-out")
            .order_by(StockTransaction.id.asc())
            .all()
        )

        invoice_number = sale.invoice_number
        adjustments = []
        for entry in posted:
            adjustments.append(
                adjust_stock(
                    session,
                    product_id=entry.product_id,
                    quantity_delta=entry.quantity,
                    reference_kind="manual",
                    reference_id=None,
                    actor_id=actor_id,
                    note=f"Sale deleted: {invoice_number}",
                    reversal_of_id=entry.id,
                )
            )

        session.delete(sale)

    logger.info("sale %s deleted, %s ledger rows compensated", invoice_number, len(adjustments))
    return Reversal(document_id=sale_id, document_number=invoice_number, adjustments=tuple(adjustments))


def list_sales(session, query: SaleQuery) -> Page[Sale]:
    q = session.query(Sale)
    if query.invoice_search:
        q = q.filter(Sale.invoice_number.ilike(f"%{query.invoice_search.strip()}%"))
    if query.customer_id is not None:
        q = q.filter(Sale.customer_id == query.customer_id)
    if query.start_date is not None:
        q = q.filter(Sale.created_at >= query.start_date)
    if query.end_date is not None:
        q = q.filter(Sale.created_at <= query.end_date)

    total = q.count()
    rows = q.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(query.limit).offset(query.offset).all()
    return Page(items=rows, total=total, limit=query.limit, offset=query.offset)


def sales_stats(session, *, now=None) -> dict:
    now = now or utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    tomorrow = today + timedelta(days=1)

    count, revenue, profit = session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.grand_total_cents), 0),
        func.coalesce(func.sum(Sale.profit_cents), 0),
    ).one()
    today_sales = (
        session.query(func.count(Sale.id))
        .filter(Sale.created_at >= today, Sale.created_at < tomorrow)
        .scalar()
    )
    return {
        "total_sales": int(count or 0),
        "total_revenue_cents": int(revenue or 0),
        "total_profit_cents": int(profit or 0),
        "today_sales": int(today_sales or 0),
    }
