# Overview: Service-layer operations for receiving supplier purchases into stock.

from __future__ import annotations

import logging

from sqlalchemy import func

from ..models import Purchase, PurchaseLine, StockTransaction, Supplier
from ..time_utils import end_of_day, normalize_datetime, utcnow
from ..validation import (
    NotFoundError,
    ValidationError,
    optional_text,
    require_positive_int,
    validate_purchase_items,
)
from .concurrency import lock_for_update, transaction
from .document_service import next_document_number
from .filters import Page, PurchaseQuery
from .inventory_service import adjust_stock, get_product, lock_inventory
from .sales_service import Reversal

logger = logging.getLogger(__name__)


def _parse_purchase_date(value):
    if value is None:
        return utcnow()
    try:
        return normalize_datetime(value)
    except ValueError:
        raise ValidationError("purchase_date must be an ISO-8601 datetime")


def create_purchase(
    session,
    *,
    supplier_id,
    items,
    notes=None,
    purchase_date=None,
    actor_id: int | None = None,
) -> Purchase:
    """
    Record a completed purchase and receive its stock.

    Each line posts one stock-in ledger row, sets the product's cost price to
    the purchase price (last purchase wins) and records the supplier as a
    known source of the product.
    """
    supplier_id = require_positive_int(supplier_id, "supplier_id")
    items = validate_purchase_items(items)
    notes = optional_text(notes)
    purchase_date = _parse_purchase_date(purchase_date)

    with transaction(session, label="purchase receiving"):
        supplier = session.get(Supplier, supplier_id)
        if supplier is None:
            raise NotFoundError("Supplier not found", details={"supplier_id": supplier_id})

        products = {item.product_id: get_product(session, item.product_id) for item in items}

        lines = [
            PurchaseLine(
                product_id=item.product_id,
                product_name=products[item.product_id].product_name,
                quantity=item.quantity,
                cost_price_cents=item.cost_price_cents,
                line_total_cents=item.quantity * item.cost_price_cents,
            )
            for item in items
        ]

        purchase_number = next_document_number(session, "purchase-order")
        purchase = Purchase(
            purchase_number=purchase_number,
            supplier_id=supplier.id,
            total_amount_cents=sum(line.line_total_cents for line in lines),
            status="completed",
            purchase_date=purchase_date,
            notes=notes,
            created_by_user_id=actor_id,
            created_at=utcnow(),
            lines=lines,
        )
        session.add(purchase)
        session.flush()

        for item in items:
            product = products[item.product_id]
            adjust_stock(
                session,
                product_id=product.id,
                quantity_delta=item.quantity,
                reference_kind="purchase",
                reference_id=purchase.id,
                actor_id=actor_id,
                note=f"Purchase: {purchase_number} from {supplier.supplier_name}",
            )
            product.cost_price_cents = item.cost_price_cents
            if supplier not in product.suppliers:
                product.suppliers.append(supplier)

        session.flush()

    logger.info(
        "purchase %s received from supplier %s: total=%s lines=%s",
        purchase_number, supplier_id, purchase.total_amount_cents, len(lines),
    )
    return purchase


def get_purchase(session, purchase_id: int) -> Purchase:
    purchase = session.get(Purchase, purchase_id)
    if purchase is None:
        raise NotFoundError("Purchase not found", details={"purchase_id": purchase_id})
    return purchase


def delete_purchase(session, purchase_id, *, actor_id: int | None = None) -> Reversal:
    """
    Delete a purchase and take its stock back out.

    Stock already sold cannot be taken back: each reversal is clamped to the
    quantity on hand (under a row lock) and the compensating row records the
    clamped amount, so the ledger still sums to current_stock.
    """
    purchase_id = require_positive_int(purchase_id, "purchase_id")

    with transaction(session, label="purchase reversal"):
        purchase = lock_for_update(session.query(Purchase).filter_by(id=purchase_id)).first()
        if purchase is None:
            raise NotFoundError("Purchase not found", details={"purchase_id": purchase_id})

        posted = (
            session.query(StockTransaction)
            .filter_by(reference_kind="purchase", reference_id=purchase.id, direction="stock-in")
            .order_by(StockTransaction.id.asc())
            .all()
        )

        purchase_number = purchase.purchase_number
        adjustments = []
        for entry in posted:
            inventory = lock_inventory(session, entry.product_id)
            on_hand = inventory.current_stock if inventory else 0
            quantity = min(entry.quantity, on_hand)
            if quantity < entry.quantity:
                logger.warning(
                    "purchase %s reversal clamped for product %s: posted=%s on_hand=%s",
                    purchase_number, entry.product_id, entry.quantity, on_hand,
                )
            if quantity <= 0:
                continue
            adjustments.append(
                adjust_stock(
                    session,
                    product_id=entry.product_id,
                    quantity_delta=-quantity,
                    reference_kind="manual",
                    reference_id=None,
                    actor_id=actor_id,
                    note=f"Purchase deleted: {purchase_number}",
                    reversal_of_id=entry.id,
                )
            )

        session.delete(purchase)

    logger.info("purchase %s deleted, %s ledger rows compensated", purchase_number, len(adjustments))
    return Reversal(document_id=purchase_id, document_number=purchase_number, adjustments=tuple(adjustments))


def list_purchases(session, query: PurchaseQuery) -> Page[Purchase]:
    q = session.query(Purchase)
    if query.supplier_id is not None:
        q = q.filter(Purchase.supplier_id == query.supplier_id)
    if query.start_date is not None:
        q = q.filter(Purchase.purchase_date >= query.start_date)
    if query.end_date is not None:
        q = q.filter(Purchase.purchase_date <= end_of_day(query.end_date))

    total = q.count()
    rows = (
        q.order_by(Purchase.purchase_date.desc(), Purchase.id.desc())
        .limit(query.limit)
        .offset(query.offset)
        .all()
    )
    return Page(items=rows, total=total, limit=query.limit, offset=query.offset)


def purchase_stats(session) -> dict:
    count, total = (
        session.query(func.count(Purchase.id), func.coalesce(func.sum(Purchase.total_amount_cents), 0))
        .filter(Purchase.status == "completed")
        .one()
    )
    return {
        "total_purchases": int(count or 0),
        "total_cost_cents": int(total or 0),
    }
