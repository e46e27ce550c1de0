# Overview: Service-layer operations for the stock ledger; the only code that changes on-hand quantity.

"""
Stock Ledger Invariants (authoritative)

- Inventory.current_stock == signed SUM of StockTransaction.quantity for the product
  (stock-in positive, stock-out negative). verify_conservation() checks it.
- current_stock never goes negative. A stock-out is a single conditional UPDATE
  (current_stock = current_stock + delta WHERE current_stock + delta >= 0)
  executed server-side; zero matched rows means the stock-out is rejected.
- adjust_stock() appends exactly one ledger row per call and never updates or
  deletes earlier rows. Reversals append compensating rows.
- adjust_stock() does not commit: it always runs inside the caller's
  transaction() so a failure rolls back the whole settlement.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import case, func, or_, update
from sqlalchemy.exc import IntegrityError

from ..models import Inventory, Product, StockTransaction
from ..time_utils import utcnow
from ..validation import (
    REFERENCE_KINDS,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
    coerce_int,
    optional_text,
    require_positive_int,
)
from .concurrency import lock_for_update, transaction
from .filters import InventoryQuery, LedgerQuery, Page

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockAdjustment:
    new_stock: int
    entry: StockTransaction


@dataclass(frozen=True)
class LedgerCheck:
    product_id: int
    current_stock: int
    ledger_total: int

    @property
    def consistent(self) -> bool:
        return self.current_stock == self.ledger_total


def get_product(session, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product not found: {product_id}", details={"product_id": product_id})
    return product


def _ensure_inventory_row(session, product_id: int) -> None:
    exists = session.query(Inventory.id).filter_by(product_id=product_id).scalar()
    if exists is not None:
        return
    try:
        with session.begin_nested():
            session.add(Inventory(product_id=product_id, current_stock=0, last_updated=utcnow()))
    except IntegrityError:
        # Created concurrently by another settlement; the row exists now
        logger.debug("inventory row for product %s created concurrently", product_id)


def get_quantity_on_hand(session, product_id: int) -> int:
    """Committed (or in-transaction) on-hand quantity; 0 when never stocked."""
    qty = session.query(Inventory.current_stock).filter_by(product_id=product_id).scalar()
    return int(qty or 0)


def lock_inventory(session, product_id: int) -> Inventory | None:
    return lock_for_update(
        session.query(Inventory).filter_by(product_id=product_id)
    ).populate_existing().first()


def adjust_stock(
    session,
    *,
    product_id: int,
    quantity_delta: int,
    reference_kind: str,
    reference_id: int | None = None,
    actor_id: int | None = None,
    note: str | None = None,
    reversal_of_id: int | None = None,
) -> StockAdjustment:
    """
    Apply a signed delta to a product's on-hand quantity and append one ledger row.

    Creates the Inventory row (quantity 0) on first use. A negative delta that
    would take stock below zero raises InsufficientStockError without having
    changed the quantity; the check is made against the value in the store at
    the moment of the write, not against anything the caller read earlier.
    """
    quantity_delta = coerce_int(quantity_delta, "quantity_delta")
    if quantity_delta == 0:
        raise ValidationError("quantity_delta must be non-zero")
    if reference_kind not in REFERENCE_KINDS:
        raise ValidationError(f"reference_kind must be one of: {', '.join(REFERENCE_KINDS)}")

    _ensure_inventory_row(session, product_id)

    stmt = update(Inventory).where(Inventory.product_id == product_id)
    if quantity_delta < 0:
        stmt = stmt.where(Inventory.current_stock + quantity_delta >= 0)
    stmt = stmt.values(
        current_stock=Inventory.current_stock + quantity_delta,
        last_updated=utcnow(),
    ).execution_options(synchronize_session=False)

    result = session.execute(stmt)
    if not result.rowcount:
        product = session.get(Product, product_id)
        raise InsufficientStockError(
            product_id=product_id,
            available=get_quantity_on_hand(session, product_id),
            requested=-quantity_delta,
            product_name=product.product_name if product else None,
        )

    inventory = (
        session.query(Inventory)
        .filter_by(product_id=product_id)
        .populate_existing()
        .one()
    )

    entry = StockTransaction(
        product_id=product_id,
        direction="stock-in" if quantity_delta > 0 else "stock-out",
        quantity=abs(quantity_delta),
        reference_kind=reference_kind,
        reference_id=reference_id,
        reversal_of_id=reversal_of_id,
        created_by_user_id=actor_id,
        notes=note,
        created_at=utcnow(),
    )
    session.add(entry)
    session.flush()

    logger.debug(
        "ledger %s product=%s delta=%+d stock=%s ref=%s:%s",
        entry.id, product_id, quantity_delta, inventory.current_stock, reference_kind, reference_id,
    )
    return StockAdjustment(new_stock=inventory.current_stock, entry=entry)


def stock_in(session, *, product_id, quantity, notes: str | None = None, actor_id: int | None = None) -> StockAdjustment:
    """Manual stock-in (delivery without a purchase document, found stock, ...)."""
    product_id = require_positive_int(product_id, "product_id")
    quantity = require_positive_int(quantity, "quantity")

    with transaction(session, label="stock-in"):
        get_product(session, product_id)
        adjustment = adjust_stock(
            session,
            product_id=product_id,
            quantity_delta=quantity,
            reference_kind="manual",
            actor_id=actor_id,
            note=optional_text(notes) or "",
        )
    logger.info("stock-in product=%s qty=%s new_stock=%s", product_id, quantity, adjustment.new_stock)
    return adjustment


def stock_out(session, *, product_id, quantity, notes: str | None = None, actor_id: int | None = None) -> StockAdjustment:
    """Manual stock-out (damage, shrinkage, ...). Rejected when stock is insufficient."""
    product_id = require_positive_int(product_id, "product_id")
    quantity = require_positive_int(quantity, "quantity")

    with transaction(session, label="stock-out"):
        get_product(session, product_id)
        adjustment = adjust_stock(
            session,
            product_id=product_id,
            quantity_delta=-quantity,
            reference_kind="manual",
            actor_id=actor_id,
            note=optional_text(notes) or "",
        )
    logger.info("stock-out product=%s qty=%s new_stock=%s", product_id, quantity, adjustment.new_stock)
    return adjustment


def _signed_quantity():
    return case(
        (StockTransaction.direction == "stock-in", StockTransaction.quantity),
        else_=-StockTransaction.quantity,
    )


def ledger_total(session, product_id: int) -> int:
    total = (
        session.query(func.coalesce(func.sum(_signed_quantity()), 0))
        .filter(StockTransaction.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


def verify_conservation(session, product_id: int) -> LedgerCheck:
    return LedgerCheck(
        product_id=product_id,
        current_stock=get_quantity_on_hand(session, product_id),
        ledger_total=ledger_total(session, product_id),
    )


def find_ledger_drift(session) -> list[LedgerCheck]:
    """Every product whose stored quantity disagrees with its ledger."""
    sums = dict(
        session.query(StockTransaction.product_id, func.sum(_signed_quantity()))
        .group_by(StockTransaction.product_id)
        .all()
    )
    stocks = dict(session.query(Inventory.product_id, Inventory.current_stock).all())

    drift = []
    for product_id in sorted(set(sums) | set(stocks)):
        check = LedgerCheck(
            product_id=product_id,
            current_stock=int(stocks.get(product_id) or 0),
            ledger_total=int(sums.get(product_id) or 0),
        )
        if not check.consistent:
            drift.append(check)
    return drift


def list_stock_transactions(session, query: LedgerQuery) -> Page[StockTransaction]:
    q = session.query(StockTransaction)
    if query.product_id is not None:
        q = q.filter(StockTransaction.product_id == query.product_id)
    if query.reference_kind is not None:
        q = q.filter(StockTransaction.reference_kind == query.reference_kind)
    if query.reference_id is not None:
        q = q.filter(StockTransaction.reference_id == query.reference_id)
    if query.direction is not None:
        q = q.filter(StockTransaction.direction == query.direction)

    total = q.count()
    rows = (
        q.order_by(StockTransaction.created_at.desc(), StockTransaction.id.desc())
        .limit(query.limit)
        .offset(query.offset)
        .all()
    )
    return Page(items=rows, total=total, limit=query.limit, offset=query.offset)


def is_low_stock(session, product_id: int) -> bool:
    product = get_product(session, product_id)
    return get_quantity_on_hand(session, product_id) <= product.minimum_stock_level


def _inventory_row(product: Product, inventory: Inventory | None) -> dict:
    current = inventory.current_stock if inventory else 0
    return {
        "product": product.to_dict(),
        "product_id": product.id,
        "current_stock": current,
        "last_updated": inventory.to_dict()["last_updated"] if inventory else None,
        "is_low_stock": current <= product.minimum_stock_level,
        "stock_value_cents": current * product.cost_price_cents,
    }


def get_inventory_by_product(session, product_id: int) -> dict:
    product = get_product(session, product_id)
    inventory = session.query(Inventory).filter_by(product_id=product_id).first()
    return _inventory_row(product, inventory)


def list_inventory(session, query: InventoryQuery) -> Page[dict]:
    q = session.query(Product, Inventory).outerjoin(Inventory, Inventory.product_id == Product.id)
    if query.search:
        pattern = f"%{query.search.strip()}%"
        q = q.filter(or_(Product.product_name.ilike(pattern), Product.sku.ilike(pattern)))
    if query.low_stock_only:
        q = q.filter(func.coalesce(Inventory.current_stock, 0) <= Product.minimum_stock_level)

    total = q.count()
    rows = q.order_by(Product.product_name.asc(), Product.id.asc()).limit(query.limit).offset(query.offset).all()
    return Page(
        items=[_inventory_row(product, inventory) for product, inventory in rows],
        total=total,
        limit=query.limit,
        offset=query.offset,
    )


def inventory_stats(session) -> dict:
    """Dashboard numbers: stocked products, how many are low, and stock value at cost."""
    rows = (
        session.query(Inventory.current_stock, Product.minimum_stock_level, Product.cost_price_cents)
        .join(Product, Product.id == Inventory.product_id)
        .all()
    )
    return {
        "total_products": len(rows),
        "low_stock_count": sum(1 for stock, minimum, _ in rows if stock <= minimum),
        "total_stock_value_cents": sum(stock * cost for stock, _, cost in rows),
    }
