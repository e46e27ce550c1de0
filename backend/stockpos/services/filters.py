# Overview: Typed list/query structures with an explicit set of predicates per entity.

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, Sequence, TypeVar

from ..validation import DIRECTIONS, REFERENCE_KINDS, ValidationError

T = TypeVar("T")

MAX_LIMIT = 500


def _clamp(query) -> None:
    # Frozen dataclasses: normalize through object.__setattr__
    limit = query.limit
    if limit < 1:
        limit = 1
    if limit > MAX_LIMIT:
        limit = MAX_LIMIT
    object.__setattr__(query, "limit", limit)
    if query.offset < 0:
        object.__setattr__(query, "offset", 0)


@dataclass(frozen=True)
class LedgerQuery:
    """Stock ledger history by product, by reference (kind + id) or by direction."""
    product_id: int | None = None
    reference_kind: str | None = None
    reference_id: int | None = None
    direction: str | None = None
    limit: int = 20
    offset: int = 0

    def __post_init__(self):
        if self.reference_kind is not None and self.reference_kind not in REFERENCE_KINDS:
            raise ValidationError(f"reference_kind must be one of: {', '.join(REFERENCE_KINDS)}")
        if self.direction is not None and self.direction not in DIRECTIONS:
            raise ValidationError(f"direction must be one of: {', '.join(DIRECTIONS)}")
        if self.reference_id is not None and self.reference_kind is None:
            raise ValidationError("reference_id requires reference_kind")
        _clamp(self)


@dataclass(frozen=True)
class InventoryQuery:
    low_stock_only: bool = False
    search: str | None = None
    limit: int = 20
    offset: int = 0

    def __post_init__(self):
        _clamp(self)


@dataclass(frozen=True)
class SaleQuery:
    invoice_search: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    customer_id: int | None = None
    limit: int = 10
    offset: int = 0

    def __post_init__(self):
        _clamp(self)


@dataclass(frozen=True)
class PurchaseQuery:
    """end_date is inclusive to the end of that day."""
    supplier_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = 10
    offset: int = 0

    def __post_init__(self):
        _clamp(self)


@dataclass(frozen=True)
class Page(Generic[T]):
    items: Sequence[T] = field(default_factory=tuple)
    total: int = 0
    limit: int = 20
    offset: int = 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def current_page(self) -> int:
        return self.offset // self.limit + 1 if self.limit else 1


def page_offset(page: int, limit: int) -> int:
    """1-based page number to row offset."""
    return (max(page, 1) - 1) * limit
