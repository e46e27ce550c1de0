# Overview: Service-layer operations for document numbering (invoice / purchase-order series).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..models import DocumentSequence
from ..validation import ValidationError


# series -> (prefix, zero padding)
SERIES = {
    "invoice": ("INV", 6),
    "purchase-order": ("PO", 5),
}


def _format(series: str, number: int) -> str:
    prefix, pad = SERIES[series]
    return f"{prefix}-{number:0{pad}d}"


def _allocate(session, series: str) -> int:
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.series == series)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = session.execute(stmt)
    if not result.rowcount:
        try:
            with session.begin_nested():
                session.add(DocumentSequence(series=series, next_number=2))
            return 1
        except IntegrityError:
            # Another writer created the counter row first
            result = session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        session.query(DocumentSequence.next_number)
        .filter_by(series=series)
        .scalar()
    )
    return current - 1


def next_document_number(session, series: str) -> str:
    """
    Atomically allocate the next number in a series.

    The increment happens server-side inside the caller's transaction, so two
    concurrent settlements can never observe the same value, and a rolled
    back settlement gives its number back.
    """
    if series not in SERIES:
        raise ValidationError(f"Unknown document series: {series}")
    return _format(series, _allocate(session, series))


def peek_next_document_number(session, series: str) -> str:
    """Advisory only: the number the next allocation would return right now."""
    if series not in SERIES:
        raise ValidationError(f"Unknown document series: {series}")
    current = (
        session.query(DocumentSequence.next_number)
        .filter_by(series=series)
        .scalar()
    )
    return _format(series, current or 1)
