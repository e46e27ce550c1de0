from __future__ import annotations

from ..extensions import db
from stockpos.time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic per-series document counters.

    WHY: Invoice and purchase-order numbers are allocated by incrementing
    this row server-side, never by reading the newest document and adding one.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("series", name="uq_doc_sequences_series"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    series = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "series": self.series,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
