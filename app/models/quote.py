"""
QuoteRecord model - the pricing side of a customer quote.

`linked_package_json` is a denormalized snapshot of the package pricing the
quote was built from (see `app.schemas.quote.LinkedPackage`);
`linked_package_id` duplicates its package id so deletions can count
referencing quotes without reading JSON.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, Date, Integer, JSON, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import EntityBase


class QuoteRecord(EntityBase):
    __tablename__ = "quotes"

    destination: Mapped[str] = mapped_column(String(200), default="")
    number_of_people: Mapped[int] = mapped_column(Integer, nullable=False)
    number_of_nights: Mapped[int] = mapped_column(Integer, nullable=False)
    arrival_date: Mapped[date] = mapped_column(Date, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))

    linked_package_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True, index=True)
    linked_package_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # [{"event_id": "e1", "event_name": "Boat party", "event_price": "45.00", "event_currency": "EUR", "added_at": "..."}]
    selected_events_json: Mapped[list] = mapped_column(JSON, default=list)
    # [{"price": "800.00", "reason": "recalculated", "change_description": "...", "timestamp": "..."}]
    price_history_json: Mapped[list] = mapped_column(JSON, default=list)

    def __repr__(self) -> str:
        return f"<QuoteRecord(id={self.id}, total={self.total_price})>"
