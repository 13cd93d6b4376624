"""
SQLAlchemy repository for the pricing side of quotes.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.quote import QuoteRecord
from app.schemas.quote import Quote
from app.services.package_errors import PackageDatabaseError

logger = logging.getLogger(__name__)


def quote_from_row(row: QuoteRecord) -> Quote:
    return Quote.model_validate(
        {
            "id": row.id,
            "destination": row.destination or "",
            "number_of_people": row.number_of_people,
            "number_of_nights": row.number_of_nights,
            "arrival_date": row.arrival_date,
            "currency": row.currency,
            "total_price": row.total_price,
            "linked_package": row.linked_package_json,
            "selected_events": row.selected_events_json or [],
            "price_history": row.price_history_json or [],
        }
    )


class SqlQuoteRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, quote_id: int) -> Optional[Quote]:
        try:
            row = await self.db.get(QuoteRecord, quote_id)
        except SQLAlchemyError as exc:
            logger.exception("Error fetching quote %s", quote_id)
            raise PackageDatabaseError("find_quote") from exc
        return quote_from_row(row) if row else None

    async def save(self, quote: Quote) -> Quote:
        data = quote.model_dump(mode="json")
        link = quote.linked_package
        values = {
            "destination": quote.destination,
            "number_of_people": quote.number_of_people,
            "number_of_nights": quote.number_of_nights,
            "arrival_date": quote.arrival_date,
            "currency": quote.currency,
            "total_price": quote.total_price,
            "linked_package_id": link.package_id if link else None,
            "linked_package_json": data["linked_package"],
            "selected_events_json": data["selected_events"],
            "price_history_json": data["price_history"],
        }
        try:
            row = await self.db.get(QuoteRecord, quote.id) if quote.id is not None else None
            if row is None:
                row = QuoteRecord(**values)
                self.db.add(row)
            else:
                for key, value in values.items():
                    setattr(row, key, value)
            await self.db.flush()
            await self.db.refresh(row)
        except SQLAlchemyError as exc:
            logger.exception("Error saving quote %s", quote.id)
            raise PackageDatabaseError("save_quote") from exc
        return quote_from_row(row)
