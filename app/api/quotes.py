"""
Quote price API - sync status, recalculation, manual overrides and events.

Every endpoint answers with the updated quote and its freshly derived sync
report.
"""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from app.api.deps import CurrentUserId, DbSession, QuoteRepositoryDep, QuoteSynchronizerDep
from app.repositories.base import QuoteRepository
from app.schemas.package import Currency
from app.schemas.quote import Quote, SelectedEvent, SyncReport
from app.services.package_errors import QuoteNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class QuotePriceResponse(BaseModel):
    quote: Quote
    sync: SyncReport


class ManualPriceRequest(BaseModel):
    price: Decimal
    description: Optional[str] = None


class EventAddRequest(BaseModel):
    event_id: str
    event_name: str
    event_price: Decimal = Field(ge=0)
    event_currency: Currency


async def _load_quote(repository: QuoteRepository, quote_id: int) -> Quote:
    quote = await repository.find_by_id(quote_id)
    if quote is None:
        raise QuoteNotFoundError(quote_id)
    return quote


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/{quote_id}/price-sync", response_model=QuotePriceResponse)
async def get_price_sync_status(
    quote_id: int,
    db: DbSession,
    quotes: QuoteRepositoryDep,
    synchronizer: QuoteSynchronizerDep,
    user_id: CurrentUserId,
):
    quote = await _load_quote(quotes, quote_id)
    link_state = quote.linked_package.link_state if quote.linked_package else None

    report = await synchronizer.evaluate(quote)

    # Evaluation detaches links to deleted packages; keep that on the quote
    if report.link_state != link_state:
        quote = await quotes.save(quote)
        await db.commit()
    return QuotePriceResponse(quote=quote, sync=report)


@router.post("/{quote_id}/recalculate-price", response_model=QuotePriceResponse)
async def recalculate_quote_price(
    quote_id: int,
    db: DbSession,
    quotes: QuoteRepositoryDep,
    synchronizer: QuoteSynchronizerDep,
    user_id: CurrentUserId,
):
    """Re-price from the linked package. The quote stays "calculating" until the result is committed."""
    async with synchronizer.locks.hold(quote_id) as acquired:
        quote = await _load_quote(quotes, quote_id)
        if not acquired:
            return QuotePriceResponse(quote=quote, sync=synchronizer.calculating_report(quote))

        quote, report = await synchronizer.recalculate_locked(quote, user_id)
        quote = await quotes.save(quote)
        await db.commit()
    return QuotePriceResponse(quote=quote, sync=report)


@router.post("/{quote_id}/reset-price", response_model=QuotePriceResponse)
async def reset_quote_price(
    quote_id: int,
    db: DbSession,
    quotes: QuoteRepositoryDep,
    synchronizer: QuoteSynchronizerDep,
    user_id: CurrentUserId,
):
    quote = await _load_quote(quotes, quote_id)
    quote, report = await synchronizer.reset_to_calculated(quote, user_id)
    quote = await quotes.save(quote)
    await db.commit()
    return QuotePriceResponse(quote=quote, sync=report)


@router.put("/{quote_id}/price", response_model=QuotePriceResponse)
async def set_quote_price(
    quote_id: int,
    data: ManualPriceRequest,
    db: DbSession,
    quotes: QuoteRepositoryDep,
    synchronizer: QuoteSynchronizerDep,
    user_id: CurrentUserId,
):
    quote = await _load_quote(quotes, quote_id)
    quote, report = await synchronizer.apply_manual_price(quote, data.price, data.description, user_id)
    quote = await quotes.save(quote)
    await db.commit()
    logger.info("Quote %s: manual price %s set by %s", quote_id, quote.total_price, user_id)
    return QuotePriceResponse(quote=quote, sync=report)


@router.post("/{quote_id}/events", response_model=QuotePriceResponse)
async def add_quote_event(
    quote_id: int,
    data: EventAddRequest,
    db: DbSession,
    quotes: QuoteRepositoryDep,
    synchronizer: QuoteSynchronizerDep,
    user_id: CurrentUserId,
):
    quote = await _load_quote(quotes, quote_id)
    event = SelectedEvent(**data.model_dump())
    quote, report = await synchronizer.add_event(quote, event, user_id)
    quote = await quotes.save(quote)
    await db.commit()
    return QuotePriceResponse(quote=quote, sync=report)


@router.delete("/{quote_id}/events/{event_id}", response_model=QuotePriceResponse)
async def remove_quote_event(
    quote_id: int,
    event_id: str,
    db: DbSession,
    quotes: QuoteRepositoryDep,
    synchronizer: QuoteSynchronizerDep,
    user_id: CurrentUserId,
):
    quote = await _load_quote(quotes, quote_id)
    quote, report = await synchronizer.remove_event(quote, event_id, user_id)
    quote = await quotes.save(quote)
    await db.commit()
    return QuotePriceResponse(quote=quote, sync=report)
