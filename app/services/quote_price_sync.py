"""
Quote Price Synchronization.

Tracks whether a quote's total still matches the price its linked Super
Package would produce today. The status is derived every time a quote is
loaded (`evaluate`) and never stored:

    synced       total == fresh package price + events (within tolerance)
    calculating  a recalculation for this quote is in flight
    custom       the total was typed by hand, or must be (ON REQUEST)
    out-of-sync  the total still matches the stored baseline, but the
                 quote parameters or the package changed since
    error        the package cannot price the quote's parameters

Mutations (`recalculate_price`, `reset_to_calculated`, `apply_manual_price`,
`add_event`, `remove_event`) return the updated quote; persisting it is the
caller's job.
"""

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Hashable, Optional, Set, Tuple

from app.repositories.base import PackageRepository
from app.schemas.package import FixedPrice, OnRequest, PriceResult, SuperPackage
from app.schemas.quote import (
    EventsTotal,
    LinkedPackageDetached,
    LinkedPackageLive,
    PriceHistoryEntry,
    Quote,
    SelectedEvent,
    SyncIssue,
    SyncReport,
    SyncStatus,
    link_from_result,
)
from app.services.events_pricing import calculate_events_total
from app.services.package_errors import (
    CalculationError,
    InvalidSyncTransitionError,
    PackageValidationError,
    PriceRequestValidationError,
    RecalculationInProgressError,
)
from app.services.pricing_calculator import calculate_price, round_money

logger = logging.getLogger(__name__)


class RecalculationLocks:
    """Per-quote "calculating" flags shared by every request of one app."""

    def __init__(self):
        self._active: Set[Hashable] = set()

    def is_locked(self, quote_id: Hashable) -> bool:
        return quote_id in self._active

    def try_acquire(self, quote_id: Hashable) -> bool:
        if quote_id in self._active:
            return False
        self._active.add(quote_id)
        return True

    def release(self, quote_id: Hashable) -> None:
        self._active.discard(quote_id)

    @asynccontextmanager
    async def hold(self, quote_id: Hashable) -> AsyncIterator[bool]:
        """
        Yield True with the quote locked until the block exits, or False
        (nothing locked) when another request already holds it.
        """
        acquired = self.try_acquire(quote_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(quote_id)


def _history(price: Decimal, reason: str, description: str, user_id: Optional[str]) -> PriceHistoryEntry:
    return PriceHistoryEntry(
        price=price,
        reason=reason,
        change_description=description,
        user_id=user_id,
    )


class QuotePriceSynchronizer:
    def __init__(
        self,
        package_repository: PackageRepository,
        locks: RecalculationLocks,
        tolerance: Decimal = Decimal("0.01"),
    ):
        self.package_repository = package_repository
        self.locks = locks
        self.tolerance = tolerance

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _matches(self, total: Decimal, expected: Decimal) -> bool:
        return abs(total - expected) <= self.tolerance

    def _ensure_unlocked(self, quote: Quote) -> None:
        if quote.id is not None and self.locks.is_locked(quote.id):
            raise RecalculationInProgressError(quote.id)

    def _report(self, quote: Quote, status: SyncStatus, events: EventsTotal, **fields) -> SyncReport:
        link = quote.linked_package
        warnings = list(events.warnings) + fields.pop("warnings", [])
        return SyncReport(
            quote_id=quote.id,
            status=status,
            link_state=link.link_state if link else None,
            total_price=quote.total_price,
            calculated_base_price=link.calculated_price if link else None,
            events_total=events.total,
            warnings=warnings,
            **fields,
        )

    async def _load_live_package(self, quote: Quote) -> Optional[SuperPackage]:
        """
        Fetch the linked package. A live link whose package is gone or
        soft-deleted is detached on the quote and None is returned.
        """
        link = quote.linked_package
        if not isinstance(link, LinkedPackageLive):
            return None
        package = await self.package_repository.find_by_id(link.package_id)
        if package is None or package.status == "deleted":
            reason = "Package deleted" if package is None else "Package soft-deleted"
            logger.info("Quote %s: detaching package %s (%s)", quote.id, link.package_id, reason)
            quote.linked_package = link.detach(reason)
            return None
        return package

    @staticmethod
    def _price(package: SuperPackage, quote: Quote) -> PriceResult:
        if package.status != "active":
            raise CalculationError(
                CalculationError.PACKAGE_INACTIVE,
                "Package is not active",
                {"package_id": package.id, "status": package.status},
            )
        return calculate_price(
            package, quote.number_of_people, quote.number_of_nights, quote.arrival_date
        )

    def _evaluate_detached(self, quote: Quote, events: EventsTotal) -> SyncReport:
        baseline = quote.linked_package.calculated_price
        if isinstance(baseline, FixedPrice):
            expected = round_money(baseline.amount + events.total)
            status = SyncStatus.SYNCED if self._matches(quote.total_price, expected) else SyncStatus.CUSTOM
            return self._report(
                quote,
                status,
                events,
                expected_total=expected,
                difference=quote.total_price - expected,
            )
        return self._report(quote, SyncStatus.CUSTOM, events)

    def _status_against_baseline(self, quote: Quote, events: EventsTotal) -> SyncStatus:
        baseline = quote.linked_package.calculated_price
        if isinstance(baseline, FixedPrice):
            if self._matches(quote.total_price, baseline.amount + events.total):
                return SyncStatus.OUT_OF_SYNC
            return SyncStatus.CUSTOM
        # No stored number to compare with; the last price change tells us
        if quote.price_history and quote.price_history[-1].reason == "manual_override":
            return SyncStatus.CUSTOM
        return SyncStatus.OUT_OF_SYNC

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def evaluate(self, quote: Quote) -> SyncReport:
        events = calculate_events_total(quote.selected_events, quote.currency)

        if quote.id is not None and self.locks.is_locked(quote.id):
            return self._report(quote, SyncStatus.CALCULATING, events)

        if quote.linked_package is None:
            return self._report(quote, SyncStatus.CUSTOM, events)

        package = await self._load_live_package(quote)
        if isinstance(quote.linked_package, LinkedPackageDetached):
            return self._evaluate_detached(quote, events)

        try:
            result = self._price(package, quote)
        except (CalculationError, PriceRequestValidationError) as exc:
            return self._report(
                quote,
                SyncStatus.ERROR,
                events,
                error=SyncIssue(
                    code=getattr(exc, "reason", exc.code),
                    message=exc.message,
                    details=exc.details,
                ),
            )

        if isinstance(result.total_price, OnRequest):
            return self._report(
                quote,
                SyncStatus.CUSTOM,
                events,
                price_result=result,
                warnings=["Package price is ON REQUEST for these parameters; enter the price manually"],
            )

        expected = round_money(result.total_price.amount + events.total)
        difference = quote.total_price - expected
        if self._matches(quote.total_price, expected):
            status = SyncStatus.SYNCED
        else:
            status = self._status_against_baseline(quote, events)

        return self._report(
            quote,
            status,
            events,
            price_result=result,
            expected_total=expected,
            difference=difference,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def recalculate_price(
        self, quote: Quote, user_id: Optional[str] = None
    ) -> Tuple[Quote, SyncReport]:
        """
        Re-price the quote from its linked package.

        A call made while another recalculation of the same quote is in
        flight does nothing and reports "calculating". Callers that persist
        the result should hold `locks.hold(quote.id)` across the save and
        use `recalculate_locked` instead, so the quote stays "calculating"
        until it is written.
        """
        async with self.locks.hold(quote.id) as acquired:
            if not acquired:
                return quote, self.calculating_report(quote)
            return await self.recalculate_locked(quote, user_id)

    def calculating_report(self, quote: Quote) -> SyncReport:
        logger.info("Quote %s: recalculation already in progress", quote.id)
        events = calculate_events_total(quote.selected_events, quote.currency)
        return self._report(quote, SyncStatus.CALCULATING, events)

    async def recalculate_locked(self, quote: Quote, user_id: Optional[str] = None) -> Tuple[Quote, SyncReport]:
        """Re-price a quote whose lock the caller already holds."""
        events = calculate_events_total(quote.selected_events, quote.currency)

        if quote.linked_package is None:
            return quote, self._report(
                quote,
                SyncStatus.ERROR,
                events,
                error=SyncIssue(code="NO_LINKED_PACKAGE", message="Quote is not linked to a super package"),
            )

        package = await self._load_live_package(quote)
        if package is None:
            return quote, self._report(
                quote,
                SyncStatus.ERROR,
                events,
                error=SyncIssue(
                    code="PACKAGE_NOT_FOUND",
                    message="The linked package no longer exists",
                    details={"package_id": quote.linked_package.package_id},
                ),
            )

        try:
            result = self._price(package, quote)
        except (CalculationError, PriceRequestValidationError) as exc:
            code = getattr(exc, "reason", exc.code)
            logger.warning("Quote %s: recalculation failed (%s): %s", quote.id, code, exc.message)
            return quote, self._report(
                quote,
                SyncStatus.ERROR,
                events,
                error=SyncIssue(code=code, message=exc.message, details=exc.details),
            )

        if isinstance(result.total_price, OnRequest):
            return quote, self._report(
                quote,
                SyncStatus.CUSTOM,
                events,
                price_result=result,
                warnings=["Package price is ON REQUEST for these parameters; enter the price manually"],
            )

        new_total = round_money(result.total_price.amount + events.total)
        previous_total = quote.total_price
        quote.linked_package = link_from_result(result)
        quote.total_price = new_total
        if new_total != previous_total:
            quote.price_history.append(
                _history(
                    new_total,
                    "recalculated",
                    f"Recalculated from package '{package.name}' v{package.version}",
                    user_id,
                )
            )
            logger.info("Quote %s: price %s -> %s", quote.id, previous_total, new_total)

        return quote, self._report(
            quote,
            SyncStatus.SYNCED,
            events,
            price_result=result,
            expected_total=new_total,
            difference=Decimal("0.00"),
        )

    async def reset_to_calculated(
        self, quote: Quote, user_id: Optional[str] = None
    ) -> Tuple[Quote, SyncReport]:
        """Drop a custom price and re-adopt the stored package baseline plus events."""
        report = await self.evaluate(quote)
        if report.status != SyncStatus.CUSTOM:
            raise InvalidSyncTransitionError("reset the price", report.status.value)

        link = quote.linked_package
        if link is None:
            raise InvalidSyncTransitionError("reset an unlinked quote", report.status.value)
        if not isinstance(link.calculated_price, FixedPrice):
            raise CalculationError(
                CalculationError.PRICE_ON_REQUEST,
                'The package pricing is set to "ON REQUEST"; there is no calculated price to reset to',
                {"package_id": link.package_id},
            )

        events = calculate_events_total(quote.selected_events, quote.currency)
        quote.total_price = round_money(link.calculated_price.amount + events.total)
        quote.price_history.append(
            _history(quote.total_price, "recalculated", "Reset to calculated package price", user_id)
        )
        logger.info("Quote %s: reset to calculated price %s", quote.id, quote.total_price)
        return quote, await self.evaluate(quote)

    async def apply_manual_price(
        self,
        quote: Quote,
        price: Decimal,
        description: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Tuple[Quote, SyncReport]:
        self._ensure_unlocked(quote)
        if price < 0:
            raise PackageValidationError("total_price", "Price cannot be negative")

        quote.total_price = round_money(price)
        quote.price_history.append(
            _history(quote.total_price, "manual_override", description or "Manual price override", user_id)
        )
        return quote, await self.evaluate(quote)

    async def add_event(
        self, quote: Quote, event: SelectedEvent, user_id: Optional[str] = None
    ) -> Tuple[Quote, SyncReport]:
        self._ensure_unlocked(quote)
        if any(e.event_id == event.event_id for e in quote.selected_events):
            raise PackageValidationError("event_id", f"Event {event.event_id} is already on this quote")

        quote.selected_events.append(event)
        if event.event_currency == quote.currency:
            quote.total_price = round_money(quote.total_price + event.event_price)
        quote.price_history.append(
            _history(quote.total_price, "event_added", f"Added event: {event.event_name}", user_id)
        )
        return quote, await self.evaluate(quote)

    async def remove_event(
        self, quote: Quote, event_id: str, user_id: Optional[str] = None
    ) -> Tuple[Quote, SyncReport]:
        self._ensure_unlocked(quote)
        event = next((e for e in quote.selected_events if e.event_id == event_id), None)
        if event is None:
            raise PackageValidationError("event_id", f"Event {event_id} is not on this quote")

        quote.selected_events = [e for e in quote.selected_events if e.event_id != event_id]
        if event.event_currency == quote.currency:
            quote.total_price = round_money(max(quote.total_price - event.event_price, Decimal("0")))
        quote.price_history.append(
            _history(quote.total_price, "event_removed", f"Removed event: {event.event_name}", user_id)
        )
        return quote, await self.evaluate(quote)
