"""
Events pricing - ad-hoc add-ons selected on a quote.

Events are priced independently of the package. Only events in the quote's
currency count towards the total; the others are excluded and reported.
"""

from decimal import Decimal
from typing import Iterable

from app.schemas.quote import EventsTotal, SelectedEvent
from app.services.pricing_calculator import round_money


def calculate_events_total(events: Iterable[SelectedEvent], quote_currency: str) -> EventsTotal:
    total = Decimal("0")
    included = []
    excluded = []
    warnings = []

    for event in events:
        if event.event_currency == quote_currency:
            total += event.event_price
            included.append(event.event_id)
        else:
            excluded.append(event.event_id)
            warnings.append(
                f"Event '{event.event_name}' is priced in {event.event_currency} "
                f"but the quote is in {quote_currency}; it is excluded from the total"
            )

    return EventsTotal(
        currency=quote_currency,
        total=round_money(total),
        included_event_ids=included,
        excluded_event_ids=excluded,
        warnings=warnings,
    )
