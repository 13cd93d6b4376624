"""
Pricing Calculator - Super Package price lookup.

Given a package, a headcount, a duration and an arrival date:
- selects the unique group-size tier covering the headcount (never clamps)
- requires the exact number of nights to be an offered duration
- selects the pricing row: special periods containing the date win over
  calendar months; ties go to the first row in matrix order
- scales the per-person price to the group, rounded half-up to 2 decimals

An ON_REQUEST cell is a normal result (price_was_on_request=True), not an
error. Callers that need a firm number use `require_fixed_price()`.
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple, Union

from pydantic import ValidationError

from app.schemas.package import (
    ON_REQUEST,
    FixedPrice,
    GroupSizeTier,
    OnRequest,
    PeriodUsed,
    PriceRequest,
    PriceResult,
    PricingRow,
    SuperPackage,
    TierUsed,
)
from app.services.package_errors import CalculationError, PriceRequestValidationError

CENT = Decimal("0.01")


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_price_request(
    number_of_people: int,
    nights: int,
    arrival_date,
    package_id: Optional[int] = None,
) -> PriceRequest:
    """Range-check raw request parameters."""
    try:
        return PriceRequest(
            package_id=package_id,
            number_of_people=number_of_people,
            nights=nights,
            arrival_date=arrival_date,
        )
    except ValidationError as exc:
        errors = []
        for err in exc.errors():
            field = ".".join(str(part) for part in err["loc"])
            errors.append(f"{field}: {err['msg']}")
        raise PriceRequestValidationError(errors) from exc


def select_tier(package: SuperPackage, number_of_people: int) -> Tuple[int, GroupSizeTier]:
    matches = [
        (index, tier)
        for index, tier in enumerate(package.group_size_tiers)
        if tier.covers(number_of_people)
    ]
    if not matches:
        raise CalculationError(
            CalculationError.NO_TIER,
            "No tier covers this group size",
            {
                "number_of_people": number_of_people,
                "available_tiers": [
                    {"label": t.label, "min_people": t.min_people, "max_people": t.max_people}
                    for t in package.group_size_tiers
                ],
            },
        )
    # Packages validate tiers as non-overlapping, so there is exactly one match
    return matches[0]


def select_period(package: SuperPackage, arrival_date: date) -> PricingRow:
    specials: List[PricingRow] = []
    months: List[PricingRow] = []
    for row in package.pricing_matrix:
        if not row.period.contains(arrival_date):
            continue
        if row.period.period_type == "special":
            specials.append(row)
        else:
            months.append(row)

    if specials:
        return specials[0]
    if months:
        return months[0]
    raise CalculationError(
        CalculationError.NO_PERIOD,
        "No pricing defined for this date",
        {"arrival_date": arrival_date.isoformat()},
    )


def calculate_price(
    package: SuperPackage,
    number_of_people: int,
    nights: int,
    arrival_date,
) -> PriceResult:
    """
    Calculate the price of a package for a group.

    Raises:
        PriceRequestValidationError: parameters out of range
        CalculationError: no tier / duration / period / price cell matches
    """
    request = validate_price_request(number_of_people, nights, arrival_date, package.id)

    tier_index, tier = select_tier(package, request.number_of_people)

    if request.nights not in package.duration_options:
        raise CalculationError(
            CalculationError.DURATION_NOT_AVAILABLE,
            f"{request.nights} nights is not available for this package",
            {"nights": request.nights, "available_durations": list(package.duration_options)},
        )

    row = select_period(package, request.arrival_date)
    cell = row.price_for(tier_index, request.nights)
    if cell is None:
        raise CalculationError(
            CalculationError.MISSING_PRICE,
            "No price defined for this tier and duration in the selected period",
            {"tier": tier.label, "nights": request.nights, "period": row.period.label},
        )

    price_per_person: Union[FixedPrice, OnRequest]
    total_price: Union[FixedPrice, OnRequest]
    if isinstance(cell, OnRequest):
        price_per_person = ON_REQUEST
        total_price = ON_REQUEST
    else:
        price_per_person = cell
        total_price = FixedPrice(amount=round_money(cell.amount * request.number_of_people))

    period = row.period
    return PriceResult(
        package_id=package.id,
        package_name=package.name,
        package_version=package.version,
        currency=package.currency,
        number_of_people=request.number_of_people,
        nights=request.nights,
        arrival_date=request.arrival_date,
        tier=TierUsed(index=tier_index, label=tier.label),
        period=PeriodUsed(
            period=period.label,
            period_type=period.period_type,
            start_date=getattr(period, "start_date", None),
            end_date=getattr(period, "end_date", None),
        ),
        price_per_person=price_per_person,
        total_price=total_price,
        price_was_on_request=isinstance(cell, OnRequest),
    )


def require_fixed_price(result: PriceResult) -> Decimal:
    """Return the firm total, or raise when the package is priced on request."""
    if isinstance(result.total_price, FixedPrice):
        return result.total_price.amount
    raise CalculationError(
        CalculationError.PRICE_ON_REQUEST,
        'The package pricing is set to "ON REQUEST" for these parameters',
        {"tier": result.tier.label, "period": result.period.period},
    )
