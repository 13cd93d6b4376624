"""
Seed script - Creates demo data for development.

Imports a demo super package from CSV and a quote priced from it.

Run with: python -m scripts.seed_demo
"""

import asyncio
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import create_session_factory
from app.repositories.quotes import SqlQuoteRepository
from app.repositories.super_packages import SqlPackageHistoryRepository, SqlPackageRepository
from app.schemas.package import SuperPackage
from app.schemas.quote import PriceHistoryEntry, Quote, link_from_result
from app.services.package_service import SuperPackageService
from app.services.package_version_history import PackageVersionHistoryService
from app.services.pricing_calculator import calculate_price, require_fixed_price

SEED_USER = "seed-script"

DEMO_CSV = """Package: Benidorm Party Weekend
Destination: Benidorm
Resort: Levante
Currency: EUR

Period,6-11 People - 3 Nights,6-11 People - 4 Nights,12-20 People - 3 Nights,12-20 People - 4 Nights
January,ON REQUEST,ON REQUEST,ON REQUEST,ON REQUEST
May,€95.00,€120.00,€89.00,€112.00
June,€100.00,€130.00,€95.00,€120.00
July,€125.00,€160.00,€115.00,€150.00
August,€135.00,€170.00,€125.00,€160.00
Easter (03/04/2026 - 13/04/2026),€140.00,€175.00,€130.00,€165.00

Inclusions:
- Return airport transfers
- 3 or 4 nights in a 3* hotel
- Boat party with open bar
- 24/7 rep service

Accommodation:
- Hotel Servigroup Orange
- Hotel Flamingo Oasis

Sales Notes:
Perfect for stag and hen groups. <b>Deposit</b> of 50 EUR per person secures the booking.
"""


async def create_package(db: AsyncSession) -> SuperPackage:
    """Import the demo package."""
    service = SuperPackageService(
        SqlPackageRepository(db),
        PackageVersionHistoryService(SqlPackageHistoryRepository(db)),
    )
    package, warnings = await service.import_csv(DEMO_CSV, SEED_USER, "benidorm-demo.csv")
    for warning in warnings:
        print(f"⚠️  {warning}")
    print(f"✅ Created package: {package.name} (ID: {package.id})")
    return package


async def create_quote(db: AsyncSession, package: SuperPackage) -> Quote:
    """Create a demo quote priced from the package."""
    result = calculate_price(package, 8, 3, date(2026, 6, 12))
    total = require_fixed_price(result)
    quote = Quote(
        destination=package.destination,
        number_of_people=8,
        number_of_nights=3,
        arrival_date=date(2026, 6, 12),
        currency=package.currency,
        total_price=total,
        linked_package=link_from_result(result),
        price_history=[
            PriceHistoryEntry(
                price=total,
                reason="initial",
                change_description="Priced from super package",
                user_id=SEED_USER,
            )
        ],
    )
    quote = await SqlQuoteRepository(db).save(quote)
    print(f"✅ Created quote: {quote.id} ({quote.total_price} {quote.currency})")
    return quote


async def main():
    settings = get_settings()
    engine, session_factory = create_session_factory(settings)
    async with session_factory() as db:
        package = await create_package(db)
        await create_quote(db, package)
        await db.commit()
    await engine.dispose()
    print("🎉 Demo data created")


if __name__ == "__main__":
    asyncio.run(main())
