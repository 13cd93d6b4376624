"""Shared fixtures: in-memory repositories and a sample Benidorm package."""

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from app.schemas.package import (
    ON_REQUEST,
    FixedPrice,
    GroupSizeTier,
    Inclusion,
    MonthPeriod,
    PackageVersionRecord,
    PricePoint,
    PricingRow,
    SpecialPeriod,
    SuperPackage,
)
from app.schemas.quote import Quote
from app.services.package_errors import (
    PackageDatabaseError,
    PackageNotFoundError,
    PackageVersionConflictError,
)
from app.services.package_service import SuperPackageService
from app.services.package_version_history import PackageVersionHistoryService
from app.services.quote_price_sync import QuotePriceSynchronizer, RecalculationLocks


SAMPLE_CSV = """Package: Benidorm Party Weekend
Destination: Benidorm
Resort: Levante
Currency: EUR

Period,6-11 People - 3 Nights,6-11 People - 4 Nights,12-20 People - 3 Nights,12-20 People - 4 Nights
January,ON REQUEST,ON REQUEST,ON REQUEST,ON REQUEST
June,€100.00,€130.00,€95.00,€120.00
Summer Festival (10/06/2026 - 14/06/2026),€150.00,€180.00,€140.00,€170.00

Inclusions:
- Return airport transfers
- Boat party with open bar

Accommodation:
- Hotel Servigroup Orange

Sales Notes:
Great for groups. <script>alert(1)</script>Deposit required.
"""


class InMemoryPackageRepository:
    def __init__(self):
        self.packages: Dict[int, SuperPackage] = {}
        self.linked_quotes: Dict[int, int] = {}
        self._next_id = 1

    async def find_by_id(self, package_id: int) -> Optional[SuperPackage]:
        package = self.packages.get(package_id)
        return package.model_copy(deep=True) if package else None

    async def insert(self, package: SuperPackage) -> SuperPackage:
        stored = package.model_copy(update={"id": self._next_id}, deep=True)
        self.packages[stored.id] = stored
        self._next_id += 1
        return stored.model_copy(deep=True)

    async def replace(self, package: SuperPackage, expected_version: int) -> SuperPackage:
        current = self.packages.get(package.id)
        if current is None:
            raise PackageNotFoundError(package.id)
        if current.version != expected_version:
            raise PackageVersionConflictError(package.id, expected_version, current.version)
        self.packages[package.id] = package.model_copy(deep=True)
        return package.model_copy(deep=True)

    async def delete(self, package_id: int) -> None:
        self.packages.pop(package_id, None)

    async def count_referencing_quotes(self, package_id: int) -> int:
        return self.linked_quotes.get(package_id, 0)

    async def count_quotes_by_package(self) -> Dict[int, int]:
        return {package_id: count for package_id, count in self.linked_quotes.items() if count}

    async def list(
        self, status=None, search=None, limit=50, offset=0, destination=None, ids=None
    ) -> List[SuperPackage]:
        packages = [
            p for p in self.packages.values()
            if (p.status == status if status else p.status != "deleted")
        ]
        if destination:
            packages = [p for p in packages if p.destination.lower() == destination.lower()]
        if ids is not None:
            packages = [p for p in packages if p.id in ids]
        if search:
            needle = search.lower()
            packages = [p for p in packages if needle in p.name.lower() or needle in p.destination.lower()]
        end = offset + limit if limit else None
        return [p.model_copy(deep=True) for p in packages[offset:end]]


class InMemoryHistoryRepository:
    def __init__(self):
        self.records: List[PackageVersionRecord] = []
        self.fail_writes = False

    async def append(self, record: PackageVersionRecord) -> None:
        if self.fail_writes:
            raise PackageDatabaseError("save_version_history")
        if any(r.package_id == record.package_id and r.version == record.version for r in self.records):
            raise PackageDatabaseError("save_version_history")
        self.records.append(record.model_copy(deep=True))

    async def list(self, package_id: int, limit: Optional[int] = None) -> List[PackageVersionRecord]:
        records = sorted(
            (r for r in self.records if r.package_id == package_id),
            key=lambda r: r.version,
            reverse=True,
        )
        return records[:limit] if limit else records

    async def get(self, package_id: int, version: int) -> Optional[PackageVersionRecord]:
        for record in self.records:
            if record.package_id == package_id and record.version == version:
                return record
        return None


class InMemoryQuoteRepository:
    def __init__(self):
        self.quotes: Dict[int, Quote] = {}
        self._next_id = 1

    async def find_by_id(self, quote_id: int) -> Optional[Quote]:
        quote = self.quotes.get(quote_id)
        return quote.model_copy(deep=True) if quote else None

    async def save(self, quote: Quote) -> Quote:
        if quote.id is None:
            quote = quote.model_copy(update={"id": self._next_id}, deep=True)
            self._next_id += 1
        self.quotes[quote.id] = quote.model_copy(deep=True)
        return quote


class SlowQuoteRepository(InMemoryQuoteRepository):
    """Keeps the first save pending until `finish_save` is set."""

    def __init__(self):
        super().__init__()
        self.saves = 0
        self.save_started = asyncio.Event()
        self.finish_save = asyncio.Event()

    async def save(self, quote: Quote) -> Quote:
        self.saves += 1
        if self.saves == 1:
            self.save_started.set()
            await self.finish_save.wait()
        return await super().save(quote)


class FakeSession:
    """Stands in for AsyncSession in API tests; only counts transactions."""

    def __init__(self):
        self.commits = 0
        self.rollbacks = 0

    async def commit(self):
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1


def _prices(values):
    """[(tier_index, nights, price)] -> PricePoints; price None means ON REQUEST."""
    return [
        PricePoint(
            tier_index=tier_index,
            nights=nights,
            price=ON_REQUEST if price is None else FixedPrice(amount=Decimal(price)),
        )
        for tier_index, nights, price in values
    ]


@pytest.fixture
def sample_csv() -> str:
    return SAMPLE_CSV


@pytest.fixture
def sample_package() -> SuperPackage:
    """
    Two tiers (6-11, 12-20), 3 or 4 nights, priced for January (ON REQUEST),
    June, July (12-20 x 4 nights missing) and a June festival week.
    """
    now = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    return SuperPackage(
        id=1,
        name="Benidorm Party Weekend",
        destination="Benidorm",
        resort="Levante",
        currency="EUR",
        status="active",
        version=1,
        group_size_tiers=[
            GroupSizeTier(label="6-11 People", min_people=6, max_people=11),
            GroupSizeTier(label="12-20 People", min_people=12, max_people=20),
        ],
        duration_options=[3, 4],
        pricing_matrix=[
            PricingRow(
                period=MonthPeriod(label="January", month=1),
                prices=_prices([(0, 3, None), (0, 4, None), (1, 3, None), (1, 4, None)]),
            ),
            PricingRow(
                period=MonthPeriod(label="June", month=6),
                prices=_prices([(0, 3, "100"), (0, 4, "130"), (1, 3, "95"), (1, 4, "120")]),
            ),
            PricingRow(
                period=MonthPeriod(label="July", month=7),
                prices=_prices([(0, 3, "125"), (0, 4, "160"), (1, 3, "115")]),
            ),
            PricingRow(
                period=SpecialPeriod(
                    label="Summer Festival",
                    start_date=date(2026, 6, 10),
                    end_date=date(2026, 6, 14),
                ),
                prices=_prices([(0, 3, "150"), (0, 4, "180"), (1, 3, "140"), (1, 4, "170")]),
            ),
        ],
        inclusions=[
            Inclusion(text="Return airport transfers", category="transfer"),
            Inclusion(text="Boat party with open bar", category="other"),
        ],
        accommodation_examples=["Hotel Servigroup Orange"],
        sales_notes="Great for groups.",
        created_by="admin-1",
        last_modified_by="admin-1",
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def package_repository() -> InMemoryPackageRepository:
    return InMemoryPackageRepository()


@pytest.fixture
def history_repository() -> InMemoryHistoryRepository:
    return InMemoryHistoryRepository()


@pytest.fixture
def quote_repository() -> InMemoryQuoteRepository:
    return InMemoryQuoteRepository()


@pytest.fixture
def history_service(history_repository) -> PackageVersionHistoryService:
    return PackageVersionHistoryService(history_repository)


@pytest.fixture
def package_service(package_repository, history_service) -> SuperPackageService:
    return SuperPackageService(package_repository, history_service)


@pytest.fixture
def slow_quote_repository() -> SlowQuoteRepository:
    return SlowQuoteRepository()


@pytest.fixture
def locks() -> RecalculationLocks:
    return RecalculationLocks()


@pytest.fixture
def synchronizer(package_repository, locks) -> QuotePriceSynchronizer:
    return QuotePriceSynchronizer(package_repository, locks)


@pytest.fixture
def stored_package(package_repository, sample_package) -> SuperPackage:
    """The sample package saved as id 1 (fixtures are sync, so store directly)."""
    package_repository.packages[1] = sample_package.model_copy(deep=True)
    package_repository._next_id = 2
    return sample_package


@pytest.fixture
def db_session() -> FakeSession:
    return FakeSession()
