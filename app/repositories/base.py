"""
Persistence collaborators consumed by the pricing services.

Services receive these through their constructors. The SQLAlchemy
implementations live next to this module; tests substitute in-memory fakes.
"""

from typing import Dict, List, Optional, Protocol

from app.schemas.package import PackageVersionRecord, SuperPackage
from app.schemas.quote import Quote


class PackageRepository(Protocol):
    async def find_by_id(self, package_id: int) -> Optional[SuperPackage]:
        ...

    async def insert(self, package: SuperPackage) -> SuperPackage:
        """Store a new package and return it with its id assigned."""
        ...

    async def replace(self, package: SuperPackage, expected_version: int) -> SuperPackage:
        """
        Overwrite a package, only if the stored version still equals
        `expected_version`. Raises PackageVersionConflictError otherwise.
        """
        ...

    async def delete(self, package_id: int) -> None:
        ...

    async def count_referencing_quotes(self, package_id: int) -> int:
        ...

    async def count_quotes_by_package(self) -> Dict[int, int]:
        """Linked quote count per package id, for packages with at least one."""
        ...

    async def list(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: Optional[int] = 50,
        offset: int = 0,
        destination: Optional[str] = None,
        ids: Optional[List[int]] = None,
    ) -> List[SuperPackage]:
        ...


class PackageHistoryRepository(Protocol):
    async def append(self, record: PackageVersionRecord) -> None:
        ...

    async def list(self, package_id: int, limit: Optional[int] = None) -> List[PackageVersionRecord]:
        """History records, newest version first."""
        ...

    async def get(self, package_id: int, version: int) -> Optional[PackageVersionRecord]:
        ...


class QuoteRepository(Protocol):
    async def find_by_id(self, quote_id: int) -> Optional[Quote]:
        ...

    async def save(self, quote: Quote) -> Quote:
        ...
