"""
FastAPI dependencies for the caller identity, database access and services.

Every service is built per request from injected collaborators; the only
app-wide state is the session factory and the recalculation locks, both held
on `app.state`.
"""

from typing import Annotated, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.database import get_db
from app.repositories.base import PackageHistoryRepository, PackageRepository, QuoteRepository
from app.repositories.quotes import SqlQuoteRepository
from app.repositories.super_packages import SqlPackageHistoryRepository, SqlPackageRepository
from app.services.package_errors import PackageUnauthorizedError
from app.services.package_service import SuperPackageService
from app.services.package_version_history import PackageVersionHistoryService
from app.services.quote_price_sync import QuotePriceSynchronizer, RecalculationLocks

DbSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]


async def get_current_user_id(
    x_user_id: Annotated[Optional[str], Header()] = None,
) -> str:
    """
    Identity of the caller, forwarded by the authenticating gateway.
    Requests without it are refused.
    """
    if not x_user_id:
        raise PackageUnauthorizedError("access super packages")
    return x_user_id


CurrentUserId = Annotated[str, Depends(get_current_user_id)]


def get_package_repository(db: DbSession) -> PackageRepository:
    return SqlPackageRepository(db)


def get_history_repository(db: DbSession) -> PackageHistoryRepository:
    return SqlPackageHistoryRepository(db)


def get_quote_repository(db: DbSession) -> QuoteRepository:
    return SqlQuoteRepository(db)


def get_recalculation_locks(request: Request) -> RecalculationLocks:
    return request.app.state.recalculation_locks


def get_history_service(
    history_repository: Annotated[PackageHistoryRepository, Depends(get_history_repository)],
    settings: AppSettings,
) -> PackageVersionHistoryService:
    return PackageVersionHistoryService(history_repository, default_limit=settings.version_history_limit)


def get_package_service(
    package_repository: Annotated[PackageRepository, Depends(get_package_repository)],
    history_service: Annotated[PackageVersionHistoryService, Depends(get_history_service)],
) -> SuperPackageService:
    return SuperPackageService(package_repository, history_service)


def get_quote_synchronizer(
    package_repository: Annotated[PackageRepository, Depends(get_package_repository)],
    locks: Annotated[RecalculationLocks, Depends(get_recalculation_locks)],
    settings: AppSettings,
) -> QuotePriceSynchronizer:
    return QuotePriceSynchronizer(package_repository, locks, tolerance=settings.price_sync_tolerance)


PackageServiceDep = Annotated[SuperPackageService, Depends(get_package_service)]
HistoryServiceDep = Annotated[PackageVersionHistoryService, Depends(get_history_service)]
QuoteRepositoryDep = Annotated[QuoteRepository, Depends(get_quote_repository)]
QuoteSynchronizerDep = Annotated[QuotePriceSynchronizer, Depends(get_quote_synchronizer)]
