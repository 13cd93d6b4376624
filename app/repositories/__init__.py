"""
Data access for packages, package history and quotes.
"""

from app.repositories.base import PackageHistoryRepository, PackageRepository, QuoteRepository
from app.repositories.quotes import SqlQuoteRepository
from app.repositories.super_packages import SqlPackageHistoryRepository, SqlPackageRepository

__all__ = [
    "PackageRepository",
    "PackageHistoryRepository",
    "QuoteRepository",
    "SqlPackageRepository",
    "SqlPackageHistoryRepository",
    "SqlQuoteRepository",
]
