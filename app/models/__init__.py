"""
SQLAlchemy models for the Super Package pricing engine.
"""

from app.models.base import Base, EntityBase, TimestampMixin
from app.models.super_package import SuperOfferPackage
from app.models.super_package_version import SuperPackageVersion
from app.models.quote import QuoteRecord

__all__ = [
    "Base",
    "EntityBase",
    "TimestampMixin",
    "SuperOfferPackage",
    "SuperPackageVersion",
    "QuoteRecord",
]
