"""
SQLAlchemy repositories for super packages and their version history.

Rows are converted to and from the pydantic schemas at this boundary; the
services never see ORM objects. SQLAlchemy failures are logged with full
context and re-raised as PackageDatabaseError.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.quote import QuoteRecord
from app.models.super_package import SuperOfferPackage
from app.models.super_package_version import SuperPackageVersion
from app.schemas.package import PackageVersionRecord, SuperPackage
from app.services.package_errors import PackageDatabaseError, PackageVersionConflictError

logger = logging.getLogger(__name__)


def package_from_row(row: SuperOfferPackage) -> SuperPackage:
    return SuperPackage.model_validate(
        {
            "id": row.id,
            "name": row.name,
            "destination": row.destination or "",
            "resort": row.resort or "",
            "currency": row.currency,
            "status": row.status,
            "version": row.version,
            "group_size_tiers": row.group_size_tiers_json or [],
            "duration_options": row.duration_options_json or [],
            "pricing_matrix": row.pricing_matrix_json or [],
            "inclusions": row.inclusions_json or [],
            "accommodation_examples": row.accommodation_examples_json or [],
            "sales_notes": row.sales_notes or "",
            "created_by": row.created_by,
            "last_modified_by": row.last_modified_by,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
            "import_source": row.import_source,
            "original_filename": row.original_filename,
        }
    )


def _row_values(package: SuperPackage) -> dict:
    data = package.model_dump(mode="json")
    values = {
        "name": package.name,
        "destination": package.destination,
        "resort": package.resort,
        "currency": package.currency,
        "status": package.status,
        "version": package.version,
        "group_size_tiers_json": data["group_size_tiers"],
        "duration_options_json": data["duration_options"],
        "pricing_matrix_json": data["pricing_matrix"],
        "inclusions_json": data["inclusions"],
        "accommodation_examples_json": data["accommodation_examples"],
        "sales_notes": package.sales_notes,
        "created_by": package.created_by,
        "last_modified_by": package.last_modified_by,
        "import_source": package.import_source,
        "original_filename": package.original_filename,
    }
    if package.created_at is not None:
        values["created_at"] = package.created_at
    if package.updated_at is not None:
        values["updated_at"] = package.updated_at
    return values


class SqlPackageRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, package_id: int) -> Optional[SuperPackage]:
        try:
            row = await self.db.get(SuperOfferPackage, package_id)
        except SQLAlchemyError as exc:
            logger.exception("Error fetching package %s", package_id)
            raise PackageDatabaseError("find_package") from exc
        return package_from_row(row) if row else None

    async def insert(self, package: SuperPackage) -> SuperPackage:
        row = SuperOfferPackage(**_row_values(package))
        try:
            self.db.add(row)
            await self.db.flush()
            await self.db.refresh(row)
        except SQLAlchemyError as exc:
            logger.exception("Error creating package '%s'", package.name)
            raise PackageDatabaseError("create_package") from exc
        return package_from_row(row)

    async def replace(self, package: SuperPackage, expected_version: int) -> SuperPackage:
        values = _row_values(package)
        values.pop("created_at", None)
        try:
            result = await self.db.execute(
                update(SuperOfferPackage)
                .where(
                    SuperOfferPackage.id == package.id,
                    SuperOfferPackage.version == expected_version,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                current = await self.db.scalar(
                    select(SuperOfferPackage.version).where(SuperOfferPackage.id == package.id)
                )
                raise PackageVersionConflictError(package.id, expected_version, current)
            row = await self.db.get(SuperOfferPackage, package.id, populate_existing=True)
        except SQLAlchemyError as exc:
            logger.exception("Error updating package %s", package.id)
            raise PackageDatabaseError("update_package") from exc
        return package_from_row(row)

    async def delete(self, package_id: int) -> None:
        try:
            await self.db.execute(delete(SuperOfferPackage).where(SuperOfferPackage.id == package_id))
        except SQLAlchemyError as exc:
            logger.exception("Error deleting package %s", package_id)
            raise PackageDatabaseError("delete_package") from exc

    async def count_referencing_quotes(self, package_id: int) -> int:
        try:
            count = await self.db.scalar(
                select(func.count(QuoteRecord.id)).where(QuoteRecord.linked_package_id == package_id)
            )
        except SQLAlchemyError as exc:
            logger.exception("Error counting quotes for package %s", package_id)
            raise PackageDatabaseError("count_linked_quotes") from exc
        return count or 0

    async def count_quotes_by_package(self) -> Dict[int, int]:
        query = (
            select(QuoteRecord.linked_package_id, func.count(QuoteRecord.id))
            .where(QuoteRecord.linked_package_id.is_not(None))
            .group_by(QuoteRecord.linked_package_id)
        )
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as exc:
            logger.exception("Error counting quotes per package")
            raise PackageDatabaseError("count_linked_quotes") from exc
        return {package_id: count for package_id, count in result.all()}

    async def list(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: Optional[int] = 50,
        offset: int = 0,
        destination: Optional[str] = None,
        ids: Optional[List[int]] = None,
    ) -> List[SuperPackage]:
        query = select(SuperOfferPackage)
        if status:
            query = query.where(SuperOfferPackage.status == status)
        else:
            query = query.where(SuperOfferPackage.status != "deleted")
        if destination:
            query = query.where(SuperOfferPackage.destination.ilike(destination))
        if ids is not None:
            query = query.where(SuperOfferPackage.id.in_(ids))
        if search:
            query = query.where(
                or_(
                    SuperOfferPackage.name.ilike(f"%{search}%"),
                    SuperOfferPackage.destination.ilike(f"%{search}%"),
                    SuperOfferPackage.resort.ilike(f"%{search}%"),
                )
            )
        query = query.order_by(SuperOfferPackage.updated_at.desc()).limit(limit).offset(offset)

        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as exc:
            logger.exception("Error listing packages")
            raise PackageDatabaseError("list_packages") from exc
        return [package_from_row(row) for row in result.scalars().all()]


def _record_from_row(row: SuperPackageVersion) -> PackageVersionRecord:
    return PackageVersionRecord(
        package_id=row.package_id,
        version=row.version,
        snapshot=SuperPackage.model_validate(row.snapshot_json),
        modified_by=row.modified_by,
        modified_at=row.modified_at,
        change_description=row.change_description,
        changed_fields=row.changed_fields_json or [],
    )


class SqlPackageHistoryRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(self, record: PackageVersionRecord) -> None:
        row = SuperPackageVersion(
            package_id=record.package_id,
            version=record.version,
            snapshot_json=record.snapshot.model_dump(mode="json"),
            modified_by=record.modified_by,
            modified_at=record.modified_at,
            change_description=record.change_description,
            changed_fields_json=list(record.changed_fields),
        )
        try:
            self.db.add(row)
            await self.db.flush()
        except SQLAlchemyError as exc:
            logger.exception(
                "Error saving history for package %s v%s", record.package_id, record.version
            )
            raise PackageDatabaseError("save_version_history") from exc

    async def list(self, package_id: int, limit: Optional[int] = None) -> List[PackageVersionRecord]:
        query = (
            select(SuperPackageVersion)
            .where(SuperPackageVersion.package_id == package_id)
            .order_by(SuperPackageVersion.version.desc())
        )
        if limit:
            query = query.limit(limit)
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as exc:
            logger.exception("Error fetching history for package %s", package_id)
            raise PackageDatabaseError("get_version_history") from exc
        return [_record_from_row(row) for row in result.scalars().all()]

    async def get(self, package_id: int, version: int) -> Optional[PackageVersionRecord]:
        try:
            row = await self.db.scalar(
                select(SuperPackageVersion).where(
                    SuperPackageVersion.package_id == package_id,
                    SuperPackageVersion.version == version,
                )
            )
        except SQLAlchemyError as exc:
            logger.exception("Error fetching package %s v%s", package_id, version)
            raise PackageDatabaseError("get_version") from exc
        return _record_from_row(row) if row else None
