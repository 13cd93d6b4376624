"""
Super Package service - lifecycle of persisted packages.

Wraps the package repository with the rules that keep the history honest:
- every update bumps `version` and snapshots the pre-update state first
- a failed snapshot aborts the update (nothing is written)
- packages referenced by quotes are soft-deleted (a versioned update)
- restoring an old version is a new forward version
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from app.repositories.base import PackageRepository
from app.schemas.package import (
    PackageDraft,
    PackageUpdate,
    ParseDiagnostic,
    ParseFailure,
    PriceResult,
    SuperPackage,
)
from app.services.package_csv_parser import parse_package_csv
from app.services.package_errors import (
    CalculationError,
    CsvParseError,
    NoPackagesFoundError,
    PackageInUseError,
    PackageNotFoundError,
    PackageValidationError,
    PackageVersionConflictError,
    VersionNotFoundError,
)
from app.services.package_version_history import PackageVersionHistoryService
from app.services.pricing_calculator import calculate_price

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _validation_error(exc: ValidationError) -> PackageValidationError:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or None
    return PackageValidationError(field, first["msg"])


class SuperPackageService:
    def __init__(
        self,
        package_repository: PackageRepository,
        history_service: PackageVersionHistoryService,
    ):
        self.package_repository = package_repository
        self.history_service = history_service

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find(self, package_id: int) -> Optional[SuperPackage]:
        return await self.package_repository.find_by_id(package_id)

    async def get(self, package_id: int) -> SuperPackage:
        package = await self.find(package_id)
        if package is None:
            raise PackageNotFoundError(package_id)
        return package

    async def list(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[SuperPackage]:
        return await self.package_repository.list(
            status=status, search=search, limit=limit, offset=offset
        )

    async def find_for_export(
        self,
        ids: Optional[List[int]] = None,
        destination: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[SuperPackage]:
        """Every package matching the filters; deleted ones only when asked for by status."""
        packages = await self.package_repository.list(
            status=status, destination=destination, ids=ids, limit=None
        )
        if not packages:
            raise NoPackagesFoundError({"ids": ids, "destination": destination, "status": status})
        return packages

    async def get_statistics(self, most_used_limit: int = 10) -> Dict[str, Any]:
        packages = await self.package_repository.list(limit=None)
        usage = await self.package_repository.count_quotes_by_package()

        by_destination: Dict[str, int] = {}
        for package in packages:
            by_destination[package.destination] = by_destination.get(package.destination, 0) + 1

        used = [p for p in packages if usage.get(p.id)]
        used.sort(key=lambda p: usage[p.id], reverse=True)

        return {
            "overview": {
                "total_packages": len(packages),
                "active_packages": sum(1 for p in packages if p.status == "active"),
                "inactive_packages": sum(1 for p in packages if p.status == "inactive"),
                "total_linked_quotes": sum(usage.get(p.id, 0) for p in packages),
                "packages_with_quotes": len(used),
                "unused_packages": len(packages) - len(used),
            },
            "by_destination": by_destination,
            "most_used_packages": [
                {
                    "package_id": p.id,
                    "name": p.name,
                    "destination": p.destination,
                    "linked_quotes": usage[p.id],
                }
                for p in used[:most_used_limit]
            ],
        }

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_from_draft(
        self,
        draft: PackageDraft,
        user_id: Optional[str],
        status: str = "active",
    ) -> SuperPackage:
        now = _now()
        try:
            package = SuperPackage.model_validate(
                {
                    **draft.model_dump(),
                    "status": status,
                    "version": 1,
                    "created_by": user_id,
                    "last_modified_by": user_id,
                    "created_at": now,
                    "updated_at": now,
                }
            )
        except ValidationError as exc:
            raise _validation_error(exc) from exc

        created = await self.package_repository.insert(package)
        logger.info("Created package %s '%s' (%s)", created.id, created.name, created.import_source)
        return created

    async def import_csv(
        self,
        csv_text: str,
        user_id: Optional[str],
        original_filename: Optional[str] = None,
    ) -> Tuple[SuperPackage, List[ParseDiagnostic]]:
        """Parse a CSV and create the package. Any parse error refuses the import."""
        outcome = parse_package_csv(csv_text, original_filename)
        if isinstance(outcome, ParseFailure):
            logger.warning(
                "Import of %s refused: %d error(s)",
                original_filename or "CSV",
                len(outcome.errors),
            )
            raise CsvParseError(outcome.diagnostics)
        package = await self.create_from_draft(outcome.draft, user_id)
        return package, outcome.warnings

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def _write_new_version(
        self,
        current: SuperPackage,
        changes: Dict[str, Any],
        user_id: Optional[str],
        change_description: Optional[str],
    ) -> SuperPackage:
        try:
            new_state = SuperPackage.model_validate(
                {
                    **current.model_dump(),
                    **changes,
                    "version": current.version + 1,
                    "last_modified_by": user_id,
                    "updated_at": _now(),
                }
            )
        except ValidationError as exc:
            raise _validation_error(exc) from exc

        await self.history_service.save_version(
            current.id,
            previous_snapshot=current,
            new_state=new_state,
            modified_by=user_id,
            change_description=change_description,
        )
        return await self.package_repository.replace(new_state, expected_version=current.version)

    async def update(
        self,
        package_id: int,
        changes: PackageUpdate,
        user_id: Optional[str],
        expected_version: Optional[int] = None,
        change_description: Optional[str] = None,
    ) -> SuperPackage:
        current = await self.get(package_id)
        if expected_version is not None and expected_version != current.version:
            raise PackageVersionConflictError(package_id, expected_version, current.version)

        updated = await self._write_new_version(
            current,
            changes.model_dump(exclude_unset=True),
            user_id,
            change_description,
        )
        logger.info("Updated package %s to v%s", package_id, updated.version)
        return updated

    async def restore_version(
        self, package_id: int, version: int, user_id: Optional[str]
    ) -> SuperPackage:
        """Make an old snapshot's content the next version."""
        current = await self.get(package_id)
        record = await self.history_service.get_version(package_id, version)
        if record is None:
            raise VersionNotFoundError(package_id, [version])

        restored = await self._write_new_version(
            current,
            record.snapshot.content_dump(),
            user_id,
            f"Restored from version {version}",
        )
        logger.info("Restored package %s v%s as v%s", package_id, version, restored.version)
        return restored

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def check_deletion(self, package_id: int) -> Dict[str, Any]:
        package = await self.get(package_id)
        linked_quotes = await self.package_repository.count_referencing_quotes(package_id)
        return {
            "package_id": package.id,
            "linked_quotes": linked_quotes,
            "can_hard_delete": linked_quotes == 0,
            "will_soft_delete": linked_quotes > 0,
        }

    async def delete(
        self, package_id: int, user_id: Optional[str], hard: bool = False
    ) -> Dict[str, Any]:
        """
        Delete a package.

        With quotes referencing it the package is soft-deleted (status
        "deleted", a new version); asking for a hard delete then raises
        PackageInUseError. Unreferenced packages are removed outright.
        """
        current = await self.get(package_id)
        linked_quotes = await self.package_repository.count_referencing_quotes(package_id)

        if linked_quotes:
            if hard:
                raise PackageInUseError(package_id, linked_quotes)
            await self._write_new_version(
                current,
                {"status": "deleted"},
                user_id,
                f"Soft-deleted ({linked_quotes} linked quote(s))",
            )
            logger.info("Soft-deleted package %s (%d linked quotes)", package_id, linked_quotes)
            return {"package_id": package_id, "deleted": "soft", "linked_quotes": linked_quotes}

        await self.package_repository.delete(package_id)
        logger.info("Deleted package %s", package_id)
        return {"package_id": package_id, "deleted": "hard", "linked_quotes": 0}

    async def duplicate(
        self, package_id: int, user_id: Optional[str], name: Optional[str] = None
    ) -> SuperPackage:
        """Copy a package's content into a new inactive package at version 1."""
        original = await self.get(package_id)
        draft = PackageDraft.model_validate(
            {
                **original.content_dump(),
                "name": name or f"{original.name} (Copy)",
                "import_source": "manual",
            }
        )
        return await self.create_from_draft(draft, user_id, status="inactive")

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    async def calculate_for_request(
        self,
        package_id: int,
        number_of_people: int,
        nights: int,
        arrival_date: date,
    ) -> PriceResult:
        package = await self.get(package_id)
        if package.status != "active":
            raise CalculationError(
                CalculationError.PACKAGE_INACTIVE,
                "Package is not active",
                {"package_id": package_id, "status": package.status},
            )
        return calculate_price(package, number_of_people, nights, arrival_date)
