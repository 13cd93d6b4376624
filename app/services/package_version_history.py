"""
Super Package version history.

Every package update first snapshots the pre-update state here. Records are
append-only: a restore is a new forward version whose content equals an old
snapshot, never a deletion of the versions in between.

Convention: after N updates the history holds versions 1..N and the live
package is at version N + 1. A brand-new package has no history.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.repositories.base import PackageHistoryRepository
from app.schemas.package import (
    CONTENT_FIELDS,
    AuditTrail,
    FieldDiff,
    PackageVersionRecord,
    SuperPackage,
    VersionSummary,
)
from app.services.package_errors import (
    NoVersionHistoryError,
    PackageDatabaseError,
    VersionHistoryWriteError,
    VersionNotFoundError,
)

logger = logging.getLogger(__name__)

RECENT_CHANGES_LIMIT = 10


def _dump(package: SuperPackage) -> Dict[str, Any]:
    return package.model_dump(mode="json")


def detect_changed_fields(previous: SuperPackage, new_state: SuperPackage) -> List[str]:
    """Content fields whose values differ between two package states."""
    old_values = previous.content_dump()
    new_values = new_state.content_dump()
    return [field for field in CONTENT_FIELDS if old_values.get(field) != new_values.get(field)]


def diff_snapshots(old: SuperPackage, new: SuperPackage) -> List[FieldDiff]:
    """Deep-equality diff of every top-level field present in either snapshot."""
    old_values = _dump(old)
    new_values = _dump(new)
    diffs = []
    for field in list(old_values) + [f for f in new_values if f not in old_values]:
        old_value = old_values.get(field)
        new_value = new_values.get(field)
        if old_value != new_value:
            diffs.append(FieldDiff(field=field, old_value=old_value, new_value=new_value))
    return diffs


def _summary(record: PackageVersionRecord) -> VersionSummary:
    return VersionSummary(
        version=record.version,
        modified_by=record.modified_by,
        modified_at=record.modified_at,
        change_description=record.change_description,
        changed_fields=record.changed_fields,
    )


class PackageVersionHistoryService:
    """Reads and writes the append-only package history."""

    def __init__(self, history_repository: PackageHistoryRepository, default_limit: int = 50):
        self.history_repository = history_repository
        self.default_limit = default_limit

    async def save_version(
        self,
        package_id: int,
        previous_snapshot: SuperPackage,
        new_state: SuperPackage,
        modified_by: Optional[str],
        change_description: Optional[str] = None,
    ) -> PackageVersionRecord:
        """
        Append the pre-update snapshot. Must complete before the package
        write; a failure here aborts the update.
        """
        record = PackageVersionRecord(
            package_id=package_id,
            version=previous_snapshot.version,
            snapshot=previous_snapshot,
            modified_by=modified_by,
            modified_at=datetime.now(timezone.utc),
            change_description=change_description,
            changed_fields=detect_changed_fields(previous_snapshot, new_state),
        )
        try:
            await self.history_repository.append(record)
        except PackageDatabaseError as exc:
            logger.error(
                "Version snapshot failed for package %s v%s; update aborted",
                package_id,
                previous_snapshot.version,
            )
            raise VersionHistoryWriteError(package_id, previous_snapshot.version) from exc

        logger.info(
            "Saved package %s v%s (changed: %s)",
            package_id,
            record.version,
            ", ".join(record.changed_fields) or "nothing",
        )
        return record

    async def get_version_history(
        self, package_id: int, limit: Optional[int] = None
    ) -> List[PackageVersionRecord]:
        return await self.history_repository.list(package_id, limit=limit or self.default_limit)

    async def get_version(self, package_id: int, version: int) -> Optional[PackageVersionRecord]:
        return await self.history_repository.get(package_id, version)

    async def _snapshot_for(
        self, package_id: int, version: int, current: Optional[SuperPackage]
    ) -> Optional[SuperPackage]:
        if current is not None and current.version == version:
            return current
        record = await self.history_repository.get(package_id, version)
        return record.snapshot if record else None

    async def compare_versions(
        self,
        package_id: int,
        version1: int,
        version2: int,
        current: Optional[SuperPackage] = None,
    ) -> List[FieldDiff]:
        """
        Field-level differences from version1 to version2.

        `current` lets the live package stand in for its own version, which
        has no history record yet.
        """
        old = await self._snapshot_for(package_id, version1, current)
        new = await self._snapshot_for(package_id, version2, current)
        missing = [v for v, snap in ((version1, old), (version2, new)) if snap is None]
        if missing:
            raise VersionNotFoundError(package_id, missing)
        return diff_snapshots(old, new)

    async def get_audit_trail(self, package_id: int) -> AuditTrail:
        history = await self.history_repository.list(package_id)
        if not history:
            raise NoVersionHistoryError(package_id)

        contributors = {h.modified_by for h in history if h.modified_by}
        return AuditTrail(
            package_id=package_id,
            total_versions=len(history),
            unique_contributors=len(contributors),
            first_created=history[-1].modified_at,
            last_modified=history[0].modified_at,
            recent_changes=[_summary(h) for h in history[:RECENT_CHANGES_LIMIT]],
        )
