"""Tests for package version history."""

import pytest

from app.schemas.package import PackageUpdate
from app.services.package_errors import (
    NoVersionHistoryError,
    VersionHistoryWriteError,
    VersionNotFoundError,
)
from app.services.package_version_history import detect_changed_fields, diff_snapshots


class TestChangeDetection:
    def test_detects_content_fields_only(self, sample_package):
        changed = sample_package.model_copy(
            update={"name": "Renamed", "version": 2, "last_modified_by": "someone"}
        )
        assert detect_changed_fields(sample_package, changed) == ["name"]

    def test_nested_change_is_reported_on_its_top_level_field(self, sample_package):
        changed = sample_package.model_copy(deep=True)
        changed.group_size_tiers[0].label = "Six to eleven"
        assert detect_changed_fields(sample_package, changed) == ["group_size_tiers"]

    def test_diff_snapshots_lists_old_and_new_values(self, sample_package):
        changed = sample_package.model_copy(update={"sales_notes": "New notes"})
        diffs = diff_snapshots(sample_package, changed)
        assert [(d.field, d.old_value, d.new_value) for d in diffs] == [
            ("sales_notes", "Great for groups.", "New notes")
        ]


@pytest.mark.asyncio
class TestHistoryThroughUpdates:
    """History written by SuperPackageService.update()."""

    async def test_update_snapshots_previous_version(self, package_service, history_service, stored_package):
        """The pre-update state is recorded under the old version number."""
        updated = await package_service.update(
            1, PackageUpdate(name="Benidorm Deluxe"), "editor-1", change_description="Rename"
        )

        assert updated.version == 2
        assert updated.name == "Benidorm Deluxe"
        assert updated.last_modified_by == "editor-1"

        history = await history_service.get_version_history(1)
        assert len(history) == 1
        record = history[0]
        assert record.version == 1
        assert record.snapshot.name == "Benidorm Party Weekend"
        assert record.modified_by == "editor-1"
        assert record.change_description == "Rename"
        assert record.changed_fields == ["name"]

    async def test_n_updates_give_versions_one_to_n(self, package_service, history_service, stored_package):
        for i in range(4):
            await package_service.update(1, PackageUpdate(sales_notes=f"Notes {i}"), "editor-1")

        current = await package_service.get(1)
        history = await history_service.get_version_history(1)

        assert current.version == 5
        assert [h.version for h in history] == [4, 3, 2, 1]

    async def test_history_limit(self, package_service, history_service, stored_package):
        for i in range(3):
            await package_service.update(1, PackageUpdate(sales_notes=f"Notes {i}"), "editor-1")

        history = await history_service.get_version_history(1, limit=2)
        assert [h.version for h in history] == [3, 2]

    async def test_failed_snapshot_aborts_update(
        self, package_service, history_repository, package_repository, stored_package
    ):
        """Fail closed: no history, no package write."""
        history_repository.fail_writes = True

        with pytest.raises(VersionHistoryWriteError):
            await package_service.update(1, PackageUpdate(name="Never saved"), "editor-1")

        package = await package_repository.find_by_id(1)
        assert package.version == 1
        assert package.name == "Benidorm Party Weekend"
        assert history_repository.records == []

    async def test_get_version(self, package_service, history_service, stored_package):
        await package_service.update(1, PackageUpdate(name="V2"), "editor-1")

        record = await history_service.get_version(1, 1)
        assert record.snapshot.name == "Benidorm Party Weekend"
        assert await history_service.get_version(1, 2) is None


@pytest.mark.asyncio
class TestCompareVersions:
    async def test_compare_with_live_version(self, package_service, history_service, stored_package):
        await package_service.update(1, PackageUpdate(name="V2"), "editor-1")
        current = await package_service.get(1)

        diffs = await history_service.compare_versions(1, 1, 2, current=current)
        fields = {d.field: d for d in diffs}

        assert fields["name"].old_value == "Benidorm Party Weekend"
        assert fields["name"].new_value == "V2"
        assert fields["version"].old_value == 1
        assert fields["version"].new_value == 2

    async def test_compare_first_to_live_covers_each_step(self, package_service, history_service, stored_package):
        await package_service.update(1, PackageUpdate(name="V2"), "editor-1")
        await package_service.update(1, PackageUpdate(sales_notes="V3 notes"), "editor-2")
        current = await package_service.get(1)

        overall = {d.field for d in await history_service.compare_versions(1, 1, 3, current=current)}
        step_one = {d.field for d in await history_service.compare_versions(1, 1, 2, current=current)}
        step_two = {d.field for d in await history_service.compare_versions(1, 2, 3, current=current)}

        assert {"name", "sales_notes"} <= overall
        assert step_one - {"updated_at", "last_modified_by"} <= overall
        assert step_two - {"updated_at", "last_modified_by"} <= overall

    async def test_missing_version(self, package_service, history_service, stored_package):
        with pytest.raises(VersionNotFoundError) as exc_info:
            await history_service.compare_versions(1, 1, 7)
        assert exc_info.value.details["versions"] == [1, 7]


@pytest.mark.asyncio
class TestAuditTrail:
    async def test_audit_trail_summarizes_history(self, package_service, history_service, stored_package):
        await package_service.update(1, PackageUpdate(name="V2"), "editor-1")
        await package_service.update(1, PackageUpdate(name="V3"), "editor-2")
        await package_service.update(1, PackageUpdate(name="V4"), "editor-1")

        trail = await history_service.get_audit_trail(1)

        assert trail.total_versions == 3
        assert trail.unique_contributors == 2
        assert [c.version for c in trail.recent_changes] == [3, 2, 1]
        assert trail.first_created <= trail.last_modified

    async def test_recent_changes_are_capped_at_ten(self, package_service, history_service, stored_package):
        for i in range(12):
            await package_service.update(1, PackageUpdate(sales_notes=f"n{i}"), "editor-1")

        trail = await history_service.get_audit_trail(1)
        assert trail.total_versions == 12
        assert len(trail.recent_changes) == 10

    async def test_no_history(self, history_service, stored_package):
        with pytest.raises(NoVersionHistoryError):
            await history_service.get_audit_trail(1)
