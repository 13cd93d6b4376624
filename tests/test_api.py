"""HTTP tests for the super package and quote pricing routes."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_history_repository, get_package_repository, get_quote_repository
from app.api.quotes import ManualPriceRequest, recalculate_quote_price, set_quote_price
from app.config import Settings, get_settings
from app.database import get_db
from app.main import app
from app.schemas.quote import PriceHistoryEntry, Quote, SyncStatus, link_from_result
from app.services.package_errors import PackageDatabaseError, RecalculationInProgressError
from app.services.pricing_calculator import calculate_price

USER = {"X-User-Id": "admin-1"}


@pytest.fixture
def client(package_repository, history_repository, quote_repository, locks, db_session):
    async def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_package_repository] = lambda: package_repository
    app.dependency_overrides[get_history_repository] = lambda: history_repository
    app.dependency_overrides[get_quote_repository] = lambda: quote_repository
    app.state.recalculation_locks = locks

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def stored_quote(quote_repository, sample_package) -> Quote:
    result = calculate_price(sample_package, 8, 3, date(2026, 6, 1))
    quote = Quote(
        id=10,
        destination="Benidorm",
        number_of_people=8,
        number_of_nights=3,
        arrival_date=date(2026, 6, 1),
        total_price=Decimal("800.00"),
        linked_package=link_from_result(result),
        price_history=[PriceHistoryEntry(price=Decimal("800.00"), reason="initial")],
    )
    quote_repository.quotes[10] = quote
    return quote


def _upload(content: str, filename="benidorm.csv", content_type="text/csv"):
    return {"file": (filename, content.encode("utf-8"), content_type)}


class TestHealth:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestAuthentication:
    def test_missing_user_is_unauthorized(self, client, stored_package):
        response = client.get("/super-packages/1")
        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"


class TestImportRoutes:
    def test_preview_returns_draft_without_saving(self, client, sample_csv, package_repository, db_session):
        response = client.post("/super-packages/import/preview", files=_upload(sample_csv), headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["draft"]["name"] == "Benidorm Party Weekend"
        assert package_repository.packages == {}
        assert db_session.commits == 0

    def test_preview_lists_errors(self, client):
        csv_text = "Package: X\n\nPeriod,6-11 People - 3 Nights\nJune,abc\n"
        response = client.post("/super-packages/import/preview", files=_upload(csv_text), headers=USER)

        data = response.json()
        assert data["ok"] is False
        assert data["errors"][0]["code"] == "invalid_price"
        assert data["errors"][0]["line"] == 4

    def test_import_creates_package(self, client, sample_csv, db_session):
        response = client.post("/super-packages/import", files=_upload(sample_csv), headers=USER)

        assert response.status_code == 201
        package = response.json()["package"]
        assert package["id"] == 1
        assert package["created_by"] == "admin-1"
        assert db_session.commits == 1

    def test_import_with_errors_is_refused(self, client, package_repository):
        csv_text = "Package: X\nno table here\n"
        response = client.post("/super-packages/import", files=_upload(csv_text), headers=USER)

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "CSV_PARSE_ERROR"
        assert body["details"]["diagnostics"][0]["code"] == "header_not_found"
        assert package_repository.packages == {}

    def test_non_csv_upload_is_rejected(self, client):
        response = client.post(
            "/super-packages/import/preview",
            files=_upload("%PDF", filename="prices.pdf", content_type="application/pdf"),
            headers=USER,
        )
        assert response.status_code == 400

    def test_text_file_with_plain_content_type_is_rejected(self, client):
        response = client.post(
            "/super-packages/import/preview",
            files=_upload("Package: X", filename="notes.txt", content_type="text/plain"),
            headers=USER,
        )
        assert response.status_code == 400

    def test_csv_name_with_generic_content_type_is_accepted(self, client, sample_csv):
        response = client.post(
            "/super-packages/import/preview",
            files=_upload(sample_csv, filename="BENIDORM.CSV", content_type="application/octet-stream"),
            headers=USER,
        )
        assert response.status_code == 200
        assert response.json()["ok"] is True

    def test_oversized_upload_is_rejected(self, client, sample_csv):
        app.dependency_overrides[get_settings] = lambda: Settings(csv_max_bytes=100)

        response = client.post("/super-packages/import/preview", files=_upload(sample_csv), headers=USER)

        assert response.status_code == 413


class TestPriceRoute:
    def test_calculate_price(self, client, stored_package):
        response = client.post(
            "/super-packages/calculate-price",
            json={"package_id": 1, "number_of_people": 8, "nights": 3, "arrival_date": "2026-06-01"},
            headers=USER,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total_price"] == {"kind": "fixed", "amount": "800.00"}
        assert data["price"] == data["total_price"]
        assert data["tier"] == {"index": 0, "label": "6-11 People"}
        assert data["period"]["period"] == "June"

    def test_no_tier_is_calculation_error(self, client, stored_package):
        response = client.post(
            "/super-packages/calculate-price",
            json={"package_id": 1, "number_of_people": 25, "nights": 3, "arrival_date": "2026-06-01"},
            headers=USER,
        )

        assert response.status_code == 422
        assert response.json()["code"] == "CALCULATION_ERROR"
        assert response.json()["details"]["reason"] == "no_tier"

    def test_out_of_range_people_is_invalid_parameters(self, client, stored_package):
        response = client.post(
            "/super-packages/calculate-price",
            json={"package_id": 1, "number_of_people": 0, "nights": 3, "arrival_date": "2026-06-01"},
            headers=USER,
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_PARAMETERS"

    def test_unknown_package(self, client):
        response = client.post(
            "/super-packages/calculate-price",
            json={"package_id": 5, "number_of_people": 8, "nights": 3, "arrival_date": "2026-06-01"},
            headers=USER,
        )
        assert response.status_code == 404
        assert response.json()["code"] == "PACKAGE_NOT_FOUND"


class TestPackageRoutes:
    def test_list_and_get(self, client, stored_package):
        listed = client.get("/super-packages", params={"search": "benidorm"}, headers=USER)
        assert [p["id"] for p in listed.json()] == [1]

        response = client.get("/super-packages/1", headers=USER)
        assert response.json()["name"] == "Benidorm Party Weekend"

    def test_update_then_history(self, client, stored_package, db_session):
        response = client.put(
            "/super-packages/1",
            json={"name": "Benidorm Deluxe", "expected_version": 1, "change_description": "Rename"},
            headers=USER,
        )
        assert response.status_code == 200
        assert response.json()["version"] == 2
        assert db_session.commits == 1

        history = client.get("/super-packages/1/history", headers=USER).json()
        assert history["current_version"] == 2
        assert [v["version"] for v in history["versions"]] == [1]
        assert history["versions"][0]["changed_fields"] == ["name"]

        single = client.get("/super-packages/1/history", params={"version": 1}, headers=USER).json()
        assert single["snapshot"]["name"] == "Benidorm Party Weekend"

    def test_stale_update_conflicts(self, client, stored_package):
        client.put("/super-packages/1", json={"name": "V2"}, headers=USER)
        response = client.put("/super-packages/1", json={"name": "V3", "expected_version": 1}, headers=USER)

        assert response.status_code == 409
        assert response.json()["code"] == "VERSION_CONFLICT"

    def test_compare_and_audit_trail(self, client, stored_package):
        client.put("/super-packages/1", json={"sales_notes": "Updated"}, headers=USER)

        compare = client.get("/super-packages/1/history/compare", params={"v1": 1, "v2": 2}, headers=USER)
        fields = {d["field"] for d in compare.json()["differences"]}
        assert "sales_notes" in fields

        trail = client.get("/super-packages/1/audit-trail", headers=USER).json()
        assert trail["total_versions"] == 1
        assert trail["unique_contributors"] == 1

    def test_audit_trail_without_history(self, client, stored_package):
        response = client.get("/super-packages/1/audit-trail", headers=USER)
        assert response.status_code == 404
        assert response.json()["code"] == "NO_VERSION_HISTORY"

    def test_restore(self, client, stored_package):
        client.put("/super-packages/1", json={"name": "V2"}, headers=USER)
        response = client.post("/super-packages/1/history/1/restore", headers=USER)

        assert response.status_code == 200
        assert response.json()["version"] == 3
        assert response.json()["name"] == "Benidorm Party Weekend"

    def test_delete_referenced_package(self, client, stored_package, package_repository):
        package_repository.linked_quotes[1] = 2

        check = client.get("/super-packages/1/check-deletion", headers=USER).json()
        assert check["will_soft_delete"] is True

        hard = client.delete("/super-packages/1", params={"hard": "true"}, headers=USER)
        assert hard.status_code == 409
        assert hard.json()["code"] == "PACKAGE_IN_USE"

        soft = client.delete("/super-packages/1", headers=USER)
        assert soft.json()["deleted"] == "soft"

    def test_duplicate(self, client, stored_package):
        response = client.post("/super-packages/1/duplicate", headers=USER)
        assert response.status_code == 201
        assert response.json()["name"] == "Benidorm Party Weekend (Copy)"
        assert response.json()["status"] == "inactive"

    def test_export(self, client, stored_package):
        response = client.get("/super-packages/1/export", headers=USER)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "benidorm-party-weekend-v1.csv" in response.headers["content-disposition"]
        assert response.text.startswith("Package: Benidorm Party Weekend")

    def test_bulk_export_by_ids(self, client, stored_package, package_repository, sample_package):
        package_repository.packages[2] = sample_package.model_copy(
            update={"id": 2, "name": "Ibiza Week", "destination": "Ibiza"}, deep=True
        )

        response = client.get("/super-packages/export?ids=1,2", headers=USER)

        assert response.status_code == 200
        assert "super-packages-export-" in response.headers["content-disposition"]
        assert "Package: Benidorm Party Weekend" in response.text
        assert "Package: Ibiza Week" in response.text
        assert "=" * 80 in response.text

    def test_bulk_export_by_destination(self, client, stored_package, package_repository, sample_package):
        package_repository.packages[2] = sample_package.model_copy(
            update={"id": 2, "name": "Ibiza Week", "destination": "Ibiza"}, deep=True
        )

        response = client.get("/super-packages/export?destination=ibiza", headers=USER)

        assert response.status_code == 200
        assert "Package: Ibiza Week" in response.text
        assert "Benidorm Party Weekend" not in response.text

    def test_bulk_export_with_no_match(self, client, stored_package):
        response = client.get("/super-packages/export?status=inactive", headers=USER)

        assert response.status_code == 404
        assert response.json()["code"] == "NO_PACKAGES_FOUND"

    def test_bulk_export_rejects_bad_ids(self, client, stored_package):
        response = client.get("/super-packages/export?ids=1,abc", headers=USER)
        assert response.status_code == 400

    def test_statistics(self, client, stored_package, package_repository):
        package_repository.linked_quotes[1] = 3

        response = client.get("/super-packages/statistics", headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert data["overview"]["total_packages"] == 1
        assert data["overview"]["total_linked_quotes"] == 3
        assert data["by_destination"] == {"Benidorm": 1}
        assert data["most_used_packages"][0]["package_id"] == 1

    def test_database_error_is_generic(self, client, package_repository, monkeypatch):
        async def broken(package_id):
            raise PackageDatabaseError("find_package")

        monkeypatch.setattr(package_repository, "find_by_id", broken)
        response = client.get("/super-packages/1", headers=USER)

        assert response.status_code == 503
        assert response.json() == {
            "detail": "A database error occurred. Please try again.",
            "code": "DATABASE_ERROR",
        }


class TestQuoteRoutes:
    def test_price_sync_status(self, client, stored_package, stored_quote):
        response = client.get("/quotes/10/price-sync", headers=USER)

        assert response.status_code == 200
        assert response.json()["sync"]["status"] == "synced"

    def test_unknown_quote(self, client):
        response = client.get("/quotes/99/price-sync", headers=USER)
        assert response.status_code == 404
        assert response.json()["code"] == "QUOTE_NOT_FOUND"

    def test_recalculate_after_group_change(self, client, stored_package, stored_quote, quote_repository):
        quote_repository.quotes[10].number_of_people = 10

        before = client.get("/quotes/10/price-sync", headers=USER).json()
        assert before["sync"]["status"] == "out-of-sync"

        response = client.post("/quotes/10/recalculate-price", headers=USER)
        data = response.json()
        assert data["sync"]["status"] == "synced"
        assert data["quote"]["total_price"] == "1000.00"
        assert quote_repository.quotes[10].total_price == Decimal("1000.00")

    def test_manual_price_then_reset(self, client, stored_package, stored_quote):
        manual = client.put("/quotes/10/price", json={"price": "700", "description": "Discount"}, headers=USER)
        assert manual.json()["sync"]["status"] == "custom"

        reset = client.post("/quotes/10/reset-price", headers=USER)
        assert reset.json()["quote"]["total_price"] == "800.00"
        assert reset.json()["sync"]["status"] == "synced"

    def test_reset_when_synced_is_conflict(self, client, stored_package, stored_quote):
        response = client.post("/quotes/10/reset-price", headers=USER)
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_SYNC_TRANSITION"

    def test_events(self, client, stored_package, stored_quote):
        added = client.post(
            "/quotes/10/events",
            json={"event_id": "boat", "event_name": "Boat party", "event_price": "45", "event_currency": "EUR"},
            headers=USER,
        )
        assert added.json()["quote"]["total_price"] == "845.00"

        removed = client.delete("/quotes/10/events/boat", headers=USER)
        assert removed.json()["quote"]["total_price"] == "800.00"
        assert removed.json()["sync"]["status"] == "synced"

    def test_deleted_package_detaches_on_read(self, client, stored_quote, quote_repository, db_session):
        response = client.get("/quotes/10/price-sync", headers=USER)

        assert response.json()["sync"]["link_state"] == "detached"
        assert quote_repository.quotes[10].linked_package.link_state == "detached"
        assert db_session.commits == 1


@pytest.mark.asyncio
class TestRecalculationLockSpansSave:
    async def test_manual_price_cannot_land_during_recalculation_save(
        self, synchronizer, locks, stored_package, stored_quote, slow_quote_repository, db_session
    ):
        """The quote stays calculating until the recalculated price is committed."""
        quotes = slow_quote_repository
        quotes.quotes[10] = stored_quote.model_copy(update={"number_of_people": 10}, deep=True)

        recalculation = asyncio.create_task(
            recalculate_quote_price(10, db_session, quotes, synchronizer, "admin-1")
        )
        await asyncio.wait_for(quotes.save_started.wait(), timeout=1)

        assert locks.is_locked(10)
        with pytest.raises(RecalculationInProgressError):
            await set_quote_price(
                10, ManualPriceRequest(price=Decimal("700")), db_session, quotes, synchronizer, "agent-2"
            )

        second = await recalculate_quote_price(10, db_session, quotes, synchronizer, "admin-1")
        assert second.sync.status == SyncStatus.CALCULATING
        assert quotes.saves == 1

        quotes.finish_save.set()
        response = await recalculation

        assert response.sync.status == SyncStatus.SYNCED
        assert not locks.is_locked(10)
        stored = quotes.quotes[10]
        assert stored.total_price == Decimal("1000.00")
        assert [entry.reason for entry in stored.price_history] == ["initial", "recalculated"]
        assert db_session.commits == 1

    async def test_lock_released_when_save_fails(
        self, synchronizer, locks, stored_package, stored_quote, quote_repository, db_session, monkeypatch
    ):
        async def broken(quote):
            raise PackageDatabaseError("save_quote")

        monkeypatch.setattr(quote_repository, "save", broken)

        with pytest.raises(PackageDatabaseError):
            await recalculate_quote_price(10, db_session, quote_repository, synchronizer, "admin-1")

        assert not locks.is_locked(10)
        assert db_session.commits == 0
