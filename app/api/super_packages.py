"""
Super Packages API - CSV import, CRUD, pricing and version history.
"""

import logging
import re
from datetime import date
from pathlib import PurePath
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, File, HTTPException, Query, UploadFile, status
from fastapi.responses import Response
from pydantic import BaseModel

from app.api.deps import (
    AppSettings,
    CurrentUserId,
    DbSession,
    HistoryServiceDep,
    PackageServiceDep,
)
from app.config import Settings
from app.schemas.package import (
    AuditTrail,
    FieldDiff,
    PackageUpdate,
    PackageVersionRecord,
    ParseDiagnostic,
    ParseFailure,
    PackageDraft,
    PriceResult,
    SuperPackage,
)
from app.services.package_csv_exporter import export_package_csv, export_packages_csv
from app.services.package_csv_parser import parse_package_csv
from app.services.package_errors import VersionNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class ImportPreviewResponse(BaseModel):
    ok: bool
    draft: Optional[PackageDraft] = None
    errors: List[ParseDiagnostic] = []
    warnings: List[ParseDiagnostic] = []


class ImportResponse(BaseModel):
    package: SuperPackage
    warnings: List[ParseDiagnostic] = []
    message: str = "Package imported successfully"


class PackageUpdateRequest(PackageUpdate):
    expected_version: Optional[int] = None
    change_description: Optional[str] = None


class DuplicateRequest(BaseModel):
    name: Optional[str] = None


class PriceCalculationRequest(BaseModel):
    # Ranges are checked by the calculator so they surface as INVALID_PARAMETERS
    package_id: int
    number_of_people: int
    nights: int
    arrival_date: date


class HistoryListResponse(BaseModel):
    package_id: int
    current_version: Optional[int] = None
    versions: List[PackageVersionRecord]


class CompareResponse(BaseModel):
    package_id: int
    version1: int
    version2: int
    differences: List[FieldDiff]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _read_csv_upload(file: UploadFile, settings: Settings) -> str:
    # A .csv name is required; files without an extension need a CSV content type
    suffix = PurePath(file.filename or "").suffix.lower()
    if suffix != ".csv" and (suffix or file.content_type not in settings.csv_allowed_content_types):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV files are accepted",
        )

    content = await file.read()
    if len(content) > settings.csv_max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds the {settings.csv_max_bytes // (1024 * 1024)} MB limit",
        )

    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="CSV file must be UTF-8 encoded",
        )


def _export_filename(package: SuperPackage) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", package.name.lower()).strip("-") or "package"
    return f"{slug}-v{package.version}.csv"


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

@router.post("/import/preview", response_model=ImportPreviewResponse)
async def preview_import(
    settings: AppSettings,
    user_id: CurrentUserId,
    file: UploadFile = File(...),
):
    """Parse a CSV without saving anything. Errors and warnings are returned for review."""
    csv_text = await _read_csv_upload(file, settings)
    outcome = parse_package_csv(csv_text, file.filename)

    if isinstance(outcome, ParseFailure):
        return ImportPreviewResponse(ok=False, errors=outcome.errors, warnings=outcome.warnings)
    return ImportPreviewResponse(ok=True, draft=outcome.draft, warnings=outcome.warnings)


@router.post("/import", response_model=ImportResponse, status_code=status.HTTP_201_CREATED)
async def import_package(
    db: DbSession,
    service: PackageServiceDep,
    settings: AppSettings,
    user_id: CurrentUserId,
    file: UploadFile = File(...),
):
    """Parse a CSV and create the package. Refused when the CSV has any error."""
    csv_text = await _read_csv_upload(file, settings)
    package, warnings = await service.import_csv(csv_text, user_id, file.filename)
    await db.commit()
    return ImportResponse(package=package, warnings=warnings)


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

@router.post("/calculate-price", response_model=PriceResult)
async def calculate_package_price(
    data: PriceCalculationRequest,
    service: PackageServiceDep,
    user_id: CurrentUserId,
):
    return await service.calculate_for_request(
        data.package_id, data.number_of_people, data.nights, data.arrival_date
    )


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

@router.get("", response_model=List[SuperPackage])
async def list_packages(
    service: PackageServiceDep,
    user_id: CurrentUserId,
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    return await service.list(status=status_filter, search=search, limit=limit, offset=offset)


@router.get("/export")
async def export_packages(
    service: PackageServiceDep,
    user_id: CurrentUserId,
    ids: Optional[str] = Query(None, description="Comma-separated package IDs"),
    destination: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
):
    """Several packages in one CSV. Without filters, every package that is not deleted."""
    package_ids = None
    if ids:
        try:
            package_ids = [int(part) for part in ids.split(",") if part.strip()]
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="ids must be a comma-separated list of package IDs",
            )

    packages = await service.find_for_export(package_ids, destination, status_filter)
    filename = f"super-packages-export-{date.today():%Y-%m-%d}.csv"
    return Response(
        content=export_packages_csv(packages),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/statistics")
async def get_package_statistics(service: PackageServiceDep, user_id: CurrentUserId) -> Dict[str, Any]:
    return await service.get_statistics()


@router.get("/{package_id}", response_model=SuperPackage)
async def get_package(package_id: int, service: PackageServiceDep, user_id: CurrentUserId):
    return await service.get(package_id)


@router.put("/{package_id}", response_model=SuperPackage)
async def update_package(
    package_id: int,
    data: PackageUpdateRequest,
    db: DbSession,
    service: PackageServiceDep,
    user_id: CurrentUserId,
):
    changes = PackageUpdate.model_validate(
        data.model_dump(exclude_unset=True, exclude={"expected_version", "change_description"})
    )
    package = await service.update(
        package_id,
        changes,
        user_id,
        expected_version=data.expected_version,
        change_description=data.change_description,
    )
    await db.commit()
    return package


@router.delete("/{package_id}")
async def delete_package(
    package_id: int,
    db: DbSession,
    service: PackageServiceDep,
    user_id: CurrentUserId,
    hard: bool = False,
) -> Dict[str, Any]:
    result = await service.delete(package_id, user_id, hard=hard)
    await db.commit()
    return result


@router.get("/{package_id}/check-deletion")
async def check_package_deletion(
    package_id: int, service: PackageServiceDep, user_id: CurrentUserId
) -> Dict[str, Any]:
    return await service.check_deletion(package_id)


@router.post("/{package_id}/duplicate", response_model=SuperPackage, status_code=status.HTTP_201_CREATED)
async def duplicate_package(
    package_id: int,
    db: DbSession,
    service: PackageServiceDep,
    user_id: CurrentUserId,
    data: Optional[DuplicateRequest] = None,
):
    package = await service.duplicate(package_id, user_id, name=data.name if data else None)
    await db.commit()
    return package


@router.get("/{package_id}/export")
async def export_package(package_id: int, service: PackageServiceDep, user_id: CurrentUserId):
    package = await service.get(package_id)
    return Response(
        content=export_package_csv(package),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{_export_filename(package)}"'},
    )


# ---------------------------------------------------------------------------
# Version history
# ---------------------------------------------------------------------------

@router.get("/{package_id}/history")
async def get_package_history(
    package_id: int,
    service: PackageServiceDep,
    history: HistoryServiceDep,
    user_id: CurrentUserId,
    version: Optional[int] = None,
    limit: Optional[int] = Query(None, ge=1, le=500),
):
    """One version when `version` is given, otherwise the history newest first."""
    if version is not None:
        record = await history.get_version(package_id, version)
        if record is None:
            raise VersionNotFoundError(package_id, [version])
        return record

    current = await service.find(package_id)
    versions = await history.get_version_history(package_id, limit=limit)
    return HistoryListResponse(
        package_id=package_id,
        current_version=current.version if current else None,
        versions=versions,
    )


@router.get("/{package_id}/history/compare", response_model=CompareResponse)
async def compare_package_versions(
    package_id: int,
    service: PackageServiceDep,
    history: HistoryServiceDep,
    user_id: CurrentUserId,
    v1: int = Query(..., ge=1),
    v2: int = Query(..., ge=1),
):
    current = await service.find(package_id)
    differences = await history.compare_versions(package_id, v1, v2, current=current)
    return CompareResponse(package_id=package_id, version1=v1, version2=v2, differences=differences)


@router.get("/{package_id}/audit-trail", response_model=AuditTrail)
async def get_package_audit_trail(
    package_id: int, history: HistoryServiceDep, user_id: CurrentUserId
):
    return await history.get_audit_trail(package_id)


@router.post("/{package_id}/history/{version}/restore", response_model=SuperPackage)
async def restore_package_version(
    package_id: int,
    version: int,
    db: DbSession,
    service: PackageServiceDep,
    user_id: CurrentUserId,
):
    package = await service.restore_version(package_id, version, user_id)
    await db.commit()
    return package
