"""
Error taxonomy for the Super Package pricing engine.

Every error carries a stable `code`, a human-readable `message`, structured
`details` for the caller, and the HTTP status the API layer should answer
with. Errors are recoverable at the request boundary.
"""

from typing import Any, Dict, List, Optional


class SuperPackageError(Exception):
    """Base class for pricing engine errors."""

    code = "SUPER_PACKAGE_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


# --- CSV import ---

class CsvParseError(SuperPackageError):
    """Raised when an import is refused because the CSV has errors."""

    code = "CSV_PARSE_ERROR"
    status_code = 422

    def __init__(self, diagnostics: list):
        self.diagnostics = diagnostics
        errors = [d for d in diagnostics if d.severity == "error"]
        super().__init__(
            f"CSV import refused: {len(errors)} error(s) found",
            {"diagnostics": [d.model_dump() for d in diagnostics]},
        )


# --- Price calculation ---

class CalculationError(SuperPackageError):
    """No tier/duration/period match, or ON_REQUEST where a number was required."""

    code = "CALCULATION_ERROR"
    status_code = 422

    NO_TIER = "no_tier"
    DURATION_NOT_AVAILABLE = "duration_not_available"
    NO_PERIOD = "no_period"
    MISSING_PRICE = "missing_price"
    PRICE_ON_REQUEST = "price_on_request"
    PACKAGE_INACTIVE = "package_inactive"

    def __init__(self, reason: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.reason = reason
        super().__init__(message, {"reason": reason, **(details or {})})


class PriceRequestValidationError(SuperPackageError):
    """Request parameters outside their allowed ranges (distinct from no-match)."""

    code = "INVALID_PARAMETERS"
    status_code = 400

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("Invalid price calculation parameters", {"errors": errors})


# --- Package operations ---

class PackageNotFoundError(SuperPackageError):
    code = "PACKAGE_NOT_FOUND"
    status_code = 404

    def __init__(self, package_id: Any):
        self.package_id = package_id
        super().__init__(
            f'Package with ID "{package_id}" not found or has been deleted',
            {"package_id": package_id},
        )


class NoPackagesFoundError(SuperPackageError):
    code = "NO_PACKAGES_FOUND"
    status_code = 404

    def __init__(self, filters: Dict[str, Any]):
        super().__init__("No packages found to export", {"filters": filters})


class PackageInUseError(SuperPackageError):
    code = "PACKAGE_IN_USE"
    status_code = 409

    def __init__(self, package_id: Any, linked_quotes: int):
        self.package_id = package_id
        self.linked_quotes = linked_quotes
        super().__init__(
            f"Package is referenced by {linked_quotes} quote(s) and cannot be removed",
            {"package_id": package_id, "linked_quotes": linked_quotes},
        )


class PackageValidationError(SuperPackageError):
    code = "PACKAGE_VALIDATION_ERROR"
    status_code = 422

    def __init__(self, field: Optional[str], message: str):
        self.field = field
        super().__init__(message, {"field": field})


class PackageUnauthorizedError(SuperPackageError):
    code = "UNAUTHORIZED"
    status_code = 401

    def __init__(self, action: str):
        self.action = action
        super().__init__(
            f"Authentication required to {action}",
            {"action": action},
        )


class PackageVersionConflictError(SuperPackageError):
    code = "VERSION_CONFLICT"
    status_code = 409

    def __init__(self, package_id: Any, expected_version: int, actual_version: Optional[int]):
        self.package_id = package_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            "The package was modified by someone else. Reload and try again.",
            {
                "package_id": package_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )


class PackageDatabaseError(SuperPackageError):
    """Wraps persistence failures. Internal detail is logged, never returned."""

    code = "DATABASE_ERROR"
    status_code = 503

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            "A database error occurred. Please try again.",
            {"operation": operation},
        )


# --- Version history ---

class VersionHistoryWriteError(SuperPackageError):
    """The pre-update snapshot could not be written; the update is aborted."""

    code = "VERSION_HISTORY_WRITE_FAILED"
    status_code = 503

    def __init__(self, package_id: Any, version: int):
        self.package_id = package_id
        self.version = version
        super().__init__(
            "Could not record the package version history. The update was not applied.",
            {"package_id": package_id, "version": version},
        )


class VersionNotFoundError(SuperPackageError):
    code = "VERSION_NOT_FOUND"
    status_code = 404

    def __init__(self, package_id: Any, versions: List[int]):
        self.package_id = package_id
        self.versions = versions
        super().__init__(
            f"Version(s) {', '.join(str(v) for v in versions)} not found",
            {"package_id": package_id, "versions": versions},
        )


class NoVersionHistoryError(SuperPackageError):
    code = "NO_VERSION_HISTORY"
    status_code = 404

    def __init__(self, package_id: Any):
        self.package_id = package_id
        super().__init__(
            "No history found for package",
            {"package_id": package_id},
        )


# --- Quote price synchronization ---

class QuoteNotFoundError(SuperPackageError):
    code = "QUOTE_NOT_FOUND"
    status_code = 404

    def __init__(self, quote_id: Any):
        self.quote_id = quote_id
        super().__init__("Quote not found", {"quote_id": quote_id})


class InvalidSyncTransitionError(SuperPackageError):
    code = "INVALID_SYNC_TRANSITION"
    status_code = 409

    def __init__(self, action: str, status: str):
        self.action = action
        self.status = status
        super().__init__(
            f"Cannot {action} while the quote price is {status}",
            {"action": action, "status": status},
        )


class RecalculationInProgressError(SuperPackageError):
    code = "RECALCULATION_IN_PROGRESS"
    status_code = 409

    def __init__(self, quote_id: Any):
        self.quote_id = quote_id
        super().__init__(
            "A price recalculation is already in progress for this quote",
            {"quote_id": quote_id},
        )
