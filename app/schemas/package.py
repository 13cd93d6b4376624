"""
Super Offer Package schemas.

Strict pydantic types shared by the CSV parser, the pricing calculator, the
version history service and the API. Loosely-typed payloads (CSV rows, JSON
columns, request bodies) are validated into these types before any pricing
logic touches them.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, List, Literal, Optional, Union, get_args

from pydantic import (
    BaseModel,
    BeforeValidator,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

Currency = Literal["GBP", "EUR", "USD"]
PackageStatus = Literal["active", "inactive", "deleted"]
InclusionCategory = Literal["transfer", "accommodation", "activity", "service", "other"]
INCLUSION_CATEGORIES = get_args(InclusionCategory)
ImportSource = Literal["csv", "manual"]

SUPPORTED_CURRENCIES = ("GBP", "EUR", "USD")
CURRENCY_SYMBOLS = {"GBP": "£", "EUR": "€", "USD": "$"}

# Legacy wire token for "no fixed price"
ON_REQUEST_TOKEN = "ON_REQUEST"

MONTH_NAMES = [
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
]


# ---------------------------------------------------------------------------
# Price: FixedPrice | OnRequest
# ---------------------------------------------------------------------------

class FixedPrice(BaseModel):
    """A firm, non-negative price."""

    kind: Literal["fixed"] = "fixed"
    amount: Decimal = Field(ge=0)


class OnRequest(BaseModel):
    """No fixed price: the quote must be priced manually."""

    kind: Literal["on_request"] = "on_request"

    def __str__(self) -> str:
        return ON_REQUEST_TOKEN


ON_REQUEST = OnRequest()


def _coerce_price(value: Any) -> Any:
    """Accept legacy storage shapes: a bare number or the ON_REQUEST token."""
    if isinstance(value, (FixedPrice, OnRequest)):
        return value
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return {"kind": "fixed", "amount": Decimal(str(value))}
    if isinstance(value, str):
        if value.strip().upper() == ON_REQUEST_TOKEN:
            return {"kind": "on_request"}
        return {"kind": "fixed", "amount": value.strip()}
    return value


Price = Annotated[Union[FixedPrice, OnRequest], BeforeValidator(_coerce_price)]


def is_on_request(price: Union[FixedPrice, OnRequest]) -> bool:
    return isinstance(price, OnRequest)


# ---------------------------------------------------------------------------
# Package structure
# ---------------------------------------------------------------------------

class GroupSizeTier(BaseModel):
    label: str
    min_people: int = Field(ge=1)
    max_people: int = Field(ge=1)

    @model_validator(mode="after")
    def check_bounds(self):
        if self.min_people > self.max_people:
            raise ValueError(
                f"Tier '{self.label}': min_people ({self.min_people}) "
                f"must be <= max_people ({self.max_people})"
            )
        return self

    def covers(self, number_of_people: int) -> bool:
        return self.min_people <= number_of_people <= self.max_people

    def overlaps(self, other: "GroupSizeTier") -> bool:
        return self.min_people <= other.max_people and other.min_people <= self.max_people


class MonthPeriod(BaseModel):
    """A calendar-month row ("June"). Matches any year."""

    period_type: Literal["month"] = "month"
    label: str
    month: int = Field(ge=1, le=12)

    def contains(self, day: date) -> bool:
        return day.month == self.month

    @property
    def display_label(self) -> str:
        return self.label


class SpecialPeriod(BaseModel):
    """A named exception window (Easter, New Year) with an explicit date range."""

    period_type: Literal["special"] = "special"
    label: str
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date > self.end_date:
            raise ValueError(
                f"Special period '{self.label}' ends before it starts"
            )
        return self

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    @property
    def display_label(self) -> str:
        return (
            f"{self.label} ({self.start_date:%d/%m/%Y} - {self.end_date:%d/%m/%Y})"
        )


PeriodDescriptor = Annotated[
    Union[MonthPeriod, SpecialPeriod], Field(discriminator="period_type")
]


class PricePoint(BaseModel):
    tier_index: int = Field(ge=0)
    nights: int = Field(ge=1)
    price: Price


class PricingRow(BaseModel):
    period: PeriodDescriptor
    prices: List[PricePoint]

    def price_for(self, tier_index: int, nights: int) -> Optional[Union[FixedPrice, OnRequest]]:
        for point in self.prices:
            if point.tier_index == tier_index and point.nights == nights:
                return point.price
        return None


class Inclusion(BaseModel):
    text: str
    category: InclusionCategory = "other"


def find_overlapping_tiers(tiers: List[GroupSizeTier]) -> List[tuple]:
    """Return (i, j) index pairs of tiers whose headcount ranges intersect."""
    overlaps = []
    for i, tier in enumerate(tiers):
        for j in range(i + 1, len(tiers)):
            if tier.overlaps(tiers[j]):
                overlaps.append((i, j))
    return overlaps


# Fields that describe what is sold. Bookkeeping fields (id, version,
# timestamps, authors) are not part of content diffs.
CONTENT_FIELDS = (
    "name",
    "destination",
    "resort",
    "currency",
    "status",
    "group_size_tiers",
    "duration_options",
    "pricing_matrix",
    "inclusions",
    "accommodation_examples",
    "sales_notes",
)


class PackageContent(BaseModel):
    """Pricing catalog content shared by drafts and persisted packages."""

    name: str
    destination: str = ""
    resort: str = ""
    currency: Currency = "EUR"
    group_size_tiers: List[GroupSizeTier]
    duration_options: List[int]
    pricing_matrix: List[PricingRow]
    inclusions: List[Inclusion] = []
    accommodation_examples: List[str] = []
    sales_notes: str = ""

    @field_validator("duration_options")
    @classmethod
    def normalize_durations(cls, v: List[int]) -> List[int]:
        if any(n < 1 for n in v):
            raise ValueError("Duration options must be positive numbers of nights")
        return sorted(set(v))

    @model_validator(mode="after")
    def check_matrix_consistency(self):
        overlaps = find_overlapping_tiers(self.group_size_tiers)
        if overlaps:
            i, j = overlaps[0]
            raise ValueError(
                f"Group size tiers '{self.group_size_tiers[i].label}' and "
                f"'{self.group_size_tiers[j].label}' overlap"
            )
        durations = set(self.duration_options)
        for row in self.pricing_matrix:
            for point in row.prices:
                if point.tier_index >= len(self.group_size_tiers):
                    raise ValueError(
                        f"Period '{row.period.label}' references unknown tier index {point.tier_index}"
                    )
                if point.nights not in durations:
                    raise ValueError(
                        f"Period '{row.period.label}' references {point.nights} nights, "
                        f"which is not a duration option"
                    )
        return self


class PackageDraft(PackageContent):
    """A package parsed from CSV, awaiting admin review."""

    import_source: ImportSource = "csv"
    original_filename: Optional[str] = None


class SuperPackage(PackageContent):
    """A persisted Super Offer Package."""

    id: Optional[int] = None
    status: PackageStatus = "active"
    version: int = Field(default=1, ge=1)
    created_by: Optional[str] = None
    last_modified_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    import_source: ImportSource = "manual"
    original_filename: Optional[str] = None

    def content_dump(self) -> dict:
        return self.model_dump(mode="json", include=set(CONTENT_FIELDS))


class PackageUpdate(BaseModel):
    """Partial update of a package's content."""

    name: Optional[str] = None
    destination: Optional[str] = None
    resort: Optional[str] = None
    currency: Optional[Currency] = None
    status: Optional[PackageStatus] = None
    group_size_tiers: Optional[List[GroupSizeTier]] = None
    duration_options: Optional[List[int]] = None
    pricing_matrix: Optional[List[PricingRow]] = None
    inclusions: Optional[List[Inclusion]] = None
    accommodation_examples: Optional[List[str]] = None
    sales_notes: Optional[str] = None


# ---------------------------------------------------------------------------
# CSV parsing outcome
# ---------------------------------------------------------------------------

class ParseDiagnostic(BaseModel):
    """One problem found in a CSV, precise enough to highlight the row."""

    line: Optional[int] = None  # 1-based
    column: Optional[int] = None  # 1-based
    severity: Literal["error", "warning"]
    code: str
    message: str

    def __str__(self) -> str:
        where = f"line {self.line}" if self.line is not None else "file"
        if self.column is not None:
            where += f", column {self.column}"
        return f"{where}: {self.message}"


class ParseSuccess(BaseModel):
    ok: Literal[True] = True
    draft: PackageDraft
    warnings: List[ParseDiagnostic] = []


class ParseFailure(BaseModel):
    ok: Literal[False] = False
    diagnostics: List[ParseDiagnostic]

    @property
    def errors(self) -> List[ParseDiagnostic]:
        return [d for d in self.diagnostics if d.severity == "error"]

    @property
    def warnings(self) -> List[ParseDiagnostic]:
        return [d for d in self.diagnostics if d.severity == "warning"]


ParseOutcome = Union[ParseSuccess, ParseFailure]


# ---------------------------------------------------------------------------
# Price calculation
# ---------------------------------------------------------------------------

class PriceRequest(BaseModel):
    package_id: Optional[int] = None
    number_of_people: int = Field(ge=1, le=1000)
    nights: int = Field(ge=1, le=365)
    arrival_date: date


class TierUsed(BaseModel):
    index: int
    label: str


class PeriodUsed(BaseModel):
    period: str
    period_type: Literal["month", "special"]
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class PriceBreakdown(BaseModel):
    price_per_person: Price
    number_of_people: int
    total_price: Price


class PriceResult(BaseModel):
    package_id: Optional[int] = None
    package_name: str
    package_version: int
    currency: Currency
    number_of_people: int
    nights: int
    arrival_date: date
    tier: TierUsed
    period: PeriodUsed
    price_per_person: Price
    total_price: Price
    price_was_on_request: bool

    @computed_field
    @property
    def price(self) -> Union[FixedPrice, OnRequest]:
        """Deprecated alias of total_price, kept for older consumers."""
        return self.total_price

    @computed_field
    @property
    def breakdown(self) -> PriceBreakdown:
        return PriceBreakdown(
            price_per_person=self.price_per_person,
            number_of_people=self.number_of_people,
            total_price=self.total_price,
        )


# ---------------------------------------------------------------------------
# Version history
# ---------------------------------------------------------------------------

class PackageVersionRecord(BaseModel):
    package_id: int
    version: int
    snapshot: SuperPackage
    modified_by: Optional[str] = None
    modified_at: datetime
    change_description: Optional[str] = None
    changed_fields: List[str] = []


class FieldDiff(BaseModel):
    field: str
    old_value: Any = None
    new_value: Any = None


class VersionSummary(BaseModel):
    version: int
    modified_by: Optional[str] = None
    modified_at: datetime
    change_description: Optional[str] = None
    changed_fields: List[str] = []


class AuditTrail(BaseModel):
    package_id: int
    total_versions: int
    unique_contributors: int
    first_created: datetime
    last_modified: datetime
    recent_changes: List[VersionSummary]
