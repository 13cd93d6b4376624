"""
Quote schemas for package price synchronization.

A quote embeds a denormalized snapshot of the package pricing it was built
from (`linked_package`). The snapshot is either live (the package still
exists) or detached (the package was deleted), never a bare foreign key.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from app.schemas.package import Currency, Price, PriceResult, is_on_request

PriceChangeReason = Literal[
    "initial",
    "manual_override",
    "event_added",
    "event_removed",
    "recalculated",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncStatus(str, Enum):
    SYNCED = "synced"
    CALCULATING = "calculating"
    CUSTOM = "custom"
    ERROR = "error"
    OUT_OF_SYNC = "out-of-sync"


class SelectedTier(BaseModel):
    tier_index: int
    tier_label: str


class _LinkedPackageBase(BaseModel):
    package_id: int
    package_name: str
    package_version: int
    selected_tier: SelectedTier
    selected_nights: int
    selected_period: str
    calculated_price: Price
    price_per_person: Price
    price_was_on_request: bool = False


class LinkedPackageLive(_LinkedPackageBase):
    link_state: Literal["live"] = "live"

    def detach(self, reason: str) -> "LinkedPackageDetached":
        return LinkedPackageDetached(
            **self.model_dump(exclude={"link_state"}),
            detached_reason=reason,
            detached_at=utcnow(),
        )


class LinkedPackageDetached(_LinkedPackageBase):
    link_state: Literal["detached"] = "detached"
    detached_reason: str
    detached_at: Optional[datetime] = None


LinkedPackage = Annotated[
    Union[LinkedPackageLive, LinkedPackageDetached], Field(discriminator="link_state")
]


def link_from_result(result: PriceResult) -> LinkedPackageLive:
    """Snapshot a calculator result into a quote link."""
    return LinkedPackageLive(
        package_id=result.package_id,
        package_name=result.package_name,
        package_version=result.package_version,
        selected_tier=SelectedTier(tier_index=result.tier.index, tier_label=result.tier.label),
        selected_nights=result.nights,
        selected_period=result.period.period,
        calculated_price=result.total_price,
        price_per_person=result.price_per_person,
        price_was_on_request=is_on_request(result.total_price),
    )


class SelectedEvent(BaseModel):
    event_id: str
    event_name: str
    event_price: Decimal = Field(ge=0)
    event_currency: Currency
    added_at: datetime = Field(default_factory=utcnow)


class PriceHistoryEntry(BaseModel):
    price: Decimal
    reason: PriceChangeReason
    change_description: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    user_id: Optional[str] = None


class Quote(BaseModel):
    id: Optional[int] = None
    destination: str = ""
    number_of_people: int = Field(ge=1)
    number_of_nights: int = Field(ge=1)
    arrival_date: date
    currency: Currency = "EUR"
    total_price: Decimal = Decimal("0")
    linked_package: Optional[LinkedPackage] = None
    selected_events: List[SelectedEvent] = []
    price_history: List[PriceHistoryEntry] = []


class EventsTotal(BaseModel):
    currency: Currency
    total: Decimal
    included_event_ids: List[str] = []
    excluded_event_ids: List[str] = []
    warnings: List[str] = []


class SyncIssue(BaseModel):
    code: str
    message: str
    details: dict = {}


class SyncReport(BaseModel):
    """Derived price synchronization view of a quote. Never persisted."""

    quote_id: Optional[int] = None
    status: SyncStatus
    link_state: Optional[Literal["live", "detached"]] = None
    total_price: Decimal
    calculated_base_price: Optional[Price] = None
    events_total: Decimal = Decimal("0")
    expected_total: Optional[Decimal] = None
    difference: Optional[Decimal] = None
    price_result: Optional[PriceResult] = None
    error: Optional[SyncIssue] = None
    warnings: List[str] = []
