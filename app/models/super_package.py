"""
SuperOfferPackage model - a pre-priced travel package.

Nested structures are stored as JSON documents and validated back into the
pydantic schemas (`app.schemas.package`) on read:
- group_size_tiers_json: [{"label": "6-11 People", "min_people": 6, "max_people": 11}, ...]
- duration_options_json: [3, 5, 7]
- pricing_matrix_json: [{"period": {"period_type": "month", "label": "June", "month": 6},
                         "prices": [{"tier_index": 0, "nights": 3,
                                     "price": {"kind": "fixed", "amount": "100.00"}}]}]
"""

from typing import Optional

from sqlalchemy import Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import EntityBase


class SuperOfferPackage(EntityBase):
    __tablename__ = "super_packages"

    # Identity
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    destination: Mapped[str] = mapped_column(String(200), default="", index=True)
    resort: Mapped[str] = mapped_column(String(200), default="")
    currency: Mapped[str] = mapped_column(String(3), default="EUR")

    # Lifecycle: active, inactive, deleted (soft tombstone)
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Pricing structure
    group_size_tiers_json: Mapped[list] = mapped_column(JSON, default=list)
    duration_options_json: Mapped[list] = mapped_column(JSON, default=list)
    pricing_matrix_json: Mapped[list] = mapped_column(JSON, default=list)

    # Sales content
    inclusions_json: Mapped[list] = mapped_column(JSON, default=list)
    accommodation_examples_json: Mapped[list] = mapped_column(JSON, default=list)
    sales_notes: Mapped[str] = mapped_column(Text, default="")

    # Audit
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_modified_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Import tracking: csv, manual
    import_source: Mapped[str] = mapped_column(String(20), default="manual")
    original_filename: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<SuperOfferPackage(id={self.id}, name='{self.name}', v{self.version})>"
