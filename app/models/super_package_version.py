"""
SuperPackageVersion model - append-only package history.

One row per superseded version of a package, holding the full package as it
was at that version. Rows survive a hard delete of the package.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class SuperPackageVersion(Base):
    __tablename__ = "super_package_history"
    __table_args__ = (
        UniqueConstraint("package_id", "version", name="uq_super_package_history_version"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    package_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    snapshot_json: Mapped[dict] = mapped_column(JSON, nullable=False)

    modified_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    modified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    change_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changed_fields_json: Mapped[list] = mapped_column(JSON, default=list)

    def __repr__(self) -> str:
        return f"<SuperPackageVersion(package_id={self.package_id}, version={self.version})>"
