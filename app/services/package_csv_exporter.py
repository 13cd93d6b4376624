"""
Super Package CSV exporter.

Writes a package back to the spreadsheet layout understood by
`package_csv_parser`, so an exported file can be edited and re-imported.
Grid gaps are written as N/A and inclusion categories as a second cell, so
a re-import restores both.
"""

import csv
import io
from decimal import Decimal
from typing import List, Sequence

from app.schemas.package import CURRENCY_SYMBOLS, FixedPrice, SuperPackage

MISSING_PRICE = "N/A"
PACKAGE_DIVIDER = "=" * 80


def format_price_cell(price, currency: str) -> str:
    if price is None:
        return MISSING_PRICE
    if isinstance(price, FixedPrice):
        amount = price.amount.quantize(Decimal("0.01"))
        return f"{CURRENCY_SYMBOLS.get(currency, '')}{amount:,.2f}"
    return "ON REQUEST"


def export_package_csv(package: SuperPackage) -> str:
    """Serialize a package (metadata, pricing matrix, sections) to CSV text."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")

    writer.writerow([f"Package: {package.name}"])
    writer.writerow([f"Destination: {package.destination}"])
    writer.writerow([f"Resort: {package.resort}"])
    writer.writerow([f"Currency: {package.currency}"])
    writer.writerow([])

    columns = [
        (tier_index, tier, nights)
        for tier_index, tier in enumerate(package.group_size_tiers)
        for nights in package.duration_options
    ]
    header: List[str] = ["Period"]
    header.extend(
        f"{tier.min_people}-{tier.max_people} People - {nights} Nights"
        for _, tier, nights in columns
    )
    writer.writerow(header)

    for row in package.pricing_matrix:
        cells = [row.period.display_label]
        cells.extend(
            format_price_cell(row.price_for(tier_index, nights), package.currency)
            for tier_index, _, nights in columns
        )
        writer.writerow(cells)

    writer.writerow([])
    writer.writerow(["Inclusions:"])
    for inclusion in package.inclusions:
        writer.writerow([f"- {inclusion.text}", inclusion.category])

    writer.writerow(["Accommodation:"])
    for example in package.accommodation_examples:
        writer.writerow([f"- {example}"])

    if package.sales_notes:
        writer.writerow(["Sales Notes:"])
        writer.writerow([package.sales_notes])

    return buffer.getvalue()


def export_packages_csv(packages: Sequence[SuperPackage]) -> str:
    """Several packages in one file, separated by a divider line."""
    return f"\n{PACKAGE_DIVIDER}\n\n".join(export_package_csv(package) for package in packages)
