"""
Super Package CSV parser.

Turns the semi-structured CSV exported from the pricing spreadsheets into a
validated PackageDraft. Expected layout:

    Package: Benidorm Super Package
    Destination: Benidorm
    Resort: Costa Blanca
    Currency: EUR

    Period,6-11 People - 2 Nights,6-11 People - 3 Nights,12-20 People - 2 Nights,...
    January,150,200,120,...
    Easter (02/04/2025 - 06/04/2025),ON REQUEST,ON REQUEST,180,...

    Inclusions:
    - Airport transfers
    Accommodation:
    - Hotel Benidorm Plaza
    Sales Notes:
    Perfect for groups looking for sun and fun!

Problems are collected in bulk (never fail-fast) so the admin UI can show
every offending line in one pass. Any error refuses the import; warnings
never do.
"""

import csv
import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from app.schemas.package import (
    INCLUSION_CATEGORIES,
    MONTH_NAMES,
    ON_REQUEST,
    SUPPORTED_CURRENCIES,
    FixedPrice,
    GroupSizeTier,
    Inclusion,
    MonthPeriod,
    OnRequest,
    PackageDraft,
    ParseDiagnostic,
    ParseFailure,
    ParseOutcome,
    ParseSuccess,
    PricePoint,
    PricingRow,
    SpecialPeriod,
    find_overlapping_tiers,
)
from app.services.html_sanitizer import sanitize_sales_notes

logger = logging.getLogger(__name__)

METADATA_SCAN_LINES = 10
DEFAULT_PACKAGE_NAME = "Unnamed Package"
DEFAULT_CURRENCY = "EUR"
# "12+ People" has no upper bound in the sheets
OPEN_ENDED_MAX_PEOPLE = 999

TIER_RE = re.compile(r"(\d+)\s*-\s*(\d+)\s*(?:people|pax)\b", re.IGNORECASE)
OPEN_TIER_RE = re.compile(r"(\d+)\s*\+\s*(?:people|pax)\b", re.IGNORECASE)
NIGHTS_RE = re.compile(r"(\d+)\s*nights?\b", re.IGNORECASE)
METADATA_RE = re.compile(
    r"^\s*(package|name|destination|resort|currency)\s*:\s*(.*)$", re.IGNORECASE
)
SECTION_RE = re.compile(
    r"^\s*(inclusions|accommodation|hotels|sales\s+notes|notes)\s*:\s*(.*)$",
    re.IGNORECASE,
)
SPECIAL_PERIOD_RE = re.compile(
    r"^(?P<label>.*?)\s*\(?\s*(?P<start>\d{1,2}/\d{1,2}/\d{4})\s*-\s*"
    r"(?P<end>\d{1,2}/\d{1,2}/\d{4})\s*\)?\s*$"
)
MONTH_RE = re.compile(
    r"^(" + "|".join(m for m in MONTH_NAMES) + r"|"
    + "|".join(m[:3] for m in MONTH_NAMES) + r")\.?$",
    re.IGNORECASE,
)
ON_REQUEST_RE = re.compile(r"^(on[\s_-]*request|poa)$", re.IGNORECASE)
# Grid gap: no price at all for that tier and duration
MISSING_PRICE_RE = re.compile(r"^n/?a$", re.IGNORECASE)
PRICE_STRIP_RE = re.compile(r"[£€$,\s]")

BULLET_MARKERS = ("-", "•", "*")

SECTION_KEYS = {
    "inclusions": "inclusions",
    "accommodation": "accommodation",
    "hotels": "accommodation",
    "sales notes": "notes",
    "notes": "notes",
}

INCLUSION_KEYWORDS = [
    ("transfer", ("transfer", "airport", "transport")),
    ("accommodation", ("hotel", "accommodation", "room")),
    ("activity", ("activity", "excursion", "tour", "ticket")),
    ("service", ("service", "assistance", "support")),
]

# (tier_key, nights) for one priced column
Column = Tuple[Tuple[int, int], int]


def categorize_inclusion(text: str) -> str:
    """Guess an inclusion category from keywords."""
    lower = text.lower()
    for category, keywords in INCLUSION_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return category
    return "other"


def parse_price_cell(cell: str) -> Union[FixedPrice, OnRequest, None]:
    """
    Parse one price cell.

    Returns ON_REQUEST for the on-request token, a FixedPrice for a
    non-negative amount, or None when the cell is not a price.
    """
    value = cell.strip()
    if ON_REQUEST_RE.match(value):
        return ON_REQUEST
    cleaned = PRICE_STRIP_RE.sub("", value)
    if not cleaned:
        return None
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount < 0:
        return None
    return FixedPrice(amount=amount)


def _split_cells(line: str) -> List[str]:
    if not line.strip():
        return []
    cells = [c.strip() for c in next(csv.reader([line]))]
    while cells and not cells[-1]:
        cells.pop()
    return cells


def _line_text(cells: List[str]) -> str:
    return ", ".join(c for c in cells if c)


def _parse_dmy(value: str) -> date:
    return datetime.strptime(value, "%d/%m/%Y").date()


class SuperPackageCsvParser:
    """
    Single-use parser for one CSV document.

    Use `parse_package_csv()` rather than instantiating directly.
    """

    def __init__(self, csv_text: str, original_filename: Optional[str] = None):
        self.lines = csv_text.lstrip("\ufeff").splitlines()
        self.rows = [_split_cells(line) for line in self.lines]
        self.original_filename = original_filename
        self.diagnostics: List[ParseDiagnostic] = []

    # ---- diagnostics ----

    def _error(self, code: str, message: str, line: Optional[int] = None, column: Optional[int] = None):
        self.diagnostics.append(
            ParseDiagnostic(line=line, column=column, severity="error", code=code, message=message)
        )

    def _warning(self, code: str, message: str, line: Optional[int] = None, column: Optional[int] = None):
        self.diagnostics.append(
            ParseDiagnostic(line=line, column=column, severity="warning", code=code, message=message)
        )

    @property
    def has_errors(self) -> bool:
        return any(d.severity == "error" for d in self.diagnostics)

    # ---- entry point ----

    def parse(self) -> ParseOutcome:
        metadata = self._extract_metadata()

        header_index = self._find_header()
        if header_index is None:
            self._error(
                "header_not_found",
                "Could not find the pricing table header "
                "(expected cells like '6-11 People - 3 Nights')",
            )
            return ParseFailure(diagnostics=self.diagnostics)

        parsed_header = self._parse_header(header_index)
        if parsed_header is None:
            return ParseFailure(diagnostics=self.diagnostics)
        tiers, durations, columns, ignored = parsed_header

        pricing_matrix, table_end = self._parse_pricing_rows(header_index + 1, columns, ignored)
        if not pricing_matrix and not self.has_errors:
            self._error(
                "no_pricing_rows",
                "The pricing table has no rows",
                line=header_index + 2,
            )

        sections = self._extract_sections(table_end)

        if self.has_errors:
            logger.info(
                "CSV import refused for %s: %d diagnostic(s)",
                self.original_filename or "<upload>",
                len(self.diagnostics),
            )
            return ParseFailure(diagnostics=self.diagnostics)

        try:
            draft = PackageDraft(
                name=metadata["name"],
                destination=metadata["destination"],
                resort=metadata["resort"],
                currency=metadata["currency"],
                group_size_tiers=tiers,
                duration_options=durations,
                pricing_matrix=pricing_matrix,
                inclusions=sections["inclusions"],
                accommodation_examples=sections["accommodation"],
                sales_notes=sanitize_sales_notes(" ".join(sections["notes"])),
                import_source="csv",
                original_filename=self.original_filename,
            )
        except ValidationError as exc:
            for err in exc.errors():
                location = ".".join(str(part) for part in err["loc"])
                self._error("invalid_package", f"{location}: {err['msg']}" if location else err["msg"])
            return ParseFailure(diagnostics=self.diagnostics)

        warnings = [d for d in self.diagnostics if d.severity == "warning"]
        return ParseSuccess(draft=draft, warnings=warnings)

    # ---- metadata ----

    def _extract_metadata(self) -> Dict[str, str]:
        found: Dict[str, str] = {}
        for cells in self.rows[:METADATA_SCAN_LINES]:
            match = METADATA_RE.match(_line_text(cells))
            if not match:
                continue
            key = match.group(1).lower()
            key = "name" if key == "package" else key
            value = match.group(2).strip().lstrip(",").strip()
            if key not in found:
                found[key] = value

        name = found.get("name") or ""
        if not name:
            self._warning("missing_name", f"No package name found; using '{DEFAULT_PACKAGE_NAME}'")
            name = DEFAULT_PACKAGE_NAME

        resort = found.get("resort", "")
        destination = found.get("destination") or resort

        raw_currency = found.get("currency", "").upper()
        if raw_currency in SUPPORTED_CURRENCIES:
            currency = raw_currency
        else:
            if raw_currency:
                self._warning(
                    "unknown_currency",
                    f"Unrecognized currency '{found['currency']}'; defaulting to {DEFAULT_CURRENCY}",
                )
            currency = DEFAULT_CURRENCY

        return {"name": name, "destination": destination, "resort": resort, "currency": currency}

    # ---- pricing table ----

    @staticmethod
    def _match_tier(cell: str) -> Optional[Tuple[int, int]]:
        match = TIER_RE.search(cell)
        if match:
            return int(match.group(1)), int(match.group(2))
        match = OPEN_TIER_RE.search(cell)
        if match:
            return int(match.group(1)), OPEN_ENDED_MAX_PEOPLE
        return None

    def _find_header(self) -> Optional[int]:
        for index, cells in enumerate(self.rows):
            has_tier = any(self._match_tier(c) for c in cells)
            has_nights = any(NIGHTS_RE.search(c) for c in cells)
            if has_tier and has_nights:
                return index
        return None

    def _header_cells(self, cells: List[str]):
        """
        Yield (header position, data position, text, tier key, nights match)
        per price column. A tier cell directly followed by a nights cell
        ("6-11 People", "3 Nights") is one column, so data positions can lag
        behind header positions.
        """
        position = 1  # column 0 is the period column
        data_position = 1
        while position < len(cells):
            cell = cells[position]
            tier_key = self._match_tier(cell)
            nights_match = NIGHTS_RE.search(cell)
            width = 1
            if tier_key and not nights_match and position + 1 < len(cells):
                next_cell = cells[position + 1]
                next_nights = NIGHTS_RE.search(next_cell)
                if next_nights and not self._match_tier(next_cell):
                    nights_match = next_nights
                    cell = f"{cell} - {next_cell}"
                    width = 2
            yield position, data_position, cell, tier_key, nights_match
            position += width
            data_position += 1

    def _parse_header(self, header_index: int):
        line_no = header_index + 1
        cells = self.rows[header_index]

        tier_keys: List[Tuple[int, int]] = []
        durations = set()
        columns: List[Column] = []
        ignored = set()
        seen = set()

        for position, data_position, cell, tier_key, nights_match in self._header_cells(cells):
            if not tier_key or not nights_match:
                ignored.add(data_position)
                self._warning(
                    "column_format",
                    f"Column header '{cell}' is not in '<min>-<max> People - <n> Nights' "
                    f"format; column ignored",
                    line=line_no,
                    column=position + 1,
                )
                continue

            nights = int(nights_match.group(1))
            if (tier_key, nights) in seen:
                self._error(
                    "duplicate_column",
                    f"Column '{cell}' repeats an earlier tier/duration combination",
                    line=line_no,
                    column=position + 1,
                )
                continue
            seen.add((tier_key, nights))
            if tier_key not in tier_keys:
                tier_keys.append(tier_key)
            durations.add(nights)
            columns.append((tier_key, nights))

        tiers: List[GroupSizeTier] = []
        for min_people, max_people in tier_keys:
            if min_people < 1 or min_people > max_people:
                self._error(
                    "invalid_tier",
                    f"Group size '{min_people}-{max_people}' is not a valid range",
                    line=line_no,
                )
                continue
            tiers.append(
                GroupSizeTier(
                    label=f"{min_people}-{max_people} People",
                    min_people=min_people,
                    max_people=max_people,
                )
            )

        for i, j in find_overlapping_tiers(tiers):
            self._error(
                "overlapping_tiers",
                f"Group sizes '{tiers[i].label}' and '{tiers[j].label}' overlap",
                line=line_no,
            )

        if not columns and not self.has_errors:
            self._error(
                "no_price_columns",
                "The pricing table header has no '<min>-<max> People - <n> Nights' column",
                line=line_no,
            )

        sorted_durations = sorted(durations)
        missing = [
            f"{min_p}-{max_p} People - {n} Nights"
            for (min_p, max_p) in tier_keys
            for n in sorted_durations
            if ((min_p, max_p), n) not in seen
        ]
        if missing:
            self._error(
                "incomplete_header",
                f"Pricing table header is missing column(s): {', '.join(missing)}",
                line=line_no,
            )

        if self.has_errors:
            return None

        # Translate tier keys into indices in header order
        index_of = {key: idx for idx, key in enumerate(tier_keys)}
        indexed_columns = [(index_of[key], nights) for key, nights in columns]
        return tiers, sorted_durations, indexed_columns, ignored

    def _is_section_header(self, cells: List[str]) -> bool:
        return bool(cells) and bool(SECTION_RE.match(_line_text(cells)))

    def _parse_pricing_rows(self, start: int, columns, ignored) -> Tuple[List[PricingRow], int]:
        matrix: List[PricingRow] = []
        seen_periods = set()
        index = start

        while index < len(self.rows):
            cells = self.rows[index]
            if not cells or self._is_section_header(cells):
                break
            line_no = index + 1
            index += 1

            label = cells[0]
            price_cells = [
                (position, cell)
                for position, cell in enumerate(cells)
                if position >= 1 and position not in ignored
            ]
            if not label:
                self._error("missing_period", "Row has no period label", line=line_no, column=1)
                continue
            if len(price_cells) != len(columns):
                self._error(
                    "row_cell_count",
                    f"expected {len(columns)} prices, found {len(price_cells)}",
                    line=line_no,
                )
                continue

            period = self._parse_period(label, line_no)
            if period is None:
                continue

            points: List[PricePoint] = []
            row_ok = True
            for (tier_index, nights), (position, cell) in zip(columns, price_cells):
                if MISSING_PRICE_RE.match(cell):
                    self._warning(
                        "missing_price",
                        f"No price for {nights} nights in this tier; it cannot be quoted for '{label}'",
                        line=line_no,
                        column=position + 1,
                    )
                    continue
                price = parse_price_cell(cell)
                if price is None:
                    row_ok = False
                    self._error(
                        "invalid_price",
                        f"'{cell}' is not a price or ON REQUEST",
                        line=line_no,
                        column=position + 1,
                    )
                    continue
                points.append(PricePoint(tier_index=tier_index, nights=nights, price=price))
            if not row_ok:
                continue

            key = period.display_label.lower()
            if key in seen_periods:
                self._warning(
                    "duplicate_period",
                    f"Period '{label}' appears more than once; the first row is used for pricing",
                    line=line_no,
                )
            seen_periods.add(key)
            matrix.append(PricingRow(period=period, prices=points))

        return matrix, index

    def _parse_period(self, label: str, line_no: int) -> Union[MonthPeriod, SpecialPeriod, None]:
        special = SPECIAL_PERIOD_RE.match(label)
        if special:
            try:
                start = _parse_dmy(special.group("start"))
                end = _parse_dmy(special.group("end"))
            except ValueError:
                self._error(
                    "invalid_period_dates",
                    f"Period '{label}' has an invalid date (expected DD/MM/YYYY)",
                    line=line_no,
                    column=1,
                )
                return None
            if start > end:
                self._error(
                    "invalid_period_dates",
                    f"Period '{label}' ends before it starts",
                    line=line_no,
                    column=1,
                )
                return None
            name = special.group("label").strip() or f"{special.group('start')} - {special.group('end')}"
            return SpecialPeriod(label=name, start_date=start, end_date=end)

        month = MONTH_RE.match(label.strip())
        if month:
            token = month.group(1).lower()[:3]
            month_number = [m[:3] for m in MONTH_NAMES].index(token) + 1
            return MonthPeriod(label=label.strip(), month=month_number)

        self._error(
            "unknown_period",
            f"Period '{label}' is neither a month nor a named period with dates "
            f"like 'Easter (02/04/2025 - 06/04/2025)'",
            line=line_no,
            column=1,
        )
        return None

    # ---- trailing sections ----

    def _extract_sections(self, start: int) -> Dict[str, list]:
        sections: Dict[str, list] = {"inclusions": [], "accommodation": [], "notes": []}
        current: Optional[str] = None

        for index in range(start, len(self.rows)):
            cells = self.rows[index]
            if not cells:
                continue
            line_no = index + 1
            text = _line_text(cells)

            header = SECTION_RE.match(text)
            if header:
                current = SECTION_KEYS[re.sub(r"\s+", " ", header.group(1).lower())]
                remainder = header.group(2).strip().lstrip(",").strip()
                if remainder:
                    self._add_section_line(sections, current, remainder, line_no)
                continue

            if current is None:
                self._warning(
                    "unexpected_content",
                    "Line outside any section was ignored",
                    line=line_no,
                )
                continue

            # Exported inclusions carry their category in a second cell
            category = None
            if current == "inclusions" and len(cells) == 2 and cells[1].lower() in INCLUSION_CATEGORIES:
                text, category = cells[0], cells[1].lower()
            self._add_section_line(sections, current, text, line_no, category)

        return sections

    def _add_section_line(
        self,
        sections: Dict[str, list],
        section: str,
        text: str,
        line_no: int,
        category: Optional[str] = None,
    ):
        if section == "notes":
            sections["notes"].append(text)
            return

        if text.startswith(BULLET_MARKERS):
            item = text[1:].strip()
        else:
            item = text
            self._warning(
                "bullet_style",
                "Expected a bullet ('-', '•' or '*'); line kept as-is",
                line=line_no,
            )
        if not item:
            return

        if section == "inclusions":
            sections["inclusions"].append(Inclusion(text=item, category=category or categorize_inclusion(item)))
        else:
            sections["accommodation"].append(item)


def parse_package_csv(csv_text: str, original_filename: Optional[str] = None) -> ParseOutcome:
    """
    Parse a Super Package CSV.

    Returns ParseSuccess(draft, warnings) when the document has no errors,
    otherwise ParseFailure(diagnostics) listing every error and warning.
    """
    return SuperPackageCsvParser(csv_text, original_filename).parse()
