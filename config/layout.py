"""Whiteboard sheet layout: where each section and roster column lives."""
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple

from processor.errors import LayoutError

logger = logging.getLogger(__name__)

SECTION_SUPERVISION = 'supervision'
SECTION_FLYING = 'flying'
SECTION_GROUND = 'ground'
SECTION_NOT_AVAILABLE = 'not_available'

SECTION_KEYS = (
    SECTION_SUPERVISION,
    SECTION_FLYING,
    SECTION_GROUND,
    SECTION_NOT_AVAILABLE,
)

# Fixed columns each section needs before its variable token list
MIN_SECTION_WIDTH = {
    SECTION_SUPERVISION: 4,     # duty + one (token, start, end) triple
    SECTION_FLYING: 10,         # 6 leading + notes + 3 status flags
    SECTION_GROUND: 3,
    SECTION_NOT_AVAILABLE: 3,
}

ROLE_STUDENT = 'student'
ROLE_STAFF = 'staff'
ROLE_TYPES = (ROLE_STUDENT, ROLE_STAFF)

_A1_RANGE = re.compile(r'^([A-Z]+)(\d+):([A-Z]+)(\d+)$', re.IGNORECASE)


def column_to_index(column: str) -> int:
    """Convert a column letter ("A", "R", "AA") to a zero-based index."""
    index = 0
    for char in column.upper():
        index = index * 26 + (ord(char) - ord('A') + 1)
    return index - 1


def parse_a1_range(range_str: str) -> Tuple[int, int, int, int]:
    """
    Parse an A1 range into zero-based, inclusive bounds.

    Args:
        range_str: Range such as "A10:R50"

    Returns:
        Tuple of (start_row, start_col, end_row, end_col)

    Raises:
        LayoutError: If the range is not of the form COLROW:COLROW
    """
    match = _A1_RANGE.match(range_str.strip())
    if not match:
        raise LayoutError(f"Invalid A1 range: {range_str!r}")

    start_col = column_to_index(match.group(1))
    start_row = int(match.group(2)) - 1
    end_col = column_to_index(match.group(3))
    end_row = int(match.group(4)) - 1

    if start_row < 0 or end_row < start_row or end_col < start_col:
        raise LayoutError(f"Range bounds are inverted or empty: {range_str!r}")

    return start_row, start_col, end_row, end_col


def range_shape(range_str: str) -> Tuple[int, int]:
    """Return (rows, columns) covered by an A1 range."""
    start_row, start_col, end_row, end_col = parse_a1_range(range_str)
    return end_row - start_row + 1, end_col - start_col + 1


@dataclass(frozen=True)
class RosterRange:
    """One roster column: the cells holding names for a category."""
    range: str
    category: str
    role_type: str


@dataclass(frozen=True)
class SectionVariant:
    """Section ranges used by sheets dated before `until`."""
    until: date
    sections: Dict[str, str]


DEFAULT_SECTION_RANGES = {
    SECTION_SUPERVISION: 'A1:J7',
    SECTION_FLYING: 'A10:R50',
    SECTION_GROUND: 'A52:N80',
    SECTION_NOT_AVAILABLE: 'A82:N110',
}

# Rows the whiteboard used before the flying section gained a header row
LEGACY_SECTION_RANGES = {
    SECTION_SUPERVISION: 'A1:J7',
    SECTION_FLYING: 'A9:R45',
    SECTION_GROUND: 'A47:N75',
    SECTION_NOT_AVAILABLE: 'A77:N105',
}
LEGACY_LAYOUT_UNTIL = date(2024, 12, 9)

DEFAULT_ROSTER_RANGES = (
    RosterRange('T3:T50', 'FTC Alpha', ROLE_STUDENT),
    RosterRange('U3:U50', 'FTC Bravo', ROLE_STUDENT),
    RosterRange('V3:V50', 'STC Alpha', ROLE_STUDENT),
    RosterRange('W3:W50', 'STC Bravo', ROLE_STUDENT),
    RosterRange('X3:X50', 'Staff IP', ROLE_STAFF),
    RosterRange('Y3:Y50', 'Staff STC', ROLE_STAFF),
    RosterRange('Z3:Z50', 'Attached/Support', ROLE_STAFF),
)


@dataclass(frozen=True)
class SheetLayout:
    """
    Cell ranges of the four event sections and the roster columns.

    `sections` applies to current sheets. `previous` holds the section
    ranges of older whiteboard structures, each used for sheets dated
    before its `until` date.
    """
    sections: Dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_SECTION_RANGES)
    )
    roster: Tuple[RosterRange, ...] = DEFAULT_ROSTER_RANGES
    previous: Tuple[SectionVariant, ...] = (
        SectionVariant(LEGACY_LAYOUT_UNTIL, LEGACY_SECTION_RANGES),
    )

    @classmethod
    def from_json(cls, raw: str) -> 'SheetLayout':
        """
        Build a layout from a JSON document.

        Expected shape::

            {"sections": {"flying": "A10:R50", ...},
             "roster": [{"range": "T3:T50", "category": "FTC Alpha",
                         "roleType": "student"}, ...],
             "previous": [{"until": "2024-12-09",
                           "sections": {"flying": "A9:R45", ...}}]}

        Missing keys fall back to the defaults. Sections missing from a
        `previous` entry fall back to the current sections.
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise LayoutError(f"Sheet layout is not valid JSON: {e}") from e

        sections = dict(DEFAULT_SECTION_RANGES)
        sections.update(data.get('sections', {}))

        previous = cls.previous
        if 'previous' in data:
            try:
                previous = tuple(
                    SectionVariant(
                        until=date.fromisoformat(entry['until']),
                        sections={**sections, **entry.get('sections', {})}
                    )
                    for entry in data['previous']
                )
            except (KeyError, TypeError, ValueError) as e:
                raise LayoutError(f"Malformed previous layout entry: {e}") from e

        roster = DEFAULT_ROSTER_RANGES
        if 'roster' in data:
            try:
                roster = tuple(
                    RosterRange(
                        range=entry['range'],
                        category=entry['category'],
                        role_type=entry.get('roleType', ROLE_STUDENT)
                    )
                    for entry in data['roster']
                )
            except (KeyError, TypeError) as e:
                raise LayoutError(f"Malformed roster entry: {e}") from e

        layout = cls(sections=sections, roster=roster, previous=previous)
        layout.validate()
        return layout

    def sections_for(self, sheet_date: Optional[date] = None) -> Dict[str, str]:
        """
        Section ranges in effect for a sheet date.

        Args:
            sheet_date: Date of the sheet; None means a current sheet

        Returns:
            Section key to A1 range
        """
        if sheet_date is not None:
            for variant in sorted(self.previous, key=lambda v: v.until):
                if sheet_date < variant.until:
                    return variant.sections
        return self.sections

    def all_ranges(self, sheet_date: Optional[date] = None) -> List[str]:
        """Every range that has to be fetched from one sheet."""
        sections = self.sections_for(sheet_date)
        ranges = [sections[key] for key in SECTION_KEYS]
        ranges.extend(r.range for r in self.roster)
        return ranges

    def validate(self) -> None:
        """
        Self-check the layout.

        Raises:
            LayoutError: If a range is missing or malformed, a section is
                narrower than its fixed columns, two sections overlap, or a
                roster entry has an unknown role type
        """
        _validate_sections(self.sections, 'current')
        for variant in self.previous:
            _validate_sections(variant.sections, f"before {variant.until.isoformat()}")

        for roster_range in self.roster:
            parse_a1_range(roster_range.range)
            if roster_range.role_type not in ROLE_TYPES:
                raise LayoutError(
                    f"Unknown role type '{roster_range.role_type}' for "
                    f"roster category '{roster_range.category}'"
                )

    def check_drift(
        self,
        section_grids: Dict[str, List[List[str]]],
        sheet_date: Optional[date] = None
    ) -> List[str]:
        """
        Compare fetched section grids against the configured ranges.

        A populated last row means the section probably continues past its
        configured range and rows are being dropped; a grid with fewer rows
        than the range means the source returned less than was asked for.

        Args:
            section_grids: Section key to fetched grid
            sheet_date: Date of the sheet, selecting which ranges apply

        Returns:
            Human-readable warnings, empty when the layout looks consistent
        """
        sections = self.sections_for(sheet_date)
        warnings = []
        for key in SECTION_KEYS:
            grid = section_grids.get(key)
            if grid is None:
                continue
            expected_rows, _ = range_shape(sections[key])
            if len(grid) < expected_rows:
                warnings.append(
                    f"Section '{key}' returned {len(grid)} rows, "
                    f"range {sections[key]} spans {expected_rows}"
                )
            elif grid and any(cell.strip() for cell in grid[-1]):
                warnings.append(
                    f"Section '{key}' has data in the last row of "
                    f"{sections[key]}; it may extend past the range"
                )
        return warnings


def _validate_sections(sections: Dict[str, str], label: str) -> None:
    bounds = {}
    for key in SECTION_KEYS:
        if key not in sections:
            raise LayoutError(f"Missing range for section '{key}' ({label} layout)")
        bounds[key] = parse_a1_range(sections[key])
        _, width = range_shape(sections[key])
        if width < MIN_SECTION_WIDTH[key]:
            raise LayoutError(
                f"Section '{key}' range {sections[key]} has {width} "
                f"columns, needs at least {MIN_SECTION_WIDTH[key]} ({label} layout)"
            )

    keys = list(SECTION_KEYS)
    for i, first in enumerate(keys):
        for second in keys[i + 1:]:
            if _overlaps(bounds[first], bounds[second]):
                raise LayoutError(
                    f"Sections '{first}' and '{second}' overlap ({label} layout)"
                )


def _overlaps(a: Tuple[int, int, int, int], b: Tuple[int, int, int, int]) -> bool:
    rows_overlap = a[0] <= b[2] and b[0] <= a[2]
    cols_overlap = a[1] <= b[3] and b[1] <= a[3]
    return rows_overlap and cols_overlap
