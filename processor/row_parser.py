"""
Section parsers for one whiteboard sheet.

Each parser takes the display-formatted cell grid of one section, the name
being searched (or None to return every populated row), the sheet date and
the searcher's role type, and returns EventRecord objects. Cells are always
strings: the sheet's typed-value path is slower and is not used.
"""
import logging
import re
from datetime import date
from typing import List, Optional, Sequence, Tuple

from config.layout import ROLE_STAFF, ROLE_STUDENT
from processor.models import (
    AcademicsDetails,
    EventRecord,
    FlightStatus,
    FlyingDetails,
    GroundDetails,
    NotAvailableDetails,
    SupervisionDetails,
    VIS_ALL,
    VIS_PERSONAL,
    VIS_STAFF_ONLY,
)

logger = logging.getLogger(__name__)

Grid = Sequence[Sequence[str]]

TRUE_TOKENS = frozenset({'TRUE', '✓', 'X', '✔'})
CHECKBOX_TOKENS = frozenset({'TRUE', 'FALSE'})
GROUP_ALL = 'ALL'
GROUP_STAFF_ONLY = frozenset({'STAFF ONLY', 'STAFF_ONLY'})

FLYING_LEADING_COLUMNS = 6
FLYING_TRAILING_COLUMNS = 4
GROUND_LEADING_COLUMNS = 3
NA_LEADING_COLUMNS = 3
STATUS_COLUMNS = 3

_HHMM = re.compile(r'^(\d{1,2})(\d{2})$')
_CLOCK = re.compile(r'^(\d{1,2}):(\d{2})(?::(\d{2}))?$')
_CLOCK_12H = re.compile(r'^(\d{1,2}):(\d{2})(?::(\d{2}))?\s*([AaPp][Mm])$')

# Business rule: fixed academic blocks by student class, not read from sheets
ACADEMIC_BLOCKS = {
    'alpha': (('07:30', '17:00'),),
    'bravo': (('07:00', '07:30'), ('08:30', '09:30'), ('15:00', '17:00')),
}


def parse_boolean(value: Optional[str]) -> bool:
    """Interpret a checkbox-style cell. Only TRUE, ✓, X and ✔ are true."""
    if not value:
        return False
    return str(value).strip().upper() in TRUE_TOKENS


def normalize_time(value: Optional[str]) -> str:
    """
    Normalize a time cell to zero-padded 24-hour HH:MM.

    Accepts HHMM, H:MM, HH:MM, H:MM:SS and 12-hour forms with AM/PM.
    Strings that are not times are returned stripped but otherwise unchanged.

    Args:
        value: Raw cell text

    Returns:
        Normalized time or the original text
    """
    if value is None:
        return ''
    text = str(value).strip()
    if not text:
        return ''

    match = _CLOCK_12H.match(text)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        if 1 <= hours <= 12 and minutes < 60:
            hours = hours % 12
            if match.group(4).upper() == 'PM':
                hours += 12
            return f"{hours:02d}:{minutes:02d}"
        return text

    match = _CLOCK.match(text) or _HHMM.match(text)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        if hours < 24 and minutes < 60:
            return f"{hours:02d}:{minutes:02d}"

    return text


def group_visibility(tokens: Sequence[str]) -> Optional[str]:
    """
    Return the widest group visibility marked by any token.

    Returns:
        VIS_ALL, VIS_STAFF_ONLY or None when no group token is present
    """
    visibility = None
    for token in tokens:
        normalized = (token or '').strip().upper()
        if normalized == GROUP_ALL:
            return VIS_ALL
        if normalized in GROUP_STAFF_ONLY:
            visibility = VIS_STAFF_ONLY
    return visibility


def _cell(row: Sequence[str], index: int) -> str:
    if index < 0:
        index += len(row)
    if 0 <= index < len(row) and row[index] is not None:
        return str(row[index]).strip()
    return ''


def _row_is_empty(row: Sequence[str]) -> bool:
    return not any((cell or '').strip() for cell in row)


def _name_in_text(search_lower: Optional[str], text: str) -> bool:
    return bool(search_lower) and search_lower in text.lower()


def _match(
    search_lower: Optional[str],
    row_text: str,
    tokens: Sequence[str],
    role_type: str
) -> Tuple[bool, bool, str]:
    """
    Decide whether a row applies to the searcher.

    Returns:
        Tuple of (applies, personal_match, visibility)
    """
    personal = _name_in_text(search_lower, row_text)
    visibility = group_visibility(tokens)

    if search_lower is None:
        return True, False, visibility or VIS_PERSONAL
    if visibility == VIS_ALL:
        return True, personal, visibility
    if visibility == VIS_STAFF_ONLY and role_type == ROLE_STAFF:
        return True, personal, visibility
    return personal, personal, visibility or VIS_PERSONAL


def _search_key(person_name: Optional[str]) -> Optional[str]:
    if person_name is None:
        return None
    return person_name.strip().lower()


def parse_supervision(
    grid: Grid,
    person_name: Optional[str],
    sheet_date: date,
    role_type: str = ROLE_STUDENT
) -> List[EventRecord]:
    """
    Parse the supervision section.

    Column 0 of each row is the duty label; the remaining cells form
    (token, start, end) triples. An AUTH duty has a single token, the
    first non-empty one, and no shift times.
    """
    search = _search_key(person_name)
    iso_date = sheet_date.isoformat()
    records = []

    for row in grid:
        duty = _cell(row, 0)
        if not duty:
            continue
        is_auth = 'AUTH' in duty.upper()

        for col in range(1, len(row), 3):
            poc = _cell(row, col)
            if not poc:
                continue
            applies, personal, visibility = _match(search, poc, [poc], role_type)
            if not applies:
                if is_auth:
                    break
                continue

            if is_auth:
                start, end = None, None
                description = f"{duty} | {poc}"
            else:
                start = normalize_time(_cell(row, col + 1))
                end = normalize_time(_cell(row, col + 2))
                description = f"{duty} | {poc} | {start}-{end}"

            records.append(EventRecord(
                date=iso_date,
                time=start or '',
                description=description,
                details=SupervisionDetails(
                    duty=duty,
                    poc=poc,
                    start=start,
                    end=end,
                    is_auth=is_auth
                ),
                visibility=visibility,
                personal_match=personal
            ))
            if is_auth:
                break

    return records


def parse_flying_events(
    grid: Grid,
    person_name: Optional[str],
    sheet_date: date,
    role_type: str = ROLE_STUDENT
) -> List[EventRecord]:
    """
    Parse the flying events section.

    Layout: model, brief start, ETD, ETA, debrief end, event name, a
    variable crew list, then notes, effective, cancelled and partially
    effective in the last four columns.
    """
    search = _search_key(person_name)
    iso_date = sheet_date.isoformat()
    min_width = FLYING_LEADING_COLUMNS + FLYING_TRAILING_COLUMNS
    records = []

    for row_number, row in enumerate(grid):
        if _row_is_empty(row):
            continue
        if len(row) < min_width:
            logger.warning(
                f"Skipping flying row {row_number} on {iso_date}: "
                f"{len(row)} columns, expected at least {min_width}"
            )
            continue

        crew = [
            str(c).strip() for c in row[FLYING_LEADING_COLUMNS:-FLYING_TRAILING_COLUMNS]
            if c and str(c).strip()
        ]
        row_text = '|'.join(str(c or '') for c in row)
        applies, personal, visibility = _match(search, row_text, crew, role_type)
        if not applies:
            continue

        model = _cell(row, 0)
        event = _cell(row, 5)
        brief_start = normalize_time(_cell(row, 1))
        status = FlightStatus(
            effective=parse_boolean(_cell(row, -3)),
            cancelled=parse_boolean(_cell(row, -2)),
            partially_effective=parse_boolean(_cell(row, -1))
        )

        records.append(EventRecord(
            date=iso_date,
            time=brief_start,
            description=' | '.join(x for x in [model, event] + crew if x),
            details=FlyingDetails(
                model=model,
                brief_start=brief_start,
                etd=normalize_time(_cell(row, 2)),
                eta=normalize_time(_cell(row, 3)),
                debrief_end=normalize_time(_cell(row, 4)),
                event=event,
                crew=crew,
                notes=_cell(row, -4),
                status=status
            ),
            visibility=visibility,
            personal_match=personal
        ))

    return records


def _split_status(tokens: List[str]) -> Tuple[List[str], Tuple[bool, bool, bool]]:
    """Peel trailing effective/cancelled/partial checkbox cells off a row."""
    if len(tokens) >= STATUS_COLUMNS:
        tail = [t.strip().upper() for t in tokens[-STATUS_COLUMNS:]]
        if all(t in CHECKBOX_TOKENS for t in tail):
            flags = tuple(parse_boolean(t) for t in tail)
            return tokens[:-STATUS_COLUMNS], flags
    return tokens, (False, False, False)


def parse_ground_events(
    grid: Grid,
    person_name: Optional[str],
    sheet_date: date,
    role_type: str = ROLE_STUDENT
) -> List[EventRecord]:
    """Parse the ground events section: event, start, end, then people."""
    search = _search_key(person_name)
    iso_date = sheet_date.isoformat()
    records = []

    for row_number, row in enumerate(grid):
        if _row_is_empty(row):
            continue
        if len(row) < GROUND_LEADING_COLUMNS or not _cell(row, 0):
            logger.warning(
                f"Skipping ground row {row_number} on {iso_date}: "
                f"missing event name or leading columns"
            )
            continue

        tokens, flags = _split_status(
            [str(c or '') for c in row[GROUND_LEADING_COLUMNS:]]
        )
        people = [t.strip() for t in tokens if t.strip()]
        row_text = '|'.join(str(c or '') for c in row)
        applies, personal, visibility = _match(search, row_text, people, role_type)
        if not applies:
            continue

        event = _cell(row, 0)
        start = normalize_time(_cell(row, 1))
        records.append(EventRecord(
            date=iso_date,
            time=start,
            description=' | '.join([event] + people),
            details=GroundDetails(
                event=event,
                start=start,
                end=normalize_time(_cell(row, 2)),
                people=people,
                effective=flags[0],
                cancelled=flags[1],
                partially_effective=flags[2]
            ),
            visibility=visibility,
            personal_match=personal
        ))

    return records


def parse_not_available(
    grid: Grid,
    person_name: Optional[str],
    sheet_date: date,
    role_type: str = ROLE_STUDENT
) -> List[EventRecord]:
    """Parse the not-available section: reason, start, end, then people."""
    search = _search_key(person_name)
    iso_date = sheet_date.isoformat()
    records = []

    for row_number, row in enumerate(grid):
        if _row_is_empty(row):
            continue
        if len(row) < NA_LEADING_COLUMNS or not _cell(row, 0):
            logger.warning(
                f"Skipping not-available row {row_number} on {iso_date}: "
                f"missing reason or leading columns"
            )
            continue

        people = [str(c).strip() for c in row[NA_LEADING_COLUMNS:] if c and str(c).strip()]
        row_text = '|'.join(str(c or '') for c in row)
        applies, personal, visibility = _match(search, row_text, people, role_type)
        if not applies:
            continue

        reason = _cell(row, 0)
        start = normalize_time(_cell(row, 1))
        records.append(EventRecord(
            date=iso_date,
            time=start,
            description=' | '.join([reason] + people),
            details=NotAvailableDetails(
                reason=reason,
                start=start,
                end=normalize_time(_cell(row, 2)),
                people=people
            ),
            visibility=visibility,
            personal_match=personal
        ))

    return records


def academics_for(category: str, sheet_date: date) -> List[EventRecord]:
    """
    Synthetic academic blocks for a student class.

    Alpha classes have one all-day block; Bravo classes have three fixed
    blocks. Other categories have none.
    """
    category_lower = (category or '').lower()
    blocks = ()
    for marker, marker_blocks in ACADEMIC_BLOCKS.items():
        if marker in category_lower:
            blocks = marker_blocks
            break

    iso_date = sheet_date.isoformat()
    return [
        EventRecord(
            date=iso_date,
            time=start,
            description=f"Academics | {category} | {start}-{end}",
            details=AcademicsDetails(category=category, start=start, end=end)
        )
        for start, end in blocks
    ]
