"""Roster extraction: the set of known people and their category."""
import logging
import re
from typing import Dict, Iterable, Mapping, Optional, Sequence

from config.layout import RosterRange
from processor.models import Person

logger = logging.getLogger(__name__)

NON_NAME_VALUES = frozenset({'false', 'true', 'yes', 'no', 'n/a', 'tbd'})

# Category headers echoed inside roster columns
HEADER_PATTERNS = (
    'bravo students', 'stc students', 'alpha students', 'ftc-b', 'stc-b',
    'ftc-a', 'stc-a', 'staff ip', 'stc staff', 'staff stc', 'attached',
    'support', 'ifte', 'icso', 'future',
)

# Event titles that sometimes land in roster columns
EVENT_NAME_PATTERNS = (
    'academics', 'events', 'ground events', 'flying events', 'supervision',
    'groot', 'mtg', 'meeting', 'interview', 'brief', 'debrief',
    'ccep', 'checkride', 'sim', 'flight', 'sortie', 'mission',
    'training', 'class', 'lecture', 'exam', 'test', 'eval',
    'leave', 'tdy', 'appointment', 'admin', 'standby', 'alert',
    'holiday', 'down day', 'weekend', 'maintenance', 'wx', 'weather',
)

_DIGITS = re.compile(r'^\d+$')
_EVENT_CODE = re.compile(r'^[A-Z0-9\s\-/]+$')
_SINGLE_WORD_CAPS = re.compile(r'^[A-Z]+$')


def is_valid_person_name(name: Optional[str]) -> bool:
    """
    Decide whether a roster cell holds a person's name.

    Rejects blanks, ".", anything shorter than two characters, boolean-ish
    and placeholder values, pure numbers, category header echoes, event
    titles, and all-caps codes such as "CSO PERF" (a single all-caps word
    is kept since surnames are often written that way).
    """
    if not name:
        return False
    name = name.strip()
    if name == '.' or len(name) < 2:
        return False

    name_lower = name.lower()
    if name_lower in NON_NAME_VALUES:
        return False
    if _DIGITS.match(name):
        return False
    if any(pattern in name_lower for pattern in HEADER_PATTERNS):
        return False
    if any(pattern in name_lower for pattern in EVENT_NAME_PATTERNS):
        return False
    if len(name) > 3 and _EVENT_CODE.match(name) and not _SINGLE_WORD_CAPS.match(name):
        return False

    return True


def extract_roster(
    roster_grids: Iterable[Mapping[str, Sequence[Sequence[str]]]],
    roster_ranges: Sequence[RosterRange]
) -> Dict[str, Person]:
    """
    Build the roster from one or more sheets.

    Args:
        roster_grids: Per sheet, a mapping of A1 range to its fetched grid
        roster_ranges: Configured (range, category, role type) tuples

    Returns:
        Insertion-ordered mapping of name to Person; the first sheet and
        range a name appears in decides its category
    """
    roster: Dict[str, Person] = {}
    seen_lower = set()
    rejected = 0

    for sheet_grids in roster_grids:
        for roster_range in roster_ranges:
            grid = sheet_grids.get(roster_range.range) or []
            for row in grid:
                for cell in row:
                    candidate = (cell or '').strip()
                    if not candidate:
                        continue
                    if not is_valid_person_name(candidate):
                        rejected += 1
                        continue
                    if candidate.lower() in seen_lower:
                        continue
                    seen_lower.add(candidate.lower())
                    roster[candidate] = Person(
                        name=candidate,
                        category=roster_range.category,
                        role_type=roster_range.role_type
                    )

    logger.info(
        f"Extracted {len(roster)} people from roster "
        f"({rejected} non-name cells filtered)"
    )
    return roster


def find_person(roster: Mapping[str, Person], name: str) -> Optional[Person]:
    """Look up a roster entry by name, ignoring case."""
    if name in roster:
        return roster[name]
    name_lower = name.strip().lower()
    for person in roster.values():
        if person.name.lower() == name_lower:
            return person
    return None
