"""Find which dated whiteboard sheets exist around a reference date."""
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo

from processor.models import SheetDescriptor

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_DAYS = 30


def local_today(tz: ZoneInfo, now: Optional[datetime] = None) -> datetime:
    """
    Current date in the configured timezone, pinned to noon.

    Pinning to noon keeps day arithmetic clear of daylight-saving
    transitions, which happen in the early morning.
    """
    now = now or datetime.now(tz)
    return now.astimezone(tz).replace(hour=12, minute=0, second=0, microsecond=0)


def sheet_name_candidates(day: date) -> List[str]:
    """
    Accepted tab titles for a date, most common first.

    e.g. "Mon 5 Jan", "Monday, 5 Jan", "Monday 5 Jan", "Mon, 5 Jan", "5 Jan"
    """
    short_day = day.strftime('%a')
    long_day = day.strftime('%A')
    day_month = f"{day.day} {day.strftime('%b')}"
    return [
        f"{short_day} {day_month}",
        f"{long_day}, {day_month}",
        f"{long_day} {day_month}",
        f"{short_day}, {day_month}",
        day_month,
    ]


class SheetResolver:
    """Resolve dated sheets, tolerating weekend and holiday gaps."""

    def __init__(self, sheets_client, search_days: int = DEFAULT_SEARCH_DAYS):
        """
        Args:
            sheets_client: Object with a sheet_exists(name) method
            search_days: Maximum days to scan forward for the first sheet
        """
        self.sheets_client = sheets_client
        self.search_days = search_days

    def sheet_for_date(self, day: date) -> Optional[str]:
        """Return the first existing tab title for a date, or None."""
        for candidate in sheet_name_candidates(day):
            if self.sheets_client.sheet_exists(candidate):
                return candidate
        return None

    def find_next_available_sheet(self, reference: date) -> Optional[SheetDescriptor]:
        """
        Scan forward day by day for the first existing sheet.

        Args:
            reference: Date to start from (inclusive)

        Returns:
            SheetDescriptor, or None if nothing exists within the search bound
        """
        for offset in range(self.search_days):
            day = reference + timedelta(days=offset)
            sheet_name = self.sheet_for_date(day)
            if sheet_name:
                logger.info(
                    f"Next available sheet is '{sheet_name}' ({offset} days ahead)"
                )
                return SheetDescriptor(sheet_name=sheet_name, date=day, offset_days=offset)

        logger.info(
            f"No sheet found within {self.search_days} days of {reference.isoformat()}"
        )
        return None

    def resolve_window(self, count: int, reference: date) -> List[SheetDescriptor]:
        """
        Resolve up to `count` sheets over consecutive calendar days.

        The walk is anchored at the next available sheet and covers exactly
        `count` calendar days; days without a sheet are skipped rather than
        extending the walk.

        Args:
            count: Number of calendar days to walk
            reference: Date to start searching from

        Returns:
            Sheets in calendar order; empty if no sheet exists
        """
        anchor = self.find_next_available_sheet(reference)
        if anchor is None:
            return []

        window = [anchor]
        for step in range(1, count):
            day = anchor.date + timedelta(days=step)
            sheet_name = self.sheet_for_date(day)
            if sheet_name:
                window.append(SheetDescriptor(
                    sheet_name=sheet_name,
                    date=day,
                    offset_days=anchor.offset_days + step
                ))
            else:
                logger.debug(f"No sheet for {day.isoformat()}, skipping")

        logger.info(
            f"Resolved {len(window)} sheets: {[s.sheet_name for s in window]}"
        )
        return window
