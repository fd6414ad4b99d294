"""Batch materialization of per-person schedules into the cache."""
import logging
import re
import time
import uuid
from datetime import datetime, time as dt_time
from typing import Callable, Dict, List, Optional, Tuple

from config.layout import (
    SECTION_FLYING,
    SECTION_GROUND,
    SECTION_NOT_AVAILABLE,
    SECTION_SUPERVISION,
)
from config.settings import Settings
from processor import row_parser
from processor.errors import (
    DataSourceError,
    PersonNotFoundError,
    RunTimeBudgetExceeded,
)
from processor.models import (
    BatchRunMetadata,
    BatchRunResult,
    EventRecord,
    Person,
    PersonSchedule,
    SheetDescriptor,
)
from processor.roster import extract_roster, find_person
from scraper.sheet_resolver import SheetResolver, local_today
from storage.dynamodb_cache import (
    METADATA_KEY,
    PERSON_LIST_KEY,
    schedule_key,
)

logger = logging.getLogger(__name__)

STATUS_SUCCESS = 'success'
STATUS_SKIPPED = 'skipped'
STATUS_LOCKED = 'locked'
STATUS_NO_DATA = 'no_data'
STATUS_FAILED = 'failed'

MAX_RECORDED_ERRORS = 50

_CLOCK_TIME = re.compile(r'^\d{2}:\d{2}$')

SheetGrids = Dict[str, List[List[str]]]


def in_quiet_hours(now: datetime, start: Optional[dt_time], end: Optional[dt_time]) -> bool:
    """
    Check whether a local time falls in the quiet window [start, end).

    A window whose start is after its end wraps past midnight.
    """
    if start is None or end is None or start == end:
        return False
    current = now.time().replace(tzinfo=None)
    if start < end:
        return start <= current < end
    return current >= start or current < end


def _event_sort_key(event: EventRecord) -> Tuple[str, str]:
    # Untimed events sort after timed ones on the same day
    return event.date, event.time if _CLOCK_TIME.match(event.time) else '~'


class BatchMaterializer:
    """Build PersonSchedule entries for everyone on the roster and cache them."""

    def __init__(
        self,
        settings: Settings,
        sheets_client,
        cache,
        clock: Callable[[], datetime] = None
    ):
        """
        Args:
            settings: Immutable runtime settings
            sheets_client: GoogleSheetsClient (or compatible double)
            cache: DynamoDBCache (or compatible double)
            clock: Returns the current aware datetime; defaults to now in
                the configured timezone
        """
        self.settings = settings
        self.sheets_client = sheets_client
        self.cache = cache
        self.clock = clock or (lambda: datetime.now(settings.tz))

    def force_run(self, window_size_days: int = None) -> BatchRunResult:
        """Run immediately, even during quiet hours."""
        return self.run_batch(window_size_days, bypass_quiet_hours=True)

    def run_batch(
        self,
        window_size_days: int = None,
        bypass_quiet_hours: bool = False
    ) -> BatchRunResult:
        """
        Materialize every known person's schedule over the sheet window.

        Args:
            window_size_days: Calendar days to cover (defaults to settings)
            bypass_quiet_hours: Run even inside the quiet window

        Returns:
            BatchRunResult; status is success, skipped, locked or no_data

        Raises:
            DataSourceError: If the spreadsheet cannot be read at all
            RunTimeBudgetExceeded: If the run takes longer than its budget
        """
        window_size_days = window_size_days or self.settings.window_size_days
        start_time = time.time()
        now = self.clock()

        if not bypass_quiet_hours and in_quiet_hours(
            now, self.settings.quiet_hours_start, self.settings.quiet_hours_end
        ):
            logger.info(f"Skipping batch run during quiet hours ({now.strftime('%H:%M')})")
            return BatchRunResult(status=STATUS_SKIPPED, reason='quiet hours')

        errors: List[str] = []
        counters = {'sheets': 0, 'people': 0, 'events': 0, 'bytes': 0}

        resolver = SheetResolver(self.sheets_client, self.settings.sheet_search_days)
        try:
            window = resolver.resolve_window(
                window_size_days, local_today(self.settings.tz, now).date()
            )
        except Exception as e:
            self._record_fatal(e, [], start_time, counters, errors)
            raise

        owner = uuid.uuid4().hex
        if not self.cache.acquire_lock(owner, self.settings.lock_ttl_seconds):
            return BatchRunResult(status=STATUS_LOCKED, reason='another run is in progress')

        try:
            status = self._materialize(window, start_time, errors, counters)
        except Exception as e:
            self._record_fatal(e, window, start_time, counters, errors)
            raise
        finally:
            self.cache.release_lock(owner)

        metadata = self._write_metadata(window, start_time, counters, errors, status)
        logger.info(
            "Batch run completed",
            extra={
                'status': status,
                'duration_seconds': metadata.duration_seconds,
                'sheets_processed': metadata.sheets_processed,
                'people_processed': metadata.people_processed,
                'events_found': metadata.events_found,
                'errors': metadata.error_count
            }
        )
        return BatchRunResult(status=status, metadata=metadata)

    def materialize_person(self, name: str) -> dict:
        """
        Compute and cache one person's schedule on demand.

        Used when a read misses the cache and real-time fallback is enabled.
        Nothing is cached for a name that is not on the roster.

        Returns:
            The cached PersonSchedule as a dict

        Raises:
            PersonNotFoundError: If the name is not on any roster in the window
            DataSourceError: If no sheet in the window can be read
        """
        logger.info(f"Real-time materialization for '{name}'")
        now = self.clock()
        resolver = SheetResolver(self.sheets_client, self.settings.sheet_search_days)
        window = resolver.resolve_window(
            self.settings.window_size_days, local_today(self.settings.tz, now).date()
        )

        sheet_grids, errors = self._fetch_window(window, time.time())
        if window and not sheet_grids:
            raise DataSourceError(f"Could not read any sheet for '{name}': {errors}")
        roster = extract_roster(
            [grids for _, grids in sheet_grids], self.settings.layout.roster
        )
        person = find_person(roster, name)
        if person is None:
            raise PersonNotFoundError(f"'{name}' is not on the roster")

        events: List[EventRecord] = []
        for sheet, grids in sheet_grids:
            events.extend(self.events_for_person(grids, person, sheet))

        schedule = self._build_schedule(person, events, window, now).to_dict()
        self.cache.put(schedule_key(person.name), schedule, self.settings.effective_ttl_seconds)
        return schedule

    def events_for_person(
        self,
        grids: SheetGrids,
        person: Person,
        sheet: SheetDescriptor
    ) -> List[EventRecord]:
        """Run every section parser plus academics for one person on one sheet."""
        sections = self.settings.layout.sections_for(sheet.date)
        args = (person.name, sheet.date, person.role_type)
        events = []
        events.extend(row_parser.parse_supervision(grids[sections[SECTION_SUPERVISION]], *args))
        events.extend(row_parser.parse_flying_events(grids[sections[SECTION_FLYING]], *args))
        events.extend(row_parser.parse_ground_events(grids[sections[SECTION_GROUND]], *args))
        events.extend(row_parser.parse_not_available(grids[sections[SECTION_NOT_AVAILABLE]], *args))
        events.extend(row_parser.academics_for(person.category, sheet.date))
        return events

    def _materialize(
        self,
        window: List[SheetDescriptor],
        start_time: float,
        errors: List[str],
        counters: Dict[str, int]
    ) -> str:
        if not window:
            logger.warning("No sheets available in window; leaving cache untouched")
            return STATUS_NO_DATA

        sheet_grids, fetch_errors = self._fetch_window(window, start_time)
        errors.extend(fetch_errors)
        if not sheet_grids:
            raise DataSourceError(
                f"None of the {len(window)} sheets in the window could be read"
            )

        roster = extract_roster(
            [grids for _, grids in sheet_grids], self.settings.layout.roster
        )

        events_by_person: Dict[str, List[EventRecord]] = {name: [] for name in roster}
        for sheet, grids in sheet_grids:
            try:
                for name, person in roster.items():
                    events_by_person[name].extend(
                        self.events_for_person(grids, person, sheet)
                    )
                counters['sheets'] += 1
            except Exception as e:
                logger.error(
                    f"Failed to parse sheet '{sheet.sheet_name}': {e}",
                    exc_info=True
                )
                errors.append(f"{sheet.sheet_name}: {type(e).__name__}: {e}")
                continue
            self._check_budget(start_time)

        now = self.clock()
        schedules = {}
        for name, person in roster.items():
            schedule = self._build_schedule(person, events_by_person[name], window, now)
            schedules[schedule_key(name)] = schedule.to_dict()
            counters['events'] += len(schedule.events)

        self._remove_stale(roster)

        ttl = self.settings.effective_ttl_seconds
        result = self.cache.put_many(schedules, ttl)
        errors.extend(result.errors)
        counters['people'] = len(result.written)
        counters['bytes'] = result.size_bytes

        self.cache.put(PERSON_LIST_KEY, sorted(roster), self.settings.effective_ttl_seconds)
        return STATUS_SUCCESS

    def _fetch_window(
        self,
        window: List[SheetDescriptor],
        start_time: float
    ) -> Tuple[List[Tuple[SheetDescriptor, SheetGrids]], List[str]]:
        """Fetch every sheet's ranges; a sheet that fails is recorded and skipped."""
        layout = self.settings.layout
        fetched = []
        errors = []

        for sheet in window:
            try:
                grids = self.sheets_client.get_ranges(
                    sheet.sheet_name, layout.all_ranges(sheet.date)
                )
            except DataSourceError as e:
                logger.error(f"Failed to fetch sheet '{sheet.sheet_name}': {e}")
                errors.append(f"{sheet.sheet_name}: {e}")
                continue

            sections = layout.sections_for(sheet.date)
            section_grids = {key: grids[r] for key, r in sections.items()}
            for warning in layout.check_drift(section_grids, sheet.date):
                logger.warning(f"Layout drift on '{sheet.sheet_name}': {warning}")

            fetched.append((sheet, grids))
            self._check_budget(start_time)

        return fetched, errors

    def _remove_stale(self, roster: Dict[str, Person]) -> None:
        previous = self.cache.get(PERSON_LIST_KEY) or []
        stale = [name for name in previous if name not in roster]
        if stale:
            logger.info(f"Removing {len(stale)} people no longer on the roster")
            self.cache.delete_many([schedule_key(name) for name in stale])

    def _build_schedule(
        self,
        person: Person,
        events: List[EventRecord],
        window: List[SheetDescriptor],
        now: datetime
    ) -> PersonSchedule:
        ordered = sorted(events, key=_event_sort_key)
        return PersonSchedule(
            person=person.name,
            category=person.category,
            role_type=person.role_type,
            events=ordered,
            days=sorted({event.date for event in ordered}),
            window_dates=[sheet.date.isoformat() for sheet in window],
            last_updated=now.isoformat()
        )

    def _check_budget(self, start_time: float) -> None:
        elapsed = time.time() - start_time
        if elapsed > self.settings.run_time_budget_seconds:
            raise RunTimeBudgetExceeded(
                f"Run exceeded {self.settings.run_time_budget_seconds}s budget "
                f"after {elapsed:.1f}s"
            )

    def _record_fatal(
        self,
        error: Exception,
        window: List[SheetDescriptor],
        start_time: float,
        counters: Dict[str, int],
        errors: List[str]
    ) -> None:
        logger.error(
            f"Batch run failed: {error}",
            extra={'error_type': type(error).__name__},
            exc_info=True
        )
        errors.append(f"fatal: {type(error).__name__}: {error}")
        self._write_metadata(window, start_time, counters, errors, STATUS_FAILED)

    def _write_metadata(
        self,
        window: List[SheetDescriptor],
        start_time: float,
        counters: Dict[str, int],
        errors: List[str],
        status: str
    ) -> BatchRunMetadata:
        metadata = BatchRunMetadata(
            last_run=self.clock().isoformat(),
            duration_seconds=round(time.time() - start_time, 2),
            sheets_processed=counters['sheets'],
            people_processed=counters['people'],
            events_found=counters['events'],
            cache_size_bytes=counters['bytes'],
            error_count=len(errors),
            status=status,
            window_dates=[sheet.date.isoformat() for sheet in window],
            errors=errors[:MAX_RECORDED_ERRORS]
        )
        try:
            self.cache.put(METADATA_KEY, metadata.to_dict(), self.settings.effective_ttl_seconds)
        except Exception as e:
            # Metadata is diagnostic only
            logger.error(f"Failed to write batch metadata: {e}")
        return metadata
