"""Read path: serve cached schedules to the client."""
import logging
from datetime import date, datetime
from typing import Dict, Optional

from config.settings import MAX_WINDOW_DAYS, POLICY_REALTIME, Settings
from processor.errors import PersonNotFoundError
from storage.dynamodb_cache import METADATA_KEY, PERSON_LIST_KEY, schedule_key

logger = logging.getLogger(__name__)

ERROR_CACHE_MISS = 'CACHE_MISS'
ERROR_REFRESHING = 'REFRESHING'
ERROR_INVALID_REQUEST = 'INVALID_REQUEST'
ERROR_REALTIME_FAILED = 'REALTIME_FAILED'
ERROR_REFRESH_FAILED = 'REFRESH_FAILED'
ERROR_INTERNAL = 'INTERNAL_ERROR'
ERROR_DATA_UNAVAILABLE = 'DATA_UNAVAILABLE'

VIEW_MODES = ('all', 'person', 'bulk')


def error_response(error_type: str, message: str, **extra) -> dict:
    """Typed error body. Read responses are always HTTP 200."""
    body = {'error': True, 'errorType': error_type, 'message': message}
    body.update(extra)
    return body


def _not_on_roster(name: str) -> dict:
    return error_response(
        ERROR_CACHE_MISS,
        f"'{name}' is not on the roster. Check the name matches the roster exactly.",
        searchName=name
    )


class ReadServer:
    """Answer schedule requests from the cache, never blocking on a refresh."""

    def __init__(self, settings: Settings, cache, materializer):
        """
        Args:
            settings: Immutable runtime settings
            cache: DynamoDBCache (or compatible double)
            materializer: BatchMaterializer used for forced refresh and the
                real-time cache-miss policy
        """
        self.settings = settings
        self.cache = cache
        self.materializer = materializer

    def handle(self, params: Optional[Dict[str, str]]) -> dict:
        """
        Dispatch one request by its query parameters.

        Args:
            params: Query string parameters (may be None)

        Returns:
            JSON-serializable response body
        """
        params = params or {}

        if str(params.get('forceRefresh', '')).lower() == 'true':
            return self.force_refresh()

        if params.get('viewCache'):
            return self.view_cache(
                params['viewCache'], params.get('name'), params.get('categories')
            )

        name = (params.get('name') or self.settings.default_search_name).strip()
        if not name:
            return error_response(ERROR_INVALID_REQUEST, "A name is required")

        try:
            days = int(params.get('days') or self.settings.window_size_days)
        except ValueError:
            return error_response(
                ERROR_INVALID_REQUEST, f"days must be an integer, got '{params.get('days')}'"
            )
        if not 1 <= days <= MAX_WINDOW_DAYS:
            return error_response(
                ERROR_INVALID_REQUEST, f"days must be between 1 and {MAX_WINDOW_DAYS}"
            )

        return self.get_schedule(name, days)

    def get_schedule(self, name: str, days: int) -> dict:
        """
        Serve one person's schedule.

        Returns a REFRESHING error while a batch run holds the lock, the
        cached schedule on a hit, and on a miss either a CACHE_MISS error or
        a freshly computed schedule depending on the cache-miss policy.
        """
        if self.cache.is_locked():
            logger.info(f"Request for '{name}' while refresh in progress")
            return error_response(
                ERROR_REFRESHING,
                "Schedule data is being refreshed. Try again in a minute.",
                isRefreshing=True
            )

        schedule = self.cache.get(schedule_key(name))
        if schedule is None:
            schedule = self._handle_miss(name)
            if schedule.get('error'):
                return schedule

        metadata = self.cache.get(METADATA_KEY)
        return self._format_schedule(name, schedule, days, metadata)

    def force_refresh(self) -> dict:
        """Run a materialization now, ignoring quiet hours."""
        logger.info("Forced refresh requested")
        try:
            result = self.materializer.force_run()
        except Exception as e:
            logger.error(f"Forced refresh failed: {e}", exc_info=True)
            return error_response(ERROR_REFRESH_FAILED, f"Refresh failed: {e}")

        body = {'error': False, 'forceRefresh': True}
        body.update(result.to_dict())
        return body

    def view_cache(
        self,
        mode: str,
        name: Optional[str] = None,
        categories: Optional[str] = None
    ) -> dict:
        """
        Inspect the cache without touching the spreadsheet.

        Modes:
            all: metadata plus the cached person list
            person: one raw cached schedule (requires name)
            bulk: every cached schedule sorted by name, plus categories;
                `categories` (comma separated) limits the schedules returned
        """
        mode = mode.lower()
        if mode not in VIEW_MODES:
            return error_response(
                ERROR_INVALID_REQUEST, f"viewCache must be one of {', '.join(VIEW_MODES)}"
            )

        metadata = self.cache.get(METADATA_KEY)

        if mode == 'person':
            if not name:
                return error_response(ERROR_INVALID_REQUEST, "viewCache=person requires name")
            schedule = self.cache.get(schedule_key(name))
            if schedule is None:
                return error_response(
                    ERROR_CACHE_MISS, f"'{name}' is not in the cache", searchName=name
                )
            return {'error': False, 'name': name, 'schedule': schedule, 'metadata': metadata}

        if mode == 'bulk':
            schedules = self.cache.get_all_schedules()
            ordered = [schedules[key] for key in sorted(schedules, key=str.lower)]
            all_categories = sorted({s.get('category', '') for s in ordered if s.get('category')})
            wanted = [c.strip() for c in (categories or '').split(',') if c.strip()]
            if wanted:
                ordered = [s for s in ordered if s.get('category') in wanted]
            return {
                'error': False,
                'generatedAt': datetime.now(self.settings.tz).isoformat(),
                'categories': all_categories,
                'peopleCount': len(ordered),
                'schedules': ordered,
                'metadata': metadata
            }

        people = self.cache.get(PERSON_LIST_KEY) or []
        return {
            'error': False,
            'metadata': metadata,
            'people': people,
            'peopleCount': len(people),
            'isRefreshing': self.cache.is_locked()
        }

    def _handle_miss(self, name: str) -> dict:
        if self.settings.cache_miss_policy == POLICY_REALTIME:
            return self._materialize_on_miss(name)

        people = self.cache.get(PERSON_LIST_KEY)
        if people is None:
            logger.warning(f"Cache miss for '{name}' with no cached roster")
            return error_response(
                ERROR_DATA_UNAVAILABLE,
                "Schedule data is temporarily unavailable. Try again after the next refresh.",
                searchName=name
            )

        roster_name = next((p for p in people if p.lower() == name.lower()), None)
        if roster_name is None:
            logger.info(f"Cache miss for '{name}': not on the roster")
            return _not_on_roster(name)

        if roster_name != name:
            schedule = self.cache.get(schedule_key(roster_name))
            if schedule is not None:
                return schedule

        logger.warning(f"'{roster_name}' is on the roster but has no cached schedule")
        return error_response(
            ERROR_DATA_UNAVAILABLE,
            f"The schedule for '{roster_name}' is temporarily unavailable.",
            searchName=name
        )

    def _materialize_on_miss(self, name: str) -> dict:
        try:
            return self.materializer.materialize_person(name)
        except PersonNotFoundError:
            logger.info(f"Real-time lookup for '{name}': not on the roster")
            return _not_on_roster(name)
        except Exception as e:
            logger.error(f"Real-time materialization failed for '{name}': {e}", exc_info=True)
            return error_response(
                ERROR_REALTIME_FAILED,
                "Schedule data is temporarily unavailable.",
                searchName=name
            )

    def _format_schedule(
        self,
        name: str,
        schedule: dict,
        days: int,
        metadata: Optional[dict]
    ) -> dict:
        window_dates = schedule.get('windowDates') or schedule.get('days', [])
        shown = window_dates[:days]

        by_date = {day: [] for day in shown}
        for event in schedule.get('events', []):
            if event['date'] in by_date:
                by_date[event['date']].append(event)

        grouped = [
            {
                'date': day,
                'dayName': date.fromisoformat(day).strftime('%A'),
                'events': by_date[day]
            }
            for day in shown
        ]

        return {
            'error': False,
            'searchName': name,
            'person': schedule.get('person', name),
            'category': schedule.get('category', ''),
            'roleType': schedule.get('roleType', ''),
            'generatedAt': datetime.now(self.settings.tz).isoformat(),
            'events': grouped,
            'totalEvents': sum(len(day['events']) for day in grouped),
            'cacheUpdated': (metadata or {}).get('lastRun') or schedule.get('lastUpdated'),
            'scheduleUpdated': schedule.get('lastUpdated'),
            'batchMetadata': metadata,
            'isRefreshing': False
        }
