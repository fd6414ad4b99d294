"""Runtime settings read once per invocation from the environment."""
import os
from dataclasses import dataclass, field
from datetime import time as dt_time
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config.layout import SheetLayout
from processor.errors import ConfigurationError

POLICY_ERROR = 'error'
POLICY_REALTIME = 'realtime'
CACHE_MISS_POLICIES = (POLICY_ERROR, POLICY_REALTIME)

MAX_CACHE_TTL_SECONDS = 43200  # 12 hours
DEFAULT_MAX_ENTRY_BYTES = 100 * 1024
MAX_WINDOW_DAYS = 7


@dataclass(frozen=True)
class Settings:
    """Immutable configuration passed to every component."""
    spreadsheet_id: str
    sheets_api_key: Optional[str] = None
    timezone: str = 'America/Los_Angeles'
    default_search_name: str = ''
    table_name: str = 'whiteboard-schedule-cache'
    aws_region: Optional[str] = None
    cache_ttl_seconds: int = MAX_CACHE_TTL_SECONDS
    cache_max_entry_bytes: int = DEFAULT_MAX_ENTRY_BYTES
    cache_max_total_bytes: int = DEFAULT_MAX_ENTRY_BYTES * 10
    quiet_hours_start: Optional[dt_time] = dt_time(20, 0)
    quiet_hours_end: Optional[dt_time] = dt_time(5, 0)
    window_size_days: int = MAX_WINDOW_DAYS
    sheet_search_days: int = 30
    cache_miss_policy: str = POLICY_ERROR
    lock_ttl_seconds: int = 300
    run_time_budget_seconds: int = 270
    request_timeout_seconds: int = 30
    log_level: str = 'INFO'
    layout: SheetLayout = field(default_factory=SheetLayout)

    def __post_init__(self):
        if self.cache_miss_policy not in CACHE_MISS_POLICIES:
            raise ConfigurationError(
                f"CACHE_MISS_POLICY must be one of {CACHE_MISS_POLICIES}, "
                f"got '{self.cache_miss_policy}'"
            )
        if not 1 <= self.window_size_days <= MAX_WINDOW_DAYS:
            raise ConfigurationError(
                f"WINDOW_SIZE_DAYS must be between 1 and {MAX_WINDOW_DAYS}"
            )
        if self.cache_ttl_seconds <= 0:
            raise ConfigurationError("CACHE_TTL_SECONDS must be positive")
        if self.cache_max_entry_bytes > self.cache_max_total_bytes:
            raise ConfigurationError(
                "CACHE_MAX_ENTRY_BYTES cannot exceed CACHE_MAX_TOTAL_BYTES"
            )
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown timezone '{self.timezone}'") from e
        if self.effective_ttl_seconds <= self.quiet_hours_seconds:
            raise ConfigurationError(
                f"Cache TTL ({self.effective_ttl_seconds}s) must outlast quiet hours "
                f"({self.quiet_hours_seconds}s) or schedules expire before the next run"
            )
        self.layout.validate()

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def effective_ttl_seconds(self) -> int:
        """Cache TTL capped at the store's maximum."""
        return min(self.cache_ttl_seconds, MAX_CACHE_TTL_SECONDS)

    @property
    def quiet_hours_seconds(self) -> int:
        """Length of the quiet window, 0 when quiet hours are disabled."""
        if self.quiet_hours_start is None or self.quiet_hours_end is None:
            return 0
        start = self.quiet_hours_start.hour * 3600 + self.quiet_hours_start.minute * 60
        end = self.quiet_hours_end.hour * 3600 + self.quiet_hours_end.minute * 60
        return (end - start) % 86400

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = None) -> 'Settings':
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            Validated Settings instance

        Raises:
            ConfigurationError: If a variable is missing or malformed
        """
        env = os.environ if environ is None else environ

        spreadsheet_id = env.get('SPREADSHEET_ID', '').strip()
        if not spreadsheet_id:
            raise ConfigurationError("SPREADSHEET_ID is required")

        layout = SheetLayout()
        if env.get('SHEET_LAYOUT_JSON'):
            layout = SheetLayout.from_json(env['SHEET_LAYOUT_JSON'])

        max_entry = _int(env, 'CACHE_MAX_ENTRY_BYTES', DEFAULT_MAX_ENTRY_BYTES)

        return cls(
            spreadsheet_id=spreadsheet_id,
            sheets_api_key=env.get('SHEETS_API_KEY') or None,
            timezone=env.get('TIMEZONE', 'America/Los_Angeles'),
            default_search_name=env.get('DEFAULT_SEARCH_NAME', ''),
            table_name=env.get('TABLE_NAME', 'whiteboard-schedule-cache'),
            aws_region=env.get('AWS_REGION') or None,
            cache_ttl_seconds=_int(env, 'CACHE_TTL_SECONDS', MAX_CACHE_TTL_SECONDS),
            cache_max_entry_bytes=max_entry,
            cache_max_total_bytes=_int(env, 'CACHE_MAX_TOTAL_BYTES', max_entry * 10),
            quiet_hours_start=_clock_time(env, 'QUIET_HOURS_START', '20:00'),
            quiet_hours_end=_clock_time(env, 'QUIET_HOURS_END', '05:00'),
            window_size_days=_int(env, 'WINDOW_SIZE_DAYS', MAX_WINDOW_DAYS),
            sheet_search_days=_int(env, 'SHEET_SEARCH_DAYS', 30),
            cache_miss_policy=env.get('CACHE_MISS_POLICY', POLICY_ERROR).lower(),
            lock_ttl_seconds=_int(env, 'LOCK_TTL_SECONDS', 300),
            run_time_budget_seconds=_int(env, 'RUN_TIME_BUDGET_SECONDS', 270),
            request_timeout_seconds=_int(env, 'TIMEOUT_SECONDS', 30),
            log_level=env.get('LOG_LEVEL', 'INFO'),
            layout=layout
        )


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'") from e


def _clock_time(env: Mapping[str, str], name: str, default: str) -> Optional[dt_time]:
    """Parse an HH:MM value; an explicitly empty variable disables it."""
    raw = env.get(name, default).strip()
    if not raw:
        return None
    try:
        hours, minutes = raw.split(':')
        return dt_time(int(hours), int(minutes))
    except ValueError as e:
        raise ConfigurationError(f"{name} must be HH:MM, got '{raw}'") from e
