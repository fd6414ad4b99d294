"""Exception types shared across the schedule pipeline."""


class ScheduleError(Exception):
    """Base class for all schedule pipeline errors."""


class ConfigurationError(ScheduleError):
    """Raised when settings from the environment are invalid."""


class LayoutError(ConfigurationError):
    """Raised when the whiteboard sheet layout is malformed."""


class DataSourceError(ScheduleError):
    """Raised when the spreadsheet cannot be reached or read."""


class CacheEntryTooLargeError(ScheduleError):
    """Raised when a single cache value exceeds the per-entry limit."""


class CacheCapacityError(ScheduleError):
    """Raised when a write would push the cache past its aggregate limit."""


class RunTimeBudgetExceeded(ScheduleError):
    """Raised when a batch run exceeds its execution-time budget."""


class PersonNotFoundError(ScheduleError):
    """Raised when a requested name is not on the current roster."""
