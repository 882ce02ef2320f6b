"""Error taxonomy shared by the rollup, calculator and retention services."""


class HBStatsError(Exception):
    """Base class for errors raised by this package."""


class StoreError(HBStatsError):
    """The heartbeat or summary store could not be read or written."""


class ConfigurationError(HBStatsError, ValueError):
    """A retention policy value is outside its allowed range."""


class CronParseError(HBStatsError, ValueError):
    """A cadence string is not a valid five-field cron expression."""


class UnknownJobError(HBStatsError, KeyError):
    """No scheduler job is registered under the requested name."""
