"""UTC period arithmetic for the hourly and daily rollup grains."""
import enum
from datetime import datetime, timezone, timedelta
from typing import Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Return dt as an aware UTC datetime. Naive values (SQLite) are taken to be UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def floor_hour(dt: datetime) -> datetime:
    return as_utc(dt).replace(minute=0, second=0, microsecond=0)


def floor_day(dt: datetime) -> datetime:
    return as_utc(dt).replace(hour=0, minute=0, second=0, microsecond=0)


class Grain(str, enum.Enum):
    HOURLY = "hourly"
    DAILY = "daily"

    @property
    def length(self) -> timedelta:
        return timedelta(hours=1) if self is Grain.HOURLY else timedelta(days=1)

    @property
    def label_format(self) -> str:
        return "%Y-%m-%d %H:00:00" if self is Grain.HOURLY else "%Y-%m-%d"

    @property
    def model(self):
        from hbstats.models.summary import StatHourly, StatDaily
        return StatHourly if self is Grain.HOURLY else StatDaily

    def floor(self, dt: datetime) -> datetime:
        return floor_hour(dt) if self is Grain.HOURLY else floor_day(dt)

    def period_containing(self, dt: datetime) -> Tuple[datetime, datetime]:
        start = self.floor(dt)
        return start, start + self.length

    def previous_period(self, now: datetime) -> Tuple[datetime, datetime]:
        """The last fully elapsed period before now: previous hour, or previous UTC calendar day."""
        end = self.floor(now)
        return end - self.length, end
