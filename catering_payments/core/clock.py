"""Time sources used for delivery-window checks and row timestamps."""
from datetime import date, datetime, timedelta, timezone
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    """Anything that can tell the current time."""

    def now(self) -> datetime:
        """Return the current time as an aware datetime in the local zone."""
        ...

    def today(self) -> date:
        """Return the local calendar date."""
        ...


class SystemClock:
    """Wall clock in a fixed IANA timezone."""

    def __init__(self, tz_name: str = "Asia/Jakarta"):
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """Clock frozen at a given instant; advance it explicitly."""

    def __init__(self, instant: datetime):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self.instant = instant

    def now(self) -> datetime:
        return self.instant

    def today(self) -> date:
        return self.instant.date()

    def advance(self, **delta: float) -> None:
        self.instant = self.instant + timedelta(**delta)
