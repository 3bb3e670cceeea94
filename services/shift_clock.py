"""
Floor Monitor — Shift Clock.

Maps an instant to the start of the production shift that contains it.
Two shifts per day: day shift from 07:00 and night shift from 19:00,
the night shift running past midnight into the next calendar day.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

DEFAULT_MORNING_HOUR = 7
DEFAULT_NIGHT_HOUR = 19
DEFAULT_SHIFT_MINUTES = 720


class ShiftClock:
    """Pure shift arithmetic plus an injectable notion of "now".

    All datetimes are naive plant-local time. Inbound events and server
    summaries are converted on parse (see ``schemas.production.plant_local``).
    """

    def __init__(
        self,
        morning_hour: int = DEFAULT_MORNING_HOUR,
        night_hour: int = DEFAULT_NIGHT_HOUR,
        shift_minutes: int = DEFAULT_SHIFT_MINUTES,
        now_fn: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if not 0 <= morning_hour < night_hour <= 23:
            raise ValueError("morning_hour must be earlier than night_hour")
        self.morning_hour = morning_hour
        self.night_hour = night_hour
        self.shift_minutes = shift_minutes
        self._now_fn = now_fn or datetime.now

    @classmethod
    def from_settings(cls, settings) -> "ShiftClock":
        return cls(
            morning_hour=settings.morning_shift_hour,
            night_hour=settings.night_shift_hour,
            shift_minutes=settings.shift_minutes,
        )

    def now(self) -> datetime:
        return self._now_fn()

    def _at(self, day: datetime, hour: int) -> datetime:
        return day.replace(hour=hour, minute=0, second=0, microsecond=0)

    def shift_start(self, now: Optional[datetime] = None) -> datetime:
        """Start of the shift containing ``now``.

        Args:
            now: Instant to classify. Defaults to the clock's current time.

        Returns:
            Today at the morning hour, today at the night hour, or
            yesterday at the night hour for the early-morning tail.
        """
        now = now or self.now()
        if self.morning_hour <= now.hour < self.night_hour:
            return self._at(now, self.morning_hour)
        if now.hour >= self.night_hour:
            return self._at(now, self.night_hour)
        return self._at(now - timedelta(days=1), self.night_hour)

    def shift_end(self, now: Optional[datetime] = None) -> datetime:
        """Start of the shift following the one containing ``now``."""
        start = self.shift_start(now)
        if start.hour == self.morning_hour:
            return self._at(start, self.night_hour)
        return self._at(start + timedelta(days=1), self.morning_hour)

    def minutes_since_shift_start(self, now: Optional[datetime] = None) -> float:
        now = now or self.now()
        return (now - self.shift_start(now)).total_seconds() / 60.0

    def same_shift(self, a: datetime, b: datetime) -> bool:
        return self.shift_start(a) == self.shift_start(b)
