"""Calendar-date handling in the fixed business timezone.

The backend stores absolute instants, usually serialized in UTC, while the
business displays and filters by calendar date in its own timezone. Every
conversion between the two goes through :class:`DateNormalizer`, which uses a
fixed UTC offset and never consults the timezone of the running process.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, timezone
from typing import Tuple, Union

from .constants import DEFAULT_UTC_OFFSET_HOURS


CALENDAR_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Business noon sits twelve hours away from either edge of the day, so the
# stored instant survives any offset without changing calendar day.
STORAGE_TIME = time(12, 0, 0)

InstantLike = Union[str, datetime, date]


@dataclass(frozen=True)
class DateNormalizer:
    """Bridge between stored instants and business calendar dates."""

    utc_offset_hours: float = DEFAULT_UTC_OFFSET_HOURS

    @property
    def tzinfo(self) -> timezone:
        return timezone(timedelta(hours=self.utc_offset_hours))

    def to_calendar_date(self, instant: InstantLike) -> str:
        """Return the ``YYYY-MM-DD`` business date for ``instant``.

        Bare calendar dates (``"2024-03-01"`` or :class:`datetime.date`) are
        already business dates and are returned unchanged. Timestamps without
        an offset are interpreted as UTC, which is how the backend serializes
        them.

        Raises:
            ValueError: If ``instant`` cannot be parsed.
        """

        if isinstance(instant, datetime):
            moment = instant
        elif isinstance(instant, date):
            return instant.isoformat()
        elif isinstance(instant, str):
            text = instant.strip()
            if CALENDAR_DATE_RE.match(text):
                return self.coerce_date(text)
            try:
                moment = datetime.fromisoformat(text)
            except ValueError as exc:
                raise ValueError(f"Unparseable instant: {instant!r}") from exc
        else:
            raise ValueError(f"Unsupported instant type: {type(instant).__name__}")

        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        return moment.astimezone(self.tzinfo).date().isoformat()

    def to_storage_instant(self, calendar_date: Union[str, date]) -> str:
        """Return the UTC ISO-8601 instant stored for a business date.

        ``to_calendar_date(to_storage_instant(d)) == d`` for every date.
        """

        day = date.fromisoformat(self.coerce_date(calendar_date))
        local = datetime.combine(day, STORAGE_TIME, tzinfo=self.tzinfo)
        return local.astimezone(UTC).isoformat()

    def day_bounds(self, calendar_date: Union[str, date]) -> Tuple[str, str]:
        """Return inclusive UTC bounds covering one business day."""

        day = date.fromisoformat(self.coerce_date(calendar_date))
        start = datetime.combine(day, time.min, tzinfo=self.tzinfo)
        end = datetime.combine(day, time.max, tzinfo=self.tzinfo)
        return start.astimezone(UTC).isoformat(), end.astimezone(UTC).isoformat()

    def today(self) -> str:
        """Return the current business date."""

        return datetime.now(UTC).astimezone(self.tzinfo).date().isoformat()

    @staticmethod
    def coerce_date(value: Union[str, date]) -> str:
        """Validate a caller-supplied calendar date and return it as text.

        Raises:
            ValueError: If ``value`` is not a real ``YYYY-MM-DD`` date.
        """

        if isinstance(value, datetime):
            raise ValueError("Expected a calendar date, got a timestamp")
        if isinstance(value, date):
            return value.isoformat()
        if not isinstance(value, str) or not CALENDAR_DATE_RE.match(value.strip()):
            raise ValueError(f"Invalid calendar date: {value!r}")
        return date.fromisoformat(value.strip()).isoformat()


__all__ = ["DateNormalizer", "CALENDAR_DATE_RE"]
