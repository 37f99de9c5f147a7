from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, time
from zoneinfo import ZoneInfo

from chatqueue.core.config import Settings


@dataclass(frozen=True, slots=True)
class BusinessHours:
    opens_at: time
    closes_at: time
    weekdays: frozenset[int]
    timezone: ZoneInfo

    @classmethod
    def from_settings(cls, settings: Settings) -> BusinessHours | None:
        if not settings.business_hours_enabled:
            return None
        return cls(
            opens_at=time.fromisoformat(settings.business_hours_start),
            closes_at=time.fromisoformat(settings.business_hours_end),
            weekdays=frozenset(settings.business_days),
            timezone=ZoneInfo(settings.business_timezone),
        )

    def is_open(self, moment: datetime | None = None) -> bool:
        local = (moment or datetime.now(UTC)).astimezone(self.timezone)
        if local.weekday() not in self.weekdays:
            return False

        current = local.time().replace(tzinfo=None)
        if self.opens_at <= self.closes_at:
            return self.opens_at <= current < self.closes_at
        # Window crosses midnight.
        return current >= self.opens_at or current < self.closes_at
