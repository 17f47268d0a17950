"""Data models for the coaching persistence layer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta


@dataclass
class InterventionUsageRecord:
    """Usage and learning state for one (user, template) pair.

    ``effectiveness`` and ``success_rate`` stay ``None`` until the first
    outcome is recorded; callers apply their own defaults.
    """

    user_id: str
    template_id: str
    last_used: datetime | None = None
    uses_today: int = 0
    usage_day: date | None = None
    effectiveness: float | None = None
    success_rate: float | None = None

    def uses_on(self, day: date) -> int:
        """Uses counted for ``day``; the counter resets on a new day."""
        return self.uses_today if self.usage_day == day else 0

    def rollover(self, day: date) -> None:
        if self.usage_day != day:
            self.uses_today = 0
            self.usage_day = day

    def is_available(self, now: datetime, cooldown: timedelta, max_daily_uses: int) -> bool:
        if self.last_used is not None and now - self.last_used < cooldown:
            return False
        return self.uses_on(now.date()) < max_daily_uses

    def mark_used(self, now: datetime) -> None:
        self.rollover(now.date())
        self.uses_today += 1
        self.last_used = now
