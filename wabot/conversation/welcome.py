"""Once-per-day welcome bookkeeping."""

from collections.abc import Callable
from datetime import datetime

from wabot.utils.helpers import today_date


class DailyWelcomeTracker:
    """Remembers the local date each contact last got the welcome."""

    def __init__(self, now: Callable[[], datetime] = datetime.now):
        self._now = now
        self._marks: dict[str, str] = {}

    def welcomed_today(self, key: str) -> bool:
        return self._marks.get(key) == today_date(self._now())

    def mark(self, key: str) -> None:
        self._marks[key] = today_date(self._now())
