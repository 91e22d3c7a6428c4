from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from campusdesk.config import settings


APP_TIMEZONE = settings.app_timezone or 'UTC'
APP_ZONEINFO = ZoneInfo(APP_TIMEZONE)


class TimeProvider:
    def now(self) -> datetime:
        return datetime.now(APP_ZONEINFO)

    def today(self) -> date:
        return self.now().date()

    def epoch_ms(self) -> int:
        return int(self.now().timestamp() * 1000)


default_time_provider = TimeProvider()
