# farmbasket/services/buyer/pickup_schedule_service.py
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from farmbasket.app_config import ScheduleConfig


class OrderWindowStatus(str, Enum):
    OPEN = "OPEN"                         # before the edit deadline
    DEADLINE_PASSED = "DEADLINE_PASSED"   # locked, waiting for pickup
    PICKUP_PASSED = "PICKUP_PASSED"


class DeadlineWarningLevel(str, Enum):
    NONE = "NONE"           # more than 48 hours
    INFO = "INFO"           # 24-48 hours
    WARNING = "WARNING"     # 6-24 hours
    URGENT = "URGENT"       # 1-6 hours
    CRITICAL = "CRITICAL"   # under 1 hour
    EXPIRED = "EXPIRED"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PickupSchedule:
    """
    Weekly pickup calendar.

    Business rules (see ScheduleConfig):
      - pickups happen on one weekday (default Thursday), at local midnight
      - orders for a pickup can be placed/edited until the deadline weekday
        before it (default Tuesday 23:59:59)
      - once this week's deadline has passed, the next pickup is next week's

    All functions are pure: "now" comes from the injected clock or an
    explicit argument.
    """

    def __init__(self, config: Optional[ScheduleConfig] = None, clock: Optional[Callable[[], datetime]] = None):
        self.config = config or ScheduleConfig()
        self.tz = ZoneInfo(self.config.timezone)
        self._clock = clock or utc_now

    # =========================
    # HELPERS
    # =========================
    def now(self) -> datetime:
        return self._clock()

    @staticmethod
    def _aware(dt: datetime) -> datetime:
        # naive datetimes are treated as UTC
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)

    def _local_date(self, dt: datetime) -> date:
        return self._aware(dt).astimezone(self.tz).date()

    def _at(self, d: date, hour: int = 0, minute: int = 0, second: int = 0, micro: int = 0) -> datetime:
        return datetime(d.year, d.month, d.day, hour, minute, second, micro, tzinfo=self.tz)

    @staticmethod
    def _days_until(from_day: int, target_day: int) -> int:
        """Days from from_day to the next target_day (1-7); the same weekday counts as next week."""
        diff = (target_day - from_day) % 7
        return 7 if diff == 0 else diff

    @staticmethod
    def _days_between(from_day: int, to_day: int) -> int:
        return (to_day - from_day) % 7

    # =========================
    # CORE RULES
    # =========================
    def next_pickup_date(self, from_date: Optional[datetime] = None) -> datetime:
        local = self._local_date(from_date or self.now())

        deadline_to_pickup = self._days_between(self.config.deadline_weekday, self.config.pickup_weekday)
        days_to_pickup = self._days_until(local.weekday(), self.config.pickup_weekday)

        # past the deadline day for this week's pickup -> next week
        if days_to_pickup < deadline_to_pickup:
            days_to_pickup += 7

        return self._at(local + timedelta(days=days_to_pickup))

    def edit_deadline(self, pickup_date: datetime) -> datetime:
        pickup_local = self._local_date(pickup_date)
        if pickup_local.weekday() != self.config.pickup_weekday:
            raise ValueError(
                f"Pickup date must fall on weekday {self.config.pickup_weekday}, got {pickup_local.isoformat()}"
            )

        deadline_to_pickup = self._days_between(self.config.deadline_weekday, self.config.pickup_weekday)
        deadline_date = pickup_local - timedelta(days=deadline_to_pickup)
        return self._at(deadline_date, self.config.deadline_hour, self.config.deadline_minute, 59, 999999)

    def can_edit_order(self, pickup_date: datetime, now: Optional[datetime] = None) -> bool:
        now = self._aware(now or self.now())
        return now < self.edit_deadline(pickup_date)

    def available_pickup_dates(self, count: int = 5, now: Optional[datetime] = None) -> List[datetime]:
        now = self._aware(now or self.now())
        dates: List[datetime] = []
        cursor = now

        while len(dates) < count:
            candidate = self.next_pickup_date(cursor)
            if self.can_edit_order(candidate, now):
                dates.append(candidate)
            # continue from the day after this pickup
            cursor = self._at(self._local_date(candidate) + timedelta(days=1))

        return dates

    def is_pickup_date_valid(self, pickup_date: datetime, now: Optional[datetime] = None) -> bool:
        """
        True while the date would still be offered by available_pickup_dates():
        in the future, on the pickup weekday, edit window still open.
        """
        now = self._aware(now or self.now())
        pickup_date = self._aware(pickup_date)

        if pickup_date <= now:
            return False
        if self._local_date(pickup_date).weekday() != self.config.pickup_weekday:
            return False
        return self.can_edit_order(pickup_date, now)

    # =========================
    # DISPLAY / STATUS
    # =========================
    def window_status(self, pickup_date: datetime, now: Optional[datetime] = None) -> OrderWindowStatus:
        now = self._aware(now or self.now())
        if now < self.edit_deadline(pickup_date):
            return OrderWindowStatus.OPEN
        if now > self._aware(pickup_date):
            return OrderWindowStatus.PICKUP_PASSED
        return OrderWindowStatus.DEADLINE_PASSED

    def is_current_ordering_cycle(self, pickup_date: datetime, now: Optional[datetime] = None) -> bool:
        next_pickup = self.next_pickup_date(now or self.now())
        return self._local_date(pickup_date) == self._local_date(next_pickup)

    def time_until_deadline(self, pickup_date: datetime, now: Optional[datetime] = None) -> Optional[timedelta]:
        now = self._aware(now or self.now())
        deadline = self.edit_deadline(pickup_date)
        if now >= deadline:
            return None
        return deadline - now

    def format_time_until_deadline(self, pickup_date: datetime, now: Optional[datetime] = None) -> str:
        remaining = self.time_until_deadline(pickup_date, now)
        if remaining is None:
            return "Deadline passed"

        days = remaining.days
        hours = remaining.seconds // 3600
        minutes = (remaining.seconds % 3600) // 60

        if days > 1:
            return f"{days} days, {hours} hours"
        if days == 1:
            return f"1 day, {hours} hours"
        if hours > 1:
            return f"{hours} hours, {minutes} minutes"
        if hours == 1:
            return f"1 hour, {minutes} minutes"
        if minutes > 1:
            return f"{minutes} minutes"
        if minutes == 1:
            return "1 minute"
        return "Less than 1 minute"

    def deadline_warning_level(self, pickup_date: datetime, now: Optional[datetime] = None) -> DeadlineWarningLevel:
        remaining = self.time_until_deadline(pickup_date, now)
        if remaining is None:
            return DeadlineWarningLevel.EXPIRED

        total_hours = int(remaining.total_seconds() // 3600)
        if total_hours > 48:
            return DeadlineWarningLevel.NONE
        if total_hours > 24:
            return DeadlineWarningLevel.INFO
        if total_hours > 6:
            return DeadlineWarningLevel.WARNING
        if total_hours > 1:
            return DeadlineWarningLevel.URGENT
        return DeadlineWarningLevel.CRITICAL

    def days_until_pickup(self, pickup_date: datetime, now: Optional[datetime] = None) -> int:
        now = self._aware(now or self.now())
        return (self._aware(pickup_date) - now).days

    # =========================
    # DATE KEYS
    # =========================
    def date_key(self, dt: datetime) -> str:
        """YYYYMMDD in the schedule timezone; used in placed_order_ids and order paths."""
        return self._local_date(dt).strftime("%Y%m%d")

    def parse_date_key(self, key: str) -> datetime:
        d = datetime.strptime(key, "%Y%m%d").date()
        return self._at(d)

    def format_display_date(self, dt: datetime) -> str:
        return self._aware(dt).astimezone(self.tz).strftime("%d.%m.%Y")

    def format_display_datetime(self, dt: datetime) -> str:
        return self._aware(dt).astimezone(self.tz).strftime("%d.%m.%Y %H:%M")


def order_path(seller_id: str, date_key: str, order_id: str) -> str:
    return f"orders/{seller_id}/{date_key}/{order_id}"
