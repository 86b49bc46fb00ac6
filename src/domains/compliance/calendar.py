"""Business-day arithmetic over per-jurisdiction holiday rules.

Holidays are configured as rule strings so they can live in regional config
and tenant overrides:

  FIXED:MM-DD               every year on that date (``FIXED:12-25``)
  YYYY-MM-DD                a one-off date (``2026-12-28``)
  EASTER_FRIDAY / EASTER_SUNDAY / EASTER_MONDAY
  <NTH>_<DOW>_<MON>         nth weekday of a month (``LAST_MON_MAY``,
                            ``FOURTH_THU_NOV``); NTH is FIRST..FOURTH or LAST
  <NTH>_<DOW>_AFTER:MM-DD   nth weekday strictly after a reference date
                            (``SECOND_FRI_AFTER:05-01``)

Rules that are not recognised (for example lunar-calendar placeholders such
as ``CHINESE_NEW_YEAR_1``) never match. Workweek days use Python's
``date.weekday()`` numbering: 0=Monday .. 6=Sunday.
"""

import re
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

DEFAULT_WORKWEEK: frozenset[int] = frozenset({0, 1, 2, 3, 4})

_NTH = {"FIRST": 1, "SECOND": 2, "THIRD": 3, "FOURTH": 4, "LAST": -1}
_DOW = {"MON": 0, "TUE": 1, "WED": 2, "THU": 3, "FRI": 4, "SAT": 5, "SUN": 6}
_MONTHS = {
    "JAN": 1, "FEB": 2, "MAR": 3, "APR": 4, "MAY": 5, "JUN": 6,
    "JUL": 7, "AUG": 8, "SEP": 9, "OCT": 10, "NOV": 11, "DEC": 12,
}

_NTH_WEEKDAY_RE = re.compile(
    r"^(FIRST|SECOND|THIRD|FOURTH|LAST)_(MON|TUE|WED|THU|FRI|SAT|SUN)_([A-Z]{3})$"
)
_NTH_AFTER_RE = re.compile(
    r"^(FIRST|SECOND|THIRD|FOURTH)_(MON|TUE|WED|THU|FRI|SAT|SUN)_AFTER:(\d{2})-(\d{2})$"
)
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def easter_sunday(year: int) -> date:
    """Anonymous Gregorian algorithm."""
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    l = (32 + 2 * e + 2 * i - h - k) % 7  # noqa: E741
    m = (a + 11 * h + 22 * l) // 451
    month, day = divmod(h + l - 7 * m + 114, 31)
    return date(year, month, day + 1)


def nth_weekday_of_month(year: int, month: int, weekday: int, n: int) -> date:
    """nth occurrence of a weekday in a month; n=-1 means the last one."""
    if n == -1:
        if month == 12:
            last_day = date(year + 1, 1, 1) - timedelta(days=1)
        else:
            last_day = date(year, month + 1, 1) - timedelta(days=1)
        return last_day - timedelta(days=(last_day.weekday() - weekday) % 7)
    first_day = date(year, month, 1)
    first_occurrence = first_day + timedelta(days=(weekday - first_day.weekday()) % 7)
    return first_occurrence + timedelta(weeks=n - 1)


def nth_weekday_after(reference: date, weekday: int, n: int) -> date:
    """nth occurrence of a weekday strictly after ``reference``."""
    offset = (weekday - reference.weekday()) % 7 or 7
    return reference + timedelta(days=offset) + timedelta(weeks=n - 1)


@lru_cache(maxsize=4096)
def resolve_holiday_rule(rule: str, year: int) -> date | None:
    """Resolve one holiday rule to a concrete date in ``year``.

    Returns None when the rule does not produce a date in that year or is not
    a recognised rule.
    """
    rule = rule.strip().upper()

    if rule.startswith("FIXED:"):
        month, day = (int(part) for part in rule[6:].split("-"))
        try:
            return date(year, month, day)
        except ValueError:
            # FIXED:02-29 outside leap years
            return None

    if _ISO_DATE_RE.match(rule):
        one_off = date.fromisoformat(rule)
        return one_off if one_off.year == year else None

    if rule == "EASTER_SUNDAY":
        return easter_sunday(year)
    if rule == "EASTER_FRIDAY":
        return easter_sunday(year) - timedelta(days=2)
    if rule == "EASTER_MONDAY":
        return easter_sunday(year) + timedelta(days=1)

    if match := _NTH_WEEKDAY_RE.match(rule):
        nth, dow, mon = match.groups()
        if mon in _MONTHS:
            return nth_weekday_of_month(year, _MONTHS[mon], _DOW[dow], _NTH[nth])
        return None

    if match := _NTH_AFTER_RE.match(rule):
        nth, dow, month, day = match.groups()
        # A late-year anchor can push the holiday into the following January
        for anchor_year in (year, year - 1):
            try:
                reference = date(anchor_year, int(month), int(day))
            except ValueError:
                continue
            holiday = nth_weekday_after(reference, _DOW[dow], _NTH[nth])
            if holiday.year == year:
                return holiday
        return None

    return None


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def local_date(moment: datetime, timezone: str) -> date:
    """Calendar date of ``moment`` in an IANA timezone. Naive values are UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(ZoneInfo(timezone)).date()


@dataclass(frozen=True)
class BusinessCalendar:
    """Holiday- and workweek-aware calendar for one jurisdiction."""

    holidays: tuple[str, ...] = ()
    workweek: frozenset[int] = field(default_factory=lambda: DEFAULT_WORKWEEK)

    @classmethod
    def from_config(cls, holidays: list[str], workweek: list[int]) -> "BusinessCalendar":
        return cls(holidays=tuple(holidays), workweek=frozenset(workweek))

    def holidays_for_year(self, year: int) -> set[date]:
        resolved = set()
        for rule in self.holidays:
            holiday = resolve_holiday_rule(rule, year)
            if holiday is not None:
                resolved.add(holiday)
        return resolved

    def is_holiday(self, d: date | datetime) -> bool:
        d = _as_date(d)
        return d in self.holidays_for_year(d.year)

    def is_business_day(self, d: date | datetime) -> bool:
        d = _as_date(d)
        if d.weekday() not in self.workweek:
            return False
        return not self.is_holiday(d)

    def add_business_days(self, start: date | datetime, days: int) -> date:
        """Move ``days`` business days from ``start`` (negative moves back)."""
        if not self.workweek:
            raise ValueError("workweek must contain at least one day")
        current = _as_date(start)
        step = 1 if days >= 0 else -1
        remaining = abs(days)
        while remaining > 0:
            current += timedelta(days=step)
            if self.is_business_day(current):
                remaining -= 1
        return current

    def business_days_until(self, deadline: date | datetime, today: date | datetime) -> int:
        """Signed business-day distance from ``today`` to ``deadline``.

        Counts business days in (today, deadline] when the deadline is ahead,
        and minus the business days in (deadline, today] when it has passed.
        """
        start, end = _as_date(today), _as_date(deadline)
        if start == end:
            return 0
        sign = 1 if end > start else -1
        low, high = (start, end) if sign > 0 else (end, start)
        count = 0
        current = low
        while current < high:
            current += timedelta(days=1)
            if self.is_business_day(current):
                count += 1
        return sign * count

    def business_days_remaining(self, deadline: date | datetime, today: date | datetime) -> int:
        """Business days left before ``deadline``; 0 once it is today or past."""
        return max(0, self.business_days_until(deadline, today))

    def is_deadline_passed(self, deadline: date | datetime, today: date | datetime) -> bool:
        return _as_date(deadline) < _as_date(today)

    def deadline_status(self, deadline: date | datetime, today: date | datetime) -> dict:
        """Display status for a deadline: overdue, critical, warning or ok."""
        if self.is_deadline_passed(deadline, today):
            return {"status": "overdue", "days_remaining": 0, "message": "Deadline has passed"}

        remaining = self.business_days_remaining(deadline, today)
        if remaining <= 1:
            message = "Due today" if remaining == 0 else "1 business day remaining"
            return {"status": "critical", "days_remaining": remaining, "message": message}
        status = "warning" if remaining <= 3 else "ok"
        return {
            "status": status,
            "days_remaining": remaining,
            "message": f"{remaining} business days remaining",
        }
