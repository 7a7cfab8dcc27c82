"""
Recurrence expansion: a pure function from a rule and a window to occurrence datetimes.

Semantics (a subset of RFC 5545 RRULE):

- frequency: DAILY | WEEKLY | MONTHLY | YEARLY. Periods start at dtstart's day / week
  (Monday-based) / month / year and advance by `interval` units.
- Within a period, candidate days come from the by-* lists:
    DAILY    one candidate (the period day), limited by by_weekday / by_month_day / by_month.
    WEEKLY   by_weekday (default: dtstart's weekday), limited by by_month_day / by_month.
    MONTHLY  by_month_day (negatives count from month end) and/or by_weekday; when both
             are given a day must match both. Default: dtstart's day of month. Limited by by_month.
    YEARLY   months from by_month (default: every month if a day filter is given, else
             dtstart's month), days as for MONTHLY.
- Every occurrence keeps dtstart's time of day. Nonexistent dates (Feb 30) are skipped.
- Occurrences before dtstart never appear. `count` counts occurrences from dtstart, not
  from the window start. `until` is inclusive.
- Only occurrences inside [range_start, range_end] (inclusive) are returned, sorted.
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from app.core.errors import RecurrenceExpansionError

FREQUENCIES = ("DAILY", "WEEKLY", "MONTHLY", "YEARLY")


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: str
    dtstart: datetime
    interval: int = 1
    count: int | None = None
    until: datetime | None = None
    by_weekday: tuple[int, ...] = ()  # 0=Mon .. 6=Sun
    by_month_day: tuple[int, ...] = ()  # 1..31 or -1..-31
    by_month: tuple[int, ...] = ()  # 1..12


def validate_rule(rule: RecurrenceRule) -> None:
    if rule.frequency not in FREQUENCIES:
        raise RecurrenceExpansionError(f"Unknown frequency {rule.frequency!r}")
    if rule.dtstart is None:
        raise RecurrenceExpansionError("dtstart is required")
    if not isinstance(rule.interval, int) or rule.interval < 1:
        raise RecurrenceExpansionError(f"interval must be >= 1, got {rule.interval!r}")
    if rule.count is not None and rule.count < 1:
        raise RecurrenceExpansionError(f"count must be >= 1, got {rule.count!r}")
    for wd in rule.by_weekday:
        if not 0 <= wd <= 6:
            raise RecurrenceExpansionError(f"by_weekday value out of range: {wd!r}")
    for md in rule.by_month_day:
        if md == 0 or not -31 <= md <= 31:
            raise RecurrenceExpansionError(f"by_month_day value out of range: {md!r}")
    for m in rule.by_month:
        if not 1 <= m <= 12:
            raise RecurrenceExpansionError(f"by_month value out of range: {m!r}")


def _resolve_month_day(year: int, month: int, md: int) -> int | None:
    last = calendar.monthrange(year, month)[1]
    day = md if md > 0 else last + md + 1
    if 1 <= day <= last:
        return day
    return None


def _days_in_month(rule: RecurrenceRule, year: int, month: int) -> list[date]:
    last = calendar.monthrange(year, month)[1]
    if rule.by_month_day:
        days = {_resolve_month_day(year, month, md) for md in rule.by_month_day}
        days.discard(None)
        out = [date(year, month, d) for d in sorted(days)]
        if rule.by_weekday:
            out = [d for d in out if d.weekday() in rule.by_weekday]
        return out
    if rule.by_weekday:
        return [
            date(year, month, d)
            for d in range(1, last + 1)
            if date(year, month, d).weekday() in rule.by_weekday
        ]
    if rule.dtstart.day <= last:
        return [date(year, month, rule.dtstart.day)]
    return []


def _month_day_matches(rule: RecurrenceRule, d: date) -> bool:
    if not rule.by_month_day:
        return True
    return d.day in {_resolve_month_day(d.year, d.month, md) for md in rule.by_month_day}


def _add_months(year: int, month: int, n: int) -> tuple[int, int]:
    idx = year * 12 + (month - 1) + n
    return idx // 12, idx % 12 + 1


def _period(rule: RecurrenceRule, k: int) -> tuple[date, list[date]]:
    """Return (period start day, candidate days) for the k-th period."""
    start = rule.dtstart.date()
    step = k * rule.interval
    if rule.frequency == "DAILY":
        day = start + timedelta(days=step)
        ok = (
            (not rule.by_weekday or day.weekday() in rule.by_weekday)
            and _month_day_matches(rule, day)
            and (not rule.by_month or day.month in rule.by_month)
        )
        return day, [day] if ok else []
    if rule.frequency == "WEEKLY":
        week_start = start - timedelta(days=start.weekday()) + timedelta(weeks=step)
        weekdays = sorted(set(rule.by_weekday or (start.weekday(),)))
        days = [week_start + timedelta(days=wd) for wd in weekdays]
        days = [
            d for d in days
            if _month_day_matches(rule, d) and (not rule.by_month or d.month in rule.by_month)
        ]
        return week_start, days
    if rule.frequency == "MONTHLY":
        year, month = _add_months(start.year, start.month, step)
        first = date(year, month, 1)
        if rule.by_month and month not in rule.by_month:
            return first, []
        return first, _days_in_month(rule, year, month)
    # YEARLY
    year = start.year + step
    if rule.by_month:
        months = sorted(set(rule.by_month))
    elif rule.by_month_day or rule.by_weekday:
        months = list(range(1, 13))
    else:
        months = [start.month]
    days: list[date] = []
    for month in months:
        days.extend(_days_in_month(rule, year, month))
    return date(year, 1, 1), days


def expand(rule: RecurrenceRule, range_start: datetime, range_end: datetime) -> list[datetime]:
    """All occurrences of `rule` within [range_start, range_end]. Raises RecurrenceExpansionError on a malformed rule."""
    validate_rule(rule)
    if range_end < range_start:
        return []
    stop = range_end if rule.until is None else min(range_end, rule.until)
    time_of_day = rule.dtstart.time()
    out: list[datetime] = []
    emitted = 0
    k = 0
    while True:
        period_start, days = _period(rule, k)
        if datetime.combine(period_start, datetime.min.time()) > stop:
            break
        for day in days:
            occ = datetime.combine(day, time_of_day)
            if occ < rule.dtstart:
                continue
            if occ > stop:
                return out
            emitted += 1
            if occ >= range_start:
                out.append(occ)
            if rule.count is not None and emitted >= rule.count:
                return out
        k += 1
    return out
