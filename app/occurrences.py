"""Occurrence calculator: expands a RecurrenceRule into concrete dates.

The series of a rule is a pure function of (rule, anchor): the anchor is the
template's first due date and fixes the weekday, day of month and interval
phase. Every query below walks that series, so repeated calls with the same
arguments yield the same dates and `rule.occurrences` caps the series itself
(the first N dates from the anchor), not each individual call.
"""
import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Iterator, List, Optional, Union

from .recurrence import RecurrenceRule, RecurrenceType, describe_rule, validate_rule

logger = logging.getLogger(__name__)

# Give up on a monthly/yearly series after this many consecutive periods
# without a valid date (only reachable with MonthEndPolicy.SKIP).
MAX_EMPTY_PERIODS = 48


class MonthEndPolicy(str, Enum):
    CLAMP = "clamp"  # day 31 in a 30-day month -> the 30th
    SKIP = "skip"    # day 31 in a 30-day month -> no occurrence that month


DateLike = Union[date, datetime]


def _to_date(value: DateLike) -> date:
    return value.date() if isinstance(value, datetime) else value


def _add_months(year: int, month: int, months: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def _day_in_month(year: int, month: int, day: int, policy: MonthEndPolicy) -> Optional[date]:
    last = calendar.monthrange(year, month)[1]
    if day > last:
        if policy is MonthEndPolicy.SKIP:
            return None
        day = last
    return date(year, month, day)


def _week_start(d: date) -> date:
    return d - timedelta(days=d.weekday())


def _js_weekday(d: date) -> int:
    """0=Sunday .. 6=Saturday."""
    return (d.weekday() + 1) % 7


def _series(rule: RecurrenceRule, anchor: date, policy: MonthEndPolicy,
            horizon: Optional[date]) -> Iterator[date]:
    """All dates of the rule on or after `anchor`, ascending, no duplicates.

    Stops past `horizon` when given; otherwise the caller bounds it.
    """
    n = rule.interval

    if rule.type is RecurrenceType.DAILY or (
        rule.type is RecurrenceType.WEEKLY and not rule.days_of_week
    ):
        step = timedelta(days=n if rule.type is RecurrenceType.DAILY else 7 * n)
        current = anchor
        while horizon is None or current <= horizon:
            yield current
            current += step
        return

    if rule.type is RecurrenceType.WEEKLY:
        wanted = sorted(set(rule.days_of_week))
        week = _week_start(anchor)
        while horizon is None or week <= horizon:
            for offset in range(7):
                current = week + timedelta(days=offset)
                if current >= anchor and _js_weekday(current) in wanted:
                    if horizon is not None and current > horizon:
                        return
                    yield current
            week += timedelta(weeks=n)
        return

    year = anchor.year
    if rule.type is RecurrenceType.MONTHLY:
        day = rule.day_of_month or anchor.day
        month = anchor.month
        months_per_step = n
    else:
        day = anchor.day
        month = rule.month_of_year or anchor.month
        months_per_step = 12 * n

    empty = 0
    while empty < MAX_EMPTY_PERIODS:
        if horizon is not None and date(year, month, 1) > horizon:
            return
        current = _day_in_month(year, month, day, policy)
        if current is None:
            empty += 1
        else:
            empty = 0
            if current >= anchor:
                if horizon is not None and current > horizon:
                    return
                yield current
        year, month = _add_months(year, month, months_per_step)
    logger.warning(f"Recurrence series gave no date for {MAX_EMPTY_PERIODS} periods, stopping: {rule}")


def next_occurrences(
    rule: RecurrenceRule,
    after: DateLike,
    max_count: Optional[int] = None,
    max_date: Optional[DateLike] = None,
    anchor: Optional[DateLike] = None,
    policy: MonthEndPolicy = MonthEndPolicy.CLAMP,
) -> Iterator[date]:
    """Lazily yield occurrence dates strictly after `after`, ascending.

    The sequence ends at the tightest of `max_count`, `max_date`,
    `rule.end_date` and `rule.occurrences`. `anchor` defaults to `after`,
    which makes a daily rule yield after+interval, after+2*interval, ...
    With an explicit anchor `rule.occurrences` counts from the anchor, so
    dates on or before `after` use up the cap; without one it counts the
    dates yielded.

    Raises RuleValidationError for a malformed rule and ValueError when no
    bound at all is given.
    """
    validate_rule(rule)
    if max_count is None and max_date is None and rule.end_date is None and rule.occurrences is None:
        raise ValueError("next_occurrences needs max_count, max_date or a bounded rule")
    if max_count is not None and max_count < 0:
        raise ValueError("max_count must be >= 0")

    after_d = _to_date(after)
    anchor_d = _to_date(anchor) if anchor is not None else after_d

    horizon = _to_date(max_date) if max_date is not None else None
    if rule.end_date is not None:
        horizon = rule.end_date if horizon is None else min(horizon, rule.end_date)

    series_cap = rule.occurrences
    if anchor is None and rule.occurrences is not None:
        max_count = rule.occurrences if max_count is None else min(max_count, rule.occurrences)
        series_cap = None

    return _bounded(after_d, anchor_d, horizon, max_count, series_cap, rule, policy)


def _bounded(after: date, anchor: date, horizon: Optional[date], max_count: Optional[int],
             series_cap: Optional[int], rule: RecurrenceRule, policy: MonthEndPolicy) -> Iterator[date]:
    produced = 0
    for index, current in enumerate(_series(rule, anchor, policy, horizon)):
        if series_cap is not None and index >= series_cap:
            return
        if max_count is not None and produced >= max_count:
            return
        if current <= after:
            continue
        produced += 1
        yield current


def first_occurrence_on_or_after(
    rule: RecurrenceRule,
    on_or_after: DateLike,
    anchor: Optional[DateLike] = None,
    policy: MonthEndPolicy = MonthEndPolicy.CLAMP,
) -> Optional[date]:
    """First date >= `on_or_after`, or None if the rule is already exhausted."""
    start = _to_date(on_or_after)
    dates = next_occurrences(
        rule,
        after=start - timedelta(days=1),
        max_count=1,
        anchor=anchor if anchor is not None else start,
        policy=policy,
    )
    return next(dates, None)


@dataclass
class RecurrencePreview:
    dates: List[date]
    description: str
    count: int


def preview_rule(rule: RecurrenceRule, start: DateLike, count: int = 10,
                 policy: MonthEndPolicy = MonthEndPolicy.CLAMP) -> RecurrencePreview:
    """First `count` dates on or after `start` (start is the anchor) plus description."""
    start_d = _to_date(start)
    dates = list(next_occurrences(
        rule, after=start_d - timedelta(days=1), max_count=count, anchor=start_d, policy=policy,
    ))
    return RecurrencePreview(dates=dates, description=describe_rule(rule), count=len(dates))
