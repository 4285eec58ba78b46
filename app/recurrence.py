"""Recurrence rule model: validation, storage encoding and Chinese descriptions.

A rule says "repeat every N days/weeks/months/years", optionally pinned to a
weekday set (weekly), a day of month (monthly) or a month (yearly), and
optionally bounded by an end date or an occurrence count.

Rules are stored as compact JSON using the same camelCase keys the AI parser
and the web client exchange:

    {"type": "weekly", "interval": 1, "daysOfWeek": [1, 3]}

Absent optional fields are omitted, never written as null/0.
"""
import json
import logging
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ("周日", "周一", "周二", "周三", "周四", "周五", "周六")


class RecurrenceType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


# ── Errors ────────────────────────────────────────────────────

class RuleValidationError(ValueError):
    """A rule field is malformed."""


class InvalidInterval(RuleValidationError):
    pass


class InvalidWeekday(RuleValidationError):
    pass


class InvalidDayOfMonth(RuleValidationError):
    pass


class InvalidMonthOfYear(RuleValidationError):
    pass


class InvalidOccurrences(RuleValidationError):
    pass


class InconsistentFields(RuleValidationError):
    """A field belonging to another rule type is populated."""


class RuleParseError(ValueError):
    """Stored rule text could not be decoded."""


# ── Model ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class RecurrenceRule:
    type: RecurrenceType
    interval: int = 1
    days_of_week: Optional[Tuple[int, ...]] = None  # 0=Sunday .. 6=Saturday
    day_of_month: Optional[int] = None
    month_of_year: Optional[int] = None
    end_date: Optional[date] = None
    occurrences: Optional[int] = None

    @classmethod
    def daily(cls, interval: int = 1) -> "RecurrenceRule":
        return cls(RecurrenceType.DAILY, interval)

    @classmethod
    def weekly(cls, *days: int, interval: int = 1) -> "RecurrenceRule":
        return cls(RecurrenceType.WEEKLY, interval, days_of_week=tuple(days) if days else None)

    @classmethod
    def monthly(cls, day_of_month: Optional[int] = None, interval: int = 1) -> "RecurrenceRule":
        return cls(RecurrenceType.MONTHLY, interval, day_of_month=day_of_month)

    @classmethod
    def yearly(cls, month_of_year: Optional[int] = None, interval: int = 1) -> "RecurrenceRule":
        return cls(RecurrenceType.YEARLY, interval, month_of_year=month_of_year)

    def with_bounds(self, end_date: Optional[date] = None,
                    occurrences: Optional[int] = None) -> "RecurrenceRule":
        return replace(self, end_date=end_date, occurrences=occurrences)


def validate_rule(rule: RecurrenceRule) -> None:
    """Raise a RuleValidationError subclass if the rule is malformed.

    Fields that belong to a different rule type are rejected
    (InconsistentFields) rather than ignored. Untrusted input should go
    through normalize_rule() first, which drops them.
    """
    if not isinstance(rule.type, RecurrenceType):
        raise InconsistentFields(f"unknown recurrence type: {rule.type!r}")
    if not isinstance(rule.interval, int) or isinstance(rule.interval, bool) or rule.interval < 1:
        raise InvalidInterval(f"interval must be a positive integer, got {rule.interval!r}")

    if rule.days_of_week is not None:
        if rule.type is not RecurrenceType.WEEKLY:
            raise InconsistentFields(f"daysOfWeek set on a {rule.type.value} rule")
        bad = [d for d in rule.days_of_week if not isinstance(d, int) or not 0 <= d <= 6]
        if bad:
            raise InvalidWeekday(f"weekday must be 0-6, got {bad}")

    if rule.day_of_month is not None:
        if rule.type is not RecurrenceType.MONTHLY:
            raise InconsistentFields(f"dayOfMonth set on a {rule.type.value} rule")
        if not isinstance(rule.day_of_month, int) or not 1 <= rule.day_of_month <= 31:
            raise InvalidDayOfMonth(f"dayOfMonth must be 1-31, got {rule.day_of_month!r}")

    if rule.month_of_year is not None:
        if rule.type is not RecurrenceType.YEARLY:
            raise InconsistentFields(f"monthOfYear set on a {rule.type.value} rule")
        if not isinstance(rule.month_of_year, int) or not 1 <= rule.month_of_year <= 12:
            raise InvalidMonthOfYear(f"monthOfYear must be 1-12, got {rule.month_of_year!r}")

    if rule.occurrences is not None:
        if not isinstance(rule.occurrences, int) or rule.occurrences < 1:
            raise InvalidOccurrences(f"occurrences must be a positive integer, got {rule.occurrences!r}")


def is_valid_rule(rule: RecurrenceRule) -> bool:
    try:
        validate_rule(rule)
    except RuleValidationError:
        return False
    return True


# ── Encoding ──────────────────────────────────────────────────

def rule_to_dict(rule: RecurrenceRule) -> dict:
    data: dict[str, Any] = {"type": rule.type.value, "interval": rule.interval}
    if rule.days_of_week is not None:
        data["daysOfWeek"] = list(rule.days_of_week)
    if rule.day_of_month is not None:
        data["dayOfMonth"] = rule.day_of_month
    if rule.month_of_year is not None:
        data["monthOfYear"] = rule.month_of_year
    if rule.end_date is not None:
        data["endDate"] = rule.end_date.isoformat()
    if rule.occurrences is not None:
        data["occurrences"] = rule.occurrences
    return data


def rule_from_dict(data: dict) -> RecurrenceRule:
    """Strict decoding: unknown type or wrongly typed fields raise RuleParseError."""
    if not isinstance(data, dict):
        raise RuleParseError("rule must be a JSON object")
    try:
        rtype = RecurrenceType(data["type"])
    except (KeyError, ValueError):
        raise RuleParseError(f"missing or unknown rule type: {data.get('type')!r}")

    interval = data.get("interval", 1)
    if not isinstance(interval, int) or isinstance(interval, bool):
        raise RuleParseError(f"interval must be an integer, got {interval!r}")

    days = data.get("daysOfWeek")
    if days is not None:
        if not isinstance(days, list) or not all(isinstance(d, int) for d in days):
            raise RuleParseError(f"daysOfWeek must be a list of integers, got {days!r}")
        days = tuple(days)

    end_date = data.get("endDate")
    if end_date is not None:
        try:
            end_date = date.fromisoformat(str(end_date)[:10])
        except ValueError:
            raise RuleParseError(f"endDate is not an ISO date: {end_date!r}")

    for key in ("dayOfMonth", "monthOfYear", "occurrences"):
        value = data.get(key)
        if value is not None and (not isinstance(value, int) or isinstance(value, bool)):
            raise RuleParseError(f"{key} must be an integer, got {value!r}")

    return RecurrenceRule(
        type=rtype,
        interval=interval,
        days_of_week=days,
        day_of_month=data.get("dayOfMonth"),
        month_of_year=data.get("monthOfYear"),
        end_date=end_date,
        occurrences=data.get("occurrences"),
    )


def serialize_rule(rule: RecurrenceRule) -> str:
    validate_rule(rule)
    return json.dumps(rule_to_dict(rule), ensure_ascii=False, separators=(",", ":"))


def deserialize_rule(text: str) -> RecurrenceRule:
    """Decode a stored rule. Raises RuleParseError or RuleValidationError."""
    try:
        data = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise RuleParseError(f"rule is not valid JSON: {e}")
    rule = rule_from_dict(data)
    validate_rule(rule)
    return rule


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_rule(data: Any) -> Optional[RecurrenceRule]:
    """Lenient decoding for untrusted rule JSON (AI model output).

    Interval is clamped to >= 1; fields of other rule types and out-of-range
    values are dropped. Returns None when nothing usable remains.
    """
    if not isinstance(data, dict):
        return None
    try:
        rtype = RecurrenceType(str(data.get("type", "")).lower())
    except ValueError:
        return None

    interval = max(1, _as_int(data.get("interval")) or 1)
    days = None
    day_of_month = None
    month_of_year = None

    if rtype is RecurrenceType.WEEKLY and isinstance(data.get("daysOfWeek"), list):
        valid = sorted({d for d in (_as_int(v) for v in data["daysOfWeek"]) if d is not None and 0 <= d <= 6})
        if valid:
            days = tuple(valid)
    if rtype is RecurrenceType.MONTHLY:
        dom = _as_int(data.get("dayOfMonth"))
        if dom is not None and 1 <= dom <= 31:
            day_of_month = dom
    if rtype is RecurrenceType.YEARLY:
        moy = _as_int(data.get("monthOfYear"))
        if moy is not None and 1 <= moy <= 12:
            month_of_year = moy

    end_date = None
    if data.get("endDate"):
        try:
            end_date = date.fromisoformat(str(data["endDate"])[:10])
        except ValueError:
            logger.debug(f"Dropping unparseable endDate: {data['endDate']!r}")

    occurrences = _as_int(data.get("occurrences"))
    if occurrences is not None and occurrences < 1:
        occurrences = None

    rule = RecurrenceRule(rtype, interval, days, day_of_month, month_of_year, end_date, occurrences)
    if not is_valid_rule(rule):
        logger.warning(f"Recurring rule failed validation after normalization: {data!r}")
        return None
    return rule


# ── Description ───────────────────────────────────────────────

def describe_rule(rule: RecurrenceRule) -> str:
    """Human-readable Chinese description, e.g. "每周的周一、周三"."""
    n = rule.interval
    if rule.type is RecurrenceType.DAILY:
        text = "每天" if n == 1 else f"每{n}天"
    elif rule.type is RecurrenceType.WEEKLY:
        if rule.days_of_week:
            if tuple(sorted(rule.days_of_week)) == (1, 2, 3, 4, 5) and n == 1:
                text = "每个工作日"
            else:
                days = "、".join(WEEKDAY_NAMES[d] for d in sorted(set(rule.days_of_week)))
                text = f"每周的{days}" if n == 1 else f"每{n}周的{days}"
        else:
            text = "每周" if n == 1 else f"每{n}周"
    elif rule.type is RecurrenceType.MONTHLY:
        if rule.day_of_month:
            text = f"每月{rule.day_of_month}日" if n == 1 else f"每{n}个月的{rule.day_of_month}日"
        else:
            text = "每月" if n == 1 else f"每{n}个月"
    else:
        if rule.month_of_year:
            text = f"每年{rule.month_of_year}月" if n == 1 else f"每{n}年的{rule.month_of_year}月"
        else:
            text = "每年" if n == 1 else f"每{n}年"

    if rule.occurrences:
        text += f"，共{rule.occurrences}次"
    if rule.end_date:
        text += f"，直到{rule.end_date.year}年{rule.end_date.month}月{rule.end_date.day}日"
    return text
