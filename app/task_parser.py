"""Deterministic task parser for Chinese free-text input.

Used when the AI parser is unavailable or times out, and as the reference
detector for recurring tasks. Stages run in a fixed order; each one removes
what it matched from a working copy of the title so later stages never see it:

    1. recurrence   每天 / 每工作日 / 每周一 / 每月15号 / 每年 / 每2周 ...
    2. priority     紧急 / 重要 / 一般 / 不急, or !高 / @中 / !低
    3. tags         @token / #token
    4. due date     今天 / 明天 / 后天 / 下周 / 下个月 / 周五 / 12月25日 / 2026-01-05
    5. time of day  下午3点 / 晚上8点半 / 15:30

Recurring input keeps its time phrase in the title ("上午9点开始工作"): the
title of a template describes the routine. The time is still extracted.

All functions are pure: "today" comes from the explicit `now` argument.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .recurrence import RecurrenceRule, rule_to_dict

logger = logging.getLogger(__name__)


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


@dataclass
class ParsedTask:
    title: str
    description: Optional[str] = None
    due_date: Optional[date] = None
    due_time: Optional[datetime] = None
    priority: Optional[Priority] = None
    tag_names: List[str] = field(default_factory=list)
    is_recurring: bool = False
    recurring_rule: Optional[RecurrenceRule] = None

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "description": self.description,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "dueTime": self.due_time.isoformat() if self.due_time else None,
            "priority": self.priority.value if self.priority else None,
            "tagNames": list(self.tag_names),
            "isRecurring": self.is_recurring,
            "recurringRule": rule_to_dict(self.recurring_rule) if self.recurring_rule else None,
        }


WEEKDAY_CHARS = {"日": 0, "天": 0, "一": 1, "二": 2, "三": 3, "四": 4, "五": 5, "六": 6}
CN_NUMERALS = {"一": 1, "两": 2, "二": 2, "三": 3, "四": 4, "五": 5,
               "六": 6, "七": 7, "八": 8, "九": 9, "十": 10}

_WEEK = r"(?:周|星期|礼拜)"
_WEEKDAY = r"([一二三四五六日天])"
# 一三五 / 二、四 / 六和日; a digit-like weekday right before 点 is an hour
_WEEKDAY_RUN = r"([一二三四五六日天](?:[、,，和及]?[一二三四五六日](?![点时]))*)"


def _js_weekday(d: date) -> int:
    """0=Sunday .. 6=Saturday."""
    return (d.weekday() + 1) % 7


def _number(token: str) -> int:
    return int(token) if token.isdigit() else CN_NUMERALS[token]


# ── Stage 1: recurrence ───────────────────────────────────────
# Builders return (rule, first due date or None), or None to reject the match.

RecurrenceBuilder = Callable[[re.Match, date], Optional[Tuple[RecurrenceRule, Optional[date]]]]


def _interval_rule(m: re.Match, today: date):
    n = _number(m.group(1))
    unit = m.group(2)
    if n < 1:
        return None
    if unit in ("天", "日"):
        return RecurrenceRule.daily(n), None
    if unit.endswith("月"):
        return RecurrenceRule.monthly(interval=n), None
    if unit == "年":
        return RecurrenceRule.yearly(interval=n), None
    return RecurrenceRule.weekly(interval=n), None


def _monthly_day_rule(m: re.Match, today: date):
    day = int(m.group(1))
    if not 1 <= day <= 31:
        return None
    return RecurrenceRule.monthly(day), None


def _weekday_set_rule(m: re.Match, today: date):
    days = sorted({WEEKDAY_CHARS[c] for c in m.group(1) if c in WEEKDAY_CHARS})
    return RecurrenceRule.weekly(*days), None


def _yearly_rule(m: re.Match, today: date):
    if not m.group(1):
        return RecurrenceRule.yearly(), None
    month = int(m.group(1))
    if not 1 <= month <= 12:
        return None
    first = None
    if m.group(2):
        # 2月29日 waits for the next leap year; an impossible day leaves the date open
        first = _roll_forward(today, month, int(m.group(2)), years=9)
    return RecurrenceRule.yearly(month), first


# Precedence: the longest match wins; equal lengths fall back to list order.
RECURRENCE_PATTERNS: List[Tuple[str, "re.Pattern[str]", RecurrenceBuilder]] = [
    ("workdays", re.compile(r"(?:每个?)?工作日"),
     lambda m, today: (RecurrenceRule.weekly(1, 2, 3, 4, 5), None)),
    ("weekly_day", re.compile(r"每个?" + _WEEK + _WEEKDAY_RUN), _weekday_set_rule),
    ("weekly", re.compile(r"每个?" + _WEEK),
     lambda m, today: (RecurrenceRule.weekly(), None)),
    ("monthly_day", re.compile(r"每个?月\s*(\d{1,2})\s*[号日]"), _monthly_day_rule),
    ("monthly", re.compile(r"每个?月"),
     lambda m, today: (RecurrenceRule.monthly(), None)),
    ("yearly", re.compile(r"每年(?:\s*(\d{1,2})\s*月(?:\s*(\d{1,2})\s*[号日])?)?"), _yearly_rule),
    ("interval", re.compile(r"每隔?\s*(\d{1,3}|[一两二三四五六七八九十])\s*(?:个)?(天|日|周|星期|礼拜|月|年)"),
     _interval_rule),
    ("daily", re.compile(r"每日|每天|(?<![今明后昨每])天天"),
     lambda m, today: (RecurrenceRule.daily(), None)),
]


def _detect_recurrence(text: str, today: date) -> Optional[Tuple[RecurrenceRule, Optional[date], re.Match]]:
    best = None
    for index, (name, pattern, build) in enumerate(RECURRENCE_PATTERNS):
        for m in pattern.finditer(text):
            built = build(m, today)
            if built is None:
                continue
            key = (len(m.group(0)), -index)
            if best is None or key > best[0]:
                best = (key, name, built, m)
            break
    if best is None:
        return None
    _, name, (rule, first), m = best
    logger.debug(f"Recurrence '{name}' matched {m.group(0)!r}: {rule}")
    return rule, first, m


def detect_recurrence(text: str, now: datetime) -> Optional[RecurrenceRule]:
    """Recurrence rule expressed in `text`, or None for one-off input."""
    found = _detect_recurrence(text, now.date())
    return found[0] if found else None


# ── Stage 2: priority ─────────────────────────────────────────
# Single-character keywords need a !/！/@ marker and must stand alone.

_MARK = r"[!！@]"
PRIORITY_PATTERNS: List[Tuple["re.Pattern[str]", Priority]] = [
    (re.compile(_MARK + r"?紧急"), Priority.URGENT),
    (re.compile(_MARK + r"?重要"), Priority.HIGH),
    (re.compile(_MARK + r"高(?!\w)"), Priority.HIGH),
    (re.compile(_MARK + r"中(?!\w)"), Priority.MEDIUM),
    (re.compile(_MARK + r"?一般"), Priority.MEDIUM),
    (re.compile(_MARK + r"低(?!\w)"), Priority.LOW),
    (re.compile(_MARK + r"?不急"), Priority.LOW),
]
PRIORITY_WORDS = frozenset({"紧急", "重要", "高", "中", "一般", "低", "不急"})


# ── Stage 3: tags ─────────────────────────────────────────────

TAG_RE = re.compile(r"[@#＃]([^\s@#＃，,。；;]+)")


def _tag_name(token: str) -> str:
    """A tag ends at whitespace or where a date, time or priority phrase starts.

    `#工作明天开会` tags 工作 and leaves 明天开会 for the later stages.
    """
    end = len(token)
    patterns = [p for p, _, _ in DATE_PATTERNS] + [p for p, _ in PRIORITY_PATTERNS] + [TIME_RE, PERIOD_RE]
    for pattern in patterns:
        m = pattern.search(token, 1)
        if m:
            end = min(end, m.start())
    return token[:end]


# ── Stage 4: due date ─────────────────────────────────────────

def _next_weekday(today: date, weekday: int) -> date:
    days = (weekday - _js_weekday(today) + 7) % 7
    return today + timedelta(days=days or 7)


def _weekday_next_week(today: date, weekday: int) -> date:
    monday = today - timedelta(days=today.weekday()) + timedelta(weeks=1)
    return monday + timedelta(days=(weekday + 6) % 7)


def _roll_forward(today: date, month: int, day: int, years: int = 2) -> Optional[date]:
    """First MM/DD on or after today, looking `years` calendar years ahead."""
    for year in range(today.year, today.year + years):
        try:
            candidate = date(year, month, day)
        except ValueError:
            continue
        if candidate >= today:
            return candidate
    return None


def _absolute_date(m: re.Match, today: date) -> Optional[date]:
    try:
        return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError:
        return None


# (pattern, resolver, strip matched text)
DATE_PATTERNS: List[Tuple["re.Pattern[str]", Callable[[re.Match, date], Optional[date]], bool]] = [
    (re.compile(r"今天|今日"), lambda m, today: today, True),
    (re.compile(r"今晚|今夜"), lambda m, today: today, False),
    (re.compile(r"明天|明日"), lambda m, today: today + timedelta(days=1), True),
    (re.compile(r"明早|明晚"), lambda m, today: today + timedelta(days=1), False),
    (re.compile(r"大后天"), lambda m, today: today + timedelta(days=3), True),
    (re.compile(r"后天|后日"), lambda m, today: today + timedelta(days=2), True),
    (re.compile(r"下个?" + _WEEK + _WEEKDAY),
     lambda m, today: _weekday_next_week(today, WEEKDAY_CHARS[m.group(1)]), True),
    (re.compile(r"下个?" + _WEEK), lambda m, today: today + timedelta(days=7), True),
    (re.compile(r"下个?月"), lambda m, today: today + timedelta(days=30), True),
    (re.compile(_WEEK + _WEEKDAY), lambda m, today: _next_weekday(today, WEEKDAY_CHARS[m.group(1)]), True),
    (re.compile(r"(\d{4})\s*[-/年]\s*(\d{1,2})\s*[-/月]\s*(\d{1,2})\s*[日号]?"), _absolute_date, True),
    (re.compile(r"(\d{1,2})\s*[/月]\s*(\d{1,2})\s*[日号]?"),
     lambda m, today: _roll_forward(today, int(m.group(1)), int(m.group(2))), True),
]


# ── Stage 5: time of day ──────────────────────────────────────

TIME_RE = re.compile(r"(\d{1,2})\s*(?:点钟?|[:：时])\s*(?:(半)|(\d{1,2})\s*分?)?")
PERIOD_RE = re.compile(r"上午|下午|早上|早晨|凌晨|中午|傍晚|晚上|今晚|今夜|明早|明晚")
PM_PERIODS = frozenset({"下午", "傍晚", "晚上", "今晚", "今夜", "明晚"})
AM_PERIODS = frozenset({"上午", "早上", "早晨", "凌晨", "明早"})


def to_24_hour(hour: int, period: Optional[str]) -> int:
    """Apply a Chinese period word to a clock hour.

    中午 always means 12:00, whatever hour was written.
    """
    if period == "中午":
        return 12
    if period in PM_PERIODS and hour < 12:
        return hour + 12
    if period in AM_PERIODS and hour == 12:
        return 0
    return hour


def _extract_time(text: str) -> Optional[Tuple[int, int, re.Match]]:
    for m in TIME_RE.finditer(text):
        hour = int(m.group(1))
        minute = 30 if m.group(2) else int(m.group(3) or 0)
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            continue
        period = PERIOD_RE.search(text)
        return to_24_hour(hour, period.group(0) if period else None), minute, m
    return None


# ── Pipeline ──────────────────────────────────────────────────

def _cut(text: str, m: re.Match) -> str:
    return text[:m.start()] + " " + text[m.end():]


def _clean(text: str) -> str:
    text = re.sub(r"\s+", " ", text).strip()
    return re.sub(r"^的\s*", "", text)


def parse_task(text: str, now: datetime) -> ParsedTask:
    """Parse one raw input string. Never raises; empty input passes through."""
    original = (text or "").strip()
    if not original:
        return ParsedTask(title="")

    today = now.date()
    title = original
    task = ParsedTask(title=original)

    found = _detect_recurrence(title, today)
    if found:
        rule, first_due, m = found
        task.is_recurring = True
        task.recurring_rule = rule
        task.due_date = first_due
        title = _clean(_cut(title, m))

    for pattern, priority in PRIORITY_PATTERNS:
        m = pattern.search(title)
        if m:
            task.priority = priority
            title = _cut(title, m)
            break

    kept, pos = [], 0
    for m in TAG_RE.finditer(title):
        name = _tag_name(m.group(1))
        if name not in PRIORITY_WORDS and name not in task.tag_names:
            task.tag_names.append(name)
        kept.append(title[pos:m.start()])
        pos = m.start(1) + len(name)
    title = " ".join(kept + [title[pos:]])

    if task.due_date is None:
        for pattern, resolve, strip in DATE_PATTERNS:
            m = pattern.search(title)
            if not m:
                continue
            resolved = resolve(m, today)
            if resolved is None:
                continue
            task.due_date = resolved
            if strip:
                title = _cut(title, m)
            break

    timed = _extract_time(title)
    if timed:
        hour, minute, m = timed
        task.due_time = datetime.combine(today, time(hour, minute))
        if not task.is_recurring:
            title = PERIOD_RE.sub(" ", _cut(title, m))

    task.title = _clean(title) or original
    return task
