"""Recurring task scheduler: materializes template occurrences as task rows.

Generation is triggered externally (a user opening the app, the cron
endpoint). Two triggers may race on the same template; that is harmless
because every instance write is keyed on (template, due date), checked
before insert and enforced by a unique constraint.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from .config import local_now, settings
from .database import async_session_factory
from .models import Task
from .occurrences import MonthEndPolicy, next_occurrences
from .recurrence import RecurrenceRule, RuleParseError, RuleValidationError, deserialize_rule

logger = logging.getLogger(__name__)


class SchedulerWriteFailure(Exception):
    """A single instance row could not be written."""


@dataclass
class _Template:
    """Plain copy of the template fields generation needs."""
    id: int
    user_id: str
    title: str
    description: Optional[str]
    priority: Optional[str]
    tag_names: List[str] = field(default_factory=list)
    due_date: Optional[date] = None
    due_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    rule_text: Optional[str] = None

    @classmethod
    def of(cls, task: Task) -> "_Template":
        return cls(
            id=task.id,
            user_id=task.user_id,
            title=task.title,
            description=task.description,
            priority=task.priority,
            tag_names=list(task.tag_names or []),
            due_date=task.due_date,
            due_time=task.due_time,
            created_at=task.created_at,
            rule_text=task.recurring_rule,
        )

    @property
    def anchor(self) -> Optional[date]:
        if self.due_date:
            return self.due_date
        return self.created_at.date() if self.created_at else None


def _active_templates():
    return select(Task).where(
        Task.is_recurring.is_(True),
        Task.is_completed.is_(False),
        Task.original_task_id.is_(None),
        Task.recurring_rule.is_not(None),
    )


def _month_end_policy() -> MonthEndPolicy:
    return MonthEndPolicy(settings.month_end_policy)


def _non_negative(name: str, value: Optional[int], default: int) -> int:
    if value is None:
        return default
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value


async def _existing_dates(session_factory: async_sessionmaker, template_id: int,
                          dates: List[date]) -> set:
    async with session_factory() as db:
        result = await db.execute(
            select(Task.due_date).where(
                Task.original_task_id == template_id,
                Task.due_date.in_(dates),
            )
        )
        return set(result.scalars().all())


def _build_instance(template: _Template, due: date) -> Task:
    due_time = None
    if template.due_time:
        # Only the date part moves; time of day is the template's.
        due_time = datetime.combine(due, template.due_time.time())
    return Task(
        user_id=template.user_id,
        title=template.title,
        description=template.description,
        due_date=due,
        due_time=due_time,
        priority=template.priority,
        tag_names=list(template.tag_names),
        is_completed=False,
        is_recurring=False,
        recurring_rule=None,
        original_task_id=template.id,
    )


async def _write_instance(session_factory: async_sessionmaker, instance: Task) -> bool:
    """Insert one instance in its own transaction.

    Returns False when the (template, date) pair already exists.
    Raises SchedulerWriteFailure on any other database error.
    """
    async with session_factory() as db:
        db.add(instance)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            return False
        except SQLAlchemyError as e:
            await db.rollback()
            raise SchedulerWriteFailure(str(e)) from e
    return True


async def generate_upcoming(
    template: Task,
    window_days: int,
    now: datetime,
    session_factory: async_sessionmaker = async_session_factory,
) -> List[Task]:
    """Create missing instances of `template` due within `window_days` after `now`.

    Idempotent: dates that already have an instance are skipped, and a
    concurrent insert of the same date loses quietly on the unique constraint.
    Raises RuleParseError / RuleValidationError if the stored rule is broken.
    """
    if window_days < 0:
        raise ValueError(f"window_days must be >= 0, got {window_days}")
    tpl = _Template.of(template)
    rule: RecurrenceRule = deserialize_rule(tpl.rule_text)

    today = now.date()
    dates = list(next_occurrences(
        rule,
        after=today,
        max_date=today + timedelta(days=window_days),
        anchor=tpl.anchor,
        policy=_month_end_policy(),
    ))
    if not dates:
        return []

    existing = await _existing_dates(session_factory, tpl.id, dates)
    created: List[Task] = []
    for due in dates:
        if due in existing:
            continue
        instance = _build_instance(tpl, due)
        try:
            if await _write_instance(session_factory, instance):
                created.append(instance)
            else:
                logger.info(f"Instance of task #{tpl.id} on {due} already exists, skipped")
        except SchedulerWriteFailure as e:
            logger.error(f"Failed to write instance of task #{tpl.id} on {due}: {e}")

    if created:
        logger.info(f"📅 Task #{tpl.id} '{tpl.title}': generated {len(created)} instances")
    return created


async def _generate_for_templates(templates: List[Task], window_days: int, now: datetime,
                                  session_factory: async_sessionmaker) -> int:
    total = 0
    for template in templates:
        try:
            created = await generate_upcoming(template, window_days, now, session_factory)
            total += len(created)
        except (RuleParseError, RuleValidationError) as e:
            logger.warning(f"Task #{template.id} has an invalid recurring rule, skipped: {e}")
        except Exception as e:
            logger.error(f"Generating instances for task #{template.id} failed: {e}", exc_info=True)
    return total


async def generate_for_user(
    user_id: str,
    window_days: Optional[int] = None,
    now: Optional[datetime] = None,
    session_factory: async_sessionmaker = async_session_factory,
) -> int:
    """Generate instances for every active template of one user.

    Per-template failures are logged and skipped; only a failure to load the
    templates at all propagates.
    """
    window_days = _non_negative("window_days", window_days, settings.recurring_window_days)
    now = now or local_now()

    async with session_factory() as db:
        result = await db.execute(_active_templates().where(Task.user_id == user_id))
        templates = list(result.scalars().all())

    total = await _generate_for_templates(templates, window_days, now, session_factory)
    logger.info(f"👤 User {user_id}: generated {total} instances from {len(templates)} templates")
    return total


async def generate_all(
    window_days: Optional[int] = None,
    now: Optional[datetime] = None,
    session_factory: async_sessionmaker = async_session_factory,
) -> int:
    """System-wide batch: generate for every user owning an active template."""
    window_days = _non_negative("window_days", window_days, settings.recurring_window_days)
    now = now or local_now()

    async with session_factory() as db:
        result = await db.execute(
            _active_templates().with_only_columns(Task.user_id).distinct()
        )
        user_ids = list(result.scalars().all())

    total = 0
    for user_id in user_ids:
        try:
            total += await generate_for_user(user_id, window_days, now, session_factory)
        except Exception as e:
            logger.error(f"Recurring generation for user {user_id} failed: {e}", exc_info=True)

    logger.info(f"✅ Generated {total} recurring instances for {len(user_ids)} users")
    return total


async def cleanup_expired(
    days_past_due: Optional[int] = None,
    now: Optional[datetime] = None,
    session_factory: async_sessionmaker = async_session_factory,
) -> int:
    """Delete unfinished generated instances overdue by more than `days_past_due` days.

    Templates and completed instances are never touched.
    """
    days_past_due = _non_negative("days_past_due", days_past_due, settings.cleanup_days_past_due)
    now = now or local_now()
    cutoff = now.date() - timedelta(days=days_past_due)

    async with session_factory() as db:
        result = await db.execute(
            delete(Task).where(
                Task.original_task_id.is_not(None),
                Task.is_completed.is_(False),
                Task.due_date < cutoff,
            )
        )
        await db.commit()

    deleted = result.rowcount or 0
    logger.info(f"🧹 Removed {deleted} expired recurring instances (due before {cutoff})")
    return deleted


async def stats_for_user(
    user_id: str,
    now: Optional[datetime] = None,
    session_factory: async_sessionmaker = async_session_factory,
) -> dict:
    """Template and instance counts for one user. Read only."""
    today = (now or local_now()).date()
    instance = Task.original_task_id.is_not(None)
    open_instance = (instance, Task.is_completed.is_(False))
    queries = {
        "totalTemplates": (
            Task.is_recurring.is_(True), Task.original_task_id.is_(None), Task.is_completed.is_(False),
        ),
        "totalInstances": (instance,),
        "upcomingInstances": (*open_instance, Task.due_date > today),
        "overdueInstances": (*open_instance, Task.due_date < today),
    }

    stats = {}
    async with session_factory() as db:
        for key, conditions in queries.items():
            result = await db.execute(
                select(func.count()).select_from(Task).where(Task.user_id == user_id, *conditions)
            )
            stats[key] = result.scalar_one()
    return stats
