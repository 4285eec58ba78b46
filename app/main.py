"""
HeroToDo task service
Natural-language task entry (AI with deterministic fallback) and recurring task generation
Uses FastAPI for HTTP endpoints
"""
import logging
import time
from typing import List

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .ai_parser import ParseResult, confidence_level, fallback_result, parse_many, parse_task_with_ai
from .auth import CurrentUser, get_current_user, require_admin, require_cron_secret
from .config import local_now, settings
from .database import get_session_factory, init_db
from .models import Task
from .occurrences import MonthEndPolicy, first_occurrence_on_or_after, preview_rule
from .recurrence import RuleParseError, RuleValidationError, rule_from_dict, serialize_rule, validate_rule
from .scheduler import cleanup_expired, generate_all, generate_for_user, generate_upcoming, stats_for_user
from .schemas import (
    BatchParseRequest,
    CleanupRequest,
    CleanupResponse,
    CronResponse,
    GenerateResponse,
    ParseRequest,
    ParseResponse,
    PreviewRequest,
    PreviewResponse,
    QuickAddResponse,
    RecurringStats,
    StatsResponse,
)
from .summary import format_parse_failure, format_recurring_stats, format_task_created

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)

SessionFactory = async_sessionmaker[AsyncSession]


@app.on_event("startup")
async def startup():
    await init_db()
    logger.info(f"{settings.app_name} started (tz={settings.timezone}, window={settings.recurring_window_days}d)")


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"ok": True}


async def _parse(text: str, use_ai: bool):
    now = local_now()
    if use_ai:
        return await parse_task_with_ai(text, now)
    return fallback_result(text, now)


def _parse_response(result: ParseResult) -> ParseResponse:
    return ParseResponse(
        task=result.task.to_dict(),
        source=result.source,
        confidence=result.confidence,
        confidenceLevel=confidence_level(result.confidence),
        summary=format_task_created(result),
    )


@app.post("/api/tasks/parse", response_model=ParseResponse)
async def parse(payload: ParseRequest, user: CurrentUser = Depends(get_current_user)):
    """Parse input without saving anything"""
    result = await _parse(payload.input, payload.useAi)
    logger.info(f"User {user.id} parsed {payload.input[:80]!r} via {result.source}")
    return _parse_response(result)


@app.post("/api/tasks/parse-batch", response_model=List[ParseResponse])
async def parse_batch(payload: BatchParseRequest, user: CurrentUser = Depends(get_current_user)):
    """Parse several lines at once, e.g. a pasted list"""
    now = local_now()
    if payload.useAi:
        results = await parse_many(payload.inputs, now)
    else:
        results = [fallback_result(text, now) for text in payload.inputs]
    logger.info(f"User {user.id} parsed a batch of {len(results)}")
    return [_parse_response(result) for result in results]


@app.post("/api/tasks/quick-add", response_model=QuickAddResponse)
async def quick_add(
    payload: ParseRequest,
    user: CurrentUser = Depends(get_current_user),
    session_factory: SessionFactory = Depends(get_session_factory),
):
    """Parse and save a task; recurring input becomes a template with its first instances"""
    result = await _parse(payload.input, payload.useAi)
    parsed = result.task
    if not parsed.title:
        raise HTTPException(status_code=400, detail=format_parse_failure(payload.input))

    now = local_now()
    if parsed.is_recurring and parsed.due_date is None:
        # A template's due date is its first run; it also anchors the series.
        parsed.due_date = first_occurrence_on_or_after(
            parsed.recurring_rule, now.date(), policy=MonthEndPolicy(settings.month_end_policy)
        )

    task = Task(
        user_id=user.id,
        title=parsed.title,
        description=parsed.description,
        due_date=parsed.due_date,
        due_time=parsed.due_time,
        priority=parsed.priority.value if parsed.priority else None,
        tag_names=list(parsed.tag_names),
        is_recurring=parsed.is_recurring,
        recurring_rule=serialize_rule(parsed.recurring_rule) if parsed.is_recurring else None,
    )
    try:
        async with session_factory() as db:
            db.add(task)
            await db.commit()
            await db.refresh(task)
    except SQLAlchemyError as e:
        logger.error(f"Saving task for user {user.id} failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=format_parse_failure(payload.input))
    logger.info(f"User {user.id} created task #{task.id} '{task.title}' (recurring={task.is_recurring})")

    generated = 0
    if task.is_recurring:
        try:
            instances = await generate_upcoming(
                task, settings.recurring_window_days, now, session_factory
            )
            generated = len(instances)
        except Exception as e:
            # The template is saved; the next generation trigger will catch up.
            logger.error(f"Initial generation for task #{task.id} failed: {e}", exc_info=True)

    return QuickAddResponse(
        taskId=task.id,
        task=parsed.to_dict(),
        source=result.source,
        generatedInstances=generated,
        summary=format_task_created(result),
    )


@app.post("/api/recurrence/preview", response_model=PreviewResponse)
async def recurrence_preview(payload: PreviewRequest, user: CurrentUser = Depends(get_current_user)):
    """Describe a rule and list its next dates"""
    try:
        rule = rule_from_dict(payload.rule.model_dump(exclude_none=True, mode="json"))
        validate_rule(rule)
    except (RuleParseError, RuleValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    preview = preview_rule(
        rule,
        payload.start or local_now().date(),
        payload.count,
        MonthEndPolicy(settings.month_end_policy),
    )
    return PreviewResponse(description=preview.description, dates=preview.dates, count=preview.count)


@app.post("/api/tasks/recurring/generate", response_model=GenerateResponse)
async def generate_recurring(
    user: CurrentUser = Depends(get_current_user),
    session_factory: SessionFactory = Depends(get_session_factory),
):
    count = await generate_for_user(user.id, session_factory=session_factory)
    return GenerateResponse(generatedCount=count, message=f"成功生成 {count} 个周期性任务实例")


@app.post("/api/tasks/recurring/cleanup", response_model=CleanupResponse)
async def cleanup_recurring(
    payload: CleanupRequest,
    admin: CurrentUser = Depends(require_admin),
    session_factory: SessionFactory = Depends(get_session_factory),
):
    deleted = await cleanup_expired(payload.daysPastDue, session_factory=session_factory)
    stats = await stats_for_user(admin.id, session_factory=session_factory)
    logger.info(f"Admin {admin.id} cleaned up {deleted} instances older than {payload.daysPastDue} days")
    return CleanupResponse(
        deletedCount=deleted,
        message=f"成功清理 {deleted} 个过期的周期性任务实例",
        stats=RecurringStats(**stats),
    )


@app.get("/api/tasks/recurring/stats", response_model=StatsResponse)
async def recurring_stats(
    user: CurrentUser = Depends(get_current_user),
    session_factory: SessionFactory = Depends(get_session_factory),
):
    stats = await stats_for_user(user.id, session_factory=session_factory)
    return StatsResponse(**stats, summary=format_recurring_stats(stats))


@app.post("/api/cron/generate-recurring-tasks", response_model=CronResponse)
async def cron_generate(
    _: None = Depends(require_cron_secret),
    session_factory: SessionFactory = Depends(get_session_factory),
):
    """Scheduled trigger: system-wide generation, then cleanup"""
    started = time.monotonic()
    generated = await generate_all(session_factory=session_factory)
    deleted = await cleanup_expired(session_factory=session_factory)
    duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(f"⏰ Cron run: generated {generated}, deleted {deleted} in {duration_ms}ms")
    return CronResponse(generatedCount=generated, deletedCount=deleted, durationMs=duration_ms)
