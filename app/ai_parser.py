"""AI task parser: OpenAI-compatible model with deterministic fallback.

The model gets a Chinese system prompt describing the task JSON shape. Any
failure (no API key, network error, timeout, malformed JSON) falls back to
task_parser.parse_task and marks the result's provenance as "fallback" so
callers can ask the user to confirm.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, List, Literal, Optional

from openai import AsyncOpenAI, OpenAIError

from .config import settings
from .recurrence import normalize_rule
from .task_parser import ParsedTask, Priority, detect_recurrence, parse_task

logger = logging.getLogger(__name__)

AI_CONFIDENCE = 0.9
FALLBACK_CONFIDENCE = 0.3

PARSE_PROMPT = """你是一个专业的任务解析助手。将用户的自然语言输入解析为结构化的任务数据，支持一次性任务和周期性任务。
当前本地时间：{current_datetime}

请严格按照以下JSON格式返回，不要添加任何其他内容：
{
  "title": "任务标题（移除时间、标签、优先级、周期性信息后的核心内容）",
  "description": "任务详细描述，没有则为null",
  "dueDate": "2026-01-15",
  "dueTime": "2026-01-15T15:00:00",
  "priority": "HIGH",
  "tagNames": ["工作"],
  "isRecurring": false,
  "recurringRule": {"type": "weekly", "interval": 1, "daysOfWeek": [1]}
}

规则：
1. 周期性任务优先识别：包含"每日"、"每天"、"天天"、"每工作日"、"每周"、"每月"、"每年"等关键词必须 isRecurring=true
   - 每天 → {"type": "daily", "interval": 1}；每N天 → interval=N
   - 每周X → {"type": "weekly", "interval": 1, "daysOfWeek": [X]}（周日=0，周一=1 … 周六=6）
   - 每工作日 → {"type": "weekly", "interval": 1, "daysOfWeek": [1,2,3,4,5]}
   - 每月X号 → {"type": "monthly", "interval": 1, "dayOfMonth": X}
   - 每年 → {"type": "yearly", "interval": 1}，指定月份时加 "monthOfYear"
   - 只包含与 type 对应的字段；非周期性任务不要返回 recurringRule
2. 时间：今天、明天、后天、12月25日、下午3点、15:30；周期性任务的 dueDate/dueTime 为第一次执行时间
3. 优先级：紧急→URGENT，重要/高→HIGH，中/一般→MEDIUM，低/不急→LOW；没有则为null
4. 标签：#标签 或 @标签，没有则返回[]

IMPORTANT: Always respond with valid JSON only. No markdown, no code blocks."""


class AIAdapterFailure(Exception):
    """The model call failed or returned something unusable."""


@dataclass
class ParseResult:
    task: ParsedTask
    source: Literal["ai", "fallback"]
    confidence: float


def _get_client() -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.ai_parse_timeout_s,
    )


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError:
        try:
            return date.fromisoformat(str(value)[:10])
        except ValueError:
            return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    # Stored as local wall-clock time
    return parsed.replace(tzinfo=None)


def normalize_ai_task(data: Any, raw: str) -> ParsedTask:
    """Turn model JSON into a ParsedTask. Raises AIAdapterFailure if unusable."""
    if not isinstance(data, dict):
        raise AIAdapterFailure(f"model returned {type(data).__name__}, expected object")

    title = str(data.get("title") or "").strip() or raw.strip()
    try:
        priority = Priority(str(data.get("priority")).upper()) if data.get("priority") else None
    except ValueError:
        priority = None

    tags = data.get("tagNames", data.get("tagIds", []))
    tag_names: List[str] = []
    if isinstance(tags, list):
        for tag in tags:
            tag = str(tag).strip().lstrip("#@")
            if tag and tag not in tag_names:
                tag_names.append(tag)

    task = ParsedTask(
        title=title,
        description=(str(data["description"]).strip() or None) if data.get("description") else None,
        due_date=_parse_date(data.get("dueDate")),
        due_time=_parse_datetime(data.get("dueTime")),
        priority=priority,
        tag_names=tag_names,
    )

    if data.get("isRecurring") is True:
        rule = normalize_rule(data.get("recurringRule"))
        if rule:
            task.is_recurring = True
            task.recurring_rule = rule
        else:
            logger.warning(f"Invalid recurring rule from model, treating as one-off: {data.get('recurringRule')!r}")
    return task


async def _call_model(text: str, now: datetime, client: AsyncOpenAI, model: str) -> dict:
    system_prompt = PARSE_PROMPT.replace("{current_datetime}", now.strftime("%Y-%m-%d %H:%M:%S (%A)"))
    hint = "包含周期性关键词，必须设置isRecurring=true" if detect_recurrence(text, now) else "看起来是一次性任务"

    response = await client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": f'请解析以下任务输入：\n\n"{text}"\n\n提示：这个输入{hint}。'},
        ],
        response_format={"type": "json_object"},
        temperature=0.3,
    )
    try:
        raw = (response.choices[0].message.content or "").strip()
    except (IndexError, AttributeError, TypeError) as e:
        raise AIAdapterFailure(f"malformed model response: {e}") from e
    if not raw:
        raise AIAdapterFailure("model returned no content")
    logger.info(f"AI parse raw: {raw[:200]}")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise AIAdapterFailure(f"model returned invalid JSON: {e}") from e


def fallback_result(text: str, now: datetime) -> ParseResult:
    task = parse_task(text, now)
    return ParseResult(task=task, source="fallback", confidence=FALLBACK_CONFIDENCE if task.title else 0.0)


async def parse_task_with_ai(
    text: str,
    now: datetime,
    client: Optional[AsyncOpenAI] = None,
    model: Optional[str] = None,
    timeout: Optional[float] = None,
) -> ParseResult:
    """Parse `text` with the model; fall back to the deterministic parser on any failure."""
    if not (text or "").strip():
        return ParseResult(task=ParsedTask(title=""), source="fallback", confidence=0.0)

    if client is None:
        if not settings.openai_api_key:
            logger.info("No API key configured, using deterministic parser")
            return fallback_result(text, now)
        client = _get_client()

    try:
        data = await asyncio.wait_for(
            _call_model(text, now, client, model or settings.parse_model),
            timeout=timeout or settings.ai_parse_timeout_s,
        )
        task = normalize_ai_task(data, text)
    except asyncio.TimeoutError:
        logger.warning(f"AI parse timed out for {text[:80]!r}, falling back")
        return fallback_result(text, now)
    except (OpenAIError, AIAdapterFailure) as e:
        logger.warning(f"AI parse failed for {text[:80]!r}: {type(e).__name__}: {e}, falling back")
        return fallback_result(text, now)

    if not task.is_recurring:
        rule = detect_recurrence(text, now)
        if rule:
            logger.info(f"Model missed recurrence in {text[:80]!r}, using detected rule {rule}")
            task.is_recurring = True
            task.recurring_rule = rule

    return ParseResult(task=task, source="ai", confidence=AI_CONFIDENCE)


async def parse_many(texts: List[str], now: datetime, **kwargs) -> List[ParseResult]:
    """Parse several inputs concurrently; a failed entry becomes a fallback result."""
    results = await asyncio.gather(
        *(parse_task_with_ai(text, now, **kwargs) for text in texts),
        return_exceptions=True,
    )
    parsed = []
    for text, result in zip(texts, results):
        if isinstance(result, BaseException):
            logger.error(f"Batch parse failed for {text[:80]!r}: {result}")
            result = ParseResult(task=parse_task(text, now), source="fallback", confidence=0.1)
        parsed.append(result)
    return parsed


def is_reliable(result: ParseResult, min_confidence: float = 0.5) -> bool:
    return (
        result.source == "ai"
        and result.confidence >= min_confidence
        and bool(result.task.title.strip())
    )


def confidence_level(confidence: float) -> str:
    if confidence >= 0.8:
        return "高"
    if confidence >= 0.6:
        return "中"
    if confidence >= 0.4:
        return "低"
    return "极低"
