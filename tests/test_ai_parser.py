"""Tests for app/ai_parser.py — model adapter with deterministic fallback."""
import asyncio
import json
from datetime import date, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from openai import OpenAIError

from app.ai_parser import (
    AI_CONFIDENCE,
    FALLBACK_CONFIDENCE,
    AIAdapterFailure,
    ParseResult,
    confidence_level,
    is_reliable,
    normalize_ai_task,
    parse_many,
    parse_task_with_ai,
)
from app.config import settings
from app.recurrence import RecurrenceRule
from app.task_parser import ParsedTask, Priority, parse_task

NOW = datetime(2026, 1, 5, 9, 0)


def _response(content):
    message = SimpleNamespace(content=content if isinstance(content, str) else json.dumps(content, ensure_ascii=False))
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(*results):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=list(results))
    return client


class TestNormalizeAiTask:
    def test_full_task(self):
        task = normalize_ai_task({
            "title": "团队会议",
            "description": "  讨论Q1计划 ",
            "dueDate": "2026-01-06",
            "dueTime": "2026-01-06T15:00:00+08:00",
            "priority": "high",
            "tagNames": ["#工作", "工作", "会议"],
            "isRecurring": False,
        }, "明天下午3点团队会议")
        assert task.title == "团队会议"
        assert task.description == "讨论Q1计划"
        assert task.due_date == date(2026, 1, 6)
        assert task.due_time == datetime(2026, 1, 6, 15, 0)
        assert task.priority == Priority.HIGH
        assert task.tag_names == ["工作", "会议"]
        assert task.is_recurring is False

    def test_blank_title_uses_raw_input(self):
        assert normalize_ai_task({"title": "  "}, " 买牛奶 ").title == "买牛奶"

    def test_unknown_priority_dropped(self):
        assert normalize_ai_task({"title": "x", "priority": "CRITICAL"}, "x").priority is None

    def test_tag_ids_accepted(self):
        assert normalize_ai_task({"title": "x", "tagIds": ["生活"]}, "x").tag_names == ["生活"]

    def test_bad_dates_dropped(self):
        task = normalize_ai_task({"title": "x", "dueDate": "tomorrow", "dueTime": "3pm"}, "x")
        assert task.due_date is None
        assert task.due_time is None

    def test_recurring_rule_normalized(self):
        task = normalize_ai_task({
            "title": "跑步",
            "isRecurring": True,
            "recurringRule": {"type": "daily", "interval": 1, "dayOfMonth": 3},
        }, "每天跑步")
        assert task.is_recurring is True
        assert task.recurring_rule == RecurrenceRule.daily()

    def test_unusable_rule_means_one_off(self):
        task = normalize_ai_task({"title": "x", "isRecurring": True, "recurringRule": {"type": "hourly"}}, "x")
        assert task.is_recurring is False
        assert task.recurring_rule is None

    def test_not_an_object(self):
        with pytest.raises(AIAdapterFailure):
            normalize_ai_task([1, 2], "x")


class TestParseTaskWithAi:
    @pytest.mark.asyncio
    async def test_success(self):
        client = _client(_response({"title": "开会", "dueDate": "2026-01-06", "priority": "URGENT"}))
        result = await parse_task_with_ai("明天开会 紧急", NOW, client=client, model="test-model")
        assert result.source == "ai"
        assert result.confidence == AI_CONFIDENCE
        assert result.task.title == "开会"
        assert result.task.priority == Priority.URGENT

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "2026-01-05 09:00:00" in kwargs["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_missed_recurrence_is_detected(self):
        client = _client(_response({"title": "开例会", "isRecurring": False}))
        result = await parse_task_with_ai("每周一开例会", NOW, client=client)
        assert result.source == "ai"
        assert result.task.is_recurring is True
        assert result.task.recurring_rule == RecurrenceRule.weekly(1)

    @pytest.mark.asyncio
    async def test_invalid_json_falls_back(self):
        client = _client(_response("当然可以！这是解析结果"))
        result = await parse_task_with_ai("明天下午3点开会", NOW, client=client)
        assert result.source == "fallback"
        assert result.confidence == FALLBACK_CONFIDENCE
        assert result.task == parse_task("明天下午3点开会", NOW)

    @pytest.mark.asyncio
    async def test_non_object_json_falls_back(self):
        result = await parse_task_with_ai("买牛奶", NOW, client=_client(_response("[1, 2]")))
        assert result.source == "fallback"
        assert result.task.title == "买牛奶"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        SimpleNamespace(choices=[]),
        SimpleNamespace(choices=None),
        SimpleNamespace(choices=[SimpleNamespace(message=None)]),
        _response(""),
    ])
    async def test_malformed_response_falls_back(self, response):
        result = await parse_task_with_ai("明天开会", NOW, client=_client(response))
        assert result.source == "fallback"
        assert result.task == parse_task("明天开会", NOW)

    @pytest.mark.asyncio
    async def test_api_error_falls_back(self):
        result = await parse_task_with_ai("每月15号交房租", NOW, client=_client(OpenAIError("boom")))
        assert result.source == "fallback"
        assert result.task.recurring_rule == RecurrenceRule.monthly(15)

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self):
        async def slow(**kwargs):
            await asyncio.sleep(1)

        client = MagicMock()
        client.chat.completions.create = slow
        result = await parse_task_with_ai("明天开会", NOW, client=client, timeout=0.01)
        assert result.source == "fallback"
        assert result.task.title == "开会"

    @pytest.mark.asyncio
    async def test_no_api_key_skips_model(self, monkeypatch):
        monkeypatch.setattr(settings, "openai_api_key", "")
        with patch("app.ai_parser._get_client") as get_client:
            result = await parse_task_with_ai("明天开会", NOW)
        get_client.assert_not_called()
        assert result.source == "fallback"

    @pytest.mark.asyncio
    async def test_empty_input(self):
        client = _client()
        result = await parse_task_with_ai("  ", NOW, client=client)
        assert result.task.title == ""
        assert result.confidence == 0.0
        client.chat.completions.create.assert_not_called()


class TestParseMany:
    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_low_confidence_fallback(self):
        client = _client(_response({"title": "买牛奶"}), RuntimeError("connection reset"))
        results = await parse_many(["买牛奶", "明天开会"], NOW, client=client)
        assert [r.source for r in results] == ["ai", "fallback"]
        assert results[1].confidence == 0.1
        assert results[1].task.title == "开会"


class TestConfidence:
    def test_is_reliable(self):
        assert is_reliable(ParseResult(ParsedTask(title="开会"), "ai", 0.9)) is True
        assert is_reliable(ParseResult(ParsedTask(title="开会"), "fallback", 0.9)) is False
        assert is_reliable(ParseResult(ParsedTask(title="开会"), "ai", 0.4)) is False
        assert is_reliable(ParseResult(ParsedTask(title=" "), "ai", 0.9)) is False

    def test_levels(self):
        assert confidence_level(0.9) == "高"
        assert confidence_level(0.6) == "中"
        assert confidence_level(0.4) == "低"
        assert confidence_level(0.1) == "极低"
