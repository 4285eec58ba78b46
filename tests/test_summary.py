"""Tests for app/summary.py — confirmation texts."""
from datetime import datetime

from app.ai_parser import ParseResult, fallback_result
from app.recurrence import RecurrenceRule
from app.summary import format_parse_failure, format_recurring_stats, format_task_created
from app.task_parser import ParsedTask, Priority

NOW = datetime(2026, 1, 5, 9, 0)


class TestFormatTaskCreated:
    def test_recurring_fallback(self):
        text = format_task_created(fallback_result("每周一下午3点团队会议 !高 #工作", NOW))
        assert "📝 任务标题：下午3点团队会议" in text
        assert "⏰ 时间：15:00" in text
        assert "⭐ 优先级：🟡 重要" in text
        assert "🏷️ 标签：工作" in text
        assert "🔄 重复：每周的周一" in text
        assert "⚠️" in text

    def test_ai_result_has_no_warning(self):
        task = ParsedTask(
            title="交房租",
            due_date=datetime(2026, 1, 15).date(),
            priority=Priority.MEDIUM,
            is_recurring=True,
            recurring_rule=RecurrenceRule.monthly(15),
        )
        text = format_task_created(ParseResult(task, "ai", 0.9))
        assert text.startswith("✅ 任务创建成功！")
        assert "📅 截止日期：2026年1月15日" in text
        assert "⭐ 优先级：🔵 一般" in text
        assert "🔄 重复：每月15日" in text
        assert "⚠️" not in text

    def test_minimal(self):
        text = format_task_created(ParseResult(ParsedTask(title="买牛奶"), "ai", 0.9))
        assert text == "✅ 任务创建成功！\n\n📝 任务标题：买牛奶"


class TestFormatParseFailure:
    def test_echoes_raw_input(self):
        text = format_parse_failure("  买牛奶 \n")
        assert "「买牛奶」" in text
        assert "抱歉" in text


class TestFormatRecurringStats:
    def test_counts(self):
        text = format_recurring_stats({
            "totalTemplates": 2, "totalInstances": 10, "upcomingInstances": 6, "overdueInstances": 1,
        })
        assert "周期任务：2" in text
        assert "已生成实例：10" in text
        assert "即将到期：6" in text
        assert "已过期未完成：1" in text

    def test_missing_keys(self):
        assert "周期任务：0" in format_recurring_stats({})
