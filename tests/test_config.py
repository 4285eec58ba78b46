"""Tests for app/config.py — settings and sanitization."""
from datetime import datetime

import pytest
from pydantic import ValidationError

from app.config import Settings, _sanitize_ascii, local_now, settings


class TestSanitizeAscii:
    def test_pure_ascii(self):
        assert _sanitize_ascii("hello") == "hello"

    def test_unicode_stripped(self):
        assert _sanitize_ascii("sk-\u200btest") == "sk-test"

    def test_chinese_stripped(self):
        assert _sanitize_ascii("sk-你好test") == "sk-test"

    def test_whitespace_stripped(self):
        assert _sanitize_ascii("  hello  ") == "hello"

    def test_empty(self):
        assert _sanitize_ascii("") == ""

    def test_all_unicode(self):
        assert _sanitize_ascii("你好世界") == ""


class TestSettings:
    def test_defaults_exist(self):
        assert settings.recurring_window_days > 0
        assert settings.cleanup_days_past_due > 0
        assert settings.ai_parse_timeout_s > 0
        assert settings.month_end_policy in ("clamp", "skip")

    def test_secrets_sanitized(self):
        s = Settings(openai_api_key="sk-\u200babc ", cron_secret="密钥xyz")
        assert s.openai_api_key == "sk-abc"
        assert s.cron_secret == "xyz"

    def test_month_end_policy(self):
        assert Settings(month_end_policy=" Skip ").month_end_policy == "skip"
        with pytest.raises(ValidationError):
            Settings(month_end_policy="round")

    def test_non_positive_timeout_uses_default(self):
        assert Settings(ai_parse_timeout_s=0).ai_parse_timeout_s == 8.0
        assert Settings(ai_parse_timeout_s="2.5").ai_parse_timeout_s == 2.5

    def test_day_counts_positive(self):
        with pytest.raises(ValidationError):
            Settings(recurring_window_days=0)
        with pytest.raises(ValidationError):
            Settings(cleanup_days_past_due=-1)


class TestLocalNow:
    def test_naive(self):
        assert local_now().tzinfo is None
        assert isinstance(local_now(), datetime)
