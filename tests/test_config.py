"""Tests for engine configuration (pydantic-settings)."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from wavefront.config import Settings, get_settings


class TestSettingsDefaults:
    def test_defaults(self, monkeypatch):
        """Defaults are usable without any environment."""
        for name in ("MAX_CONCURRENCY", "TTL_SECONDS", "SUBTASK_TIMEOUT"):
            monkeypatch.delenv(name, raising=False)
        s = Settings()
        assert s.ttl_seconds == 3600
        assert s.max_cache_entries == 10_000
        assert s.max_concurrency == 5
        assert s.subtask_timeout == 30.0
        assert s.working_weight >= s.short_term_weight >= s.long_term_weight

    def test_env_override(self, monkeypatch):
        """Environment variables override defaults."""
        monkeypatch.setenv("MAX_CONCURRENCY", "9")
        assert Settings().max_concurrency == 9

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()


class TestFromOptions:
    def test_camel_case_options(self):
        """Caller option maps may use camelCase names."""
        s = Settings.from_options(
            {"ttlSeconds": 5, "maxEntries": 3, "workingMaxSize": 2, "maxConcurrency": 7}
        )
        assert s.ttl_seconds == 5
        assert s.max_cache_entries == 3
        assert s.working_max_size == 2
        assert s.max_concurrency == 7

    def test_snake_case_options(self):
        s = Settings.from_options({"short_term_max_size": 11})
        assert s.short_term_max_size == 11

    def test_unknown_options_ignored(self):
        s = Settings.from_options({"notASetting": True})
        assert not hasattr(s, "notASetting")

    def test_none_gives_defaults(self):
        assert Settings.from_options(None).cache_lock_stripes == 16


class TestValidation:
    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValidationError):
            Settings(ttl_seconds=0)

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValidationError):
            Settings(max_concurrency=0)

    def test_rejects_increasing_tier_weights(self):
        """Colder tiers may never outrank Working."""
        with pytest.raises(ValidationError, match="non-increasing"):
            Settings(working_weight=0.5, short_term_weight=0.9, long_term_weight=0.1)
