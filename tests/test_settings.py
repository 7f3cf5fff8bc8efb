"""Tests for gemrelay/config/settings.py: Settings defaults and env overrides."""

from gemrelay.config.settings import Settings, get_settings


class TestSettings:

    def test_defaults(self, override_settings):
        override_settings()
        s = get_settings()
        assert s.access_key_prefix == "sk-"
        assert s.store_backend == "json"
        assert s.pool_cache_ttl == 300
        assert s.stream_deadline_seconds == 25
        assert s.default_real_stream is True
        assert s.default_fake_stream is False
        assert s.default_disguise is True
        assert s.default_max_tokens == 2048
        assert s.default_temperature == 0.7
        assert s.max_log_count == 300
        assert s.quota_reset_hour_utc == 6
        assert s.log_level == "INFO"

    def test_env_override(self, override_settings):
        override_settings(
            STORE_BACKEND="dynamodb",
            POOL_CACHE_TTL="30",
            DEFAULT_FAKE_STREAM="true",
            RATE_LIMIT_RPM="120",
        )
        s = get_settings()
        assert s.store_backend == "dynamodb"
        assert s.pool_cache_ttl == 30
        assert s.default_fake_stream is True
        assert s.rate_limit_rpm == 120

    def test_fake_stream_delay_in_seconds(self):
        assert Settings(fake_stream_delay_ms=250).fake_stream_delay == 0.25

    def test_cached(self, override_settings):
        override_settings()
        assert get_settings() is get_settings()
