"""Application settings loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Caller authentication
    access_key_prefix: str = "sk-"
    admin_api_key: str = ""  # Empty = admin API disabled

    # Upstream Gemini API
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    upstream_timeout: float = 60.0
    upstream_connect_timeout: float = 10.0

    # Storage
    store_backend: str = "json"  # "json" | "dynamodb"
    store_path: str = "gemrelay.json"
    dynamodb_credentials_table: str = "gemrelay-credentials"
    dynamodb_access_keys_table: str = "gemrelay-access-keys"
    dynamodb_settings_table: str = "gemrelay-settings"
    dynamodb_logs_table: str = "gemrelay-call-logs"
    aws_region: str = "us-east-1"

    # Credential pool
    pool_cache_ttl: float = 300.0

    # Delivery strategies
    stream_deadline_seconds: float = 25.0
    fake_stream_max_chunks: int = 8
    fake_stream_min_chunk_chars: int = 20
    fake_stream_delay_ms: int = 50
    stream_fallback_text: str = "Sorry, the model returned an empty response. Please try again."

    # Runtime setting defaults (used when the settings store has no value)
    default_real_stream: bool = True
    default_fake_stream: bool = False
    default_disguise: bool = True

    # Request conversion
    default_max_tokens: int = 2048
    default_temperature: float = 0.7
    default_model: str = "gemini-pro"

    # Rate limiting
    rate_limit_rpm: int = 30  # Requests per minute per client IP

    # Logging
    log_level: str = "INFO"
    audit_log_file: str = ""  # Empty = stdout only
    max_log_count: int = 300
    background_queue_size: int = 1000

    # Admin stats: hour (UTC) at which the daily upstream quota window starts
    quota_reset_hour_utc: int = 6

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def fake_stream_delay(self) -> float:
        return self.fake_stream_delay_ms / 1000


@lru_cache
def get_settings() -> Settings:
    return Settings()
