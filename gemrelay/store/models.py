"""Storage record models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Credential:
    credential_id: str
    api_key: str
    is_active: bool = True  # administrator-controlled
    is_valid: bool = True  # health-check-controlled
    request_count: int = 0
    last_used_at: str | None = None
    created_at: str = field(default_factory=utc_now)

    @property
    def eligible(self) -> bool:
        return self.is_active and self.is_valid

    @property
    def key_suffix(self) -> str:
        return self.api_key[-4:]


@dataclass
class AccessKey:
    key_id: str
    secret: str
    is_active: bool = True
    created_at: str = field(default_factory=utc_now)

    @property
    def secret_suffix(self) -> str:
        return self.secret[-4:]


@dataclass
class StreamingConfig:
    real_enabled: bool = True
    fake_enabled: bool = False

    def to_dict(self) -> dict:
        return {"enabled": self.real_enabled, "fake_stream_enabled": self.fake_enabled}

    @classmethod
    def from_dict(cls, data: dict) -> "StreamingConfig":
        return cls(
            real_enabled=bool(data.get("enabled", True)),
            fake_enabled=bool(data.get("fake_stream_enabled", False)),
        )


@dataclass
class RuntimeSettings:
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    disguise_enabled: bool = True


@dataclass
class AttemptRecord:
    """One log entry per upstream credential tried within a request."""

    ip_address: str
    access_key_id: str
    credential_id: str
    model: str
    status_code: int
    duration_ms: float
    is_stream: bool
    error_message: str | None = None
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "ip_address": self.ip_address,
            "access_key_id": self.access_key_id,
            "credential_id": self.credential_id,
            "model": self.model,
            "status_code": self.status_code,
            "duration_ms": self.duration_ms,
            "is_stream": self.is_stream,
            "error_message": self.error_message,
        }
