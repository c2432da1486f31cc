"""Runtime configuration, loaded once at startup and passed explicitly."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from orpheus.orchestrator.model_catalog import BACKEND_PROVIDERS, get_model

SUPPORTED_LOG_LEVELS = ("debug", "info", "warning", "error")
REDACTED = "[REDACTED]"


@dataclass(slots=True)
class RetrySettings:
    """Per-backend retry policy used to build execution plans."""

    attempts: int = 3
    delay_seconds: float = 1.0
    call_timeout_seconds: float | None = None


@dataclass(slots=True)
class PlannerSettings:
    """Task routing and batch scheduling settings."""

    default_backend: str = "sonnet"
    parallel_execution: bool = False


@dataclass(slots=True)
class ProviderSettings:
    """Credentials and request shaping for provider backends."""

    openai_api_key: str | None = None
    anthropic_api_key: str | None = None
    google_api_key: str | None = None
    openai_model: str = field(default_factory=lambda: get_model("openai", "flagship"))
    anthropic_model: str = field(default_factory=lambda: get_model("anthropic", "execution"))
    gemini_model: str = field(default_factory=lambda: get_model("google", "fast"))
    max_tokens: int = 4_096
    temperature: float = 0.7
    request_timeout_seconds: float = 120.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path("orpheus.db")
    log_level: str = "info"
    sqlite_busy_timeout_ms: int = 5_000
    retry: RetrySettings = field(default_factory=RetrySettings)
    planner: PlannerSettings = field(default_factory=PlannerSettings)
    providers: ProviderSettings = field(default_factory=ProviderSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local use."""

        return cls(
            db_path=db_path or Path(os.getenv("ORPHEUS_MEMORY_PATH", "orpheus.db")),
            log_level=os.getenv("ORPHEUS_LOG_LEVEL", "info").strip().lower(),
            sqlite_busy_timeout_ms=int(os.getenv("ORPHEUS_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            retry=RetrySettings(
                attempts=int(os.getenv("ORPHEUS_RETRY_ATTEMPTS", "3")),
                delay_seconds=float(os.getenv("ORPHEUS_RETRY_DELAY_SECONDS", "1.0")),
                call_timeout_seconds=_env_optional_float("ORPHEUS_CALL_TIMEOUT_SECONDS"),
            ),
            planner=PlannerSettings(
                default_backend=os.getenv("ORPHEUS_DEFAULT_BACKEND", "sonnet").strip().lower(),
                parallel_execution=_env_bool("ORPHEUS_PARALLEL_EXECUTION", default=False),
            ),
            providers=ProviderSettings(
                openai_api_key=_env_secret("OPENAI_API_KEY"),
                anthropic_api_key=_env_secret("ANTHROPIC_API_KEY"),
                google_api_key=_env_secret("GOOGLE_AI_API_KEY"),
                openai_model=os.getenv("ORPHEUS_OPENAI_MODEL", get_model("openai", "flagship")),
                anthropic_model=os.getenv(
                    "ORPHEUS_ANTHROPIC_MODEL",
                    get_model("anthropic", "execution"),
                ),
                gemini_model=os.getenv("ORPHEUS_GEMINI_MODEL", get_model("google", "fast")),
                max_tokens=int(os.getenv("ORPHEUS_MAX_TOKENS", "4096")),
                temperature=float(os.getenv("ORPHEUS_TEMPERATURE", "0.7")),
                request_timeout_seconds=float(
                    os.getenv("ORPHEUS_REQUEST_TIMEOUT_SECONDS", "120.0"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error naming the offending variable."""

        self.validate_log_level()
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("ORPHEUS_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.retry.attempts < 1:
            raise ValueError("ORPHEUS_RETRY_ATTEMPTS must be >= 1.")
        if self.retry.delay_seconds < 0:
            raise ValueError("ORPHEUS_RETRY_DELAY_SECONDS must be >= 0.")
        if self.retry.call_timeout_seconds is not None and self.retry.call_timeout_seconds <= 0:
            raise ValueError("ORPHEUS_CALL_TIMEOUT_SECONDS must be > 0 when set.")
        if self.planner.default_backend not in BACKEND_PROVIDERS:
            raise ValueError(
                "ORPHEUS_DEFAULT_BACKEND must be one of "
                f"{tuple(BACKEND_PROVIDERS)}, got {self.planner.default_backend!r}.",
            )
        if self.providers.max_tokens <= 0:
            raise ValueError("ORPHEUS_MAX_TOKENS must be a positive integer.")
        if not 0.0 <= self.providers.temperature <= 2.0:
            raise ValueError("ORPHEUS_TEMPERATURE must be between 0 and 2.")
        if self.providers.request_timeout_seconds <= 0:
            raise ValueError("ORPHEUS_REQUEST_TIMEOUT_SECONDS must be > 0.")

    def validate_log_level(self) -> None:
        if self.log_level not in SUPPORTED_LOG_LEVELS:
            raise ValueError(
                f"ORPHEUS_LOG_LEVEL must be one of {SUPPORTED_LOG_LEVELS}, got {self.log_level!r}.",
            )

    def redacted(self) -> dict[str, Any]:
        """JSON-safe settings snapshot with API keys masked."""

        snapshot = asdict(self)
        snapshot["db_path"] = str(self.db_path)
        providers = snapshot["providers"]
        for key in ("openai_api_key", "anthropic_api_key", "google_api_key"):
            if providers[key] is not None:
                providers[key] = REDACTED
        return snapshot


def _env_secret(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def _env_optional_float(name: str) -> float | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError as error:
        raise ValueError(f"Invalid float value for {name}: {raw!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
