# spirit/config.py
"""
Configuration for the Spirit agent.

All configuration flows through this module. Values are loaded from environment
variables (via .env file) and validated with Pydantic. Each subsystem gets its
own settings class; ``SpiritConfig`` composes them into a single object that is
handed to the runtime at startup.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Optional

import structlog
from pydantic import BeforeValidator, Field, model_validator
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above spirit/ package),
# so the config works regardless of the user's current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


def _coerce_str_list(value: object) -> list[str]:
    """Coerce env-var values into a list of stripped, non-empty strings.

    Accepts:
      - A single str         → ["value"]
      - Comma-separated str  → ["a", "b"]
      - JSON array str       → (parsed by pydantic-settings before this runs)
      - An existing list     → passthrough with str coercion
    """
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        if "," in stripped:
            return [part.strip() for part in stripped.split(",") if part.strip()]
        return [stripped]
    return []


# Annotated type for list[str] fields that accept bare values, comma-separated,
# and JSON arrays from environment variables.
StrList = Annotated[list[str], BeforeValidator(_coerce_str_list)]


class ModelConfig(BaseSettings):
    """Configuration for the language model connection."""

    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    base_url: Optional[str] = Field(None, alias="SPIRIT_MODEL_BASE_URL")
    model: str = Field("claude-sonnet-4-5-20250929", alias="SPIRIT_MODEL")
    max_tokens: int = Field(2048, alias="SPIRIT_MAX_TOKENS")
    temperature: float = Field(0.7, alias="SPIRIT_TEMPERATURE")
    request_timeout_seconds: float = Field(120.0, alias="SPIRIT_REQUEST_TIMEOUT_SECONDS")
    retry_max_retries: int = Field(3, alias="SPIRIT_RETRY_MAX_RETRIES")
    retry_base_delay: float = Field(0.5, alias="SPIRIT_RETRY_BASE_DELAY")
    retry_max_delay: float = Field(8.0, alias="SPIRIT_RETRY_MAX_DELAY")
    retry_exponential_base: float = Field(2.0, alias="SPIRIT_RETRY_EXPONENTIAL_BASE")
    retry_jitter_range: float = Field(0.25, alias="SPIRIT_RETRY_JITTER_RANGE")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "ModelConfig":
        self.max_tokens = max(64, int(self.max_tokens))
        self.temperature = max(0.0, min(1.0, float(self.temperature)))
        self.request_timeout_seconds = max(1.0, float(self.request_timeout_seconds))
        self.retry_max_retries = max(0, int(self.retry_max_retries))
        self.retry_base_delay = max(0.0, float(self.retry_base_delay))
        self.retry_max_delay = max(self.retry_base_delay, float(self.retry_max_delay))
        self.retry_jitter_range = max(0.0, min(1.0, float(self.retry_jitter_range)))
        if isinstance(self.api_key, str):
            self.api_key = self.api_key.strip() or None
        return self


class ConsciousnessConfig(BaseSettings):
    """Configuration for the autonomous consciousness loop."""

    interval_minutes: float = Field(30.0, alias="SPIRIT_CONSCIOUSNESS_INTERVAL")
    enable_learning: bool = Field(True, alias="SPIRIT_ENABLE_LEARNING")
    enable_curiosity: bool = Field(True, alias="SPIRIT_ENABLE_CURIOSITY")
    # Curiosity runs on every Nth cycle (counted before the cycle increments).
    evolve_every: int = Field(5, alias="SPIRIT_EVOLVE_EVERY")
    curiosity_topic: str = Field("travel B2B industry", alias="SPIRIT_CURIOSITY_TOPIC")
    curiosity_questions: int = Field(5, alias="SPIRIT_CURIOSITY_QUESTIONS")
    max_recent_errors: int = Field(10, alias="SPIRIT_MAX_RECENT_ERRORS")
    recent_topic_limit: int = Field(10, alias="SPIRIT_RECENT_TOPIC_LIMIT")
    # How long stop() waits for an in-flight cycle before cancelling it.
    shutdown_grace_seconds: float = Field(30.0, alias="SPIRIT_SHUTDOWN_GRACE_SECONDS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "ConsciousnessConfig":
        self.interval_minutes = max(0.1, float(self.interval_minutes))
        self.evolve_every = max(1, int(self.evolve_every))
        self.curiosity_questions = max(1, int(self.curiosity_questions))
        self.max_recent_errors = max(1, int(self.max_recent_errors))
        self.recent_topic_limit = max(1, int(self.recent_topic_limit))
        self.shutdown_grace_seconds = max(0.0, float(self.shutdown_grace_seconds))
        return self

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60.0


class SecurityConfig(BaseSettings):
    """Configuration for the approval gate and secure executor."""

    enabled: bool = Field(True, alias="SPIRIT_SECURITY_ENABLED")
    # Operation labels that bypass confirmation entirely.
    whitelist: StrList = Field(default_factory=list, alias="SPIRIT_SECURITY_WHITELIST")
    default_channel: str = Field("", alias="SPIRIT_APPROVAL_CHANNEL")
    kill_switch_cooldown_seconds: float = Field(300.0, alias="SPIRIT_KILL_SWITCH_COOLDOWN")
    sweep_interval_seconds: float = Field(10.0, alias="SPIRIT_APPROVAL_SWEEP_INTERVAL")
    preview_chars: int = Field(500, alias="SPIRIT_APPROVAL_PREVIEW_CHARS")
    # JSON map: {"api_call": {"require_confirm": true, "timeout_seconds": 45}}
    sensitivity_overrides: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        alias="SPIRIT_SENSITIVITY_OVERRIDES",
    )
    webhook_url: Optional[str] = Field(None, alias="SPIRIT_APPROVAL_WEBHOOK_URL")
    webhook_timeout_seconds: float = Field(10.0, alias="SPIRIT_APPROVAL_WEBHOOK_TIMEOUT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "SecurityConfig":
        self.kill_switch_cooldown_seconds = max(1.0, float(self.kill_switch_cooldown_seconds))
        self.sweep_interval_seconds = max(0.1, float(self.sweep_interval_seconds))
        self.preview_chars = max(20, int(self.preview_chars))
        self.webhook_timeout_seconds = max(1.0, float(self.webhook_timeout_seconds))
        if isinstance(self.webhook_url, str):
            self.webhook_url = self.webhook_url.strip() or None
        return self


class MemoryConfig(BaseSettings):
    """Configuration for the local brain store."""

    data_dir: Path = Field(Path("./spirit_data"), alias="SPIRIT_DATA_DIR")
    db_path: Path = Field(Path("./spirit_data/brain.db"), alias="SPIRIT_DB_PATH")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}


class SpiritConfig:
    """
    Master configuration that composes all subsystem configs.

    This is the single source of truth. Every component receives its config
    from here.
    """

    def __init__(self) -> None:
        self.model = ModelConfig()
        self.consciousness = ConsciousnessConfig()
        self.security = SecurityConfig()
        self.memory = MemoryConfig()
        self._resolve_paths()

    def _resolve_paths(self) -> None:
        """Resolve relative Path fields against the project root (where .env lives),
        not the current working directory."""
        def _resolve(p: Path) -> Path:
            if p.is_absolute():
                return p
            return (_PROJECT_ROOT / p).resolve()

        self.memory.data_dir = _resolve(self.memory.data_dir)
        self.memory.db_path = _resolve(self.memory.db_path)

    def __repr__(self) -> str:
        return (
            f"SpiritConfig(model={self.model.model}, "
            f"interval={self.consciousness.interval_minutes}m, "
            f"security_enabled={self.security.enabled})"
        )
