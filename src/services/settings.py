"""Process configuration loaded from the environment."""

import os

from pydantic import BaseModel, ConfigDict, field_validator


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class EngineSettings(BaseModel):
    """Settings for the engine, router and sweeper processes."""

    model_config = ConfigDict(frozen=True)

    redis_url: str = "redis://localhost:6379"
    log_level: str = "info"
    log_dir: str = "logs"

    lock_timeout_seconds: float = 300.0
    lock_wait_seconds: float = 5.0
    max_steps_per_run: int = 500

    sweep_interval_seconds: float = 30.0

    integration_base_url: str = "http://localhost:8080"
    integration_timeout: float = 30.0
    agent_webhook_url: str | None = None

    auto_approve_threshold: float = 0.90
    require_review_threshold: float = 0.70
    escalate_below_threshold: float = 0.50
    escalate_to_role: str = "manager"

    resume_on_manual_submit: bool = True

    @field_validator("log_level")
    @classmethod
    def log_level_known(cls, v: str) -> str:
        v = v.lower()
        if v not in ("debug", "info", "warning", "error"):
            raise ValueError(f"Unknown log level: {v}")
        return v

    @field_validator("max_steps_per_run")
    @classmethod
    def max_steps_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_steps_per_run must be positive")
        return v

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from environment variables, falling back to defaults."""
        env = os.environ
        return cls(
            redis_url=env.get("REDIS_URL", "redis://localhost:6379"),
            log_level=env.get("LOG_LEVEL", "info"),
            log_dir=env.get("LOG_DIR", "logs"),
            lock_timeout_seconds=float(env.get("INSTANCE_LOCK_TIMEOUT", "300")),
            lock_wait_seconds=float(env.get("INSTANCE_LOCK_WAIT", "5")),
            max_steps_per_run=int(env.get("MAX_STEPS_PER_RUN", "500")),
            sweep_interval_seconds=float(env.get("SWEEP_INTERVAL", "30")),
            integration_base_url=env.get(
                "INTEGRATION_BASE_URL", "http://localhost:8080"
            ),
            integration_timeout=float(env.get("INTEGRATION_TIMEOUT", "30")),
            agent_webhook_url=env.get("AGENT_WEBHOOK_URL") or None,
            auto_approve_threshold=float(env.get("AUTO_APPROVE_THRESHOLD", "0.90")),
            require_review_threshold=float(
                env.get("REQUIRE_REVIEW_THRESHOLD", "0.70")
            ),
            escalate_below_threshold=float(
                env.get("ESCALATE_BELOW_THRESHOLD", "0.50")
            ),
            escalate_to_role=env.get("ESCALATE_TO_ROLE", "manager"),
            resume_on_manual_submit=_env_bool("RESUME_ON_MANUAL_SUBMIT", True),
        )
