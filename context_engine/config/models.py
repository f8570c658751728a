"""Pydantic models for configuration."""

from typing import Literal

from pydantic import BaseModel, Field, SecretStr, model_validator


DEFAULT_CONTEXT_LIMITS: dict[str, int] = {
    "claude-3-5-sonnet-20241022": 200000,
    "claude-3-5-haiku-20241022": 200000,
    "claude-3-opus-20240229": 200000,
    "claude-3-sonnet-20240229": 200000,
    "claude-3-haiku-20240307": 200000,
    "default": 200000,
}

DEFAULT_ESSENTIAL_TYPES: list[str] = [
    "session_start",
    "session_end",
    "context_restoration",
    "integrity_marker",
    "important_event",
    "checkpoint",
    "github_action",
    "git_commit",
]


class OracleConfig(BaseModel):
    """Precise token oracle configuration.

    The oracle is optional; with provider "none" the character-ratio
    estimate is always used.
    """

    provider: Literal["none", "tiktoken", "anthropic"] = Field(
        default="none", description="Token oracle provider"
    )
    model: str = Field(
        default="claude-3-5-sonnet-20241022", description="Model id sent to the oracle"
    )
    encoding: str = Field(default="cl100k_base", description="tiktoken encoding name")
    api_key: SecretStr | None = Field(default=None, description="API key for remote oracles")
    base_url: str = Field(default="https://api.anthropic.com", description="Remote oracle base URL")
    timeout_seconds: float = Field(
        default=5.0, gt=0.0, le=60.0, description="Bounded oracle call timeout"
    )


class TokenCounterConfig(BaseModel):
    """Token accounting configuration."""

    chars_per_token: float = Field(
        default=4.0, gt=0.0, description="Fallback estimate ratio (characters per token)"
    )
    cache_max_size: int = Field(default=1000, ge=1, description="Max cached token counts")
    profile: str = Field(default="default", description="Active model/profile name")
    context_limits: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_CONTEXT_LIMITS),
        description="Context window size per profile",
    )
    near_limit_percent: float = Field(default=60.0, ge=0.0, le=100.0)
    critical_percent: float = Field(default=90.0, ge=0.0, le=100.0)
    compact_percent: float = Field(default=95.0, ge=0.0, le=100.0)
    oracle: OracleConfig = Field(default_factory=OracleConfig)

    @model_validator(mode="after")
    def validate_breakpoints(self) -> "TokenCounterConfig":
        """Ensure usage breakpoints are ascending and a default limit exists."""
        if not (self.near_limit_percent <= self.critical_percent <= self.compact_percent):
            raise ValueError("near_limit_percent <= critical_percent <= compact_percent required")
        if "default" not in self.context_limits:
            self.context_limits["default"] = DEFAULT_CONTEXT_LIMITS["default"]
        return self


class PrunerConfig(BaseModel):
    """Context pruning configuration."""

    preserve_recent: int = Field(
        default=3, ge=0, description="Last N events are never pruned"
    )
    resolved_grace_seconds: float = Field(
        default=300.0, ge=0.0, description="Resolved events younger than this are kept"
    )
    compact_age_seconds: float = Field(
        default=1800.0, ge=0.0, description="Events older than this are compacted"
    )
    similarity_threshold: float = Field(default=0.8, gt=0.0, le=1.0)
    group_key_length: int = Field(default=50, ge=1)
    similarity_max_chars: int = Field(
        default=512, ge=16, description="Normalized head and tail window compared for similarity"
    )
    essential_types: list[str] = Field(default_factory=lambda: list(DEFAULT_ESSENTIAL_TYPES))
    floor_min_tokens: int = Field(default=100, ge=0)
    floor_ratio: float = Field(default=0.05, ge=0.0, le=1.0)
    emergency_keep_ratio: float = Field(default=0.3, gt=0.0, le=1.0)
    emergency_min_keep: int = Field(default=5, ge=1)
    summary_keep_ratio: float = Field(default=0.7, gt=0.0, le=1.0)


class MonitorConfig(BaseModel):
    """Context window monitor configuration.

    Thresholds are percentages of the context limit. The 40% warning line
    is deliberately conservative and fully overridable.
    """

    warning_threshold: float = Field(default=40.0, gt=0.0, le=100.0)
    critical_threshold: float = Field(default=70.0, gt=0.0, le=100.0)
    emergency_threshold: float = Field(default=90.0, gt=0.0, le=100.0)
    interval_seconds: float = Field(default=5.0, gt=0.0, description="Poll interval")
    max_history: int = Field(default=50, ge=2, description="Rolling history length")
    trend_window_minutes: float = Field(default=10.0, gt=0.0)
    auto_compact: bool = Field(default=True, description="Prune automatically on emergency")
    recheck_delay_seconds: float = Field(default=1.0, ge=0.0)
    rapid_growth_percent: float = Field(default=10.0, gt=0.0)
    emergency_target_reduction: float = Field(default=0.5, gt=0.0, lt=1.0)

    @model_validator(mode="after")
    def validate_thresholds(self) -> "MonitorConfig":
        """Ensure thresholds are strictly ascending."""
        if not (self.warning_threshold < self.critical_threshold < self.emergency_threshold):
            raise ValueError(
                "warning_threshold < critical_threshold < emergency_threshold required"
            )
        return self


class ScopePolicy(BaseModel):
    """Retention policy for a context scope."""

    retention_days: int = Field(default=30, ge=1)
    description: str = Field(default="")


class PersistenceConfig(BaseModel):
    """Long-term archive configuration."""

    archive_dir: str = Field(default="contexts/long-term", description="Archive root directory")
    restore_budget_ms: float = Field(default=1000.0, gt=0.0, description="Soft restore budget")
    time_gap_notice_days: float = Field(
        default=1.0, ge=0.0, description="Inject a restoration notice past this idle gap"
    )
    lock_timeout_seconds: float = Field(default=10.0, gt=0.0)
    scopes: dict[str, ScopePolicy] = Field(
        default_factory=lambda: {
            "session": ScopePolicy(
                retention_days=30,
                description="Temporary context for quick work",
            ),
            "project": ScopePolicy(
                retention_days=365,
                description="Long-term context for major work",
            ),
        }
    )

    @model_validator(mode="after")
    def validate_scopes(self) -> "PersistenceConfig":
        """Both scopes must be declared."""
        missing = {"session", "project"} - set(self.scopes)
        if missing:
            raise ValueError(f"Missing scope policies: {sorted(missing)}")
        return self


class HealthWeights(BaseModel):
    """Weights of the composite health score."""

    freshness: float = Field(default=0.30, ge=0.0, le=1.0)
    usage_pattern: float = Field(default=0.20, ge=0.0, le=1.0)
    data_integrity: float = Field(default=0.25, ge=0.0, le=1.0)
    compression_health: float = Field(default=0.15, ge=0.0, le=1.0)
    token_efficiency: float = Field(default=0.10, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_sum(self) -> "HealthWeights":
        """Ensure weights sum to approximately 1.0."""
        total = (
            self.freshness
            + self.usage_pattern
            + self.data_integrity
            + self.compression_health
            + self.token_efficiency
        )
        if abs(total - 1.0) > 0.01:
            raise ValueError(f"Health weights must sum to 1.0, got {total}")
        return self


class HealthThresholds(BaseModel):
    """Minimum overall score for each health level."""

    excellent: float = Field(default=0.8, ge=0.0, le=1.0)
    good: float = Field(default=0.6, ge=0.0, le=1.0)
    warning: float = Field(default=0.4, ge=0.0, le=1.0)
    critical: float = Field(default=0.2, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_order(self) -> "HealthThresholds":
        if not (self.excellent > self.good > self.warning > self.critical):
            raise ValueError("Health thresholds must be strictly descending")
        return self


class HealthConfig(BaseModel):
    """Health scoring and background maintenance configuration."""

    weights: HealthWeights = Field(default_factory=HealthWeights)
    thresholds: HealthThresholds = Field(default_factory=HealthThresholds)
    background_maintenance: bool = Field(default=True)
    maintenance_interval_hours: float = Field(default=6.0, gt=0.0)
    initial_delay_seconds: float = Field(default=5.0, ge=0.0)
    max_concurrent_jobs: int = Field(default=3, ge=1, le=100)
    quiet_hours_start: int = Field(default=22, ge=0, le=23)
    quiet_hours_end: int = Field(default=6, ge=0, le=23)
    history_limit: int = Field(default=100, ge=1)
    health_log_dir: str | None = Field(
        default=None, description="Defaults to <archive_dir>/health-logs"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Log level"
    )
    format: Literal["json", "text"] = Field(default="json", description="Log format")
    file: str | None = Field(default=None, description="Log file path (disabled when unset)")
    max_size: str = Field(default="10MB", description="Max log file size")
    backup_count: int = Field(default=5, ge=0, description="Number of backup files")
    console: bool = Field(default=True, description="Output to console")


class EngineConfig(BaseModel):
    """Root configuration model."""

    token_counter: TokenCounterConfig = Field(default_factory=TokenCounterConfig)
    pruner: PrunerConfig = Field(default_factory=PrunerConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
