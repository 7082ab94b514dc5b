"""
Configuration loading for the token agent.

The YAML file (shared/config/config.yaml) is parsed with PyYAML and
validated into AgentConfig. Every section has defaults, so a partial file
(or none at all) yields a runnable configuration.

Configuration surface:
- decision: enter_threshold, hold_threshold, quorum, ...
- analyzers[domain]: cadence_ms, max_staleness_ms, min_confidence, ...
- risk: single_asset_limit, category_limit, platform_limit, total_exposure,
  max_drawdown, L_min, L_max, leverage_vol_caps, correlation_window, ...
- execution: retries, max_slippage, slicing policy
- exchange: rest.timeout, ws.pingInterval, reconnect backoff
- learning: learning_rate, w_min, w_max, eval_window, min_model_accuracy
"""

import logging
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from shared.errors import ConfigError
from shared.models.assessment import Domain

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class AnalyzerSettings(_Section):
    """Per-analyzer cadence, staleness, retention and gating."""

    cadence_ms: int = Field(default=5_000, gt=0)
    max_staleness_ms: int = Field(default=60_000, gt=0)
    min_confidence: float = Field(default=0.3, ge=0, le=1)
    retention_s: float = Field(default=3_600.0, gt=0, description="Bus retention W_domain")
    min_samples: int = Field(default=0, ge=0)
    enabled: bool = True
    params: dict[str, float] = Field(default_factory=dict)


def _default_analyzers() -> dict[str, AnalyzerSettings]:
    return {
        Domain.ACCUMULATION.value: AnalyzerSettings(
            cadence_ms=5_000, max_staleness_ms=60_000, min_confidence=0.3,
            params={"min_phase_length": 30},
        ),
        Domain.BUYING_PRESSURE.value: AnalyzerSettings(
            cadence_ms=2_000, max_staleness_ms=30_000, min_confidence=0.3,
            params={"large_print_quantile": 0.9, "min_prints": 10},
        ),
        Domain.VOLATILITY.value: AnalyzerSettings(
            cadence_ms=5_000, max_staleness_ms=60_000, min_confidence=0.4,
            params={"ceiling": 0.8, "min_points": 20, "vol_scale": 0.01},
        ),
        Domain.SWING.value: AnalyzerSettings(
            cadence_ms=5_000, max_staleness_ms=120_000, min_confidence=0.3,
            params={"pivot_lookback": 10, "swing_threshold": 0.015, "strength_threshold": 0.7},
        ),
        Domain.CATALYST.value: AnalyzerSettings(
            cadence_ms=10_000, max_staleness_ms=120_000, min_confidence=0.3,
        ),
        Domain.SENTIMENT.value: AnalyzerSettings(
            cadence_ms=10_000, max_staleness_ms=300_000, min_confidence=0.3, min_samples=5,
            params={"positive": 0.7, "negative": 0.3},
        ),
        Domain.EMOTION.value: AnalyzerSettings(
            cadence_ms=10_000, max_staleness_ms=300_000, min_confidence=0.3, min_samples=5,
            params={"panic": 0.9},
        ),
        Domain.FEAR_GREED.value: AnalyzerSettings(
            cadence_ms=15_000, max_staleness_ms=300_000, min_confidence=0.3, min_samples=5,
        ),
        Domain.PSYCHOLOGY.value: AnalyzerSettings(
            cadence_ms=15_000, max_staleness_ms=300_000, min_confidence=0.3, min_samples=5,
            params={"herd_strong": 0.8},
        ),
    }


class DecisionConfig(_Section):
    enter_threshold: float = Field(default=0.6, ge=0, le=1)
    hold_threshold: float = Field(default=0.45, ge=0, le=1)
    quorum: int = Field(default=4, ge=1)
    bias_threshold: float = Field(default=0.1, ge=0)
    base_size: float = Field(default=100.0, gt=0, description="Base notional per intent")
    urgency_gain: float = Field(default=0.5, ge=0, le=1)
    volatility_ceiling: float = Field(default=0.8, ge=0, le=1)
    interval_s: float = Field(default=5.0, gt=0)
    required_domains: list[Domain] = Field(default_factory=lambda: list(Domain))

    @model_validator(mode="after")
    def validate_thresholds(self) -> "DecisionConfig":
        if self.hold_threshold > self.enter_threshold:
            raise ValueError("hold_threshold must not exceed enter_threshold")
        if self.quorum > len(self.required_domains):
            raise ValueError("quorum exceeds the number of required domains")
        return self


class LeverageCaps(_Section):
    high: int = Field(default=10, ge=1)
    medium: int = Field(default=25, ge=1)
    low: int = Field(default=50, ge=1)


class EmergencyConfig(_Section):
    price_drop: float = Field(default=0.15, gt=0, description="Fractional drop within window")
    window_s: float = Field(default=300.0, gt=0)
    volatility_spike: float = Field(default=3.0, gt=1)
    liquidity_drop: float = Field(default=0.5, gt=0, lt=1)
    max_latency_ms: float = Field(default=2_000.0, gt=0)
    error_threshold: int = Field(default=3, ge=1)
    error_window_s: float = Field(default=300.0, gt=0)
    cool_off_s: float = Field(default=900.0, ge=0)


class RiskConfig(_Section):
    initial_equity: float = Field(default=10_000.0, gt=0)
    single_asset_limit: float = Field(default=0.15, gt=0, le=1)
    category_limit: float = Field(default=0.4, gt=0, le=1)
    platform_limit: float = Field(default=0.7, gt=0, le=1)
    total_exposure: float = Field(default=0.8, gt=0)
    correlated_limit: float = Field(default=0.3, gt=0)
    max_drawdown: float = Field(default=0.15, gt=0, lt=1)
    drawdown_warn: float = Field(default=0.10, gt=0, lt=1)
    recovery_period_s: float = Field(default=86_400.0, ge=0)
    min_notional: float = Field(default=1.0, ge=0)
    L_min: int = Field(default=1, ge=1)
    L_max: int = Field(default=50, ge=1)
    L_default: int = Field(default=5, ge=1)
    L_abs_max: int = Field(default=100, ge=1, description="Absolute leverage bound")
    leverage_vol_caps: LeverageCaps = Field(default_factory=LeverageCaps)
    leverage_min_confidence: float = Field(default=0.7, ge=0, le=1)
    correlation_window_s: float = Field(default=720 * 3_600.0, gt=0, alias="correlation_window")
    correlation_max: float = Field(default=0.7, ge=-1, le=1)
    correlation_min_points: int = Field(default=20, ge=3)
    categories: dict[str, str] = Field(default_factory=dict)
    platforms: dict[str, str] = Field(default_factory=dict)
    emergency: EmergencyConfig = Field(default_factory=EmergencyConfig)

    @model_validator(mode="after")
    def validate_leverage(self) -> "RiskConfig":
        if not self.L_min <= self.L_default <= self.L_max <= self.L_abs_max:
            raise ValueError("leverage bounds must satisfy L_min <= L_default <= L_max <= L_abs_max")
        if self.drawdown_warn > self.max_drawdown:
            raise ValueError("drawdown_warn must not exceed max_drawdown")
        return self


class ExecutionConfig(_Section):
    retries: int = Field(default=3, ge=0)
    max_slippage: float = Field(default=0.002, gt=0)
    slippage_breach_limit: int = Field(default=2, ge=1)
    min_slices: int = Field(default=2, ge=1)
    max_slices: int = Field(default=10, ge=1)
    slice_factor: float = Field(default=4.0, gt=0)
    urgency_scale: float = Field(default=1.0, gt=0, le=1)
    horizon_s: float = Field(default=300.0, ge=0)
    urgency_immediate: float = Field(default=0.8, ge=0, le=1)
    small_size: float = Field(default=0.05, gt=0)
    vwap_threshold: float = Field(default=0.5, gt=0)
    volatile_spread: float = Field(default=0.01, gt=0)
    depth_band: float = Field(default=0.02, gt=0)
    k_stop: float = Field(default=2.0, gt=0)
    min_stop: float = Field(default=0.005, gt=0)
    reward_risk: float = Field(default=2.5, gt=0)
    fill_timeout_s: float = Field(default=10.0, gt=0)


class RestConfig(_Section):
    timeout: int = Field(default=5_000, gt=0, description="REST call timeout (ms)")


class WsConfig(_Section):
    ping_interval: int = Field(default=15_000, gt=0, alias="pingInterval")
    reconnect_delay: int = Field(default=3_000, gt=0, alias="reconnectDelay")


class ExchangeConfig(_Section):
    name: str = "paper"
    rest: RestConfig = Field(default_factory=RestConfig)
    ws: WsConfig = Field(default_factory=WsConfig)
    retries: int = Field(default=3, ge=0)
    reconnect_attempts: int = Field(default=5, ge=1)
    backoff_base_s: float = Field(default=1.0, ge=0)
    backoff_max_s: float = Field(default=16.0, ge=0)
    fee_rate: float = Field(default=0.0005, ge=0)
    paper_slippage_std: float = Field(default=0.0005, ge=0)


class LearningConfig(_Section):
    learning_rate: float = Field(default=0.05, gt=0)
    w_min: float = Field(default=0.1, ge=0)
    w_max: float = Field(default=3.0, gt=0)
    eval_window: int = Field(default=100, ge=1)
    min_model_accuracy: float = Field(default=0.7, ge=0, le=1)
    quality_poor: float = Field(default=0.65, ge=0, le=1)
    quality_acceptable: float = Field(default=0.75, ge=0, le=1)
    quality_good: float = Field(default=0.85, ge=0, le=1)
    quality_excellent: float = Field(default=0.95, ge=0, le=1)
    urgency_step: float = Field(default=0.05, gt=0)
    slice_step: float = Field(default=0.5, gt=0)
    urgency_scale_min: float = Field(default=0.2, gt=0)
    slice_factor_max: float = Field(default=12.0, gt=0)
    risk_tighten_step: float = Field(default=0.02, gt=0)
    leverage_tighten_step: float = Field(default=5.0, gt=0)
    min_single_asset_limit: float = Field(default=0.05, gt=0)
    retrain_interval_s: float = Field(default=86_400.0, gt=0)
    experience_capacity: int = Field(default=10_000, ge=1)
    min_training_samples: int = Field(default=200, ge=10)
    holdout_fraction: float = Field(default=0.2, gt=0, lt=1)
    initial_weights: dict[str, float] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_weights(self) -> "LearningConfig":
        if self.w_min > self.w_max:
            raise ValueError("w_min must not exceed w_max")
        for domain, w in self.initial_weights.items():
            if not self.w_min <= w <= self.w_max:
                raise ValueError(f"initial weight for {domain} outside [w_min, w_max]")
        return self


class PersistenceConfig(_Section):
    state_dir: str = "state"
    analysis_log: str = "reports/analysis.jsonl"
    event_log: str = "reports/events.jsonl"
    snapshot_interval_s: float = Field(default=60.0, gt=0)
    keep_snapshots: int = Field(default=20, ge=1)


class RuntimeConfig(_Section):
    mode: str = Field(default="dry", pattern="^(dry|paper)$")
    symbols: list[str] = Field(default_factory=lambda: ["PEPE", "WIF", "BONK"])
    workers: int = Field(default=4, ge=1)
    metrics_port: Optional[int] = None
    feed_interval_s: float = Field(default=1.0, gt=0)
    feed_retention_s: float = Field(default=3_600.0, gt=0)
    feed_max_samples: int = Field(default=5_000, ge=10)
    social_interval_s: float = Field(default=5.0, gt=0)
    mark_interval_s: float = Field(default=5.0, gt=0)
    monitor_interval_s: float = Field(default=5.0, gt=0)
    bus_queue_size: int = Field(default=1_000, ge=1)
    seed: int = 42


class AgentConfig(_Section):
    """Complete agent configuration."""

    decision: DecisionConfig = Field(default_factory=DecisionConfig)
    analyzers: dict[str, AnalyzerSettings] = Field(default_factory=_default_analyzers)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @model_validator(mode="before")
    @classmethod
    def merge_analyzer_defaults(cls, data: Any) -> Any:
        """Partial analyzer sections override defaults domain by domain."""
        if isinstance(data, dict) and isinstance(data.get("analyzers"), dict):
            merged = {k: v.model_dump() for k, v in _default_analyzers().items()}
            for domain, settings in data["analyzers"].items():
                base = merged.get(domain, {})
                overrides = dict(settings or {})
                params = {**base.get("params", {}), **overrides.pop("params", {})}
                merged[domain] = {**base, **overrides, "params": params}
            data = {**data, "analyzers": merged}
        return data

    @model_validator(mode="after")
    def validate_domains(self) -> "AgentConfig":
        known = {d.value for d in Domain}
        unknown = set(self.analyzers) - known
        if unknown:
            raise ValueError(f"unknown analyzer domains: {sorted(unknown)}")
        return self

    def analyzer(self, domain: Union[Domain, str]) -> AnalyzerSettings:
        key = domain.value if isinstance(domain, Domain) else domain
        return self.analyzers.get(key) or AnalyzerSettings()

    def max_staleness_s(self, domain: Union[Domain, str]) -> float:
        return self.analyzer(domain).max_staleness_ms / 1000.0

    def retention_s(self) -> dict[str, float]:
        return {domain: s.retention_s for domain, s in self.analyzers.items()}


def load_config(config_path: Union[str, Path, None] = None) -> AgentConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to config.yaml (defaults to the packaged file)

    Returns:
        Validated AgentConfig

    Raises:
        ConfigError: If the file is missing, not valid YAML, or fails validation
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config root must be a mapping: {path}")

    try:
        config = AgentConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info(f"Loaded config from {path}")
    return config
