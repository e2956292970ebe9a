from typing import Literal

from pydantic import BaseModel, Field


class ForecasterSettings(BaseModel):
    """
    Smoothing parameters and confidence heuristics for the Forecaster.

    The confidence constants are hand-tuned; recalibrate them against
    Forecaster.accuracy() measurements rather than editing code.
    """
    alpha: float = Field(default=0.3, gt=0, le=1, description="Level smoothing")
    beta: float = Field(default=0.1, ge=0, le=1, description="Trend smoothing")
    gamma: float = Field(default=0.3, ge=0, le=1, description="Seasonal smoothing")
    seasonal_period: int = Field(default=24, ge=2, description="Daily cycle over hourly data")
    week_length: int = Field(default=168, ge=1, description="Observations in a full week")
    min_observations: int = Field(default=24, ge=2, description="Absolute minimum history")

    base_confidence: float = 0.95
    min_confidence: float = 0.4
    horizon_decay_steps: float = Field(default=72.0, gt=0)
    max_variance_penalty: float = 0.3
    variance_penalty_scale: float = 1.0
    interval_z_scale: float = 2.0

    # Supply/demand imbalance tiers (demand / supply ratio)
    imbalance_critical_ratio: float = 1.5
    imbalance_high_ratio: float = 1.2
    imbalance_medium_ratio: float = 0.9
    minimum_volume: float = 5.0


class RiskScorerSettings(BaseModel):
    """Logistic churn model parameters."""
    intercept: float = 6.0
    weights: dict[str, float] | None = Field(
        default=None, description="Per-feature weight overrides (normalized units)"
    )
    critical_threshold: float = 0.70
    high_threshold: float = 0.50
    medium_threshold: float = 0.30
    missing_feature_penalty: float = Field(default=0.9, gt=0, le=1)


class EmailSettings(BaseModel):
    smtp_host: str | None = Field(default=None, description="SMTP server; unset logs a mock send")
    smtp_port: int = 587
    username: str | None = None
    password: str | None = None
    use_tls: bool = True
    from_address: str = "alerts@pulsemax.com"
    recipients: list[str] = Field(default_factory=lambda: ["admin@pulsemax.com"])
    dashboard_url: str | None = None


class WebhookSettings(BaseModel):
    url: str | None = Field(default=None, description="Alert webhook endpoint")
    headers: dict[str, str] = Field(default_factory=dict)


class KafkaSettings(BaseModel):
    enabled: bool = False
    bootstrap_servers: str = "localhost:9092"
    topic: str = "pulsemax-alerts"


class AlertingSettings(BaseModel):
    channel_timeout_seconds: float = Field(default=10.0, gt=0)
    dispatch_mode: Literal["await", "background"] = "await"
    severity_channels: dict[str, list[str]] | None = Field(
        default=None, description="Override of the severity -> channels table"
    )
    dashboard_feed_size: int = Field(default=500, ge=1)
    rules_file: str | None = Field(default=None, description="YAML file with alert rules")
    email: EmailSettings = Field(default_factory=EmailSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    kafka: KafkaSettings = Field(default_factory=KafkaSettings)


class SystemSettings(BaseModel):
    """
    Global system configuration settings.
    """
    log_level: str = Field(default="INFO", description="Root logging level")

    # Metric source
    prometheus_url: str = Field(default="http://localhost:8428", description="Prometheus-compatible base URL")

    forecaster: ForecasterSettings = Field(default_factory=ForecasterSettings)
    risk_scorer: RiskScorerSettings = Field(default_factory=RiskScorerSettings)
    alerting: AlertingSettings = Field(default_factory=AlertingSettings)
