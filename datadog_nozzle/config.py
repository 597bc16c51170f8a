"""Configuration models using Pydantic for validation."""
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
import os

DEFAULT_API_URL = "https://app.datadoghq.com/api/v1/series"


class DatadogConfig(BaseModel):
    """Datadog series endpoint configuration."""
    api_url: str = DEFAULT_API_URL
    api_key: str
    metric_prefix: str = "cloudfoundry.nozzle."
    timeout_s: float = Field(default=30.0, gt=0)

    @field_validator('api_key')
    @classmethod
    def validate_api_key(cls, v):
        """The key is sent on every request, so it must be present."""
        if not v or not v.strip():
            raise ValueError("api_key must not be empty")
        return v


class NozzleConfig(BaseModel):
    """Identity of this nozzle and flush behaviour."""
    deployment: str = ""
    ip: str = ""
    flush_interval_s: float = Field(default=15.0, gt=0)
    slow_consumer_detection: bool = True


class SyntheticMetricConfig(BaseModel):
    """One synthetic metric emitted by every configured job."""
    name: str
    type: Literal["gauge", "counter"] = "gauge"
    start: float = 0.0
    step: float = 1.0  # Random walk std-dev
    base_rate: float = 5.0  # Poisson increments per tick
    unit: str = ""


class SyntheticSourceConfig(BaseModel):
    """Synthetic firehose used when no real event stream is available."""
    origin: str = "synthetic"
    deployment: str = "cf"
    jobs: List[str] = Field(default_factory=lambda: ["router"])
    instances: int = Field(default=1, ge=1)
    ip_base: str = "10.0.0."
    tick_interval_s: float = Field(default=1.0, ge=0)
    max_ticks: Optional[int] = None
    seed: int = 42
    metrics: List[SyntheticMetricConfig] = Field(default_factory=list)


class SourceConfig(BaseModel):
    """Where envelopes come from."""
    type: Literal["jsonl", "synthetic"] = "jsonl"
    path: str = "-"
    synthetic: SyntheticSourceConfig = Field(default_factory=SyntheticSourceConfig)

    @model_validator(mode='after')
    def validate_synthetic_metrics(self):
        """A synthetic source without metrics would only emit self-metrics."""
        if self.type == "synthetic" and not self.synthetic.metrics:
            raise ValueError("synthetic source requires at least one metric")
        return self


class PrometheusSelfMetricsConfig(BaseModel):
    """Prometheus endpoint for the nozzle's own health metrics."""
    enabled: bool = False
    port: int = 9102
    prefix: str = "nozzle_"
    bind_address: str = "0.0.0.0"


class SelfMetricsConfig(BaseModel):
    """Self-monitoring configuration."""
    prometheus: PrometheusSelfMetricsConfig = Field(default_factory=PrometheusSelfMetricsConfig)


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"
    control_api_port: int = 8081


class Config(BaseModel):
    """Root configuration model."""
    model_config = {"populate_by_name": True, "frozen": True}

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    datadog: DatadogConfig
    nozzle: NozzleConfig = Field(default_factory=NozzleConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    self_metrics: SelfMetricsConfig = Field(default_factory=SelfMetricsConfig)

    @field_validator('datadog')
    @classmethod
    def validate_api_url(cls, v):
        """Only HTTP(S) endpoints are supported."""
        if not v.api_url.startswith(("http://", "https://")):
            raise ValueError(f"api_url must be an http(s) URL, got '{v.api_url}'")
        return v


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    import yaml

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    if env_api_key := os.getenv('DATADOG_API_KEY'):
        raw_config.setdefault('datadog', {})['api_key'] = env_api_key

    if env_api_url := os.getenv('DATADOG_API_URL'):
        raw_config.setdefault('datadog', {})['api_url'] = env_api_url

    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    try:
        config = Config(**raw_config)
        return config
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
