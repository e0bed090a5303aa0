"""Environment-based configuration management for the AWS quota monitor."""

import logging
import os
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, validator

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


class AwsConfig(BaseModel):
    """AWS session configuration."""

    region: str = Field("us-east-1", description="AWS region to inspect")
    profile: Optional[str] = Field(None, description="Named AWS profile")

    @validator('region')
    def validate_region(cls, v):
        if not v:
            raise ValueError("AWS_REGION is required")
        return v


class FilterConfig(BaseModel):
    """Which services and quotas take part in collection."""

    allowed_services: str = Field("", description="Allow filter, e.g. 'ec2:L-1,L-2;s3'")

    @validator('allowed_services')
    def validate_allowed_services(cls, v):
        from .core.allow_filter import AllowFilter

        # Fail at load time rather than on first refresh
        AllowFilter.parse(v or "")
        return v or ""

    def build_filter(self):
        from .core.allow_filter import AllowFilter

        return AllowFilter.parse(self.allowed_services)


class AlarmConfig(BaseModel):
    """Alarms registered at startup, in registration order."""

    alarms: Dict[str, int] = Field(default_factory=dict, description="Alarm name to threshold percent")

    @validator('alarms', pre=True)
    def parse_alarms(cls, v):
        if isinstance(v, str):
            parsed = {}
            for item in v.split(','):
                item = item.strip()
                if not item:
                    continue
                name, sep, threshold = item.partition('=')
                if not sep or not name.strip():
                    raise ValueError(f"invalid alarm definition '{item}', expected name=percent")
                parsed[name.strip()] = int(threshold)
            return parsed
        return v

    @validator('alarms')
    def validate_thresholds(cls, v):
        for name, threshold in v.items():
            if threshold < 0:
                raise ValueError(f"alarm '{name}' threshold must be >= 0")
        return v


class CollectionConfig(BaseModel):
    """Usage collection configuration."""

    max_workers: int = Field(8, description="Concurrent collaborator calls")
    metric_period: int = Field(300, description="CloudWatch statistics period in seconds")
    metric_window_minutes: int = Field(5, description="CloudWatch lookback window in minutes")
    check_interval: int = Field(300, description="Seconds between checks in watch mode")
    retry_attempts: int = Field(5, description="Attempts for throttled AWS calls")

    @validator('max_workers')
    def validate_max_workers(cls, v):
        if v < 1:
            raise ValueError("max_workers must be at least 1")
        return v

    @validator('metric_period')
    def validate_metric_period(cls, v):
        if v < 60 or v % 60 != 0:
            raise ValueError("metric_period must be a positive multiple of 60")
        return v

    @validator('retry_attempts')
    def validate_retry_attempts(cls, v):
        if v < 1:
            raise ValueError("retry_attempts must be at least 1")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field("INFO", description="Log level")
    format: str = Field("text", description="Log format (text or json)")

    @validator('level')
    def validate_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}")
        return v.upper()

    @validator('format')
    def validate_format(cls, v):
        if v.lower() not in ["text", "json"]:
            raise ValueError("format must be 'text' or 'json'")
        return v.lower()


class MonitoringConfig(BaseModel):
    """Metrics export and warning notification configuration."""

    enable_metrics: bool = Field(False, description="Expose Prometheus metrics")
    metrics_port: int = Field(9090, description="Prometheus metrics port")
    alert_webhook_url: Optional[str] = Field(None, description="Webhook receiving quota warnings")
    alert_webhook_timeout: int = Field(30, description="Webhook timeout in seconds")

    @validator('metrics_port')
    def validate_port(cls, v):
        if not (1 <= v <= 65535):
            raise ValueError("port must be between 1 and 65535")
        return v


class MonitorConfig(BaseModel):
    """Complete quota monitor configuration."""

    environment: str = Field("production", description="Environment name")
    app_version: str = Field("0.1.0", description="Application version")

    # Sub-configurations
    aws: AwsConfig
    filter: FilterConfig
    alarms: AlarmConfig
    collection: CollectionConfig
    logging: LoggingConfig
    monitoring: MonitoringConfig

    @validator('environment')
    def validate_environment(cls, v):
        valid_envs = ["development", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"environment must be one of {valid_envs}")
        return v.lower()


def load_config() -> MonitorConfig:
    """Load configuration from environment variables."""

    # Helper function to get environment variable with default
    def get_env(key: str, default=None, type_func=str):
        value = os.getenv(key, default)
        if value is None:
            return default
        if type_func is bool:
            if isinstance(value, bool):
                return value
            return str(value).lower() in ('true', '1', 'yes', 'on')
        return type_func(value)

    try:
        config = MonitorConfig(
            environment=get_env("ENVIRONMENT", "production"),
            app_version=get_env("APP_VERSION", "0.1.0"),

            aws=AwsConfig(
                region=get_env("AWS_REGION", get_env("AWS_DEFAULT_REGION", "us-east-1")),
                profile=get_env("AWS_PROFILE"),
            ),

            filter=FilterConfig(
                allowed_services=get_env("QUOTA_ALLOWED_SERVICES", ""),
            ),

            alarms=AlarmConfig(
                alarms=get_env("QUOTA_ALARMS", ""),
            ),

            collection=CollectionConfig(
                max_workers=get_env("QUOTA_MAX_WORKERS", 8, int),
                metric_period=get_env("QUOTA_METRIC_PERIOD", 300, int),
                metric_window_minutes=get_env("QUOTA_METRIC_WINDOW_MINUTES", 5, int),
                check_interval=get_env("QUOTA_CHECK_INTERVAL", 300, int),
                retry_attempts=get_env("QUOTA_RETRY_ATTEMPTS", 5, int),
            ),

            logging=LoggingConfig(
                level=get_env("LOG_LEVEL", "INFO"),
                format=get_env("LOG_FORMAT", "text"),
            ),

            monitoring=MonitoringConfig(
                enable_metrics=get_env("ENABLE_METRICS", False, bool),
                metrics_port=get_env("METRICS_PORT", 9090, int),
                alert_webhook_url=get_env("ALERT_WEBHOOK_URL"),
                alert_webhook_timeout=get_env("ALERT_WEBHOOK_TIMEOUT", 30, int),
            ),
        )

        logger.info(f"Configuration loaded successfully for environment: {config.environment}")
        return config

    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise


def alarm_items(config: MonitorConfig) -> List[tuple]:
    """Configured alarms as (name, threshold) pairs in registration order."""
    return list(config.alarms.alarms.items())


# Global configuration instance
_config: Optional[MonitorConfig] = None


def get_config() -> MonitorConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> MonitorConfig:
    """Reload configuration from environment variables."""
    global _config
    _config = load_config()
    return _config
