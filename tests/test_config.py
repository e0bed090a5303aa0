"""Test environment-based configuration."""

import pytest

from aws_quota_monitor.config import AlarmConfig, CollectionConfig, FilterConfig, alarm_items, load_config


@pytest.fixture
def clean_env(monkeypatch):
    for key in (
        "AWS_REGION", "AWS_DEFAULT_REGION", "AWS_PROFILE", "QUOTA_ALLOWED_SERVICES", "QUOTA_ALARMS",
        "QUOTA_MAX_WORKERS", "QUOTA_METRIC_PERIOD", "QUOTA_CHECK_INTERVAL", "ENVIRONMENT",
        "ENABLE_METRICS", "ALERT_WEBHOOK_URL", "LOG_LEVEL", "LOG_FORMAT",
    ):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    config = load_config()

    assert config.aws.region == "us-east-1"
    assert config.aws.profile is None
    assert config.collection.max_workers == 8
    assert config.collection.metric_period == 300
    assert config.alarms.alarms == {}
    assert config.filter.build_filter().allows_service("anything")
    assert config.monitoring.enable_metrics is False


def test_environment_overrides(clean_env):
    clean_env.setenv("AWS_REGION", "eu-west-1")
    clean_env.setenv("AWS_PROFILE", "audit")
    clean_env.setenv("QUOTA_ALLOWED_SERVICES", "ec2:L-0263D0A3;s3")
    clean_env.setenv("QUOTA_ALARMS", "warning=80, critical=95")
    clean_env.setenv("QUOTA_MAX_WORKERS", "3")
    clean_env.setenv("ENABLE_METRICS", "yes")
    clean_env.setenv("LOG_FORMAT", "JSON")

    config = load_config()

    assert config.aws.region == "eu-west-1"
    assert config.aws.profile == "audit"
    assert config.filter.build_filter().allowed_quotas("ec2") == frozenset({"L-0263D0A3"})
    assert alarm_items(config) == [("warning", 80), ("critical", 95)]
    assert config.collection.max_workers == 3
    assert config.monitoring.enable_metrics is True
    assert config.logging.format == "json"


def test_alarm_order_is_preserved():
    config = AlarmConfig(alarms="critical=95,warning=80")
    assert list(config.alarms) == ["critical", "warning"]


@pytest.mark.parametrize("alarms", ["warning", "=80", "warning=-5", "warning=high"])
def test_invalid_alarms_are_rejected(alarms):
    with pytest.raises(ValueError):
        AlarmConfig(alarms=alarms)


def test_invalid_allow_filter_is_rejected():
    with pytest.raises(ValueError):
        FilterConfig(allowed_services="ec2;ec2")


@pytest.mark.parametrize("field,value", [
    ("max_workers", 0),
    ("metric_period", 90),
    ("retry_attempts", 0),
])
def test_invalid_collection_settings(field, value):
    with pytest.raises(ValueError):
        CollectionConfig(**{field: value})


def test_invalid_environment_fails_to_load(clean_env):
    clean_env.setenv("ENVIRONMENT", "qa")
    with pytest.raises(ValueError):
        load_config()
