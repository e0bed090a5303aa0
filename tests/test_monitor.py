"""Test the quota monitor: catalog snapshots, usage refresh and warnings."""

import asyncio

import pytest
from conftest import FakeCatalog, FakeMetricSource, FakeUsageSource, make_quota

from aws_quota_monitor import config as config_module
from aws_quota_monitor.core.allow_filter import AllowFilter
from aws_quota_monitor.core.collector import UsageCollector
from aws_quota_monitor.core.errors import (
    CatalogUnavailableError,
    CollectionFailedError,
    UnknownQuotaError,
    UnknownServiceError,
)
from aws_quota_monitor.core.monitor import QuotaMonitor
from aws_quota_monitor.models import UsageProvenance
from aws_quota_monitor.monitoring import structured_logging
from aws_quota_monitor.utils.backoff import retry_on_throttling


@pytest.fixture
def catalog(ec2_quotas, s3_quotas):
    return FakeCatalog(ec2_quotas + s3_quotas)


@pytest.fixture
def usage_sources():
    return {
        "ec2": FakeUsageSource("ec2", {"L-0263D0A3": 4, "L-7029FAB6": 1}),
        "s3": FakeUsageSource("s3", {"L-DC2B2D3D": 96}),
    }


@pytest.fixture
def metric_source():
    return FakeMetricSource({"ResourceCount": 60})


@pytest.fixture
def monitor(catalog, usage_sources, metric_source):
    return QuotaMonitor(catalog, usage_sources, metric_source)


# ========== Catalog ==========

@pytest.mark.asyncio
async def test_refresh_catalog_loads_services_and_quotas(monitor):
    await monitor.refresh_catalog()

    assert {s.code for s in monitor.list_services()} == {"ec2", "s3"}
    assert {q.quota_code for q in monitor.list_quotas("ec2")} == {"L-0263D0A3", "L-7029FAB6", "L-1216C47A"}
    assert monitor.get_quota("s3", "L-DC2B2D3D").applied_value == 100
    assert monitor.catalog_loaded_at is not None


@pytest.mark.asyncio
async def test_unknown_service_and_quota(monitor):
    await monitor.refresh_catalog()

    with pytest.raises(UnknownServiceError):
        monitor.list_quotas("lambda")
    with pytest.raises(UnknownServiceError):
        monitor.get_service("lambda")
    with pytest.raises(UnknownQuotaError):
        monitor.get_quota("ec2", "L-NOPE")


@pytest.mark.asyncio
async def test_service_excluded_by_filter_is_unknown(catalog, usage_sources):
    monitor = QuotaMonitor(catalog, usage_sources, allow_filter=AllowFilter.parse("ec2:L-0263D0A3"))
    await monitor.refresh_catalog()

    assert {q.quota_code for q in monitor.list_quotas("ec2")} == {"L-0263D0A3"}
    with pytest.raises(UnknownServiceError):
        monitor.list_quotas("s3")
    assert catalog.list_quotas_calls == ["ec2"]


@pytest.mark.asyncio
async def test_service_missing_from_catalog_is_dropped(ec2_quotas):
    catalog = FakeCatalog(ec2_quotas, missing=["retired"])
    monitor = QuotaMonitor(catalog)

    await monitor.refresh_catalog()

    assert {s.code for s in monitor.list_services()} == {"ec2"}


@pytest.mark.asyncio
async def test_catalog_failure_keeps_previous_snapshot(monitor, catalog):
    await monitor.refresh_catalog()
    before = monitor.list_services()

    catalog.error = ConnectionError("endpoint unreachable")
    with pytest.raises(CatalogUnavailableError) as exc_info:
        await monitor.refresh_catalog()

    assert exc_info.value.collaborator == "FakeCatalog"
    assert monitor.list_services() == before


@pytest.mark.asyncio
async def test_list_quotas_failure_is_catalog_unavailable(monitor, catalog):
    original = catalog.list_quotas

    def flaky_list_quotas(service_code, allowed=None):
        if service_code == "s3":
            raise ConnectionError("reset by peer")
        return original(service_code, allowed)

    catalog.list_quotas = flaky_list_quotas

    with pytest.raises(CatalogUnavailableError) as exc_info:
        await monitor.refresh_catalog()

    assert "list_quotas(s3)" in str(exc_info.value)
    assert monitor.list_services() == frozenset()


# ========== Usage ==========

@pytest.mark.asyncio
async def test_initialize_collects_usage(monitor):
    await monitor.initialize()

    assert dict(monitor.api_usage()) == {"L-0263D0A3": 4, "L-7029FAB6": 1, "L-DC2B2D3D": 96}
    assert dict(monitor.metric_usage()) == {"L-1216C47A": 60}

    reporting = monitor.reporting_usage()
    assert reporting["L-1216C47A"].source is UsageProvenance.METRIC
    assert reporting["L-DC2B2D3D"].source is UsageProvenance.API


@pytest.mark.asyncio
async def test_quota_usage_rows_are_sorted_and_joined(monitor):
    await monitor.initialize()

    rows = monitor.quota_usage()

    assert [(r.service_code, r.quota_code) for r in rows] == [
        ("ec2", "L-0263D0A3"),
        ("ec2", "L-1216C47A"),
        ("ec2", "L-7029FAB6"),
        ("s3", "L-DC2B2D3D"),
    ]
    eip = rows[0]
    assert eip.quota_name == "EC2-VPC Elastic IPs"
    assert eip.limit == 5
    assert eip.utilization_percent == 80.0


@pytest.mark.asyncio
async def test_usage_for_codes_outside_catalog_is_not_reported(catalog, metric_source):
    sources = {"ec2": FakeUsageSource("ec2", {"L-0263D0A3": 1, "L-UNLISTED": 3})}
    monitor = QuotaMonitor(catalog, sources, metric_source)
    await monitor.initialize()

    assert "L-UNLISTED" in monitor.reporting_usage()
    assert "L-UNLISTED" not in {r.quota_code for r in monitor.quota_usage()}


@pytest.mark.asyncio
async def test_failed_usage_refresh_keeps_previous_maps(monitor, usage_sources):
    await monitor.initialize()
    monitor.register_alarm("warning", 80)
    before = monitor.evaluate_all()

    usage_sources["s3"].error = RuntimeError("AccessDenied")
    with pytest.raises(CollectionFailedError) as exc_info:
        await monitor.refresh_usage()

    assert exc_info.value.source == "s3"
    assert monitor.evaluate_all() == before


# ========== Alarms ==========

@pytest.mark.asyncio
async def test_evaluate_all_reports_most_severe_alarm(monitor):
    await monitor.initialize()
    monitor.register_alarm("warning", 80)
    monitor.register_alarm("critical", 95)

    warnings = monitor.evaluate_all()

    assert [(w.quota_code, w.matched_alarm_name) for w in warnings] == [
        ("L-0263D0A3", "warning"),
        ("L-1216C47A", "warning"),
        ("L-DC2B2D3D", "critical"),
    ]
    buckets = warnings[2]
    assert buckets.usage == 96
    assert buckets.limit == 100
    assert buckets.matched_threshold == 95


@pytest.mark.asyncio
async def test_metric_only_quota_is_evaluated(monitor):
    await monitor.initialize()
    monitor.register_alarm("warning", 90)

    # 60 of 64 on-demand instances is 93.75%
    warnings = monitor.evaluate_all()

    assert [w.quota_code for w in warnings] == ["L-1216C47A", "L-DC2B2D3D"]


@pytest.mark.asyncio
async def test_evaluate_all_is_idempotent(monitor):
    await monitor.initialize()
    monitor.register_alarm("warning", 50)

    assert monitor.evaluate_all() == monitor.evaluate_all()


@pytest.mark.asyncio
async def test_no_alarms_no_warnings(monitor):
    await monitor.initialize()
    assert monitor.evaluate_all() == []


@pytest.mark.asyncio
async def test_zero_limit_quota_never_warns():
    catalog = FakeCatalog([make_quota("ec2", "L-UNLIMITED", 0)])
    sources = {"ec2": FakeUsageSource("ec2", {"L-UNLIMITED": 10})}
    monitor = QuotaMonitor(catalog, sources)
    await monitor.initialize()
    monitor.register_alarm("any", 0)

    assert monitor.evaluate_all() == []


@pytest.mark.asyncio
async def test_register_alarm_replaces_threshold(monitor):
    await monitor.initialize()
    monitor.register_alarm("warning", 99)
    assert monitor.evaluate_all() == []

    monitor.register_alarm("warning", 80)
    assert len(monitor.alarms) == 1
    assert [w.quota_code for w in monitor.evaluate_all()] == ["L-0263D0A3", "L-1216C47A", "L-DC2B2D3D"]

    assert monitor.unregister_alarm("warning") is True
    assert monitor.evaluate_all() == []


@pytest.mark.asyncio
async def test_readers_see_whole_snapshots_during_refresh(catalog, metric_source):
    release = asyncio.Event()

    class GatedSource:
        service_code = "s3"

        async def get_usage(self, allowed_quota_codes=None):
            await release.wait()
            return {"L-DC2B2D3D": 99}

    monitor = QuotaMonitor(catalog, {"s3": FakeUsageSource("s3", {"L-DC2B2D3D": 10})}, metric_source)
    await monitor.initialize()

    monitor.usage_sources = {"s3": GatedSource()}
    refresh = asyncio.ensure_future(monitor.refresh_usage())
    await asyncio.sleep(0)

    assert monitor.api_usage()["L-DC2B2D3D"] == 10

    release.set()
    await refresh
    assert monitor.api_usage()["L-DC2B2D3D"] == 99


# ========== Construction ==========

@pytest.mark.asyncio
async def test_core_does_not_read_process_configuration(monkeypatch, catalog, usage_sources):
    monkeypatch.setenv("QUOTA_ALARMS", "warning")
    monkeypatch.setattr(config_module, "_config", None)
    monkeypatch.setattr(structured_logging, "_structured_logger", None)

    with pytest.raises(ValueError):
        config_module.load_config()

    monitor = QuotaMonitor(catalog, usage_sources)
    UsageCollector()
    retry_on_throttling(max_attempts=1)
    await monitor.initialize()

    assert monitor.api_usage()["L-DC2B2D3D"] == 96
    assert config_module._config is None
    assert structured_logging._structured_logger is None
