"""Reconciliation of metric and API usage into one reporting view."""

from typing import Dict, Mapping

from ..models import UsageProvenance, UsageRecord


def reconcile_usage(metric_usage: Mapping[str, int], api_usage: Mapping[str, int]) -> Dict[str, UsageRecord]:
    """Pick one usage value and provenance per quota code.

    API enumeration is an exact count, metrics are windowed samples, so the
    API value wins when both exist. Metric-only quotas fall back to the
    metric value. Codes in neither map are not evaluable and left out.
    The result is ordered by quota code.
    """
    reporting = {}
    for quota_code in sorted(set(metric_usage) | set(api_usage)):
        if quota_code in api_usage:
            reporting[quota_code] = UsageRecord(quota_code, api_usage[quota_code], UsageProvenance.API)
        else:
            reporting[quota_code] = UsageRecord(quota_code, metric_usage[quota_code], UsageProvenance.METRIC)
    return reporting
