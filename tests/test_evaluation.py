"""Test usage reconciliation and alarm evaluation."""

import pytest

from aws_quota_monitor.core.evaluator import AlarmMatch, AlarmRegistry, evaluate, usage_percent
from aws_quota_monitor.core.reconcile import reconcile_usage
from aws_quota_monitor.models import AlarmDefinition, UsageProvenance


def alarms(**thresholds):
    return [AlarmDefinition(name, threshold) for name, threshold in thresholds.items()]


# ========== Reconciliation ==========

def test_api_usage_takes_precedence_over_metric():
    reporting = reconcile_usage({"L-1": 3}, {"L-1": 7})

    assert reporting["L-1"].value == 7
    assert reporting["L-1"].source is UsageProvenance.API


def test_single_source_values_keep_their_provenance():
    reporting = reconcile_usage({"L-METRIC": 4}, {"L-API": 9})

    assert reporting["L-METRIC"].value == 4
    assert reporting["L-METRIC"].source is UsageProvenance.METRIC
    assert reporting["L-API"].value == 9
    assert reporting["L-API"].source is UsageProvenance.API


def test_codes_in_neither_map_are_excluded():
    reporting = reconcile_usage({"L-1": 1}, {"L-2": 2})

    assert "L-3" not in reporting
    assert list(reporting) == ["L-1", "L-2"]


def test_reconciliation_is_derived_from_current_maps():
    metric_usage = {"L-1": 1}
    api_usage = {}
    assert reconcile_usage(metric_usage, api_usage)["L-1"].source is UsageProvenance.METRIC

    api_usage["L-1"] = 5
    assert reconcile_usage(metric_usage, api_usage)["L-1"].value == 5


def test_zero_api_usage_still_wins():
    reporting = reconcile_usage({"L-1": 12}, {"L-1": 0})
    assert reporting["L-1"].value == 0


# ========== Evaluation ==========

def test_most_severe_crossed_alarm_is_selected():
    match = evaluate(92, 100, alarms(low=50, med=80, high=90))
    assert match == AlarmMatch(name="high", threshold=90)


def test_no_alarm_below_threshold():
    assert evaluate(40, 100, alarms(low=50)) is None


@pytest.mark.parametrize("limit", [0, -1, None])
def test_unusable_limit_is_not_evaluable(limit):
    assert evaluate(10, limit, alarms(low=5)) is None


def test_over_limit_usage_matches_high_threshold():
    match = evaluate(120, 100, alarms(high=100))
    assert match.threshold == 100


def test_threshold_equal_to_percent_matches():
    match = evaluate(80, 100, alarms(warning=80, critical=95))
    assert match.name == "warning"


def test_fractional_limit_uses_float_percent():
    # 3 / 3.5 is about 85.7%
    match = evaluate(3, 3.5, alarms(warning=80, critical=90))
    assert match.name == "warning"


def test_tie_goes_to_first_alarm_in_order():
    ordered = [AlarmDefinition("zeta", 80), AlarmDefinition("alpha", 80)]
    assert evaluate(85, 100, ordered).name == "zeta"
    assert evaluate(85, 100, list(reversed(ordered))).name == "alpha"


def test_zero_threshold_matches_zero_usage():
    assert evaluate(0, 10, alarms(always=0)).name == "always"


def test_usage_percent():
    assert usage_percent(25, 50) == 50.0
    assert usage_percent(1, 0) is None


# ========== Alarm registry ==========

def test_register_is_upsert_keeping_position():
    registry = AlarmRegistry()
    registry.register("warning", 80)
    registry.register("critical", 95)
    registry.register("warning", 70)

    assert [(a.name, a.threshold_percent) for a in registry.alarms()] == [
        ("warning", 70),
        ("critical", 95),
    ]
    assert len(registry) == 2


def test_registry_tie_break_follows_registration_order():
    registry = AlarmRegistry([("first", 90), ("second", 90)])
    assert evaluate(95, 100, registry.alarms()).name == "first"


def test_unregister():
    registry = AlarmRegistry([("warning", 80)])

    assert registry.unregister("warning") is True
    assert registry.unregister("warning") is False
    assert "warning" not in registry


def test_snapshot_of_alarms_is_not_affected_by_later_changes():
    registry = AlarmRegistry([("warning", 80)])
    snapshot = registry.alarms()
    registry.register("critical", 95)

    assert len(snapshot) == 1


@pytest.mark.parametrize("name,threshold", [
    ("", 80),
    ("warning", -1),
    ("warning", True),
    ("warning", 80.5),
])
def test_register_rejects_invalid_alarms(name, threshold):
    with pytest.raises(ValueError):
        AlarmRegistry().register(name, threshold)
