"""Tests for age computation, tier classification, sorting and aggregation."""

import datetime

import pytest

from snapshot_report.domain_types import RiskThresholds, RiskTier, ReportStatistics
from snapshot_report.risk import age_in_days, aggregate, classify, sort_snapshots, summarize_by_vm

from conftest import NOW, days_ago, make_record


def test_scenario_tiers_order_and_totals(scenario_records, thresholds):
    classified = classify(scenario_records, thresholds, now=NOW)
    assert [c.record.size_gib for c in classified] == [60.0, 20.0, 5.0]
    tiers = {c.record.size_gib: c.risk_tier for c in classified}
    assert tiers == {60.0: RiskTier.LOW, 5.0: RiskTier.MEDIUM, 20.0: RiskTier.HIGH}

    stats = aggregate(classified)
    assert stats.total_count == 3
    assert f"{stats.total_size_gib:.2f}" == "85.00"
    assert stats.oldest_age_days == 10
    assert (stats.low_risk_count, stats.medium_risk_count, stats.high_risk_count) == (1, 1, 1)
    assert stats.average_size_gib == pytest.approx(28.33)
    assert stats.average_age_days == 5.0


@pytest.mark.parametrize(
    "age, expected",
    [
        (0, RiskTier.LOW),
        (2, RiskTier.LOW),
        (3, RiskTier.MEDIUM),
        (6, RiskTier.MEDIUM),
        (7, RiskTier.HIGH),
        (400, RiskTier.HIGH),
    ],
)
def test_threshold_boundaries(age, expected, thresholds):
    assert thresholds.classify(age) is expected


@pytest.mark.parametrize("medium, high", [(0, 1), (2, 3), (3, 7), (10, 30)])
def test_every_record_gets_one_tier_and_counts_add_up(medium, high):
    thresholds = RiskThresholds(medium, high)
    records = [make_record(name=f"s{age}", age=age) for age in range(0, 40, 3)]
    stats = aggregate(classify(records, thresholds, now=NOW))
    assert stats.low_risk_count + stats.medium_risk_count + stats.high_risk_count == stats.total_count


@pytest.mark.parametrize("medium, high", [(-1, 3), (3, 3), (5, 2)])
def test_invalid_thresholds_rejected(medium, high):
    with pytest.raises(ValueError):
        RiskThresholds(medium, high)


def test_future_snapshot_is_clamped_to_zero(thresholds):
    future = NOW + datetime.timedelta(hours=5)
    assert age_in_days(future, NOW) == 0
    classified = classify([make_record(created_at=future)], thresholds, now=NOW)
    assert classified[0].age_days == 0
    assert classified[0].risk_tier is RiskTier.LOW


def test_age_is_floored():
    assert age_in_days(days_ago(2, hours=23), NOW) == 2
    assert age_in_days(NOW - datetime.timedelta(hours=23), NOW) == 0


def test_naive_timestamps_are_treated_as_utc():
    naive = days_ago(4).replace(tzinfo=None)
    assert age_in_days(naive, NOW) == 4


def test_same_instant_records_classify_identically(thresholds):
    created = days_ago(3)
    records = [make_record(name=str(i), created_at=created) for i in range(5)]
    classified = classify(records, thresholds, now=NOW)
    assert {c.risk_tier for c in classified} == {RiskTier.MEDIUM}


def test_sort_by_size_is_stable_for_ties(thresholds):
    records = [
        make_record(name="a", size=10.0),
        make_record(name="b", size=20.0),
        make_record(name="c", size=10.0),
        make_record(name="d", size=10.0),
    ]
    classified = classify(records, thresholds, now=NOW)
    assert [c.record.snapshot_name for c in classified] == ["b", "a", "c", "d"]


def test_sort_by_age(scenario_records, thresholds):
    classified = classify(scenario_records, thresholds, now=NOW, sort_by="age")
    assert [c.age_days for c in classified] == [10, 4, 1]


def test_unknown_sort_key(thresholds):
    with pytest.raises(ValueError):
        sort_snapshots(classify([make_record()], thresholds, now=NOW), "name")


def test_empty_aggregation_is_all_zero():
    stats = aggregate([])
    assert stats == ReportStatistics()
    assert stats.total_size_gib == 0.0 and stats.oldest_age_days == 0


def test_total_size_matches_sum(thresholds):
    sizes = [0.333, 1.111, 2.5, 10.004]
    records = [make_record(name=str(i), size=s, age=i) for i, s in enumerate(sizes)]
    stats = aggregate(classify(records, thresholds, now=NOW))
    assert stats.total_size_gib == pytest.approx(sum(sizes), abs=0.01)
    assert stats.oldest_age_days == 3


def test_summarize_by_vm(thresholds):
    records = [
        make_record(vm="a", name="1", size=5.0, age=1),
        make_record(vm="b", name="1", size=30.0, age=2),
        make_record(vm="a", name="2", size=6.0, age=8),
    ]
    summaries = summarize_by_vm(classify(records, thresholds, now=NOW))
    assert [s.vm_name for s in summaries] == ["b", "a"]
    assert summaries[1].snapshot_count == 2
    assert summaries[1].total_size_gib == 11.0
    assert summaries[1].worst_tier is RiskTier.HIGH
