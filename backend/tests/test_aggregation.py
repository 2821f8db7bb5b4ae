from __future__ import annotations

import pytest
from conftest import ping

from lanmonitor.services.aggregation import (
    BucketAggregator,
    BucketState,
    aggregate,
    align,
    bucket_count,
    classify,
    classify_ratio,
    format_latency,
    format_ratio,
    timeline,
)

MINUTE = 60_000


def test_two_target_scenario() -> None:
    samples = [
        ping(0, "A", True, 10.0),
        ping(0, "B", True, 20.0),
        ping(60_000, "A", False),
    ]
    buckets = aggregate(samples, 0, 120_000, MINUTE, targets=["A", "B"])

    assert list(buckets) == [("A", 0), ("A", 60_000), ("B", 0), ("B", 60_000)]

    a0 = buckets[("A", 0)]
    assert a0.state is BucketState.UP
    assert a0.success_ratio == 1.0
    assert a0.avg_ms == 10.0

    a1 = buckets[("A", 60_000)]
    assert a1.state is BucketState.DOWN
    assert a1.success_ratio == 0.0
    assert a1.avg_ms is None

    b0 = buckets[("B", 0)]
    assert b0.state is BucketState.UP
    assert b0.avg_ms == 20.0

    b1 = buckets[("B", 60_000)]
    assert b1.state is BucketState.NO_DATA
    assert b1.total == 0


def test_every_slot_is_present_for_every_target() -> None:
    buckets = aggregate([ping(30_000, "A", True, 1.0)], 0, 5 * MINUTE, MINUTE, targets=["A", "B", "C"])
    assert len(buckets) == 15
    assert sum(1 for b in buckets.values() if b.state is BucketState.NO_DATA) == 14


@pytest.mark.parametrize(
    "success_count,total,expected",
    [
        (0, 0, BucketState.NO_DATA),
        (10, 10, BucketState.UP),
        (9, 10, BucketState.UP),
        (18, 20, BucketState.UP),
        (899, 1000, BucketState.DEGRADED),
        (5, 10, BucketState.DEGRADED),
        (1, 2, BucketState.DEGRADED),
        (4, 10, BucketState.DOWN),
        (0, 3, BucketState.DOWN),
    ],
)
def test_classify(success_count: int, total: int, expected: BucketState) -> None:
    assert classify(success_count, total) is expected


def test_classify_ratio_boundaries() -> None:
    assert classify_ratio(0.9) is BucketState.UP
    assert classify_ratio(0.5) is BucketState.DEGRADED
    assert classify_ratio(0.499999) is BucketState.DOWN


def test_average_ignores_missing_latency() -> None:
    samples = [
        ping(1_000, "A", True, 10.0),
        ping(2_000, "A", True, None),
        ping(3_000, "A", True, 20.0),
        # late reply: unreachable but carrying a time
        ping(4_000, "A", False, 30.0),
    ]
    bucket = aggregate(samples, 0, MINUTE, MINUTE, targets=["A"])[("A", 0)]
    assert bucket.total == 4
    assert bucket.success_count == 3
    assert bucket.avg_ms == 20.0
    assert bucket.state is BucketState.DEGRADED


def test_aggregation_is_deterministic() -> None:
    samples = [ping(i * 7_919, "AB"[i % 2], i % 3 != 0, float(i)) for i in range(200)]
    first = aggregate(samples, 0, 30 * MINUTE, MINUTE, targets=["A", "B"])
    second = aggregate(list(samples), 0, 30 * MINUTE, MINUTE, targets=["A", "B"])
    assert first == second


def test_samples_outside_window_or_unknown_targets_are_ignored() -> None:
    samples = [
        ping(-1, "A", True),
        ping(MINUTE, "A", True),
        ping(10, "Z", True),
        ping(10, "A", False),
    ]
    buckets = aggregate(samples, 0, MINUTE, MINUTE, targets=["A"])
    assert list(buckets) == [("A", 0)]
    assert buckets[("A", 0)].total == 1
    assert buckets[("A", 0)].state is BucketState.DOWN


def test_targets_default_to_those_seen() -> None:
    samples = [ping(0, "B", True), ping(1, "A", True), ping(2, "B", True)]
    buckets = aggregate(samples, 0, MINUTE, MINUTE)
    assert list(buckets) == [("B", 0), ("A", 0)]


def test_unaligned_window_starts_at_containing_bucket() -> None:
    assert align(90_500, MINUTE) == 60_000
    buckets = aggregate([ping(100_000, "A", True)], 90_500, 180_000, MINUTE, targets=["A"])
    assert [start for _, start in buckets] == [60_000, 120_000]
    assert buckets[("A", 60_000)].total == 1


def test_non_positive_bucket_width_rejected() -> None:
    with pytest.raises(ValueError):
        aggregate([], 0, MINUTE, 0)


def test_timeline_groups_per_target() -> None:
    buckets = aggregate([], 0, 3 * MINUTE, MINUTE, targets=["A", "B"])
    grouped = timeline(buckets, ["A", "B"])
    assert list(grouped) == ["A", "B"]
    assert [b.bucket_start for b in grouped["B"]] == [0, 60_000, 120_000]


def test_report_formatting() -> None:
    samples = [ping(0, "A", True, 13.0), ping(1, "A", True, 10.0), ping(2, "A", False)]
    bucket = aggregate(samples, 0, MINUTE, MINUTE, targets=["A"])[("A", 0)]
    assert format_ratio(bucket) == "0.667"
    assert format_latency(bucket) == "11.50"

    empty = aggregate([], 0, MINUTE, MINUTE, targets=["A"])[("A", 0)]
    assert format_ratio(empty) == "0.000"
    assert format_latency(empty) == ""


def test_aggregator_fed_in_batches_matches_aggregate() -> None:
    samples = [
        ping(1_000, "A", True, 10.0),
        ping(30_000, "B", False),
        ping(61_000, "A", False),
        ping(62_000, "A", True, 30.0),
        ping(200_000, "A", True, 1.0),
    ]
    aggregator = BucketAggregator(0, 180_000, MINUTE, ["A", "B"])
    aggregator.add_all(samples[:2])
    aggregator.add_all(samples[2:])

    assert aggregator.buckets() == aggregate(samples, 0, 180_000, MINUTE, targets=["A", "B"])
    assert aggregator.sample_count == 4


def test_bucket_count_does_not_build_buckets() -> None:
    year_ms = 366 * 24 * 60 * 60 * 1000
    assert bucket_count(0, year_ms + 1, 1000) == 31_622_401
    assert bucket_count(30_000, 120_000, MINUTE) == 2

    with pytest.raises(ValueError):
        bucket_count(0, 1, 0)
