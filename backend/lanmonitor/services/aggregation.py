"""Aggregation engine - turns raw ping samples into fixed-width health buckets.

The same functions back the live timeline endpoint and the daily CSV export,
so both classify a minute identically.

Classification of a bucket with `total` samples of which `success_count`
were alive:

- total == 0          -> NO_DATA
- ratio >= 0.9        -> UP
- 0.5 <= ratio < 0.9  -> DEGRADED
- ratio < 0.5         -> DOWN
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

UP_RATIO = 0.9
DEGRADED_RATIO = 0.5

MINUTE_MS = 60 * 1000


class BucketState(str, Enum):
    UP = "UP"
    DEGRADED = "DEGRADED"
    DOWN = "DOWN"
    NO_DATA = "NO_DATA"


@dataclass(frozen=True)
class TimeBucket:
    """Summary of one target over one aligned interval."""
    bucket_start: int
    target: str
    total: int
    success_count: int
    avg_ms: Optional[float]
    state: BucketState

    @property
    def success_ratio(self) -> float:
        if self.total == 0:
            return 0.0
        return self.success_count / self.total


def classify_ratio(ratio: float) -> BucketState:
    """Map a success ratio onto UP / DEGRADED / DOWN."""
    if ratio >= UP_RATIO:
        return BucketState.UP
    if ratio >= DEGRADED_RATIO:
        return BucketState.DEGRADED
    return BucketState.DOWN


def classify(success_count: int, total: int) -> BucketState:
    """Health state of a bucket from its counts."""
    if total == 0:
        return BucketState.NO_DATA
    return classify_ratio(success_count / total)


def align(ts: int, bucket_ms: int) -> int:
    """Start of the bucket containing `ts`."""
    return (ts // bucket_ms) * bucket_ms


def bucket_starts(window_start: int, window_end: int, bucket_ms: int) -> range:
    """Aligned bucket starts covering [window_start, window_end)."""
    return range(align(window_start, bucket_ms), window_end, bucket_ms)


def bucket_count(window_start: int, window_end: int, bucket_ms: int) -> int:
    """Number of buckets per target, without materializing them."""
    if bucket_ms <= 0:
        raise ValueError("bucket_ms must be positive")
    return len(bucket_starts(window_start, window_end, bucket_ms))


class BucketAggregator:
    """Incremental form of `aggregate` for samples read in batches.

    Memory depends on the number of buckets only, not on the number of
    samples fed in.
    """

    def __init__(self, window_start: int, window_end: int, bucket_ms: int, targets: Sequence[str]):
        if bucket_ms <= 0:
            raise ValueError("bucket_ms must be positive")
        self.window_start = window_start
        self.window_end = window_end
        self.bucket_ms = bucket_ms
        self.sample_count = 0

        starts = bucket_starts(window_start, window_end, bucket_ms)
        # (target, bucket_start) -> [total, success_count, latency_sum, latency_count]
        self._counters: Dict[Tuple[str, int], List] = {
            (target, start): [0, 0, 0.0, 0] for target in targets for start in starts
        }

    def add(self, sample) -> None:
        if not (self.window_start <= sample.ts < self.window_end):
            return
        counter = self._counters.get((sample.target, align(sample.ts, self.bucket_ms)))
        if counter is None:
            return
        self.sample_count += 1
        counter[0] += 1
        if sample.alive:
            counter[1] += 1
        if sample.time_ms is not None:
            counter[2] += sample.time_ms
            counter[3] += 1

    def add_all(self, samples: Iterable) -> None:
        for sample in samples:
            self.add(sample)

    def buckets(self) -> Dict[Tuple[str, int], TimeBucket]:
        buckets = {}
        for (target, start), (total, success_count, latency_sum, latency_count) in self._counters.items():
            buckets[(target, start)] = TimeBucket(
                bucket_start=start,
                target=target,
                total=total,
                success_count=success_count,
                avg_ms=latency_sum / latency_count if latency_count else None,
                state=classify(success_count, total),
            )
        return buckets


def aggregate(
    samples: Iterable,
    window_start: int,
    window_end: int,
    bucket_ms: int,
    targets: Optional[Sequence[str]] = None,
) -> Dict[Tuple[str, int], TimeBucket]:
    """Bucket samples per target and classify every bucket.

    Every (target, bucket) pair in the window is present in the result,
    ordered by target then bucket start; empty buckets are NO_DATA.
    Samples need `ts`, `target`, `alive` and `time_ms` attributes. Samples
    outside [window_start, window_end) or for targets not listed are
    ignored. Without `targets`, the targets seen in `samples` are used in
    first-seen order.
    """
    if targets is None:
        samples = list(samples)
        targets = list(dict.fromkeys(s.target for s in samples))

    aggregator = BucketAggregator(window_start, window_end, bucket_ms, targets)
    aggregator.add_all(samples)
    return aggregator.buckets()


def timeline(buckets: Dict[Tuple[str, int], TimeBucket], targets: Sequence[str]) -> Dict[str, List[TimeBucket]]:
    """Group aggregated buckets into one ordered list per target."""
    grouped = {target: [] for target in targets}
    for (target, _), bucket in buckets.items():
        if target in grouped:
            grouped[target].append(bucket)
    return grouped


def format_ratio(bucket: TimeBucket) -> str:
    """Success ratio for reports, three decimals."""
    return f"{bucket.success_ratio:.3f}"


def format_latency(bucket: TimeBucket) -> str:
    """Average latency for reports, two decimals, empty when undefined."""
    if bucket.avg_ms is None:
        return ""
    return f"{bucket.avg_ms:.2f}"
