"""Failure correlation - what the other targets looked like when the primary failed."""
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Tuple

DEFAULT_TOLERANCE_MS = 1500


class CorrelationState(str, Enum):
    SUCCESS = "success"
    FAIL = "fail"
    NO_DATA = "no_data"


@dataclass(frozen=True)
class CorrelationRow:
    """One primary-target failure and the neighbouring state of the others."""
    ts: int
    primary: str
    others: Dict[str, CorrelationState] = field(default_factory=dict)

    @property
    def primary_state(self) -> CorrelationState:
        return CorrelationState.FAIL


def _merge(states: Dict[str, CorrelationState], target: str, alive: bool) -> None:
    # Any alive sample in the window wins over failures
    if alive:
        states[target] = CorrelationState.SUCCESS
    elif states[target] is CorrelationState.NO_DATA:
        states[target] = CorrelationState.FAIL


class FailureCorrelator:
    """Single pass over samples in ascending `ts` order.

    Only other-target samples within the tolerance of the newest sample and
    failures whose tolerance range is still open are held, so memory stays
    flat however many samples are fed. `max_rows` caps the number of
    failure rows collected.
    """

    def __init__(
        self,
        primary: str,
        others: Sequence[str],
        window_start: int,
        window_end: int,
        tolerance_ms: int = DEFAULT_TOLERANCE_MS,
        max_rows: Optional[int] = None,
    ):
        if tolerance_ms < 0:
            raise ValueError("tolerance_ms must not be negative")
        self.primary = primary
        self.others = list(others)
        self.window_start = window_start
        self.window_end = window_end
        self.tolerance_ms = tolerance_ms
        self.max_rows = max_rows

        self._other_set = set(self.others)
        self._recent: Deque[Tuple[int, str, bool]] = deque()
        self._open: Deque[Tuple[int, Dict[str, CorrelationState]]] = deque()
        self.rows: List[CorrelationRow] = []

    def _close_before(self, ts: int) -> None:
        while self._open and self._open[0][0] + self.tolerance_ms < ts:
            failed_at, states = self._open.popleft()
            self.rows.append(CorrelationRow(ts=failed_at, primary=self.primary, others=states))

    def add(self, sample) -> None:
        ts = sample.ts
        self._close_before(ts)

        if sample.target == self.primary:
            if sample.alive or not (self.window_start <= ts < self.window_end):
                return
            if self.max_rows is not None and len(self.rows) + len(self._open) >= self.max_rows:
                raise ValueError(
                    f"More than {self.max_rows} failures of {self.primary}; use a shorter window"
                )
            states = {target: CorrelationState.NO_DATA for target in self.others}
            for seen_ts, target, alive in self._recent:
                if seen_ts >= ts - self.tolerance_ms:
                    _merge(states, target, alive)
            self._open.append((ts, states))

        elif sample.target in self._other_set:
            alive = bool(sample.alive)
            for _, states in self._open:
                _merge(states, sample.target, alive)
            self._recent.append((ts, sample.target, alive))
            while self._recent[0][0] < ts - self.tolerance_ms:
                self._recent.popleft()

    def add_all(self, samples: Iterable) -> None:
        for sample in samples:
            self.add(sample)

    def finish(self) -> List[CorrelationRow]:
        """Close every pending failure and return all rows, ascending by `ts`."""
        while self._open:
            failed_at, states = self._open.popleft()
            self.rows.append(CorrelationRow(ts=failed_at, primary=self.primary, others=states))
        return self.rows


def correlate_failures(
    samples: Iterable,
    primary: str,
    others: Sequence[str],
    window_start: int,
    window_end: int,
    tolerance_ms: int = DEFAULT_TOLERANCE_MS,
) -> List[CorrelationRow]:
    """One row per failed `primary` sample in [window_start, window_end).

    For each other target: `success` if any of its samples within
    +/- tolerance_ms was alive, `fail` if it only has failed samples there,
    `no_data` if it has none. Samples of the other targets may lie outside
    the window; only the primary's failures are bounded by it. Samples may
    come in any order.
    """
    correlator = FailureCorrelator(primary, others, window_start, window_end, tolerance_ms)
    correlator.add_all(sorted(samples, key=lambda s: s.ts))
    return correlator.finish()
