"""
Sweep analysis

Pure functions over accumulated sweep results. Inputs are never assumed to be
sorted: every function sorts by ``param`` itself (stable, so duplicates keep
their arrival order) and duplicates are analysed as independent points.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import polars as pl

from perfscope.models import Number, RunSummary, SweepResult

logger = logging.getLogger(__name__)

KNEE_LATENCY_JUMP = 1.25
KNEE_THROUGHPUT_GAIN = 1.1
KNEE_MIN_POINTS = 3
BAND_TOLERANCE = 0.10


@dataclass(frozen=True)
class KneePoint:
    """First parameter value where latency degrades while throughput stalls"""

    param: Number
    previous_param: Number
    p99_ratio: float
    throughput_ratio: float


@dataclass(frozen=True)
class OperatingBand:
    """Range of parameter values whose p99 stays close to the best observed p99"""

    low: Number
    high: Number
    min_p99_ms: float

    @property
    def label(self) -> str:
        """
        Example:
            >>> OperatingBand(2, 4, 19.0).label
            '2–4'
            >>> OperatingBand(8, 8, 3.0).label
            '8'
        """
        if self.low == self.high:
            return _format_param(self.low)
        return f"{_format_param(self.low)}–{_format_param(self.high)}"


@dataclass(frozen=True)
class SummaryDelta:
    """Relative change of run A against baseline run B, in percent"""

    throughput_pct: float
    p99_improvement_pct: float


def sort_results(results: Sequence[SweepResult]) -> List[SweepResult]:
    return sorted(results, key=lambda result: result.param)


def detect_knee(
    results: Sequence[SweepResult],
    latency_jump: float = KNEE_LATENCY_JUMP,
    throughput_gain: float = KNEE_THROUGHPUT_GAIN,
    min_points: int = KNEE_MIN_POINTS,
) -> Optional[KneePoint]:
    """
    Find the first point where p99 jumps while throughput stops scaling.

    Adjacent pairs are scanned in ascending ``param`` order and the first ``cur``
    with ``cur.p99 > prev.p99 * latency_jump`` and
    ``cur.throughput < prev.throughput * throughput_gain`` is reported. Pairs
    where either side lacks p99 or throughput are skipped.

    Args:
        results: Accumulated results of an RPS sweep, in any order.

    Returns:
        Optional[KneePoint]: The earliest knee, or None when there are fewer than
            ``min_points`` results or no pair qualifies.

    Example:
        >>> points = [(1, 10, 1), (2, 11, 2), (3, 13, 3), (4, 30, 3.1)]
        >>> results = [
        ...     SweepResult(str(p), p, RunSummary(p99_ms=l, throughput_rps=t))
        ...     for p, l, t in points
        ... ]
        >>> detect_knee(results).param
        4
    """
    if len(results) < min_points:
        return None

    ordered = sort_results(results)
    for prev, cur in zip(ordered, ordered[1:]):
        if None in (prev.p99_ms, cur.p99_ms, prev.throughput_rps, cur.throughput_rps):
            continue
        if (
            cur.p99_ms > prev.p99_ms * latency_jump
            and cur.throughput_rps < prev.throughput_rps * throughput_gain
        ):
            knee = KneePoint(
                param=cur.param,
                previous_param=prev.param,
                p99_ratio=_ratio(cur.p99_ms, prev.p99_ms),
                throughput_ratio=_ratio(cur.throughput_rps, prev.throughput_rps),
            )
            logger.debug(f"Knee detected at param={cur.param}: {knee}")
            return knee
    return None


def recommend_concurrency(
    results: Sequence[SweepResult], tolerance: float = BAND_TOLERANCE
) -> Optional[OperatingBand]:
    """
    Recommend the concurrency band whose p99 is within ``tolerance`` of the best p99.

    Results without a p99 are ignored.

    Example:
        >>> results = [
        ...     SweepResult(str(p), p, RunSummary(p99_ms=l))
        ...     for p, l in [(1, 50), (2, 20), (4, 19), (8, 21)]
        ... ]
        >>> recommend_concurrency(results).label
        '2–4'
    """
    measured = [result for result in sort_results(results) if result.p99_ms is not None]
    if not measured:
        return None

    min_p99 = min(result.p99_ms for result in measured)
    limit = min_p99 * (1 + tolerance)
    good = [result for result in measured if result.p99_ms <= limit]
    if not good:
        return None
    return OperatingBand(low=good[0].param, high=good[-1].param, min_p99_ms=min_p99)


def compare_summaries(
    candidate: Optional[RunSummary], baseline: Optional[RunSummary]
) -> Optional[SummaryDelta]:
    """
    Percentage change of a run against a baseline run.

    Throughput is positive when the candidate is faster; p99 improvement is
    positive when the candidate has the lower p99. Returns None when a summary or
    a metric is missing, or a baseline metric is 0.
    """
    if candidate is None or baseline is None:
        return None
    values = (
        candidate.throughput_rps,
        baseline.throughput_rps,
        candidate.p99_ms,
        baseline.p99_ms,
    )
    if None in values or not baseline.throughput_rps or not baseline.p99_ms:
        return None
    return SummaryDelta(
        throughput_pct=(candidate.throughput_rps - baseline.throughput_rps)
        / baseline.throughput_rps
        * 100,
        p99_improvement_pct=(baseline.p99_ms - candidate.p99_ms)
        / baseline.p99_ms
        * 100,
    )


def results_to_frame(results: Sequence[SweepResult]) -> pl.DataFrame:
    """Sweep results as a polars DataFrame sorted by param."""
    rows = []
    for result in sort_results(results):
        summary = result.summary
        rows.append(
            {
                "run_id": result.run_id,
                "param": float(result.param),
                "throughput_rps": summary.throughput_rps,
                "p50_ms": summary.p50_ms,
                "p90_ms": summary.p90_ms,
                "p99_ms": summary.p99_ms,
                "avg_queue_ms": summary.avg_queue_ms,
                "gpu_util_percent": summary.gpu_util_percent,
            }
        )
    schema = {"run_id": pl.Utf8, "param": pl.Float64}
    schema.update(
        {
            column: pl.Float64
            for column in (
                "throughput_rps",
                "p50_ms",
                "p90_ms",
                "p99_ms",
                "avg_queue_ms",
                "gpu_util_percent",
            )
        }
    )
    return pl.DataFrame(rows, schema=schema)


def _ratio(value: float, base: float) -> float:
    if base == 0:
        return float("inf") if value > 0 else 1.0
    return value / base


def _format_param(value: Number) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return f"{value:g}" if isinstance(value, float) else str(value)
