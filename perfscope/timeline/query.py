"""
Timeline queries

Pure functions over a trace: which spans are active at an instant, how busy a
lane was over a window, whether a lane is saturated, and where the trace ends.
Every function accepts either a plain sequence of spans or a TimelineIndex;
the index precomputes the lane grouping once so repeated queries during
playback do not rebuild it.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import polars as pl

from perfscope.conf import SaturationConfig
from perfscope.errors import ValidationFailure
from perfscope.timeline.spans import Lane, LaneIndex, Span

logger = logging.getLogger(__name__)

DEFAULT_SATURATION = SaturationConfig()


# ============================================================================
# RESULT STRUCTURES
# ============================================================================


@dataclass
class ActiveSet:
    """Spans active at one instant plus per-lane counts"""

    t: float
    spans: List[Span] = field(default_factory=list)
    by_lane: Dict[str, int] = field(default_factory=dict)
    transfer: int = 0

    @property
    def total(self) -> int:
        return len(self.spans)

    @property
    def queued(self) -> int:
        return self.by_lane.get(Lane.QUEUE.value, 0)

    @property
    def gpu(self) -> int:
        return self.by_lane.get(Lane.GPU.value, 0)

    @property
    def cpu(self) -> int:
        return self.by_lane.get(Lane.CPU.value, 0)

    @property
    def queue_forming(self) -> bool:
        return self.queued > 0

    def counts(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "queued": self.queued,
            "gpu": self.gpu,
            "transfer": self.transfer,
            "cpu": self.cpu,
        }


@dataclass
class TraceMetrics:
    """Aggregate timings of a trace, as reported for imported real traces"""

    wall_time_ms: float = 0.0
    kernel_time_ms: float = 0.0
    memcpy_time_ms: float = 0.0
    kernel_count: int = 0
    memcpy_count: int = 0
    overlap_estimate: float = 0.0


# ============================================================================
# TIMELINE INDEX
# ============================================================================


class TimelineIndex:
    """
    Query structure for one trace.

    Built once when a run is selected and discarded when another run replaces it.

    Args:
        spans: The parsed spans of the trace, in parse order.
    """

    def __init__(self, spans: Sequence[Span]):
        self.spans: Tuple[Span, ...] = tuple(spans)
        self.lanes = LaneIndex(self.spans)
        self.end_ms = max((span.end_ms for span in self.spans), default=0.0)
        self._bounds: Dict[str, Tuple[np.ndarray, np.ndarray]] = {}
        for lane in self.lanes:
            lane_spans = self.lanes.spans(lane)
            self._bounds[lane] = (
                np.fromiter((s.start_ms for s in lane_spans), dtype=float),
                np.fromiter((s.end_ms for s in lane_spans), dtype=float),
            )
        logger.debug(
            f"Indexed {len(self.spans)} span(s) across {len(self._bounds)} lane(s), "
            f"end at {self.end_ms} ms"
        )

    def __len__(self) -> int:
        return len(self.spans)

    def active_set_at(self, t: float) -> ActiveSet:
        active = []
        for lane in self.lanes:
            for span in self.lanes.candidates(lane, t, t):
                if span.is_active_at(t):
                    active.append(span)
        return _summarize(t, active)

    def lane_busy_ms(self, lane: str, window_start: float, window_end: float) -> float:
        bounds = self._bounds.get(lane)
        if bounds is None or window_end <= window_start:
            return 0.0
        return _busy_ms(bounds[0], bounds[1], window_start, window_end)

    def lane_utilization(
        self, lane: str, window_start: float, window_end: float
    ) -> float:
        if window_end <= window_start:
            return 0.0
        busy = self.lane_busy_ms(lane, window_start, window_end)
        return _clamp_ratio(busy / (window_end - window_start))

    def saturation(
        self,
        lane: str,
        t: float,
        window_ms: Optional[float] = None,
        threshold: Optional[float] = None,
    ) -> bool:
        window_ms, threshold = _saturation_params(window_ms, threshold)
        if lane not in self.lanes:
            return False
        window_start = max(0.0, t - window_ms)
        if t <= window_start:
            return False
        return self.lane_utilization(lane, window_start, t) >= threshold


SpanSource = Union[TimelineIndex, Sequence[Span]]


# ============================================================================
# QUERIES
# ============================================================================


def active_set_at(spans: SpanSource, t: float) -> ActiveSet:
    """
    Every span whose [start_ms, end_ms] contains t, bounds included.

    Example:
        >>> spans = [Span("wait", "queue", 0, 10), Span("compute", "gpu", 5, 20)]
        >>> active_set_at(spans, 7).counts()
        {'total': 2, 'queued': 1, 'gpu': 1, 'transfer': 0, 'cpu': 0}
    """
    if isinstance(spans, TimelineIndex):
        return spans.active_set_at(t)
    return _summarize(t, [span for span in spans if span.is_active_at(t)])


def lane_busy_ms(
    spans: SpanSource, lane: str, window_start: float, window_end: float
) -> float:
    """Sum of the overlap of the lane's spans with the window, in milliseconds."""
    if isinstance(spans, TimelineIndex):
        return spans.lane_busy_ms(lane, window_start, window_end)
    if window_end <= window_start:
        return 0.0
    lane_spans = [span for span in spans if span.lane == lane]
    if not lane_spans:
        return 0.0
    starts = np.fromiter((s.start_ms for s in lane_spans), dtype=float)
    ends = np.fromiter((s.end_ms for s in lane_spans), dtype=float)
    return _busy_ms(starts, ends, window_start, window_end)


def lane_utilization(
    spans: SpanSource, lane: str, window_start: float, window_end: float
) -> float:
    """
    Fraction of [window_start, window_end] covered by the lane's spans, in [0, 1].

    Overlapping spans of the same lane are summed, so the raw ratio can exceed 1
    before clamping. Empty or inverted windows yield 0.

    Example:
        >>> lane_utilization([Span("k", "gpu", 0, 500)], "gpu", 0, 500)
        1.0
    """
    if window_end <= window_start:
        return 0.0
    busy = lane_busy_ms(spans, lane, window_start, window_end)
    return _clamp_ratio(busy / (window_end - window_start))


def saturation(
    spans: SpanSource,
    lane: str,
    t: float,
    window_ms: Optional[float] = None,
    threshold: Optional[float] = None,
) -> bool:
    """
    Whether the lane was busy at least ``threshold`` of the trailing window ending at t.

    The window is clipped at the start of the trace. Lanes without spans and empty
    windows are never saturated. Defaults come from SaturationConfig (0.8, 500 ms).
    """
    if isinstance(spans, TimelineIndex):
        return spans.saturation(lane, t, window_ms, threshold)
    window_ms, threshold = _saturation_params(window_ms, threshold)
    if not any(span.lane == lane for span in spans):
        return False
    window_start = max(0.0, t - window_ms)
    if t <= window_start:
        return False
    return lane_utilization(spans, lane, window_start, t) >= threshold


def end_time(spans: SpanSource) -> float:
    """Latest end_ms of the trace, 0 for an empty trace."""
    if isinstance(spans, TimelineIndex):
        return spans.end_ms
    return max((span.end_ms for span in spans), default=0.0)


def trace_metrics(spans: SpanSource) -> TraceMetrics:
    """
    Kernel and memcpy totals of a trace.

    GPU-lane spans count as kernels and transfer spans as copies. The overlap
    estimate is the busy time of both relative to the wall time, capped at 1.
    """
    source = spans.spans if isinstance(spans, TimelineIndex) else spans
    metrics = TraceMetrics()
    for span in source:
        if span.lane == Lane.GPU.value:
            metrics.kernel_time_ms += span.dur_ms
            metrics.kernel_count += 1
        elif span.is_transfer:
            metrics.memcpy_time_ms += span.dur_ms
            metrics.memcpy_count += 1
    metrics.wall_time_ms = end_time(spans)
    if metrics.wall_time_ms > 0:
        metrics.overlap_estimate = min(
            1.0,
            (metrics.kernel_time_ms + metrics.memcpy_time_ms) / metrics.wall_time_ms,
        )
    return metrics


# ============================================================================
# TIME <-> PIXEL MAPPING
# ============================================================================


def _check_zoom(zoom_px_per_ms: float):
    if not zoom_px_per_ms > 0:
        raise ValidationFailure(f"zoom must be strictly positive, got {zoom_px_per_ms}")


def time_to_x(t: float, zoom_px_per_ms: float) -> float:
    """
    Example:
        >>> time_to_x(250, 0.4)
        100.0
    """
    _check_zoom(zoom_px_per_ms)
    return t * zoom_px_per_ms


def x_to_time(x: float, zoom_px_per_ms: float) -> float:
    _check_zoom(zoom_px_per_ms)
    return x / zoom_px_per_ms


def ruler_step(end_ms: float) -> float:
    """Spacing of the time ruler ticks for a trace ending at end_ms."""
    if end_ms < 100:
        return 10.0
    if end_ms < 500:
        return 50.0
    if end_ms < 2000:
        return 100.0
    return 500.0


def ruler_ticks(end_ms: float) -> List[float]:
    """
    Example:
        >>> ruler_ticks(35)
        [0.0, 10.0, 20.0, 30.0]
    """
    step = ruler_step(end_ms)
    count = int(end_ms // step)
    return [i * step for i in range(count + 1)]


# ============================================================================
# EXPORT
# ============================================================================


def spans_to_frame(spans: SpanSource) -> pl.DataFrame:
    """Tabular view of a trace, one row per span in parse order."""
    source = spans.spans if isinstance(spans, TimelineIndex) else spans
    rows = [
        {
            "name": span.name,
            "lane": span.lane,
            "category": span.category,
            "start_ms": float(span.start_ms),
            "end_ms": float(span.end_ms),
            "dur_ms": float(span.dur_ms),
            "tid": None if span.tid is None else str(span.tid),
            "pid": None if span.pid is None else str(span.pid),
        }
        for span in source
    ]
    return pl.DataFrame(
        rows,
        schema={
            "name": pl.Utf8,
            "lane": pl.Utf8,
            "category": pl.Utf8,
            "start_ms": pl.Float64,
            "end_ms": pl.Float64,
            "dur_ms": pl.Float64,
            "tid": pl.Utf8,
            "pid": pl.Utf8,
        },
    )


# ============================================================================
# HELPERS
# ============================================================================


def _summarize(t: float, active: List[Span]) -> ActiveSet:
    result = ActiveSet(t=t, spans=active)
    for span in active:
        result.by_lane[span.lane] = result.by_lane.get(span.lane, 0) + 1
        if span.is_transfer:
            result.transfer += 1
    return result


def _busy_ms(
    starts: np.ndarray, ends: np.ndarray, window_start: float, window_end: float
) -> float:
    overlap = np.minimum(ends, window_end) - np.maximum(starts, window_start)
    return float(np.clip(overlap, 0.0, None).sum())


def _clamp_ratio(value: float) -> float:
    return min(1.0, max(0.0, value))


def _saturation_params(
    window_ms: Optional[float], threshold: Optional[float]
) -> Tuple[float, float]:
    if window_ms is None:
        window_ms = DEFAULT_SATURATION.window_ms
    if threshold is None:
        threshold = DEFAULT_SATURATION.threshold
    return window_ms, threshold
