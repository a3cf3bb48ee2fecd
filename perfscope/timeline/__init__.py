from .spans import Lane, LaneIndex, Span
from .parser import TraceParser, parse_trace, parse_trace_file
from .query import (
    ActiveSet,
    TimelineIndex,
    TraceMetrics,
    active_set_at,
    end_time,
    lane_busy_ms,
    lane_utilization,
    saturation,
    time_to_x,
    trace_metrics,
    x_to_time,
)
from .clock import (
    AsyncioFrameScheduler,
    FrameScheduler,
    ManualFrameScheduler,
    PlaybackClock,
    PlaybackState,
)

__all__ = [
    "Lane",
    "LaneIndex",
    "Span",
    "TraceParser",
    "parse_trace",
    "parse_trace_file",
    "ActiveSet",
    "TimelineIndex",
    "TraceMetrics",
    "active_set_at",
    "end_time",
    "lane_busy_ms",
    "lane_utilization",
    "saturation",
    "time_to_x",
    "trace_metrics",
    "x_to_time",
    "AsyncioFrameScheduler",
    "FrameScheduler",
    "ManualFrameScheduler",
    "PlaybackClock",
    "PlaybackState",
]
