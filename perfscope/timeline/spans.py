from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional

from sortedcontainers import SortedKeyList

from perfscope.errors import ParseFailure


class Lane(str, Enum):
    """Resource lanes produced by the simulator and the real-trace importer"""

    QUEUE = "queue"
    CPU = "cpu"
    H2D = "h2d"
    D2H = "d2h"
    GPU = "gpu"


# Lanes and categories counted as "transfer" by the active-set summary
TRANSFER_LANES = frozenset({Lane.H2D.value, Lane.D2H.value, "mem"})

# Relative slack applied to the lower search key of a window query
_KEY_TOLERANCE = 1e-9


@dataclass(frozen=True, slots=True)
class Span:
    """
    A timed interval of work in one resource lane.

    Times are milliseconds from the start of the trace. The duration is always
    derived from the bounds and is never stored.
    """

    name: str
    lane: str
    start_ms: float
    end_ms: float
    category: Optional[str] = None
    tid: Optional[Any] = None
    pid: Optional[Any] = None
    meta: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        if not self.name:
            raise ParseFailure("span name must not be empty")
        if not self.lane:
            raise ParseFailure(f"span '{self.name}' has no lane")
        for label, value in (("start_ms", self.start_ms), ("end_ms", self.end_ms)):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ParseFailure(f"span '{self.name}' {label} is not a number")
            if not math.isfinite(value):
                raise ParseFailure(f"span '{self.name}' {label} is not finite")
        if self.start_ms < 0:
            raise ParseFailure(f"span '{self.name}' starts before 0 ({self.start_ms})")
        if self.end_ms < self.start_ms:
            raise ParseFailure(
                f"span '{self.name}' ends before it starts "
                f"({self.start_ms} > {self.end_ms})"
            )

    @property
    def dur_ms(self) -> float:
        return self.end_ms - self.start_ms

    @property
    def is_transfer(self) -> bool:
        return self.lane in TRANSFER_LANES or self.category == "mem"

    def is_active_at(self, t: float) -> bool:
        """Inclusive on both bounds."""
        return self.start_ms <= t <= self.end_ms

    def overlap_ms(self, window_start: float, window_end: float) -> float:
        """Length of the intersection with [window_start, window_end], 0 if disjoint."""
        return max(0.0, min(window_end, self.end_ms) - max(window_start, self.start_ms))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "lane": self.lane,
            "start_ms": self.start_ms,
            "end_ms": self.end_ms,
            "dur_ms": self.dur_ms,
            "category": self.category,
            "tid": self.tid,
            "pid": self.pid,
        }
        if self.meta:
            data["meta"] = dict(self.meta)
        return data


def _by_start(span: Span) -> float:
    return span.start_ms


class LaneIndex:
    """
    Spans of one trace grouped by lane.

    Lanes keep the order in which they first appear in the trace; inside a lane
    spans are ordered by start time (ties keep parse order). The index is built
    once per trace and reused by every query against it.

    Example:
        >>> index = LaneIndex([Span("a", "gpu", 5, 9), Span("b", "gpu", 0, 3)])
        >>> [s.name for s in index.spans("gpu")]
        ['b', 'a']
    """

    def __init__(self, spans: Iterable[Span]):
        self._lanes: Dict[str, SortedKeyList] = {}
        self._max_duration: Dict[str, float] = {}
        self._count = 0
        for span in spans:
            lane = self._lanes.get(span.lane)
            if lane is None:
                lane = SortedKeyList(key=_by_start)
                self._lanes[span.lane] = lane
                self._max_duration[span.lane] = 0.0
            lane.add(span)
            self._max_duration[span.lane] = max(
                self._max_duration[span.lane], span.dur_ms
            )
            self._count += 1

    def __len__(self) -> int:
        return self._count

    def __contains__(self, lane: str) -> bool:
        return lane in self._lanes

    def __iter__(self) -> Iterator[str]:
        return iter(self._lanes)

    @property
    def lanes(self) -> List[str]:
        return list(self._lanes)

    def spans(self, lane: str) -> List[Span]:
        """All spans of a lane, ordered by start. Unknown lanes yield an empty list."""
        return list(self._lanes.get(lane, ()))

    def candidates(
        self, lane: str, window_start: float, window_end: float
    ) -> Iterator[Span]:
        """
        Spans of a lane that may intersect [window_start, window_end].

        Spans starting after the window are skipped through the start ordering, and
        spans starting before ``window_start - longest span`` cannot reach the window.
        The lower key is widened slightly so float rounding in the subtraction never
        drops a span ending exactly at ``window_start``; callers still check bounds.
        """
        lane_spans = self._lanes.get(lane)
        if not lane_spans:
            return iter(())
        lower = window_start - self._max_duration[lane]
        lower -= _KEY_TOLERANCE * max(1.0, abs(window_start))
        return lane_spans.irange_key(min_key=lower, max_key=window_end)

    def as_dict(self) -> Dict[str, List[Span]]:
        return {lane: list(spans) for lane, spans in self._lanes.items()}
