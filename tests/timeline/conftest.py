"""
Shared fixtures for timeline tests.
"""

import pytest

from perfscope.timeline.clock import ManualFrameScheduler, PlaybackClock
from perfscope.timeline.spans import Span


@pytest.fixture
def queue_and_gpu():
    """Two overlapping spans on different lanes"""
    return [Span("wait", "queue", 0, 10), Span("compute", "gpu", 5, 20)]


@pytest.fixture
def mixed_spans():
    """One request flowing through every lane, listed out of time order"""
    return [
        Span("compute", "gpu", 12, 30),
        Span("wait", "queue", 0, 4),
        Span("copy_in", "h2d", 8, 12),
        Span("preprocess", "cpu", 4, 8),
        Span("copy_out", "d2h", 30, 33),
        Span("pinned", "mem", 9, 11, category="mem"),
    ]


@pytest.fixture
def scheduler():
    return ManualFrameScheduler()


@pytest.fixture
def clock(scheduler):
    """Clock over a 100 ms trace"""
    return PlaybackClock(scheduler, end_ms=100.0)
