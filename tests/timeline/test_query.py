import random

import polars as pl
import pytest

from perfscope.errors import ValidationFailure
from perfscope.timeline.query import (
    TimelineIndex,
    active_set_at,
    end_time,
    lane_busy_ms,
    lane_utilization,
    ruler_step,
    ruler_ticks,
    saturation,
    spans_to_frame,
    time_to_x,
    trace_metrics,
    x_to_time,
)
from perfscope.timeline.spans import Span


@pytest.fixture(params=["list", "index"])
def as_source(request):
    """Run each query test against a plain span list and a TimelineIndex"""

    def _build(spans):
        return list(spans) if request.param == "list" else TimelineIndex(spans)

    return _build


class TestActiveSet:
    def test_queue_and_gpu_example(self, as_source, queue_and_gpu):
        active = active_set_at(as_source(queue_and_gpu), 7)
        assert active.counts() == {
            "total": 2,
            "queued": 1,
            "gpu": 1,
            "transfer": 0,
            "cpu": 0,
        }
        assert active.by_lane == {"queue": 1, "gpu": 1}
        assert active.queue_forming

    @pytest.mark.parametrize("t, expected", [(5, 2), (10, 2), (20, 1), (20.5, 0), (0, 1)])
    def test_bounds_are_inclusive(self, as_source, queue_and_gpu, t, expected):
        assert active_set_at(as_source(queue_and_gpu), t).total == expected

    @pytest.mark.parametrize(
        "start, end",
        [
            (139.7, 758.069),
            (243.911, 947.511),
            (16.209, 133.339),
            (100.61, 955.9300000000001),
        ],
    )
    def test_fractional_bounds_are_inclusive(self, as_source, start, end):
        spans = as_source([Span("k", "gpu", start, end)])
        assert active_set_at(spans, end).total == 1
        assert active_set_at(spans, start).total == 1

    def test_transfer_counts_h2d_d2h_and_mem(self, as_source, mixed_spans):
        active = active_set_at(as_source(mixed_spans), 10)
        assert active.transfer == 2
        assert active.by_lane == {"h2d": 1, "mem": 1}
        assert active.gpu == 0

    def test_unknown_lane_counted_in_total(self, as_source):
        spans = [Span("link", "nvlink", 0, 10), Span("k", "gpu", 0, 10)]
        active = active_set_at(as_source(spans), 5)
        assert active.total == 2
        assert active.by_lane["nvlink"] == 1

    def test_empty_trace(self, as_source):
        active = active_set_at(as_source([]), 3)
        assert active.total == 0
        assert active.counts()["queued"] == 0

    def test_independent_of_input_order(self, mixed_spans):
        shuffled = list(mixed_spans)
        random.Random(4).shuffle(shuffled)
        for t in (0, 4, 9, 12, 30, 33, 40):
            expected = {s.name for s in active_set_at(mixed_spans, t).spans}
            assert {s.name for s in active_set_at(shuffled, t).spans} == expected
            index = TimelineIndex(shuffled)
            assert {s.name for s in active_set_at(index, t).spans} == expected

    def test_repeated_queries_are_deterministic(self, mixed_spans):
        index = TimelineIndex(mixed_spans)
        first = active_set_at(index, 12).counts()
        active_set_at(index, 30)
        assert active_set_at(index, 12).counts() == first


class TestUtilization:
    def test_full_coverage(self, as_source):
        spans = as_source([Span("k", "gpu", 0, 500)])
        assert lane_utilization(spans, "gpu", 0, 500) == 1.0

    def test_partial_coverage(self, as_source):
        spans = as_source([Span("k", "gpu", 0, 100), Span("k", "gpu", 300, 350)])
        assert lane_utilization(spans, "gpu", 0, 500) == pytest.approx(0.3)

    def test_zero_width_window_is_zero(self, as_source, mixed_spans):
        spans = as_source(mixed_spans)
        for t in (0, 12, 20, 100):
            assert lane_utilization(spans, "gpu", t, t) == 0.0

    def test_inverted_window_is_zero(self, as_source):
        assert lane_utilization(as_source([Span("k", "gpu", 0, 10)]), "gpu", 10, 0) == 0.0

    def test_overlapping_spans_clamped_to_one(self, as_source):
        spans = as_source([Span("a", "gpu", 0, 10), Span("b", "gpu", 0, 10)])
        assert lane_busy_ms(spans, "gpu", 0, 10) == 20
        assert lane_utilization(spans, "gpu", 0, 10) == 1.0

    def test_other_lanes_ignored(self, as_source, queue_and_gpu):
        spans = as_source(queue_and_gpu)
        assert lane_utilization(spans, "gpu", 0, 5) == 0.0
        assert lane_utilization(spans, "cpu", 0, 20) == 0.0

    def test_busy_time_grows_with_window(self, as_source, mixed_spans):
        spans = as_source(mixed_spans)
        previous = 0.0
        for half_width in (0, 1, 2, 5, 10, 20, 40):
            busy = lane_busy_ms(spans, "gpu", 20 - half_width, 20 + half_width)
            assert busy >= previous
            previous = busy


class TestSaturation:
    def test_saturated_gpu(self, as_source):
        spans = as_source([Span("k", "gpu", 0, 500)])
        assert saturation(spans, "gpu", 500, 500) is True

    def test_below_threshold(self, as_source):
        spans = as_source([Span("k", "gpu", 0, 300)])
        assert saturation(spans, "gpu", 500, 500) is False

    def test_threshold_is_inclusive(self, as_source):
        spans = as_source([Span("k", "gpu", 100, 500)])
        assert saturation(spans, "gpu", 500, 500, threshold=0.8) is True

    def test_window_clipped_at_trace_start(self, as_source):
        spans = as_source([Span("k", "gpu", 0, 1000)])
        assert saturation(spans, "gpu", 100) is True

    def test_time_zero_is_never_saturated(self, as_source):
        assert saturation(as_source([Span("k", "gpu", 0, 10)]), "gpu", 0) is False

    def test_lane_without_spans(self, as_source, queue_and_gpu):
        assert saturation(as_source(queue_and_gpu), "h2d", 10) is False
        assert saturation(as_source([]), "gpu", 10) is False

    def test_custom_window(self, as_source):
        spans = as_source([Span("k", "gpu", 900, 1000)])
        assert saturation(spans, "gpu", 1000, window_ms=100) is True
        assert saturation(spans, "gpu", 1000, window_ms=500) is False


class TestEndTime:
    def test_empty(self):
        assert end_time([]) == 0
        assert end_time(TimelineIndex([])) == 0

    def test_invariant_under_reordering(self, mixed_spans):
        assert end_time(mixed_spans) == 33
        assert end_time(list(reversed(mixed_spans))) == 33
        assert end_time(TimelineIndex(mixed_spans)) == 33


class TestPixelMapping:
    def test_round_trip(self):
        assert time_to_x(250, 0.4) == pytest.approx(100.0)
        assert x_to_time(100, 0.4) == pytest.approx(250.0)

    @pytest.mark.parametrize("zoom", [0, -1])
    def test_zoom_must_be_positive(self, zoom):
        with pytest.raises(ValidationFailure):
            time_to_x(10, zoom)
        with pytest.raises(ValidationFailure):
            x_to_time(10, zoom)


class TestRuler:
    @pytest.mark.parametrize(
        "end, step", [(0, 10), (99, 10), (100, 50), (499, 50), (500, 100), (1999, 100), (2000, 500)]
    )
    def test_step_buckets(self, end, step):
        assert ruler_step(end) == step

    def test_ticks_include_zero_and_stay_within_end(self):
        ticks = ruler_ticks(120)
        assert ticks == [0.0, 50.0, 100.0]
        assert ruler_ticks(0) == [0.0]


class TestTraceMetrics:
    def test_kernel_and_copy_totals(self, mixed_spans):
        metrics = trace_metrics(mixed_spans)
        assert metrics.kernel_count == 1
        assert metrics.kernel_time_ms == 18
        assert metrics.memcpy_count == 3
        assert metrics.memcpy_time_ms == 9
        assert metrics.wall_time_ms == 33
        assert metrics.overlap_estimate == pytest.approx(27 / 33)

    def test_overlap_capped(self):
        spans = [Span("a", "gpu", 0, 10), Span("b", "h2d", 0, 10)]
        assert trace_metrics(TimelineIndex(spans)).overlap_estimate == 1.0

    def test_empty(self):
        metrics = trace_metrics([])
        assert metrics.wall_time_ms == 0
        assert metrics.overlap_estimate == 0


def test_spans_to_frame(mixed_spans):
    df = spans_to_frame(mixed_spans)
    assert isinstance(df, pl.DataFrame)
    assert df.height == len(mixed_spans)
    assert df["dur_ms"].sum() == pytest.approx(sum(s.dur_ms for s in mixed_spans))
    assert spans_to_frame([]).height == 0
