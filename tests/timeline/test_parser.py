import json

import pytest

from perfscope.errors import ParseFailure
from perfscope.timeline.parser import (
    TraceParser,
    normalize_lane,
    normalize_record,
    parse_trace,
    parse_trace_file,
)


@pytest.fixture
def chrome_trace():
    return {
        "traceEvents": [
            {"name": "process_name", "ph": "M", "pid": 1, "args": {"name": "sim"}},
            {"name": "queue", "cat": "queue", "ph": "X", "ts": 0, "dur": 4000, "pid": 1, "tid": 0},
            {"name": "h2d", "cat": "h2d", "ph": "X", "ts": 4000, "dur": 1500, "pid": 1, "tid": 2},
            {"name": "kernel", "cat": "gpu", "ph": "X", "ts": 5500, "dur": 10000, "pid": 1, "tid": 3},
        ]
    }


@pytest.fixture
def breakdown():
    return {
        "requests": [
            {
                "id": 7,
                "end_ms": 12,
                "stages": [
                    {"name": "queue", "cat": "queue", "start_ms": 0, "end_ms": 2},
                    {"name": "compute", "cat": "compute", "start_ms": 2, "end_ms": 12},
                ],
            }
        ],
        "stage_aggregates": {},
    }


class TestChromeTrace:
    def test_complete_events_become_spans(self, chrome_trace):
        spans = parse_trace(chrome_trace)
        assert [s.lane for s in spans] == ["queue", "h2d", "gpu"]
        kernel = spans[2]
        assert kernel.start_ms == pytest.approx(5.5)
        assert kernel.end_ms == pytest.approx(15.5)
        assert kernel.dur_ms == pytest.approx(10.0)
        assert kernel.tid == 3
        assert kernel.pid == 1

    def test_metadata_events_are_skipped_not_dropped(self, chrome_trace):
        parser = TraceParser()
        parser.parse(chrome_trace)
        assert parser.skipped == 1
        assert parser.dropped == 0

    def test_bare_event_list(self, chrome_trace):
        spans = parse_trace(chrome_trace["traceEvents"])
        assert len(spans) == 3

    def test_lane_from_args_wins_over_category(self):
        span = normalize_record(
            {"name": "memcpy", "cat": "mem", "ph": "X", "ts": 0, "dur": 10, "args": {"lane": "d2h"}}
        )
        assert span.lane == "d2h"
        assert span.category == "mem"

    def test_event_without_phase_is_kept(self):
        (span,) = parse_trace([{"name": "k", "cat": "kernel", "ts": 2000, "dur": 1000}])
        assert span.lane == "gpu"
        assert span.start_ms == 2.0

    def test_event_without_duration_is_dropped(self):
        parser = TraceParser()
        spans = parser.parse([{"name": "k", "cat": "gpu", "ph": "X", "ts": 0}])
        assert spans == []
        assert parser.dropped == 1


class TestBreakdown:
    def test_stages_become_spans(self, breakdown):
        spans = parse_trace(breakdown)
        assert [(s.name, s.lane) for s in spans] == [("queue", "queue"), ("compute", "gpu")]
        assert spans[1].category == "compute"
        assert spans[1].meta["request_id"] == 7


class TestFlatRecords:
    def test_camel_and_snake_case(self):
        spans = parse_trace(
            [
                {"name": "a", "lane": "cpu", "startMs": 1, "endMs": 2},
                {"name": "b", "lane": "cpu", "start_ms": 3, "end_ms": 5},
            ]
        )
        assert [(s.start_ms, s.end_ms) for s in spans] == [(1, 2), (3, 5)]

    def test_duration_used_when_end_missing(self):
        (span,) = parse_trace([{"name": "a", "lane": "gpu", "startMs": 1, "durMs": 4}])
        assert span.end_ms == 5

    def test_stale_duration_ignored_when_end_present(self):
        (span,) = parse_trace(
            [{"name": "a", "lane": "gpu", "startMs": 1, "endMs": 3, "durMs": 99}]
        )
        assert span.dur_ms == 2

    def test_missing_optional_fields(self):
        (span,) = parse_trace([{"name": "a", "lane": "gpu", "startMs": 0, "endMs": 1}])
        assert span.category is None
        assert span.tid is None
        assert span.pid is None

    def test_name_falls_back_to_lane(self):
        (span,) = parse_trace([{"lane": "queue", "startMs": 0, "endMs": 1}])
        assert span.name == "queue"

    def test_numeric_strings_accepted(self):
        (span,) = parse_trace([{"name": "a", "lane": "gpu", "startMs": "1.5", "endMs": "2"}])
        assert span.start_ms == 1.5


class TestMalformedRecords:
    def test_one_good_one_negative_duration(self):
        spans = parse_trace(
            [
                {"name": "ok", "lane": "gpu", "startMs": 0, "endMs": 5},
                {"name": "bad", "lane": "gpu", "startMs": 5, "endMs": 1},
            ]
        )
        assert len(spans) == 1
        assert spans[0].name == "ok"

    def test_dropped_records_are_counted(self):
        parser = TraceParser()
        spans = parser.parse(
            [
                {"name": "ok", "lane": "gpu", "startMs": 0, "endMs": 5},
                {"name": "no_lane", "startMs": 0, "endMs": 1},
                {"name": "no_start", "lane": "gpu", "endMs": 1},
                {"name": "no_end", "lane": "gpu", "startMs": 1},
                {"name": "bool", "lane": "gpu", "startMs": True, "endMs": 2},
                {"name": "text", "lane": "gpu", "startMs": "soon", "endMs": 2},
                "not a record",
                None,
            ]
        )
        assert len(spans) == 1
        assert parser.dropped == 7

    def test_counters_reset_between_parses(self):
        parser = TraceParser()
        parser.parse([{"name": "bad", "lane": "gpu", "startMs": 5, "endMs": 1}])
        parser.parse([])
        assert parser.dropped == 0

    def test_unsupported_payloads_yield_nothing(self):
        assert parse_trace(None) == []
        assert parse_trace(42) == []
        assert parse_trace({"traceEvents": "nope"}) == []
        assert parse_trace("{not json") == []

    def test_json_text_is_decoded(self):
        text = json.dumps([{"name": "a", "lane": "gpu", "startMs": 0, "endMs": 1}])
        assert len(parse_trace(text)) == 1

    def test_normalize_record_raises(self):
        with pytest.raises(ParseFailure):
            normalize_record({"name": "bad", "lane": "gpu", "startMs": 5, "endMs": 1})


class TestLaneNormalization:
    @pytest.mark.parametrize(
        "raw, lane",
        [
            ("GPU", "gpu"),
            ("compute", "gpu"),
            ("kernel", "gpu"),
            (" queued ", "queue"),
            ("HtoD", "h2d"),
            ("dtoh", "d2h"),
            ("nvlink", "nvlink"),
        ],
    )
    def test_aliases(self, raw, lane):
        assert normalize_lane(raw) == lane

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_empty_lane_rejected(self, raw):
        with pytest.raises(ParseFailure):
            normalize_lane(raw)


def test_parse_trace_file(tmp_path, chrome_trace):
    path = tmp_path / "trace.json"
    path.write_text(json.dumps(chrome_trace))
    assert len(parse_trace_file(path)) == 3
