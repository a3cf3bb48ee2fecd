from perfscope.models import RunRecord, RunSummary, SweepResult


class TestRunSummary:
    def test_short_aliases(self):
        summary = RunSummary.from_payload({"throughput": 12.5, "p99": 40})
        assert summary.throughput_rps == 12.5
        assert summary.p99_ms == 40.0

    def test_field_names(self):
        summary = RunSummary(throughput_rps=3, p99_ms=9, gpu_util_percent=71.0)
        assert summary.to_dict() == {
            "throughput_rps": 3.0,
            "p99_ms": 9.0,
            "gpu_util_percent": 71.0,
        }

    def test_missing_payload(self):
        summary = RunSummary.from_payload(None)
        assert summary.p99_ms is None
        assert summary.to_dict() == {}

    def test_extra_fields_kept(self):
        summary = RunSummary.from_payload({"p99_ms": 5, "cost_usd": 0.02})
        assert summary.to_dict()["cost_usd"] == 0.02

    def test_existing_summary_passes_through(self):
        summary = RunSummary(p50_ms=1)
        assert RunSummary.from_payload(summary) is summary


class TestSweepResult:
    def test_metric_shortcuts(self):
        result = SweepResult("r1", 4, RunSummary(p99_ms=30, throughput_rps=3.1))
        assert result.p99_ms == 30
        assert result.throughput_rps == 3.1

    def test_dict_round_trip(self):
        result = SweepResult("r1", 4, RunSummary(p99_ms=30))
        data = result.to_dict()
        assert data == {"id": "r1", "param": 4, "summary": {"p99_ms": 30.0}}
        assert SweepResult.from_dict(data) == result

    def test_from_dict_accepts_run_id_key(self):
        result = SweepResult.from_dict({"run_id": 7, "param": 2})
        assert result.run_id == "7"
        assert result.summary.p99_ms is None


def test_run_record_defaults():
    record = RunRecord(run_id="r1", summary=RunSummary())
    assert record.breakdown is None
    assert record.trace_url is None
