"""
Shared fixtures for sweep tests.
"""

import pytest

from perfscope.models import RunSummary, SweepResult


class FakeRunService:
    """
    Records every scenario it receives and answers with a synthetic summary.

    Throughput follows the swept value and p99 grows with it, so results are
    easy to tell apart. ``fail_on`` makes the run for that value raise.
    """

    def __init__(self, fail_on=None, on_call=None):
        self.calls = []
        self.fail_on = fail_on
        self.on_call = on_call

    async def __call__(self, scenario):
        value = scenario["workload"]["rps"]
        self.calls.append(scenario)
        if self.on_call is not None:
            self.on_call(len(self.calls))
        if value == self.fail_on:
            raise RuntimeError(f"backend rejected rps={value}")
        return {
            "run_id": f"run-{len(self.calls)}",
            "summary": {"throughput": float(value), "p99": 10.0 * value},
        }


@pytest.fixture
def base_scenario():
    return {
        "name": "baseline",
        "workload": {"rps": 1, "duration_s": 60, "arrival": "poisson"},
        "target": {"concurrency": 1, "model": "resnet50"},
    }


@pytest.fixture
def fake_service():
    return FakeRunService()


def make_results(points):
    """SweepResults from (param, p99_ms, throughput_rps) tuples"""
    return [
        SweepResult(
            run_id=f"r{i}",
            param=param,
            summary=RunSummary(p99_ms=p99, throughput_rps=throughput),
        )
        for i, (param, p99, throughput) in enumerate(points)
    ]


@pytest.fixture
def results_factory():
    return make_results


@pytest.fixture
def service_factory():
    return FakeRunService
