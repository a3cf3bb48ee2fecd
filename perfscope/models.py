"""
Result shapes shared by the run client, the sweep controller and the analyzer.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

Number = Union[int, float]


class RunSummary(BaseModel):
    """
    Headline metrics of one run as returned by the Run Execution Service.

    ``throughput`` and ``p99`` are accepted as aliases of ``throughput_rps`` and
    ``p99_ms``; unknown keys are kept as extra fields.

    Example:
        >>> RunSummary.model_validate({"throughput": 3.0, "p99": 12.5}).p99_ms
        12.5
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    throughput_rps: Optional[float] = Field(
        default=None,
        title="Throughput (rps)",
        validation_alias=AliasChoices("throughput_rps", "throughput"),
    )
    p50_ms: Optional[float] = Field(default=None, title="p50 latency (ms)")
    p90_ms: Optional[float] = Field(default=None, title="p90 latency (ms)")
    p99_ms: Optional[float] = Field(
        default=None,
        title="p99 latency (ms)",
        validation_alias=AliasChoices("p99_ms", "p99"),
    )
    avg_queue_ms: Optional[float] = Field(default=None, title="Average queue (ms)")
    gpu_util_percent: Optional[float] = Field(
        default=None, title="Compute busy (%)"
    )

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "RunSummary":
        if isinstance(payload, RunSummary):
            return payload
        return cls.model_validate(payload or {})

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


@dataclass
class RunRecord:
    """One executed run: identifier, summary and optional detail payloads"""

    run_id: str
    summary: RunSummary
    breakdown: Optional[Dict[str, Any]] = None
    trace_url: Optional[str] = None
    scenario: Optional[Dict[str, Any]] = None


@dataclass
class SweepResult:
    """One point of a sweep: the parameter value and the run it produced"""

    run_id: str
    param: Number
    summary: RunSummary = field(default_factory=RunSummary)

    @property
    def p99_ms(self) -> Optional[float]:
        return self.summary.p99_ms

    @property
    def throughput_rps(self) -> Optional[float]:
        return self.summary.throughput_rps

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.run_id,
            "param": self.param,
            "summary": self.summary.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SweepResult":
        return cls(
            run_id=str(data.get("id", data.get("run_id", ""))),
            param=data["param"],
            summary=RunSummary.from_payload(data.get("summary")),
        )
