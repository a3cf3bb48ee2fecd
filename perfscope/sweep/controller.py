"""
Sweep controller

Runs one scenario parameter across a range by submitting a run per value to
the Run Execution Service, strictly one after another. Progress is reported
as snapshots so callers can render partial sweeps while they are in flight.
"""

import copy
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

from perfscope.conf import SweepRange, SweepType, validated
from perfscope.errors import ValidationFailure
from perfscope.models import Number, RunRecord, RunSummary, SweepResult

logger = logging.getLogger(__name__)

ExecuteRun = Callable[[Dict[str, Any]], Union[Awaitable[Any], Any]]


class SweepStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class CancellationToken:
    """
    Cooperative cancellation flag checked before each sweep iteration.

    Cancelling never interrupts a run that is already in flight.
    """

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass(frozen=True)
class SweepSnapshot:
    """State of a sweep after an iteration or at termination"""

    sweep_type: SweepType
    results: Tuple[SweepResult, ...]
    status: SweepStatus
    planned: int
    error: Optional[BaseException] = None

    @property
    def done(self) -> bool:
        return self.status is not SweepStatus.RUNNING

    @property
    def completed(self) -> int:
        return len(self.results)


def build_scenario(
    base_scenario: Mapping[str, Any],
    sweep_type: SweepType,
    value: Number,
    duration: Number,
) -> Dict[str, Any]:
    """
    Deep copy of the base scenario with the swept field and the duration overridden.

    Raises:
        ValidationFailure: If the scenario lacks the section holding the swept field.

    Example:
        >>> base = {"workload": {"rps": 1, "duration_s": 60}, "target": {}}
        >>> build_scenario(base, SweepType.RPS, 4, 10)["workload"]
        {'rps': 4, 'duration_s': 10}
    """
    scenario = copy.deepcopy(dict(base_scenario))
    section_name, key = sweep_type.scenario_path
    for name in {"workload", section_name}:
        if not isinstance(scenario.get(name), dict):
            raise ValidationFailure(f"scenario has no '{name}' section to override")
    scenario["workload"]["duration_s"] = duration
    scenario[section_name][key] = value
    return scenario


def _to_record(result: Any) -> RunRecord:
    if isinstance(result, RunRecord):
        return result
    if isinstance(result, Mapping):
        run_id = result.get("run_id", result.get("id"))
        if run_id is None:
            raise ValueError("run result has no run identifier")
        return RunRecord(
            run_id=str(run_id),
            summary=RunSummary.from_payload(result.get("summary")),
            breakdown=result.get("breakdown"),
        )
    raise TypeError(f"unsupported run result type: {type(result).__name__}")


async def run_sweep(
    base_scenario: Mapping[str, Any],
    param: Union[str, SweepType],
    sweep_range: Union[SweepRange, Mapping[str, Any]],
    duration: Optional[Number],
    execute_run: ExecuteRun,
    token: Optional[CancellationToken] = None,
) -> AsyncIterator[SweepSnapshot]:
    """
    Run a sweep and yield a snapshot after every iteration and at termination.

    Inputs are validated before the first run is submitted. Each value is run on
    its own deep copy of ``base_scenario``; the next run starts only once the
    previous one has returned. The sweep ends with a snapshot whose status is
    COMPLETED, CANCELLED (token set between iterations) or FAILED (a run raised);
    in every case the results gathered so far are kept.

    Args:
        base_scenario: Scenario handed to the Run Execution Service.
        param: "rps" or "concurrency".
        sweep_range: SweepRange or a mapping with start, end and step.
        duration: Workload duration in seconds, None to use the range's duration.
        execute_run: Callable submitting a scenario; may be sync or async and must
            return a RunRecord or a mapping with ``run_id``/``id`` and ``summary``.
        token: Cancellation token checked before every iteration.

    Raises:
        ValidationFailure: On an invalid parameter, range or scenario.
    """
    sweep_type = SweepType.parse(param)
    if not isinstance(sweep_range, SweepRange):
        sweep_range = validated(SweepRange, dict(sweep_range))
    if duration is not None:
        sweep_range = validated(
            SweepRange, {**sweep_range.model_dump(), "duration": duration}
        )
    if not isinstance(base_scenario, Mapping):
        raise ValidationFailure("base scenario must be a mapping")
    values = sweep_range.values()
    # Fail on a malformed scenario before any run is submitted
    build_scenario(base_scenario, sweep_type, values[0], sweep_range.duration)

    token = token or CancellationToken()
    results: List[SweepResult] = []

    def snapshot(status: SweepStatus, error: Optional[BaseException] = None):
        return SweepSnapshot(
            sweep_type=sweep_type,
            results=tuple(results),
            status=status,
            planned=len(values),
            error=error,
        )

    logger.info(
        f"Starting {sweep_type.value} sweep over {len(values)} value(s) "
        f"({sweep_range.start}..{sweep_range.end} step {sweep_range.step})"
    )
    for value in values:
        if token.cancelled:
            logger.info(
                f"{sweep_type.value} sweep cancelled after "
                f"{len(results)} of {len(values)} run(s)"
            )
            yield snapshot(SweepStatus.CANCELLED)
            return

        scenario = build_scenario(
            base_scenario, sweep_type, value, sweep_range.duration
        )
        try:
            outcome = execute_run(scenario)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            record = _to_record(outcome)
        except Exception as e:
            logger.error(f"{sweep_type.value} sweep stopped at {value}: {e}")
            yield snapshot(SweepStatus.FAILED, error=e)
            return

        results.append(
            SweepResult(run_id=record.run_id, param=value, summary=record.summary)
        )
        logger.info(
            f"{sweep_type.value}={value} -> run {record.run_id} "
            f"({len(results)}/{len(values)})"
        )
        yield snapshot(SweepStatus.RUNNING)

    logger.info(f"{sweep_type.value} sweep completed with {len(results)} run(s)")
    yield snapshot(SweepStatus.COMPLETED)


class SweepController:
    """
    Owns one sweep at a time: its cancellation token and its latest snapshot.

    Args:
        execute_run: Callable submitting a scenario to the Run Execution Service.
        on_update (Optional[Callable]): Called with every snapshot as it is produced.
    """

    def __init__(
        self,
        execute_run: ExecuteRun,
        on_update: Optional[Callable[[SweepSnapshot], None]] = None,
    ):
        self.execute_run = execute_run
        self.on_update = on_update
        self.snapshot: Optional[SweepSnapshot] = None
        self._token: Optional[CancellationToken] = None

    @property
    def running(self) -> bool:
        return self._token is not None

    @property
    def results(self) -> Tuple[SweepResult, ...]:
        return self.snapshot.results if self.snapshot else ()

    def cancel(self):
        if self._token is not None:
            logger.info("Cancellation requested")
            self._token.cancel()

    async def run(
        self,
        base_scenario: Mapping[str, Any],
        param: Union[str, SweepType],
        sweep_range: Union[SweepRange, Mapping[str, Any]],
        duration: Optional[Number] = None,
    ) -> SweepSnapshot:
        """Run a sweep to termination and return its final snapshot."""
        if self._token is not None:
            raise RuntimeError("A sweep is already running")
        self._token = CancellationToken()
        try:
            async for snapshot in run_sweep(
                base_scenario,
                param,
                sweep_range,
                duration,
                self.execute_run,
                token=self._token,
            ):
                self.snapshot = snapshot
                if self.on_update is not None:
                    self.on_update(snapshot)
        finally:
            self._token = None
        return self.snapshot
