from .controller import (
    CancellationToken,
    SweepController,
    SweepSnapshot,
    SweepStatus,
    build_scenario,
    run_sweep,
)
from .analyzer import (
    KneePoint,
    OperatingBand,
    SummaryDelta,
    compare_summaries,
    detect_knee,
    recommend_concurrency,
    results_to_frame,
)
from .store import SweepState, SweepStore

__all__ = [
    "CancellationToken",
    "SweepController",
    "SweepSnapshot",
    "SweepStatus",
    "build_scenario",
    "run_sweep",
    "KneePoint",
    "OperatingBand",
    "SummaryDelta",
    "compare_summaries",
    "detect_knee",
    "recommend_concurrency",
    "results_to_frame",
    "SweepState",
    "SweepStore",
]
