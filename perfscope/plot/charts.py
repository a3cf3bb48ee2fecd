"""
Timeline and sweep charts rendered with matplotlib.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple, Union

import matplotlib.pyplot as plt
from matplotlib.figure import Figure

from perfscope.models import SweepResult
from perfscope.sweep.analyzer import KneePoint, OperatingBand, results_to_frame
from perfscope.timeline.query import TimelineIndex, ruler_ticks
from perfscope.timeline.spans import Span

LANE_COLORS: Dict[str, str] = {
    "queue": "#fbbf24",
    "cpu": "#60a5fa",
    "h2d": "#a855f7",
    "d2h": "#ec4899",
    "mem": "#c084fc",
    "gpu": "#22d3ee",
}
DEFAULT_LANE_COLOR = "#22d3ee"


@dataclass
class ChartConfig:
    """Figure settings shared by the perfscope charts"""

    figsize: Tuple[Union[int, float], Union[int, float]] = (10, 4)
    dpi: int = 100
    title: str = ""
    grid: bool = True
    inactive_alpha: float = 0.35


def plot_sweep(
    results: Sequence[SweepResult],
    knee: Optional[KneePoint] = None,
    band: Optional[OperatingBand] = None,
    param_label: str = "RPS",
    config: Optional[ChartConfig] = None,
    show_throughput: bool = True,
) -> Figure:
    """
    p99 latency (and optionally throughput) against the swept parameter.

    The knee is drawn as a dashed vertical line, the recommended band as a
    shaded span.
    """
    config = config or ChartConfig()
    df = results_to_frame(results)
    ncols = 2 if show_throughput else 1
    fig, axes = plt.subplots(1, ncols, figsize=config.figsize, dpi=config.dpi)
    if ncols == 1:
        axes = [axes]

    latency_ax = axes[0]
    latency = df.drop_nulls("p99_ms")
    latency_ax.plot(
        latency["param"].to_list(),
        latency["p99_ms"].to_list(),
        marker="o",
        color="#38bdf8",
    )
    latency_ax.set_title(f"p99 vs {param_label}")
    latency_ax.set_xlabel(param_label)
    latency_ax.set_ylabel("p99 (ms)")
    if knee is not None:
        latency_ax.axvline(
            knee.param, color="#fbbf24", linestyle="--", label=f"knee {knee.param}"
        )
        latency_ax.legend()
    if band is not None:
        latency_ax.axvspan(
            band.low,
            band.high,
            color="#34d399",
            alpha=0.2,
            label=f"recommended {band.label}",
        )
        latency_ax.legend()

    if show_throughput:
        throughput_ax = axes[1]
        throughput = df.drop_nulls("throughput_rps")
        throughput_ax.plot(
            throughput["param"].to_list(),
            throughput["throughput_rps"].to_list(),
            marker="o",
            color="#34d399",
        )
        throughput_ax.set_title(f"Throughput vs {param_label}")
        throughput_ax.set_xlabel(param_label)
        throughput_ax.set_ylabel("Throughput (rps)")

    for ax in axes:
        ax.grid(config.grid)
    if config.title:
        fig.suptitle(config.title)
    fig.tight_layout()
    return fig


def plot_timeline(
    spans: Union[TimelineIndex, Sequence[Span]],
    current_ms: float = 0.0,
    config: Optional[ChartConfig] = None,
) -> Figure:
    """
    One row per lane with a bar per span and a cursor at ``current_ms``.

    Spans active at the cursor are drawn opaque, the others dimmed.
    """
    config = config or ChartConfig()
    timeline = spans if isinstance(spans, TimelineIndex) else TimelineIndex(spans)
    lanes = timeline.lanes.lanes

    fig, ax = plt.subplots(figsize=config.figsize, dpi=config.dpi)
    for row, lane in enumerate(lanes):
        color = LANE_COLORS.get(lane, DEFAULT_LANE_COLOR)
        for span in timeline.lanes.spans(lane):
            alpha = 1.0 if span.is_active_at(current_ms) else config.inactive_alpha
            ax.broken_barh(
                [(span.start_ms, max(span.dur_ms, 1e-6))],
                (row - 0.35, 0.7),
                facecolors=color,
                alpha=alpha,
                edgecolor="black",
                linewidth=0.3,
            )

    ax.axvline(current_ms, color="#f87171", linewidth=1.5)
    ax.set_yticks(list(range(len(lanes))))
    ax.set_yticklabels([lane.upper() for lane in lanes])
    ax.set_xticks(ruler_ticks(timeline.end_ms))
    ax.set_xlim(0, max(timeline.end_ms, 1.0))
    ax.set_xlabel("Time (ms)")
    ax.set_title(config.title or "Timeline")
    ax.grid(config.grid, axis="x")
    fig.tight_layout()
    return fig
