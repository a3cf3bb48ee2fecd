#!/usr/bin/env python3
"""
perfscope command line interface
Inspect traces at an instant, run parameter sweeps against the Run Execution
Service and analyse saved sweep results.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from perfscope.client import RunServiceClient
from perfscope.conf import ClientConfig, SweepRange, SweepType, validated
from perfscope.errors import PerfScopeError
from perfscope.models import SweepResult
from perfscope.sweep.analyzer import detect_knee, recommend_concurrency
from perfscope.sweep.controller import SweepController, SweepSnapshot, SweepStatus
from perfscope.timeline.parser import TraceParser
from perfscope.timeline.query import TimelineIndex, trace_metrics

logger = logging.getLogger(__name__)


class PerfScopeCLI:
    """Command dispatcher for the perfscope console script."""

    def setup_logging(self, level: str = "INFO"):
        """Setup logging configuration."""
        log_level = getattr(logging, level.upper(), logging.INFO)
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

    def create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="perfscope",
            description="Trace playback queries and parameter sweeps for GPU workload runs",
        )
        parser.add_argument(
            "--log-level",
            default="WARNING",
            choices=["DEBUG", "INFO", "WARNING", "ERROR"],
            help="Logging level",
        )
        subparsers = parser.add_subparsers(dest="command", help="Available commands")

        timeline_parser = subparsers.add_parser(
            "timeline", help="Query a trace file at an instant"
        )
        timeline_parser.add_argument("trace", help="Trace JSON file")
        timeline_parser.add_argument(
            "--at", type=float, default=0.0, help="Query time in ms"
        )
        timeline_parser.add_argument(
            "--lane", default="gpu", help="Lane checked for saturation"
        )
        timeline_parser.add_argument(
            "--window", type=float, default=500.0, help="Saturation window in ms"
        )
        timeline_parser.add_argument(
            "--threshold", type=float, default=0.8, help="Saturation threshold"
        )

        sweep_parser = subparsers.add_parser(
            "sweep", help="Run a parameter sweep against the Run Execution Service"
        )
        sweep_parser.add_argument("scenario", help="Base scenario JSON file")
        sweep_parser.add_argument(
            "--param", required=True, choices=[t.value for t in SweepType]
        )
        sweep_parser.add_argument("--start", type=float, default=1)
        sweep_parser.add_argument("--end", type=float, default=8)
        sweep_parser.add_argument("--step", type=float, default=1)
        sweep_parser.add_argument(
            "--duration", type=float, default=10, help="Run duration in seconds"
        )
        sweep_parser.add_argument("--backend", help="Run Execution Service URL")
        sweep_parser.add_argument("--output", help="Write results JSON to this file")

        analyze_parser = subparsers.add_parser(
            "analyze", help="Find the knee or recommended band of saved results"
        )
        analyze_parser.add_argument("results", help="Results JSON file")
        analyze_parser.add_argument(
            "--param", required=True, choices=[t.value for t in SweepType]
        )
        return parser

    def run(self, argv: Optional[List[str]] = None) -> int:
        parser = self.create_parser()
        args = parser.parse_args(argv)
        self.setup_logging(args.log_level)

        if args.command == "timeline":
            return self.cmd_timeline(args)
        if args.command == "sweep":
            return self.cmd_sweep(args)
        if args.command == "analyze":
            return self.cmd_analyze(args)
        parser.print_help()
        return 1

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def cmd_timeline(self, args) -> int:
        raw = json.loads(Path(args.trace).read_text())
        parser = TraceParser()
        timeline = TimelineIndex(parser.parse(raw))
        active = timeline.active_set_at(args.at)
        utilization = timeline.lane_utilization(
            args.lane, max(0.0, args.at - args.window), args.at
        )
        saturated = timeline.saturation(args.lane, args.at, args.window, args.threshold)
        metrics = trace_metrics(timeline)

        print(
            f"Spans: {len(timeline)} (dropped {parser.dropped})  "
            f"End: {timeline.end_ms:.2f} ms"
        )
        counts = active.counts()
        print(
            f"t={args.at:.2f} ms  Active: {counts['total']}  Queued: {counts['queued']}  "
            f"GPU: {counts['gpu']}  Transfer: {counts['transfer']}  CPU: {counts['cpu']}"
        )
        print(
            f"{args.lane} utilization over last {args.window:g} ms: {utilization:.1%}"
            f"{'  (saturated)' if saturated else ''}"
        )
        if active.queue_forming:
            print("Queue forming")
        print(
            f"Kernels: {metrics.kernel_count} ({metrics.kernel_time_ms:.2f} ms)  "
            f"Copies: {metrics.memcpy_count} ({metrics.memcpy_time_ms:.2f} ms)  "
            f"Overlap: {metrics.overlap_estimate:.2f}"
        )
        return 0

    def cmd_sweep(self, args) -> int:
        scenario = json.loads(Path(args.scenario).read_text())
        sweep_range = validated(
            SweepRange,
            {
                "start": _whole(args.start),
                "end": _whole(args.end),
                "step": _whole(args.step),
                "duration": _whole(args.duration),
            },
        )
        config = ClientConfig.from_env(base_url=args.backend)

        with RunServiceClient(config) as client:
            controller = SweepController(
                client.execute_run, on_update=self._print_update
            )
            snapshot = asyncio.run(
                self._run_with_interrupt(controller, scenario, args.param, sweep_range)
            )

        if args.output:
            payload = {
                "param": args.param,
                "status": snapshot.status.value,
                "results": [result.to_dict() for result in snapshot.results],
            }
            Path(args.output).write_text(json.dumps(payload, indent=2))
            print(f"Results written to {args.output}")

        self._print_analysis(SweepType.parse(args.param), list(snapshot.results))
        if snapshot.status is SweepStatus.FAILED:
            print(f"Sweep failed: {snapshot.error}")
            return 1
        return 0

    async def _run_with_interrupt(self, controller, scenario, param, sweep_range):
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, controller.cancel)
        except (NotImplementedError, RuntimeError):
            logger.debug("Cooperative Ctrl-C cancellation unavailable on this platform")
        try:
            return await controller.run(scenario, param, sweep_range)
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass

    def cmd_analyze(self, args) -> int:
        data = json.loads(Path(args.results).read_text())
        items = data.get("results", []) if isinstance(data, dict) else data
        results = [SweepResult.from_dict(item) for item in items]
        self._print_analysis(SweepType.parse(args.param), results)
        return 0

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _print_update(self, snapshot: SweepSnapshot):
        if snapshot.status is SweepStatus.RUNNING and snapshot.results:
            result = snapshot.results[-1]
            print(
                f"[{snapshot.completed}/{snapshot.planned}] param={result.param}  "
                f"throughput={_fmt(result.throughput_rps)}  p99={_fmt(result.p99_ms)} ms  "
                f"run={result.run_id}"
            )
        elif snapshot.status is SweepStatus.CANCELLED:
            print(f"Sweep cancelled after {snapshot.completed} run(s)")

    def _print_analysis(self, sweep_type: SweepType, results: List[SweepResult]):
        if sweep_type is SweepType.RPS:
            knee = detect_knee(results)
            if knee is None:
                print("No knee found")
            else:
                print(
                    f"Knee at rps={knee.param} (p99 x{knee.p99_ratio:.2f}, "
                    f"throughput x{knee.throughput_ratio:.2f})"
                )
        else:
            band = recommend_concurrency(results)
            if band is None:
                print("No recommendation")
            else:
                print(f"Recommended concurrency: {band.label}")


def _whole(value: float):
    return int(value) if float(value).is_integer() else value


def _fmt(value) -> str:
    if value is None:
        return "—"
    return f"{value:.2f}"


def main():
    """Main entry point."""
    try:
        sys.exit(PerfScopeCLI().run())
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(130)
    except (PerfScopeError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
