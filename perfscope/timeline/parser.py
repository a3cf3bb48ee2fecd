"""
Trace parsing

Normalises the trace payloads handed out by the Run Execution Service (and
traces imported from third-party profilers) into a flat list of spans.

Accepted payloads:
- Chrome trace format: ``{"traceEvents": [...]}`` or a bare list of events.
  Complete events (``ph == "X"``) become spans, ``ts``/``dur`` are microseconds.
- Run breakdowns: ``{"requests": [{"id": ..., "stages": [...]}]}``.
- Flat span records: ``{"name", "lane", "startMs", "endMs"}`` in camelCase or snake_case.

Records that cannot produce a valid span are dropped, never raised, so a
partially malformed trace still yields every valid span.
"""

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from perfscope.errors import ParseFailure
from perfscope.timeline.spans import Lane, Span

logger = logging.getLogger(__name__)

US_PER_MS = 1000.0

LANE_ALIASES = {
    "compute": Lane.GPU.value,
    "kernel": Lane.GPU.value,
    "cuda": Lane.GPU.value,
    "queued": Lane.QUEUE.value,
    "wait": Lane.QUEUE.value,
    "htod": Lane.H2D.value,
    "host_to_device": Lane.H2D.value,
    "dtoh": Lane.D2H.value,
    "device_to_host": Lane.D2H.value,
}

_START_KEYS = ("startMs", "start_ms", "start")
_END_KEYS = ("endMs", "end_ms", "end")
_DUR_KEYS = ("durMs", "dur_ms")


def normalize_lane(value: Any) -> str:
    """
    Map a raw lane or category label onto a lane name.

    Known aliases are folded onto the five simulator lanes, anything else is kept
    (lower-cased) so additional lanes still render.

    Example:
        >>> normalize_lane("Compute")
        'gpu'
        >>> normalize_lane("nvlink")
        'nvlink'
    """
    if value is None:
        raise ParseFailure("record has no lane")
    lane = str(value).strip().lower()
    if not lane:
        raise ParseFailure("record has an empty lane")
    return LANE_ALIASES.get(lane, lane)


def _number(value: Any, label: str) -> float:
    if isinstance(value, bool):
        raise ParseFailure(f"{label} is a boolean")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            pass
    raise ParseFailure(f"{label} is not a number: {value!r}")


def _first(record: Dict[str, Any], keys) -> Optional[Any]:
    for key in keys:
        if record.get(key) is not None:
            return record[key]
    return None


class TraceParser:
    """
    Parser for trace payloads.

    Keeps per-parse counters so callers can report how much of a trace was lost:
    ``dropped`` counts malformed records, ``skipped`` counts well-formed records
    that are not spans (metadata, counters, instant events).
    """

    def __init__(self):
        self.dropped = 0
        self.skipped = 0

    def parse(self, raw: Any) -> List[Span]:
        """
        Parse a raw trace payload.

        Args:
            raw: Decoded JSON trace (dict or list). JSON text is decoded first.

        Returns:
            List[Span]: Valid spans in parse order.
        """
        self.dropped = 0
        self.skipped = 0

        if isinstance(raw, (str, bytes, bytearray)):
            try:
                raw = json.loads(raw)
            except ValueError as e:
                logger.warning(f"Trace payload is not valid JSON: {e}")
                return []

        spans = list(self._iter_payload(raw))

        if self.dropped:
            logger.warning(
                f"Dropped {self.dropped} malformed trace record(s), kept {len(spans)} span(s)"
            )
        logger.debug(f"Parsed {len(spans)} span(s), skipped {self.skipped} record(s)")
        return spans

    def _iter_payload(self, raw: Any) -> Iterable[Span]:
        if isinstance(raw, dict):
            if "traceEvents" in raw:
                yield from self._iter_records(raw.get("traceEvents"))
            elif "requests" in raw:
                yield from self._iter_records(raw.get("requests"))
            elif "spans" in raw:
                yield from self._iter_records(raw.get("spans"))
            else:
                yield from self._iter_records([raw])
        elif isinstance(raw, list):
            yield from self._iter_records(raw)
        elif raw is not None:
            logger.warning(f"Unsupported trace payload type: {type(raw).__name__}")

    def _iter_records(self, records: Any) -> Iterable[Span]:
        if not isinstance(records, list):
            if records is not None:
                logger.warning("Trace record container is not a list, ignoring it")
            return
        for record in records:
            if isinstance(record, dict) and isinstance(record.get("stages"), list):
                yield from self._iter_request(record)
                continue
            span = self._try_record(record)
            if span is not None:
                yield span

    def _iter_request(self, request: Dict[str, Any]) -> Iterable[Span]:
        request_id = request.get("id", request.get("request_id"))
        for stage in request["stages"]:
            span = self._try_record(stage, request_id=request_id)
            if span is not None:
                yield span

    def _try_record(self, record: Any, request_id: Any = None) -> Optional[Span]:
        try:
            if isinstance(record, dict) and self._is_non_span_event(record):
                self.skipped += 1
                return None
            span = normalize_record(record)
        except ParseFailure as e:
            self.dropped += 1
            logger.debug(f"Dropping trace record: {e}")
            return None
        if request_id is not None:
            span = replace(span, meta={"request_id": request_id})
        return span

    @staticmethod
    def _is_non_span_event(record: Dict[str, Any]) -> bool:
        ph = record.get("ph")
        return ph is not None and ph != "X"


def normalize_record(record: Any) -> Span:
    """
    Turn one trace record into a span.

    Raises:
        ParseFailure: If the record cannot yield a name, a lane and ordered bounds.

    Example:
        >>> event = {"name": "copy", "cat": "h2d", "ph": "X", "ts": 1000, "dur": 500}
        >>> normalize_record(event).end_ms
        1.5
    """
    if not isinstance(record, dict):
        raise ParseFailure(f"record is not an object: {record!r}", record)

    if "ts" in record:
        return _from_chrome_event(record)
    return _from_span_record(record)


def _from_chrome_event(event: Dict[str, Any]) -> Span:
    args = event.get("args") if isinstance(event.get("args"), dict) else {}
    category = event.get("cat")
    lane = normalize_lane(args.get("lane") or category)
    if event.get("dur") is None:
        raise ParseFailure("complete event has no duration", event)
    start_ms = _number(event["ts"], "ts") / US_PER_MS
    end_ms = start_ms + _number(event["dur"], "dur") / US_PER_MS
    return Span(
        name=_name(event, fallback=lane),
        lane=lane,
        start_ms=start_ms,
        end_ms=end_ms,
        category=str(category) if category is not None else None,
        tid=event.get("tid"),
        pid=event.get("pid"),
    )


def _from_span_record(record: Dict[str, Any]) -> Span:
    category = _first(record, ("category", "cat"))
    lane = normalize_lane(_first(record, ("lane",)) or category)

    raw_start = _first(record, _START_KEYS)
    if raw_start is None:
        raise ParseFailure("record has no start time", record)
    start_ms = _number(raw_start, "start")

    raw_end = _first(record, _END_KEYS)
    if raw_end is not None:
        end_ms = _number(raw_end, "end")
    else:
        raw_dur = _first(record, _DUR_KEYS)
        if raw_dur is None:
            raise ParseFailure("record has neither an end time nor a duration", record)
        end_ms = start_ms + _number(raw_dur, "duration")

    return Span(
        name=_name(record, fallback=lane),
        lane=lane,
        start_ms=start_ms,
        end_ms=end_ms,
        category=str(category) if category is not None else None,
        tid=record.get("tid"),
        pid=record.get("pid"),
    )


def _name(record: Dict[str, Any], fallback: str) -> str:
    name = record.get("name")
    if name is None or str(name).strip() == "":
        return fallback
    return str(name)


def parse_trace(raw: Any) -> List[Span]:
    """
    Parse a raw trace payload into spans, dropping malformed records.

    Example:
        >>> spans = parse_trace([
        ...     {"name": "compute", "lane": "gpu", "startMs": 0, "endMs": 4},
        ...     {"name": "broken", "lane": "gpu", "startMs": 5, "endMs": 1},
        ... ])
        >>> len(spans)
        1
    """
    return TraceParser().parse(raw)


def parse_trace_file(trace_file: Union[str, Path]) -> List[Span]:
    """
    Read a JSON trace from disk and parse it.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the file is not valid JSON.
    """
    path = Path(trace_file)
    logger.info(f"Loading trace from {path}")
    with open(path, "r") as f:
        raw = json.load(f)
    return parse_trace(raw)
