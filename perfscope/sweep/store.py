import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from perfscope.conf import SweepRange, SweepType, validated
from perfscope.errors import ValidationFailure
from perfscope.models import SweepResult
from perfscope.sweep.controller import SweepSnapshot

logger = logging.getLogger(__name__)

MAX_STORED_RESULTS = 100


@dataclass
class SweepState:
    """Configuration and accumulated results of one sweep type"""

    config: SweepRange = field(default_factory=SweepRange)
    results: List[SweepResult] = field(default_factory=list)


class SweepStore:
    """
    Session-scoped sweep state, one independent SweepState per sweep type.

    Results accumulate across sweeps of the same type; re-running a parameter
    value appends a new result instead of replacing the old one. Only the most
    recent ``max_results`` results are kept.

    Example:
        >>> store = SweepStore()
        >>> store.configure("rps", {"start": 1, "end": 4, "step": 1})
        >>> store.state("rps").config.end
        4
    """

    def __init__(self, max_results: int = MAX_STORED_RESULTS):
        self.max_results = max_results
        self._states: Dict[SweepType, SweepState] = {
            sweep_type: SweepState() for sweep_type in SweepType
        }

    def state(self, sweep_type: Union[str, SweepType]) -> SweepState:
        return self._states[SweepType.parse(sweep_type)]

    def configure(
        self,
        sweep_type: Union[str, SweepType],
        config: Union[SweepRange, Dict[str, Any]],
    ):
        if not isinstance(config, SweepRange):
            config = validated(SweepRange, dict(config))
        self.state(sweep_type).config = config

    def results(self, sweep_type: Union[str, SweepType]) -> List[SweepResult]:
        return list(self.state(sweep_type).results)

    def append(self, sweep_type: Union[str, SweepType], result: SweepResult):
        state = self.state(sweep_type)
        state.results.append(result)
        if len(state.results) > self.max_results:
            del state.results[: len(state.results) - self.max_results]

    def record(self, snapshot: SweepSnapshot) -> int:
        """
        Store the results of a snapshot that are not stored yet.

        Snapshots of one sweep are cumulative, so results are matched by run id.

        Returns:
            int: Number of newly stored results.
        """
        state = self.state(snapshot.sweep_type)
        known = {result.run_id for result in state.results}
        added = 0
        for result in snapshot.results:
            if result.run_id not in known:
                self.append(snapshot.sweep_type, result)
                known.add(result.run_id)
                added += 1
        if added:
            logger.debug(
                f"Stored {added} new {snapshot.sweep_type.value} sweep result(s)"
            )
        return added

    def clear(self, sweep_type: Union[str, SweepType]):
        self.state(sweep_type).results.clear()

    def to_json(self) -> str:
        data = {
            sweep_type.value: {
                "config": state.config.model_dump(),
                "results": [result.to_dict() for result in state.results],
            }
            for sweep_type, state in self._states.items()
        }
        return json.dumps(data)

    @classmethod
    def from_json(
        cls, payload: str, max_results: int = MAX_STORED_RESULTS
    ) -> "SweepStore":
        """
        Restore a store saved with to_json.

        Unreadable payloads give an empty store; invalid configs and results are
        skipped one by one, leaving the defaults in place.
        """
        store = cls(max_results=max_results)
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable sweep state: {e}")
            return store
        if not isinstance(data, dict):
            logger.warning("Ignoring sweep state that is not an object")
            return store

        for key, entry in data.items():
            try:
                sweep_type = SweepType.parse(key)
            except ValidationFailure:
                logger.warning(f"Ignoring state of unknown sweep type '{key}'")
                continue
            if not isinstance(entry, dict):
                continue
            if entry.get("config"):
                try:
                    store.configure(sweep_type, entry["config"])
                except (ValidationFailure, TypeError, ValueError) as e:
                    logger.warning(
                        f"Ignoring invalid {sweep_type.value} sweep config: {e}"
                    )
            results = entry.get("results") or []
            if not isinstance(results, list):
                logger.warning(f"Ignoring {sweep_type.value} results that are not a list")
                continue
            for item in results:
                try:
                    result = SweepResult.from_dict(item)
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    logger.warning(
                        f"Ignoring unreadable {sweep_type.value} sweep result: {e!r}"
                    )
                    continue
                store.append(sweep_type, result)
        return store
