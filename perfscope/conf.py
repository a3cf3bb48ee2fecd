import logging
import math
import os
from enum import Enum
from typing import Any, Dict, Iterator, List, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from perfscope.errors import ValidationFailure

logger = logging.getLogger(__name__)

Number = Union[int, float]
ModelT = TypeVar("ModelT", bound=BaseModel)

# Tolerance used when deciding whether start + i*step still lies within end.
_RANGE_EPSILON = 1e-9


def validated(model_cls: Type[ModelT], data: Dict[str, Any]) -> ModelT:
    """
    Build a configuration model, turning pydantic errors into ValidationFailure.

    Args:
        model_cls (Type[BaseModel]): The configuration class to build.
        data (Dict[str, Any]): Raw field values.

    Returns:
        BaseModel: The validated configuration.

    Raises:
        ValidationFailure: If any field is invalid.

    Example:
        >>> validated(SweepRange, {"start": 1, "end": 4, "step": 1}).end
        4
    """
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise ValidationFailure(f"Invalid {model_cls.__name__}: {e}") from e


class SweepType(str, Enum):
    """The scenario parameter a sweep varies."""

    RPS = "rps"
    CONCURRENCY = "concurrency"

    @property
    def scenario_path(self) -> Tuple[str, str]:
        """Section and key of the scenario field this sweep overrides."""
        if self is SweepType.RPS:
            return ("workload", "rps")
        return ("target", "concurrency")

    @classmethod
    def parse(cls, value: Union[str, "SweepType"]) -> "SweepType":
        if isinstance(value, SweepType):
            return value
        key = str(value).strip().lower()
        # "con" is the short name used by stored sweep state
        if key == "con":
            key = cls.CONCURRENCY.value
        try:
            return cls(key)
        except ValueError:
            raise ValidationFailure(
                f"Unknown sweep parameter '{value}', expected one of "
                f"{[member.value for member in cls]}"
            )


class SweepRange(BaseModel):
    """
    SweepRange defines which parameter values a sweep visits.

    Attributes:
        start (Number): First value of the swept parameter.
        end (Number): Last value (inclusive) of the swept parameter.
        step (Number): Increment between two consecutive values, strictly positive.
        duration (Number): Workload duration in seconds applied to every run of the sweep.

    Example:
        >>> SweepRange(start=1, end=3, step=1).values()
        [1, 2, 3]
    """

    start: Number = Field(
        default=1, title="Start", description="First value of the swept parameter"
    )
    end: Number = Field(
        default=8, title="End", description="Last value of the swept parameter"
    )
    step: Number = Field(
        default=1, title="Step", description="Increment between consecutive values"
    )
    duration: Number = Field(
        default=10,
        title="Duration (s)",
        description="Workload duration applied to every run of the sweep",
    )

    @field_validator("start")
    @classmethod
    def _check_start(cls, value: Number) -> Number:
        if value < 0 or not math.isfinite(value):
            raise ValueError("start must be a finite, non-negative number")
        return value

    @field_validator("step")
    @classmethod
    def _check_step(cls, value: Number) -> Number:
        if value <= 0 or not math.isfinite(value):
            raise ValueError("step must be strictly positive")
        return value

    @field_validator("duration")
    @classmethod
    def _check_duration(cls, value: Number) -> Number:
        if value <= 0:
            raise ValueError("duration must be strictly positive")
        return value

    @model_validator(mode="after")
    def _check_bounds(self) -> "SweepRange":
        if not math.isfinite(self.end) or self.end < self.start:
            raise ValueError("end must be greater than or equal to start")
        return self

    def iter_values(self) -> Iterator[Number]:
        count = int(math.floor((self.end - self.start) / self.step + _RANGE_EPSILON))
        for i in range(count + 1):
            yield self.start + i * self.step

    def values(self) -> List[Number]:
        return list(self.iter_values())


class SaturationConfig(BaseModel):
    """
    Thresholds behind the saturation indicator.

    The defaults reproduce the GPU-saturated badge of the timeline view: a lane
    counts as saturated when it was busy at least 80% of the trailing 500 ms.
    """

    lane: str = Field(default="gpu", title="Lane", description="Lane to watch")
    threshold: float = Field(
        default=0.8,
        title="Threshold",
        description="Utilization ratio at or above which the lane is saturated",
        ge=0.0,
        le=1.0,
    )
    window_ms: float = Field(
        default=500.0,
        title="Window (ms)",
        description="Length of the trailing window",
        gt=0.0,
    )


class PlaybackConfig(BaseModel):
    frame_interval_ms: float = Field(
        default=16.0,
        title="Frame interval (ms)",
        description="Logical time added per tick at 1x speed",
        gt=0.0,
    )
    speed: float = Field(
        default=1.0, title="Speed", description="Playback multiplier", gt=0.0
    )
    speed_presets: Tuple[float, ...] = Field(
        default=(0.5, 1.0, 2.0, 4.0),
        title="Speed presets",
        description="Speeds offered by the host UI",
    )
    zoom_px_per_ms: float = Field(
        default=0.4,
        title="Zoom (px/ms)",
        description="Horizontal scale used by the renderer",
        gt=0.0,
    )


class ClientConfig(BaseModel):
    base_url: str = Field(
        default="http://localhost:8080",
        title="Backend URL",
        description="Base URL of the Run Execution Service",
    )
    timeout: float = Field(
        default=30.0,
        title="Timeout (s)",
        description="Per-request timeout",
        gt=0.0,
    )

    @field_validator("base_url")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("base_url must not be empty")
        return value.rstrip("/")

    @classmethod
    def from_env(cls, **overrides) -> "ClientConfig":
        """
        Build a ClientConfig, reading PERFSCOPE_BACKEND_URL when no base_url is given.

        Example:
            >>> os.environ["PERFSCOPE_BACKEND_URL"] = "http://sim:9000/"
            >>> ClientConfig.from_env().base_url
            'http://sim:9000'
        """
        data = dict(overrides)
        env_url = os.environ.get("PERFSCOPE_BACKEND_URL")
        if env_url and not data.get("base_url"):
            logger.debug(f"Using backend URL from environment: {env_url}")
            data["base_url"] = env_url
        data = {key: value for key, value in data.items() if value is not None}
        return validated(cls, data)
