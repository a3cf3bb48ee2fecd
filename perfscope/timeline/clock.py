"""
Playback clock

A logical time value advanced once per frame while playing. Frames come from
a FrameScheduler so the clock can run on an asyncio loop in production and on
a manually stepped scheduler in tests.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from perfscope.conf import PlaybackConfig
from perfscope.errors import ValidationFailure
from perfscope.timeline.query import TimelineIndex

logger = logging.getLogger(__name__)

FrameCallback = Callable[[], None]


class PlaybackState(Enum):
    STOPPED = "stopped"
    PLAYING = "playing"


# ============================================================================
# FRAME SCHEDULERS
# ============================================================================


class FrameScheduler(ABC):
    """Source of per-frame callbacks, one callback per request"""

    @abstractmethod
    def request_frame(self, callback: FrameCallback) -> Any:
        """Run callback on the next frame and return a handle for cancel_frame."""
        pass

    @abstractmethod
    def cancel_frame(self, handle: Any) -> None:
        pass


class ManualFrameScheduler(FrameScheduler):
    """
    Scheduler driven by explicit advance() calls.

    Callbacks requested while a frame is being delivered run on the following
    frame, matching how a render loop re-registers itself.

    Example:
        >>> scheduler = ManualFrameScheduler()
        >>> calls = []
        >>> _ = scheduler.request_frame(lambda: calls.append(1))
        >>> scheduler.advance()
        1
        >>> calls
        [1]
    """

    def __init__(self):
        self._pending: Dict[int, FrameCallback] = {}
        self._next_handle = 0
        self.frames = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    def request_frame(self, callback: FrameCallback) -> int:
        self._next_handle += 1
        self._pending[self._next_handle] = callback
        return self._next_handle

    def cancel_frame(self, handle: int) -> None:
        self._pending.pop(handle, None)

    def advance(self, frames: int = 1) -> int:
        """Deliver up to ``frames`` frames and return how many callbacks ran."""
        ran = 0
        for _ in range(frames):
            if not self._pending:
                break
            due, self._pending = self._pending, {}
            self.frames += 1
            for callback in due.values():
                callback()
                ran += 1
        return ran


class AsyncioFrameScheduler(FrameScheduler):
    """
    Delivers frames on an asyncio event loop every ``interval_s`` seconds.

    Args:
        interval_s (float): Wall-clock delay between frames, 1/60 s by default.
        loop (Optional[asyncio.AbstractEventLoop]): Loop to schedule on. Defaults to
            the running loop at the time of the first request.
    """

    def __init__(
        self,
        interval_s: float = 1 / 60,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.interval_s = interval_s
        self._loop = loop

    def request_frame(self, callback: FrameCallback) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(self.interval_s, callback)

    def cancel_frame(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()


# ============================================================================
# PLAYBACK CLOCK
# ============================================================================


class PlaybackClock:
    """
    Playback position over a trace.

    While playing, every frame adds ``frame_interval_ms * speed`` to the time
    until it reaches the end of the trace, where playback stops on its own.
    Scrubbing jumps to a clamped time and always pauses. Listeners are notified
    with the clock after every change.

    Args:
        scheduler (FrameScheduler): Source of frames.
        end_ms (float): Upper bound of the playback range, usually the trace end time.
        config (Optional[PlaybackConfig]): Frame interval and initial speed.
    """

    def __init__(
        self,
        scheduler: FrameScheduler,
        end_ms: float = 0.0,
        config: Optional[PlaybackConfig] = None,
    ):
        self.config = config or PlaybackConfig()
        self.scheduler = scheduler
        self.frame_interval_ms = self.config.frame_interval_ms
        self._speed = self.config.speed
        self._end_ms = max(0.0, float(end_ms))
        self._time_ms = 0.0
        self._state = PlaybackState.STOPPED
        self._handle: Any = None
        # Bumped whenever playback stops so stale frame callbacks become no-ops
        self._generation = 0
        self._listeners: List[Callable[["PlaybackClock"], None]] = []

    @classmethod
    def for_timeline(
        cls,
        timeline: TimelineIndex,
        scheduler: FrameScheduler,
        config: Optional[PlaybackConfig] = None,
    ) -> "PlaybackClock":
        return cls(scheduler, end_ms=timeline.end_ms, config=config)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def time_ms(self) -> float:
        return self._time_ms

    @property
    def end_ms(self) -> float:
        return self._end_ms

    @property
    def speed(self) -> float:
        return self._speed

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def playing(self) -> bool:
        return self._state is PlaybackState.PLAYING

    def subscribe(
        self, listener: Callable[["PlaybackClock"], None]
    ) -> Callable[[], None]:
        """Register a change listener and return a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        for listener in list(self._listeners):
            listener(self)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def play(self):
        if self.playing:
            return
        self._state = PlaybackState.PLAYING
        logger.debug(f"Playback started at {self._time_ms} ms (speed {self._speed}x)")
        self._schedule()
        self._notify()

    def pause(self):
        if not self.playing:
            return
        self._stop()
        logger.debug(f"Playback paused at {self._time_ms} ms")
        self._notify()

    def toggle(self):
        if self.playing:
            self.pause()
        else:
            self.play()

    def scrub(self, t: float):
        """Jump to t clamped to [0, end_ms]; always leaves the clock stopped."""
        if self.playing:
            self._stop()
        self._time_ms = min(self._end_ms, max(0.0, float(t)))
        logger.debug(f"Scrubbed to {self._time_ms} ms")
        self._notify()

    def set_speed(self, speed: float):
        if not speed > 0:
            raise ValidationFailure(f"playback speed must be positive, got {speed}")
        self._speed = float(speed)
        self._notify()

    def reset(self, end_ms: float):
        """Load a new playback range: stop and rewind to 0."""
        if self.playing:
            self._stop()
        self._end_ms = max(0.0, float(end_ms))
        self._time_ms = 0.0
        self._notify()

    def close(self):
        """Stop playback and drop every listener."""
        if self.playing:
            self._stop()
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    def _stop(self):
        self._state = PlaybackState.STOPPED
        self._generation += 1
        if self._handle is not None:
            self.scheduler.cancel_frame(self._handle)
            self._handle = None

    def _schedule(self):
        generation = self._generation
        self._handle = self.scheduler.request_frame(lambda: self._tick(generation))

    def _tick(self, generation: int):
        if generation != self._generation or not self.playing:
            return
        self._handle = None
        self._time_ms = min(
            self._end_ms, self._time_ms + self.frame_interval_ms * self._speed
        )
        if self._time_ms >= self._end_ms:
            self._stop()
            logger.debug(f"Playback reached the end at {self._end_ms} ms")
        else:
            self._schedule()
        self._notify()
